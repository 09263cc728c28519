"""Match, ply and agent records shared by every arena component."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

MIN_LEVEL = 1
MAX_LEVEL = 8


class MatchStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERRORED = "errored"


class Mover(enum.Enum):
    AGENT = "agent"
    OPPONENT = "opponent"

    @property
    def other(self) -> Mover:
        return Mover.OPPONENT if self is Mover.AGENT else Mover.AGENT


class Winner(enum.Enum):
    AGENT = "agent"
    OPPONENT = "opponent"
    DRAW = "draw"


class MatchStateError(RuntimeError):
    """Raised when a finished match is mutated or a transition is invalid."""


@dataclass(frozen=True)
class AgentProfile:
    name: str            # shown to the LLM as its identity
    prompt_text: str     # personality and strategy block
    role: str | None = None

    def __post_init__(self):
        if not 1 <= len(self.name.strip()) <= 100:
            raise ValueError("Agent name must be 1-100 characters")
        if not 10 <= len(self.prompt_text.strip()) <= 10_000:
            raise ValueError("Agent prompt_text must be 10-10000 characters")
        if self.role is not None and len(self.role) > 50:
            raise ValueError("Agent role must be at most 50 characters")


@dataclass(frozen=True)
class LLMArtifacts:
    prompt: str
    response: str
    tokens: int


@dataclass(frozen=True)
class Ply:
    number: int                 # 1-based, contiguous within a match
    mover: Mover
    notation: str               # SAN
    fen_before: str
    fen_after: str
    latency_ms: int
    llm: LLMArtifacts | None = None

    @property
    def move_number(self) -> int:
        """Full-move number this ply belongs to."""
        return (self.number + 1) // 2

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "move_number": self.move_number,
            "mover": self.mover.value,
            "notation": self.notation,
            "fen_before": self.fen_before,
            "fen_after": self.fen_after,
            "latency_ms": self.latency_ms,
            "llm_prompt": self.llm.prompt if self.llm else None,
            "llm_response": self.llm.response if self.llm else None,
            "tokens_used": self.llm.tokens if self.llm else None,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Match:
    id: str
    level: int
    status: MatchStatus = MatchStatus.PENDING
    winner: Winner | None = None
    result_reason: str | None = None
    total_plies: int = 0
    total_tokens: int = 0
    total_cost_cents: float = 0.0
    average_move_time_ms: int | None = None
    final_fen: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    _agent_latencies: list[int] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not MIN_LEVEL <= self.level <= MAX_LEVEL:
            raise ValueError(
                f"Opponent level must be between {MIN_LEVEL} and {MAX_LEVEL}, got {self.level}"
            )

    @property
    def is_finished(self) -> bool:
        return self.status in (MatchStatus.COMPLETED, MatchStatus.ERRORED)

    def _ensure_open(self) -> None:
        if self.is_finished:
            raise MatchStateError(f"Match {self.id} is already {self.status.value}")

    def start(self) -> None:
        self._ensure_open()
        if self.status is not MatchStatus.PENDING:
            raise MatchStateError(f"Match {self.id} was already started")
        self.status = MatchStatus.IN_PROGRESS
        self.started_at = _now()

    def record_ply(self, ply: Ply, cost_cents: float = 0.0) -> None:
        self._ensure_open()
        if ply.number != self.total_plies + 1:
            raise MatchStateError(
                f"Ply {ply.number} out of sequence (expected {self.total_plies + 1})"
            )
        self.total_plies = ply.number
        if ply.mover is Mover.AGENT:
            self._agent_latencies.append(ply.latency_ms)
            if ply.llm is not None:
                self.total_tokens += ply.llm.tokens
            self.total_cost_cents += cost_cents

    def record_usage(self, tokens: int, cost_cents: float = 0.0) -> None:
        """Add agent tokens and cost that produced no ply."""
        self._ensure_open()
        self.total_tokens += tokens
        self.total_cost_cents += cost_cents

    def agent_average_latency(self) -> int | None:
        if not self._agent_latencies:
            return None
        return int(sum(self._agent_latencies) / len(self._agent_latencies))

    def complete(self, winner: Winner, reason: str, final_fen: str) -> None:
        self._ensure_open()
        self.status = MatchStatus.COMPLETED
        self.winner = winner
        self.result_reason = reason
        self.final_fen = final_fen
        self.average_move_time_ms = self.agent_average_latency()
        self.completed_at = _now()

    def fail(self, message: str) -> None:
        self._ensure_open()
        self.status = MatchStatus.ERRORED
        self.error_message = message
        self.average_move_time_ms = self.agent_average_latency()
        self.completed_at = _now()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "level": self.level,
            "status": self.status.value,
            "winner": self.winner.value if self.winner else None,
            "result_reason": self.result_reason,
            "total_plies": self.total_plies,
            "total_tokens": self.total_tokens,
            "total_cost_cents": round(self.total_cost_cents, 4),
            "average_move_time_ms": self.average_move_time_ms,
            "final_fen": self.final_fen,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
