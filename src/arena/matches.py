"""Concurrent match runs.

Each started match gets its own PositionTracker, engine subprocess and
orchestrator, run as an independent asyncio task.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable

from arena.agent import AgentMoveProvider
from arena.broadcast import Broadcaster
from arena.config import Settings
from arena.engine import EngineOpponentClient, resolve_engine_path
from arena.llm import CompletionClient, build_client
from arena.models import AgentProfile, Match, Ply
from arena.orchestrator import MatchOrchestrator
from arena.position import PositionTracker
from arena.store import MoveStore

logger = logging.getLogger(__name__)

EngineFactory = Callable[[int], EngineOpponentClient]


@dataclass
class MatchSession:
    match: Match
    profile: AgentProfile
    start_fen: str | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    orchestrator: MatchOrchestrator | None = None
    task: asyncio.Task | None = None


class MatchManager:
    def __init__(
        self,
        settings: Settings,
        store: MoveStore,
        broadcaster: Broadcaster,
        client: CompletionClient | None = None,
        engine_factory: EngineFactory | None = None,
    ):
        self._settings = settings
        self._store = store
        self._broadcaster = broadcaster
        self._client = client or build_client(settings)
        self._engine_factory = engine_factory or self._default_engine
        self._sessions: dict[str, MatchSession] = {}

    def _default_engine(self, level: int) -> EngineOpponentClient:
        s = self._settings
        return EngineOpponentClient(
            level,
            resolve_engine_path(s.stockfish_path),
            movetime_ms=s.engine_movetime_ms,
            handshake_timeout=s.engine_handshake_timeout,
            move_timeout=s.engine_move_timeout,
            quit_timeout=s.engine_quit_timeout,
        )

    def create_match(self, profile: AgentProfile, level: int = 5, start_fen: str | None = None) -> Match:
        """Register a pending match. Returns the Match record."""
        match = Match(id=str(uuid.uuid4()), level=level)
        self._sessions[match.id] = MatchSession(match=match, profile=profile, start_fen=start_fen)
        return match

    def get(self, match_id: str) -> Match | None:
        session = self._sessions.get(match_id)
        return session.match if session else None

    def plies(self, match_id: str) -> list[Ply]:
        session = self._sessions.get(match_id)
        if session is None or session.orchestrator is None:
            return []
        return list(session.orchestrator.plies)

    def _session(self, match_id: str) -> MatchSession:
        session = self._sessions.get(match_id)
        if session is None:
            raise KeyError(f"Match not found: {match_id}")
        return session

    def start(self, match_id: str) -> asyncio.Task:
        """Schedule the match run on the running event loop."""
        session = self._session(match_id)
        if session.task is not None:
            raise RuntimeError(f"Match {match_id} already started")
        session.orchestrator = MatchOrchestrator(
            session.match,
            session.profile,
            PositionTracker(session.start_fen, max_plies=self._settings.max_plies),
            self._engine_factory(session.match.level),
            AgentMoveProvider(self._client, max_attempts=self._settings.agent_max_attempts),
            self._store,
            self._broadcaster,
            cost_per_1k_tokens_cents=self._settings.llm_cost_per_1k_tokens_cents,
            cancel_event=session.cancel_event,
        )
        session.task = asyncio.create_task(session.orchestrator.run(), name=f"match-{match_id}")
        return session.task

    def cancel(self, match_id: str) -> None:
        """Ask the match to stop before its next turn."""
        self._session(match_id).cancel_event.set()
        logger.info("Cancellation requested for match %s", match_id)

    async def wait(self, match_id: str) -> Match:
        session = self._session(match_id)
        if session.task is None:
            raise RuntimeError(f"Match {match_id} was never started")
        return await session.task
