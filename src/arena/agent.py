"""Agent move acquisition.

Builds the move prompt, asks the completion client, pulls a move out of
the free-text answer and retries with a stricter prompt until the move is
legal or the attempt budget runs out.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass

from arena.llm import AgentApiError, CompletionClient
from arena.models import AgentProfile
from arena.position import PositionTracker
from arena.prompts import (
    NO_MARKER_FAILURE,
    build_move_prompt,
    build_strict_block,
    illegal_move_failure,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

_MOVE_RE = re.compile(r"move:\s*(\S+)", re.IGNORECASE)
_WRAPPERS = "*_`'\"[]().,;:!?<>"
_CASTLE_ZERO = {"0-0": "O-O", "0-0-0": "O-O-O"}
_ATTEMPT_SEPARATOR = "\n\n---\n\n"


class AgentMoveExhausted(Exception):
    """No legal move after the full attempt budget."""

    def __init__(self, attempts: int, prompt_trace: str, response_trace: str, tokens: int):
        super().__init__(f"Failed to produce valid move after {attempts} attempts")
        self.attempts = attempts
        self.prompt_trace = prompt_trace
        self.response_trace = response_trace
        self.tokens = tokens


@dataclass
class AgentMove:
    move: str
    prompt: str       # every attempted prompt, oldest first
    response: str     # every raw response, oldest first
    tokens: int
    elapsed_ms: int
    attempts: int


def parse_move_token(text: str) -> str | None:
    """Return the token after the first ``MOVE:`` marker, or None."""
    if not text:
        return None
    match = _MOVE_RE.search(text)
    if match is None:
        return None
    token = match.group(1).strip(_WRAPPERS)
    if not token:
        return None
    return _CASTLE_ZERO.get(token, token)


def _resolve(token: str, legal: list[str]) -> str | None:
    """Exact SAN match, tolerating a missing or extra check suffix."""
    if token in legal:
        return token
    bare = token.rstrip("+#")
    for san in legal:
        if san.rstrip("+#") == bare:
            return san
    return None


class AgentMoveProvider:
    def __init__(self, client: CompletionClient, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self.max_attempts = max_attempts

    async def generate_move(
        self,
        profile: AgentProfile,
        position: PositionTracker,
        history: list[str],
    ) -> AgentMove:
        """Obtain one legal SAN move for the side to move in ``position``.

        Raises AgentApiError on the first transport failure (no further
        attempts) and AgentMoveExhausted when every attempt produced no
        marker or an illegal move.
        """
        legal = position.legal_moves()
        base_prompt = build_move_prompt(
            profile,
            position.current(),
            history,
            legal,
            color=position.side_to_move(),
            move_number=position.fullmove_number(),
        )
        prompts: list[str] = []
        responses: list[str] = []
        tokens = 0
        failure: str | None = None
        start = time.monotonic()

        for attempt in range(1, self.max_attempts + 1):
            prompt = base_prompt if failure is None else base_prompt + build_strict_block(failure, legal)
            prompts.append(prompt)
            completion = await self._client.complete(prompt)
            responses.append(completion.text)
            tokens += completion.tokens

            token = parse_move_token(completion.text)
            if token is None:
                failure = NO_MARKER_FAILURE
                logger.info("Attempt %d/%d: no move marker in response", attempt, self.max_attempts)
                continue
            move = _resolve(token, legal)
            if move is None or not position.is_legal(move):
                failure = illegal_move_failure(token)
                logger.info("Attempt %d/%d: illegal move %r", attempt, self.max_attempts, token)
                continue

            return AgentMove(
                move=move,
                prompt=_ATTEMPT_SEPARATOR.join(prompts),
                response=_ATTEMPT_SEPARATOR.join(responses),
                tokens=tokens,
                elapsed_ms=int((time.monotonic() - start) * 1000),
                attempts=attempt,
            )

        raise AgentMoveExhausted(
            attempts=self.max_attempts,
            prompt_trace=_ATTEMPT_SEPARATOR.join(prompts),
            response_trace=_ATTEMPT_SEPARATOR.join(responses),
            tokens=tokens,
        )


__all__ = [
    "AgentApiError",
    "AgentMove",
    "AgentMoveExhausted",
    "AgentMoveProvider",
    "parse_move_token",
]
