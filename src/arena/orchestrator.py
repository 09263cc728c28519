"""Turn loop and lifecycle of a single agent-versus-engine match."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable

from arena.agent import AgentMoveExhausted, AgentMoveProvider
from arena.broadcast import Broadcaster
from arena.engine import EngineError, EngineOpponentClient
from arena.llm import AgentApiError
from arena.models import AgentProfile, LLMArtifacts, Match, Mover, Ply, Winner
from arena.position import IllegalMove, PositionTracker, TerminalReason
from arena.store import MoveStore

logger = logging.getLogger(__name__)

# Failures that end the match as errored without propagating to the caller.
MATCH_FAILURES = (AgentMoveExhausted, AgentApiError, EngineError, IllegalMove)

CANCELLED_MESSAGE = "Match cancelled"


class MatchOrchestrator:
    """Runs one match from Pending to Completed or Errored.

    The agent moves first and movers strictly alternate. Each ply is
    applied to the tracker, stored, and published exactly once. The engine
    is closed exactly once per run, whatever ends it.
    """

    def __init__(
        self,
        match: Match,
        profile: AgentProfile,
        tracker: PositionTracker,
        engine: EngineOpponentClient,
        agent: AgentMoveProvider,
        store: MoveStore,
        broadcaster: Broadcaster,
        *,
        cost_per_1k_tokens_cents: float = 0.0,
        cancel_event: asyncio.Event | None = None,
    ):
        self._match = match
        self._profile = profile
        self._tracker = tracker
        self._engine = engine
        self._agent = agent
        self._store = store
        self._broadcaster = broadcaster
        self._cost_rate = cost_per_1k_tokens_cents
        self._cancel_event = cancel_event or asyncio.Event()
        self.plies: list[Ply] = []

    @property
    def match(self) -> Match:
        return self._match

    def cancel(self) -> None:
        """Request cancellation; honoured before the next turn starts."""
        self._cancel_event.set()

    async def run(self) -> Match:
        self._match.start()
        logger.info("Match %s started (level %d)", self._match.id, self._match.level)
        try:
            await self._save_match()
            await self._engine.start()
            await self._play()
        except asyncio.CancelledError:
            await self._fail(CANCELLED_MESSAGE)
            raise
        except AgentMoveExhausted as e:
            await self._fail_exhausted(e)
        except MATCH_FAILURES as e:
            await self._fail(f"{type(e).__name__}: {e}")
        except Exception as e:
            await self._fail(f"{type(e).__name__}: {e}")
            raise
        finally:
            await self._engine.close()
        return self._match

    async def _play(self) -> None:
        mover = Mover.AGENT
        while not self._tracker.is_terminal():
            if self._cancel_event.is_set():
                await self._fail(CANCELLED_MESSAGE)
                return
            ply = await self._play_turn(mover)
            await self._side_effect("create_ply", self._store.create_ply(self._match.id, ply))
            await self._save_match()
            await self._side_effect("publish", self._broadcaster.publish(
                self._match.id, {"match": self._match.to_dict(), "latest_ply": ply.to_dict()},
            ))
            mover = mover.other
        await self._finalize()

    async def _play_turn(self, mover: Mover) -> Ply:
        number = self._match.total_plies + 1
        fen_before = self._tracker.current()
        if mover is Mover.AGENT:
            history = [p.notation for p in self.plies]
            result = await self._agent.generate_move(self._profile, self._tracker, history)
            fen_after = self._tracker.apply(result.move)
            ply = Ply(
                number=number,
                mover=mover,
                notation=result.move,
                fen_before=fen_before,
                fen_after=fen_after,
                latency_ms=result.elapsed_ms,
                llm=LLMArtifacts(prompt=result.prompt, response=result.response, tokens=result.tokens),
            )
            cost = self._cost(result.tokens)
        else:
            result = await self._engine.get_move(fen_before)
            fen_after = self._tracker.apply(result.move)
            ply = Ply(
                number=number,
                mover=mover,
                notation=result.move,
                fen_before=fen_before,
                fen_after=fen_after,
                latency_ms=result.elapsed_ms,
            )
            cost = 0.0
        self._match.record_ply(ply, cost)
        self.plies.append(ply)
        logger.debug("Match %s ply %d: %s %s", self._match.id, number, mover.value, ply.notation)
        return ply

    def _winner(self, reason: TerminalReason) -> Winner:
        if reason is not TerminalReason.CHECKMATE:
            return Winner.DRAW
        if self.plies:
            last_mover = self.plies[-1].mover
        else:
            # Mated before anyone moved: the agent was to move.
            last_mover = Mover.OPPONENT
        return Winner.AGENT if last_mover is Mover.AGENT else Winner.OPPONENT

    async def _finalize(self) -> None:
        reason = self._tracker.terminal_reason()
        winner = self._winner(reason)
        self._match.complete(winner, reason.value, self._tracker.current())
        logger.info(
            "Match %s completed: %s (%s) after %d plies",
            self._match.id, winner.value, reason.value, self._match.total_plies,
        )
        await self._save_match()

    def _cost(self, tokens: int) -> float:
        return tokens / 1000 * self._cost_rate

    async def _fail(self, message: str, extra: dict | None = None) -> None:
        if self._match.is_finished:
            return
        self._match.fail(message)
        logger.warning("Match %s errored: %s", self._match.id, message)
        await self._save_match(extra)

    async def _fail_exhausted(self, e: AgentMoveExhausted) -> None:
        # Tokens spent on the failed turn are billed even though no ply exists.
        self._match.record_usage(e.tokens, self._cost(e.tokens))
        logger.warning(
            "Match %s agent gave no legal move in %d attempts\nPrompts:\n%s\nResponses:\n%s",
            self._match.id, e.attempts, e.prompt_trace, e.response_trace,
        )
        await self._fail(
            f"{type(e).__name__}: {e}",
            {"failed_prompt_trace": e.prompt_trace, "failed_response_trace": e.response_trace},
        )

    async def _save_match(self, extra: dict | None = None) -> None:
        fields = self._match.to_dict()
        fields.pop("id")
        if extra:
            fields.update(extra)
        await self._side_effect("update_match", self._store.update_match(self._match.id, fields))

    async def _side_effect(self, name: str, call: Awaitable) -> None:
        try:
            await call
        except Exception:
            logger.exception("%s failed for match %s", name, self._match.id)
