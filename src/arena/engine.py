"""UCI engine opponent.

One engine subprocess per match. python-chess speaks the line protocol
(uci/uciok, setoption, isready/readyok, position, go, bestmove); this
module owns the process lifecycle, the strength mapping and the
translation of the engine's answer into SAN.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import shutil
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import chess
import chess.engine

from arena.models import MAX_LEVEL, MIN_LEVEL

logger = logging.getLogger(__name__)

# Stockfish "Skill Level" (0-20) per arena level.
LEVEL_TO_SKILL: dict[int, int] = {1: 1, 2: 4, 3: 7, 4: 10, 5: 13, 6: 16, 7: 19, 8: 20}

_COMMON_ENGINE_PATHS = (
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
)

Popen = Callable[[str], Awaitable[tuple[asyncio.SubprocessTransport, chess.engine.UciProtocol]]]


class EngineError(Exception):
    """Base class for opponent engine failures."""


class EngineTimeout(EngineError):
    pass


class EngineCrash(EngineError):
    pass


class EngineProtocolError(EngineError):
    pass


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    HANDSHAKING = "handshaking"
    READY = "ready"
    SEARCHING = "searching"
    CLOSED = "closed"


@dataclass
class EngineMove:
    move: str          # SAN, as produced by PositionTracker.legal_moves()
    uci: str
    elapsed_ms: int


def _check_level(level: int) -> None:
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValueError(f"Engine level must be between {MIN_LEVEL} and {MAX_LEVEL}, got {level}")


def skill_level(level: int) -> int:
    _check_level(level)
    return LEVEL_TO_SKILL[level]


def target_elo(level: int) -> int | None:
    """Approximate Elo for ``level``; None means full strength."""
    _check_level(level)
    if level == MAX_LEVEL:
        return None
    return 700 + level * 300


def strength_options(level: int, options: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """UCI options that configure the engine for ``level``.

    When the engine's advertised ``options`` are given, options it does not
    support are dropped and UCI_Elo is clamped to its declared range.
    """
    config: dict[str, Any] = {"Skill Level": skill_level(level)}
    elo = target_elo(level)
    if elo is not None:
        config["UCI_LimitStrength"] = True
        config["UCI_Elo"] = elo
    if options is None:
        return config

    supported = {}
    for name, value in config.items():
        option = options.get(name)
        if option is None:
            continue
        if name == "UCI_Elo":
            if option.min is not None:
                value = max(value, option.min)
            if option.max is not None:
                value = min(value, option.max)
        supported[name] = value
    return supported


def resolve_engine_path(candidate: str = "stockfish") -> str:
    """Find an engine binary: the candidate itself, PATH, then common locations."""
    if os.path.isfile(candidate):
        return candidate
    found = shutil.which(candidate)
    if found:
        return found
    for path in _COMMON_ENGINE_PATHS:
        if os.path.isfile(path):
            return path
    return candidate


class EngineOpponentClient:
    """Engine subprocess for a single match.

    Lifecycle: uninitialized -> handshaking -> ready -> (searching -> ready)*
    -> closed. Any failure closes the client; nothing is retried here.
    """

    def __init__(
        self,
        level: int = 5,
        engine_path: str = "stockfish",
        *,
        movetime_ms: int = 1000,
        handshake_timeout: float = 5.0,
        move_timeout: float = 5.0,
        quit_timeout: float = 2.0,
        popen: Popen = chess.engine.popen_uci,
    ):
        _check_level(level)
        self.level = level
        self._path = engine_path
        self._movetime_ms = movetime_ms
        self._handshake_timeout = handshake_timeout
        self._move_timeout = move_timeout
        self._quit_timeout = quit_timeout
        self._popen = popen
        self._transport: asyncio.SubprocessTransport | None = None
        self._engine: chess.engine.UciProtocol | None = None
        self._state = EngineState.UNINITIALIZED

    @property
    def state(self) -> EngineState:
        return self._state

    async def __aenter__(self) -> EngineOpponentClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        """Spawn the engine, handshake, and configure strength."""
        if self._state is not EngineState.UNINITIALIZED:
            raise EngineProtocolError(f"Cannot start engine in state {self._state.value}")
        self._state = EngineState.HANDSHAKING
        try:
            self._transport, self._engine = await asyncio.wait_for(
                self._popen(self._path), timeout=self._handshake_timeout
            )
            options = strength_options(self.level, self._engine.options)
            await asyncio.wait_for(self._configure(options), timeout=self._handshake_timeout)
        except asyncio.TimeoutError as e:
            await self.close()
            raise EngineTimeout("Engine did not complete the handshake in time") from e
        except chess.engine.EngineTerminatedError as e:
            await self.close()
            raise EngineCrash(f"Engine exited during handshake: {e}") from e
        except chess.engine.EngineError as e:
            await self.close()
            raise EngineProtocolError(f"Engine rejected configuration: {e}") from e
        except OSError as e:
            await self.close()
            raise EngineCrash(f"Failed launching engine at '{self._path}': {e}") from e
        self._state = EngineState.READY
        logger.info("Engine ready at level %d (%s)", self.level, self._path)

    async def _configure(self, options: dict[str, Any]) -> None:
        if options:
            await self._engine.configure(options)
        await self._engine.ping()

    def _ensure_ready(self) -> None:
        if self._state is EngineState.CLOSED:
            raise EngineCrash("Engine is closed")
        if self._state is not EngineState.READY:
            raise EngineProtocolError(f"Engine not ready (state {self._state.value})")

    async def get_move(self, fen: str) -> EngineMove:
        """Ask the engine for its move in ``fen``; returns SAN and timing."""
        self._ensure_ready()
        try:
            board = chess.Board(fen)
        except ValueError as e:
            raise EngineProtocolError(f"Invalid FEN notation: {fen}") from e
        if not any(board.legal_moves):
            raise EngineProtocolError(f"No legal moves in position: {fen}")

        self._state = EngineState.SEARCHING
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._engine.play(board, chess.engine.Limit(time=self._movetime_ms / 1000)),
                timeout=self._move_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Engine timed out after %.1fs", self._move_timeout)
            await self.close()
            raise EngineTimeout(f"Engine gave no bestmove within {self._move_timeout}s") from e
        except chess.engine.EngineTerminatedError as e:
            logger.warning("Engine process died: %s", e)
            await self.close()
            raise EngineCrash(f"Engine process died: {e}") from e
        except chess.engine.EngineError as e:
            await self.close()
            raise EngineProtocolError(f"Engine error: {e}") from e
        except (BrokenPipeError, ConnectionError) as e:
            await self.close()
            raise EngineCrash(f"Engine pipe broken: {e}") from e
        elapsed_ms = int((time.monotonic() - start) * 1000)

        try:
            san = _to_san(board, result.move)
        except EngineProtocolError:
            await self.close()
            raise
        self._state = EngineState.READY
        return EngineMove(move=san, uci=result.move.uci(), elapsed_ms=elapsed_ms)

    async def close(self) -> None:
        """Release the subprocess. Safe to call repeatedly and after a crash."""
        if self._state is EngineState.CLOSED:
            return
        self._state = EngineState.CLOSED
        engine, transport = self._engine, self._transport
        self._engine = None
        self._transport = None
        if engine is not None:
            try:
                await asyncio.wait_for(engine.quit(), timeout=self._quit_timeout)
            except (asyncio.TimeoutError, chess.engine.EngineError, OSError) as e:
                # Process may already be gone; the transport close below kills it.
                logger.warning("Engine quit failed: %r", e)
        if transport is not None:
            transport.close()
        logger.debug("Engine closed")


def _to_san(board: chess.Board, move: chess.Move | None) -> str:
    """Translate an engine move by origin, destination and promotion."""
    if move is None:
        raise EngineProtocolError("Engine returned no bestmove")
    for legal in board.legal_moves:
        if (legal.from_square == move.from_square
                and legal.to_square == move.to_square
                and legal.promotion == move.promotion):
            return board.san(legal)
    raise EngineProtocolError(f"Engine move {move.uci()} matches no legal move in {board.fen()}")
