"""Authoritative position for one match.

A thin adapter over python-chess: every legality question is answered by
``chess.Board`` and no move reaches the board without first being found in
the legal-move set.
"""

from __future__ import annotations

import enum
import logging

import chess
import chess.pgn

logger = logging.getLogger(__name__)


class IllegalMove(ValueError):
    """The move text is not a legal SAN move in the current position."""

    def __init__(self, move_text, fen: str):
        super().__init__(f"Illegal move: {move_text!r} in {fen}")
        self.move_text = move_text
        self.fen = fen


class TerminalReason(enum.Enum):
    NONE = "none"
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    INSUFFICIENT_MATERIAL = "insufficient-material"
    REPETITION = "repetition"
    MOVE_LIMIT = "move-limit"


_TERMINATIONS: dict[chess.Termination, TerminalReason] = {
    chess.Termination.CHECKMATE: TerminalReason.CHECKMATE,
    chess.Termination.STALEMATE: TerminalReason.STALEMATE,
    chess.Termination.INSUFFICIENT_MATERIAL: TerminalReason.INSUFFICIENT_MATERIAL,
    chess.Termination.THREEFOLD_REPETITION: TerminalReason.REPETITION,
    chess.Termination.FIVEFOLD_REPETITION: TerminalReason.REPETITION,
    chess.Termination.FIFTY_MOVES: TerminalReason.MOVE_LIMIT,
    chess.Termination.SEVENTYFIVE_MOVES: TerminalReason.MOVE_LIMIT,
}


class PositionTracker:
    def __init__(self, fen: str | None = None, max_plies: int | None = None):
        try:
            self._board = chess.Board(fen) if fen else chess.Board()
        except ValueError as e:
            raise ValueError(f"Invalid FEN: {fen}") from e
        if not self._board.is_valid():
            raise ValueError(f"Illegal position: {fen}")
        self._max_plies = max_plies

    @property
    def board(self) -> chess.Board:
        """A copy of the underlying board; mutating it has no effect here."""
        return self._board.copy()

    def current(self) -> str:
        return self._board.fen(en_passant="fen")

    def side_to_move(self) -> str:
        return "white" if self._board.turn == chess.WHITE else "black"

    def fullmove_number(self) -> int:
        return self._board.fullmove_number

    def _legal_by_san(self) -> dict[str, chess.Move]:
        return {self._board.san(m): m for m in self._board.legal_moves}

    def legal_moves(self) -> list[str]:
        """SAN of every legal move, in python-chess generation order."""
        return list(self._legal_by_san())

    def is_legal(self, move_text) -> bool:
        if not isinstance(move_text, str) or not move_text:
            return False
        return move_text in self._legal_by_san()

    def apply(self, move_text: str) -> str:
        """Play ``move_text`` and return the new FEN.

        Raises IllegalMove (leaving the position untouched) when the text
        is not an exact member of ``legal_moves()``.
        """
        move = self._legal_by_san().get(move_text) if isinstance(move_text, str) else None
        if move is None:
            raise IllegalMove(move_text, self.current())
        self._board.push(move)
        logger.debug("Applied %s -> %s", move_text, self.current())
        return self.current()

    def terminal_reason(self) -> TerminalReason:
        outcome = self._board.outcome(claim_draw=True)
        if outcome is not None:
            return _TERMINATIONS.get(outcome.termination, TerminalReason.MOVE_LIMIT)
        if self._max_plies is not None and len(self._board.move_stack) >= self._max_plies:
            return TerminalReason.MOVE_LIMIT
        return TerminalReason.NONE

    def is_terminal(self) -> bool:
        return self.terminal_reason() is not TerminalReason.NONE

    def san_history(self) -> list[str]:
        """SAN of every move applied through this tracker."""
        replay = self._board.root()
        sans = []
        for move in self._board.move_stack:
            sans.append(replay.san(move))
            replay.push(move)
        return sans

    def pgn(self, headers: dict[str, str] | None = None) -> str:
        game = chess.pgn.Game.from_board(self._board)
        for key, value in (headers or {}).items():
            game.headers[key] = value
        reason = self.terminal_reason()
        if reason is not TerminalReason.NONE:
            game.headers["Termination"] = reason.value
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=False)
        return game.accept(exporter)
