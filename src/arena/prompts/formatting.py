"""Prompt formatting helpers for the agent's move request.

Pure functions that turn match state into LLM-ready text.
"""

from __future__ import annotations

from arena.models import AgentProfile

MOVE_MARKER = "MOVE:"

_MOVE_TEMPLATE = """\
You are a chess-playing AI agent named "{name}".

Your personality and strategy: {prompt_text}

Current Position (FEN): {fen}

{history}

Game Context:
- Your color: {color}
- Move number: {move_number}
- Legal moves: {legal_moves}

Analyze the position and respond with your next move.
Format: {marker} [your move in standard algebraic notation]

Example responses:
- "I'll control the center with e4. {marker} e4"
- "Developing the knight is best. {marker} Nf3"

Now choose your move:"""

_STRICT_TEMPLATE = """\

IMPORTANT: your previous answer could not be used. {failure}
Reply with exactly one line of the form:
{marker} <move>
where <move> is copied character for character from this list: {legal_moves}
Do not add commentary, punctuation, or formatting around the move."""

NO_MARKER_FAILURE = f'It did not contain a "{MOVE_MARKER}" marker.'


def illegal_move_failure(move: str) -> str:
    return f'"{move}" is not a legal move in this position.'


def format_move_history(sans: list[str]) -> str:
    """Pair moves by full-move number: '1. e4 e5', '2. Nf3'."""
    if not sans:
        return "Move History: (game start)"
    lines = ["Move History:"]
    for i in range(0, len(sans), 2):
        pair = " ".join(sans[i:i + 2])
        lines.append(f"{i // 2 + 1}. {pair}")
    return "\n".join(lines)


def build_move_prompt(
    profile: AgentProfile,
    fen: str,
    history: list[str],
    legal_moves: list[str],
    color: str = "white",
    move_number: int | None = None,
) -> str:
    if move_number is None:
        move_number = len(history) // 2 + 1
    return _MOVE_TEMPLATE.format(
        name=profile.name,
        prompt_text=profile.prompt_text,
        fen=fen,
        history=format_move_history(history),
        color=color.capitalize(),
        move_number=move_number,
        legal_moves=", ".join(legal_moves),
        marker=MOVE_MARKER,
    )


def build_strict_block(failure: str, legal_moves: list[str]) -> str:
    """Instruction block appended to every retry prompt."""
    return _STRICT_TEMPLATE.format(
        failure=failure,
        marker=MOVE_MARKER,
        legal_moves=", ".join(legal_moves),
    )
