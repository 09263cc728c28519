"""Public API for prompt text and formatting."""

from arena.prompts.formatting import (
    MOVE_MARKER,
    NO_MARKER_FAILURE,
    build_move_prompt,
    build_strict_block,
    format_move_history,
    illegal_move_failure,
)
