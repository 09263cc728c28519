"""CLI for running a single agent-versus-engine match.

Usage:
    python -m arena.cli (--persona TEXT | --persona-file FILE)
        [--agent-name NAME] [--level N] [--fen FEN]
        [--provider openai|anthropic] [--model MODEL] [--base-url URL]
        [--stockfish PATH] [--max-plies N] [--pgn]
        [--test-connection] [--log-level LEVEL]

Settings not given on the command line come from the environment
(LLM_MODEL, LLM_API_KEY, STOCKFISH_PATH, ...). Prints a JSON summary.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from arena.broadcast import QueueBroadcaster
from arena.config import Settings
from arena.llm import build_client
from arena.matches import MatchManager
from arena.models import MAX_LEVEL, MIN_LEVEL, AgentProfile
from arena.position import PositionTracker
from arena.store import InMemoryMoveStore

_OVERRIDES = {
    "provider": "llm_provider",
    "model": "llm_model",
    "base_url": "llm_base_url",
    "stockfish": "stockfish_path",
    "max_plies": "max_plies",
}


def _settings(args: argparse.Namespace) -> Settings:
    overrides = {
        field: getattr(args, arg)
        for arg, field in _OVERRIDES.items()
        if getattr(args, arg) is not None
    }
    return Settings(**overrides)


async def _test_connection(settings: Settings) -> dict:
    ok, message = await build_client(settings).test_connection()
    return {"success": ok, "message": message}


async def _run(args: argparse.Namespace, settings: Settings) -> dict:
    profile = AgentProfile(name=args.agent_name, prompt_text=args.persona_text)
    store = InMemoryMoveStore()
    manager = MatchManager(settings, store, QueueBroadcaster())
    match = manager.create_match(profile, level=args.level, start_fen=args.fen)
    manager.start(match.id)
    match = await manager.wait(match.id)

    plies = manager.plies(match.id)
    result = {
        "match": match.to_dict(),
        "plies": [p.to_dict() for p in plies],
    }
    if args.pgn:
        # The agent moves first, so it plays whichever side is to move at the start.
        tracker = PositionTracker(args.fen, max_plies=settings.max_plies)
        agent, engine = args.agent_name, f"Stockfish level {args.level}"
        white, black = (agent, engine) if tracker.side_to_move() == "white" else (engine, agent)
        for ply in plies:
            tracker.apply(ply.notation)
        result["pgn"] = tracker.pgn({"Event": "Prompt Chess Arena", "White": white, "Black": black})
    return result


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run one LLM agent vs. engine match",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    persona = parser.add_mutually_exclusive_group()
    persona.add_argument("--persona", help="Agent personality and strategy text")
    persona.add_argument(
        "--persona-file", metavar="FILE",
        help="Read agent personality and strategy text from FILE",
    )
    parser.add_argument("--agent-name", default="Agent", help="Agent display name")
    parser.add_argument(
        "--level", type=int, default=5, choices=range(MIN_LEVEL, MAX_LEVEL + 1),
        help="Opponent strength level (default: 5)",
    )
    parser.add_argument("--fen", help="Starting position (default: standard start)")
    parser.add_argument("--provider", choices=["openai", "anthropic"], help="LLM API flavour")
    parser.add_argument("--model", help="LLM model name")
    parser.add_argument("--base-url", help="LLM API base URL")
    parser.add_argument("--stockfish", help="Path to Stockfish binary")
    parser.add_argument("--max-plies", type=int, help="End the game as a draw after N plies")
    parser.add_argument("--pgn", action="store_true", help="Include PGN in the output")
    parser.add_argument(
        "--test-connection", action="store_true",
        help="Only check the LLM credentials and exit",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = _settings(args)

    if args.test_connection:
        result = asyncio.run(_test_connection(settings))
        json.dump(result, sys.stdout, indent=2)
        print()
        sys.exit(0 if result["success"] else 1)

    if args.persona_file:
        with open(args.persona_file) as f:
            args.persona_text = f.read()
    elif args.persona:
        args.persona_text = args.persona
    else:
        parser.error("one of --persona or --persona-file is required")

    result = asyncio.run(_run(args, settings))
    json.dump(result, sys.stdout, indent=2)
    print()
    if result["match"]["status"] != "completed":
        sys.exit(1)


if __name__ == "__main__":
    main()
