"""Tests for the command-line entry point."""

import argparse
import json
import sys

import pytest

from arena import cli
from arena.models import Match, MatchStatus, Mover, Ply, Winner
from arena.position import PositionTracker


def _args(**overrides):
    base = dict(provider=None, model=None, base_url=None, stockfish=None, max_plies=None)
    base.update(overrides)
    return argparse.Namespace(**base)


class TestSettingsOverrides:
    def test_cli_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "env-model")
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        s = cli._settings(_args(model="cli-model", provider="anthropic",
                                stockfish="/opt/sf", max_plies=80))
        assert s.llm_model == "cli-model"
        assert s.llm_provider == "anthropic"
        assert s.stockfish_path == "/opt/sf"
        assert s.max_plies == 80

    def test_unset_options_fall_back_to_environment(self, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "env-model")
        monkeypatch.setenv("STOCKFISH_PATH", "/usr/games/stockfish")
        s = cli._settings(_args())
        assert s.llm_model == "env-model"
        assert s.stockfish_path == "/usr/games/stockfish"


class _FakeManager:
    """Plays a finished Fool's mate without any subprocess or network."""

    moves = ["f3", "e5", "g4", "Qh4#"]
    outcome = (Winner.OPPONENT, "checkmate")

    def __init__(self, settings, store, broadcaster):
        self.match = None

    def create_match(self, profile, level=5, start_fen=None):
        self.match = Match(id="m1", level=level)
        return self.match

    def start(self, match_id):
        self.match.start()

    async def wait(self, match_id):
        self.match.complete(*self.outcome, "final")
        return self.match

    def plies(self, match_id):
        tracker = PositionTracker()
        plies = []
        for i, san in enumerate(self.moves, start=1):
            before = tracker.current()
            after = tracker.apply(san)
            plies.append(Ply(i, Mover.AGENT if i % 2 else Mover.OPPONENT, san, before, after, 5))
        return plies


class _CappedManager(_FakeManager):
    moves = ["e4", "e5"]
    outcome = (Winner.DRAW, "move-limit")


class TestMain:
    def test_run_prints_summary_and_pgn(self, monkeypatch, capsys):
        monkeypatch.setenv("LLM_MODEL", "m")
        monkeypatch.setattr(cli, "MatchManager", _FakeManager)
        monkeypatch.setattr(sys, "argv", [
            "arena", "--persona", "Push the kingside pawns.", "--agent-name", "Fool",
            "--level", "2", "--pgn",
        ])
        cli.main()
        out = json.loads(capsys.readouterr().out)
        assert out["match"]["status"] == MatchStatus.COMPLETED.value
        assert out["match"]["level"] == 2
        assert len(out["plies"]) == 4
        assert '[White "Fool"]' in out["pgn"]
        assert '[Black "Stockfish level 2"]' in out["pgn"]
        assert "Qh4#" in out["pgn"]

    def test_persona_required(self, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "m")
        monkeypatch.setattr(sys, "argv", ["arena"])
        with pytest.raises(SystemExit) as excinfo:
            cli.main()
        assert excinfo.value.code == 2

    def test_level_out_of_range(self, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "m")
        monkeypatch.setattr(sys, "argv", ["arena", "--persona", "Play well please.", "--level", "9"])
        with pytest.raises(SystemExit):
            cli.main()

    def test_connection_check(self, monkeypatch, capsys):
        monkeypatch.setenv("LLM_MODEL", "m")

        class _Client:
            async def test_connection(self):
                return False, "Invalid API key"

        monkeypatch.setattr(cli, "build_client", lambda settings: _Client())
        monkeypatch.setattr(sys, "argv", ["arena", "--test-connection"])
        with pytest.raises(SystemExit) as excinfo:
            cli.main()
        assert excinfo.value.code == 1
        assert json.loads(capsys.readouterr().out) == {
            "success": False, "message": "Invalid API key",
        }

    def test_pgn_records_move_limit(self, monkeypatch, capsys):
        monkeypatch.setenv("LLM_MODEL", "m")
        monkeypatch.setattr(cli, "MatchManager", _CappedManager)
        monkeypatch.setattr(sys, "argv", [
            "arena", "--persona", "Play the open games.", "--max-plies", "2", "--pgn",
        ])
        cli.main()
        out = json.loads(capsys.readouterr().out)
        assert '[Termination "move-limit"]' in out["pgn"]
        assert "1. e4 e5" in out["pgn"]
