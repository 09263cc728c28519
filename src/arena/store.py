"""Move-store port consumed by the orchestrator.

The arena never owns persistence; a web app plugs its database layer in by
implementing MoveStore. InMemoryMoveStore backs the CLI and the tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from arena.models import Ply


class MoveStore(ABC):
    @abstractmethod
    async def create_ply(self, match_id: str, ply: Ply) -> None:
        ...

    @abstractmethod
    async def update_match(self, match_id: str, fields: dict) -> None:
        ...


class InMemoryMoveStore(MoveStore):
    def __init__(self):
        self.plies: dict[str, list[Ply]] = {}
        self.matches: dict[str, dict] = {}

    async def create_ply(self, match_id: str, ply: Ply) -> None:
        plies = self.plies.setdefault(match_id, [])
        if any(p.number == ply.number for p in plies):
            raise ValueError(f"Ply {ply.number} already stored for match {match_id}")
        plies.append(ply)

    async def update_match(self, match_id: str, fields: dict) -> None:
        self.matches.setdefault(match_id, {}).update(fields)
