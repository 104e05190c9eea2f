"""Shared fixtures: a SQLite-backed document store and match seeding."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from repositories.match_repository import MATCHES, PLAYERS, participants_collection
from repositories.sql_store import SqlDocumentStore, open_document_store
from repositories.store import WriteOperation

SeedMatch = Callable[..., None]


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'store.db'}"


@pytest.fixture
def store(db_url: str) -> SqlDocumentStore:
    return open_document_store(db_url, batch_size=2)


@pytest.fixture
def seed_match(store: SqlDocumentStore) -> SeedMatch:
    """Write a match document plus one participant document per player."""

    def seed(
        match_id: str,
        *,
        team_a: Sequence[str] = (),
        team_b: Sequence[str] = (),
        others: Sequence[str] = (),
        ended_at: str | None = "2026-01-01T10:00:00Z",
        **fields: Any,
    ) -> None:
        data: dict[str, Any] = {"status": "ended", **fields}
        if ended_at is not None:
            data["endedAt"] = ended_at
        operations = [WriteOperation.set(MATCHES, match_id, data)]
        collection = participants_collection(match_id)
        for team, roster in (("A", team_a), ("B", team_b), ("spectator", others)):
            operations.extend(
                WriteOperation.set(collection, player_id, {"uid": player_id, "team": team})
                for player_id in roster
            )
        store.batch_write(operations)

    return seed


@pytest.fixture
def seed_player(store: SqlDocumentStore) -> Callable[[str, Any], None]:
    def seed(player_id: str, rating: Any) -> None:
        store.batch_write([WriteOperation.set(PLAYERS, player_id, {"rating": rating})])

    return seed

