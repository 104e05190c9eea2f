"""Tests for single-match settlement."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

import pytest

from domain.common import SkipReason
from domain.errors import IneligibleMatch, InvalidDocument, MatchNotFound
from domain.ledger import SettlementApplied, SettlementLedger, SettlementSkipped
from domain.ratings.elo.calculator import EloParameters
from repositories.match_repository import MATCHES, PLAYERS, participants_collection
from repositories.sql_store import SqlDocumentStore, open_document_store
from repositories.store import WriteOperation

SETTLED_AT = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)


def _ledger(store: SqlDocumentStore, **kwargs: Any) -> SettlementLedger:
    return SettlementLedger(store, clock=lambda: SETTLED_AT, **kwargs)


def _data(store: SqlDocumentStore, collection: str, doc_id: str) -> dict[str, Any] | None:
    document = store.get_document(collection, doc_id)
    return None if document is None else document.data


def test_settle_applies_uniform_team_deltas(store: SqlDocumentStore, seed_match, seed_player) -> None:
    seed_match("m1", team_a=["a1", "a2"], team_b=["b1", "b2"], others=["ref"], scoreA=21, scoreB=15)
    seed_player("a1", 1000)

    result = _ledger(store).settle("m1")

    assert isinstance(result, SettlementApplied)
    assert result.applied_deltas == {"a1": 12, "a2": 12, "b1": -12, "b2": -12}
    assert result.new_ratings == {"a1": 1012, "a2": 1012, "b1": 988, "b2": 988}
    assert _data(store, PLAYERS, "a1") == {"rating": 1012}
    assert _data(store, PLAYERS, "b2") == {"rating": 988}
    assert _data(store, PLAYERS, "ref") is None

    participants = participants_collection("m1")
    assert _data(store, participants, "a2")["rating"] == {"before": 1000, "delta": 12, "after": 1012}
    assert _data(store, participants, "b1")["rating"] == {"before": 1000, "delta": -12, "after": 988}
    assert "rating" not in _data(store, participants, "ref")

    match = _data(store, MATCHES, "m1")
    assert match["eloCommitted"] is True
    assert match["ratingAlgoVersion"] == "v1"
    assert match["ratingSummary"] == {"teamAAvgBefore": 1000, "teamBAvgBefore": 1000, "delta": 12}
    assert match["settledAt"] == "2026-02-01T12:00:00+00:00"
    assert match["winnerTeam"] == "A"


def test_settle_uses_stored_ratings(store: SqlDocumentStore, seed_match, seed_player) -> None:
    seed_match("m1", team_a=["a1", "a2"], team_b=["b1", "b2"], winnerTeam="b")
    for player_id in ("a1", "a2"):
        seed_player(player_id, 1200)

    result = _ledger(store).settle("m1")

    assert isinstance(result, SettlementApplied)
    assert result.new_ratings == {"a1": 1182, "a2": 1182, "b1": 1018, "b2": 1018}
    assert _data(store, MATCHES, "m1")["winnerTeam"] == "b"


def test_second_settlement_is_a_no_op(store: SqlDocumentStore, seed_match) -> None:
    seed_match("m1", team_a=["a1"], team_b=["b1"], scoreA=3, scoreB=1)
    ledger = _ledger(store)
    ledger.settle("m1")
    before = {doc.id: doc.data for doc in store.list_documents(PLAYERS)}
    match_before = _data(store, MATCHES, "m1")

    again = ledger.settle("m1")

    assert again == SettlementSkipped("m1", (SkipReason.ALREADY_SETTLED,))
    assert {doc.id: doc.data for doc in store.list_documents(PLAYERS)} == before
    assert _data(store, MATCHES, "m1") == match_before


def test_force_reverts_recorded_deltas_before_reapplying(store: SqlDocumentStore, seed_match) -> None:
    seed_match("m1", team_a=["a1"], team_b=["b1"], scoreA=3, scoreB=1)
    ledger = _ledger(store)
    ledger.settle("m1")

    forced = ledger.settle("m1", force=True)

    assert isinstance(forced, SettlementApplied)
    assert forced.forced is True
    assert forced.applied_deltas == {"a1": 12, "b1": -12}
    assert _data(store, PLAYERS, "a1") == {"rating": 1012}
    assert _data(store, PLAYERS, "b1") == {"rating": 988}
    participants = participants_collection("m1")
    assert _data(store, participants, "a1")["rating"] == {"before": 1000, "delta": 12, "after": 1012}


def test_force_after_winner_correction_moves_ratings_to_the_new_winner(
    store: SqlDocumentStore, seed_match
) -> None:
    seed_match("m1", team_a=["a1"], team_b=["b1"], scoreA=3, scoreB=1)
    ledger = _ledger(store)
    ledger.settle("m1")
    store.batch_write([WriteOperation.update(MATCHES, "m1", {"scoreA": 1, "scoreB": 3, "winnerTeam": "B"})])

    forced = ledger.settle("m1", force=True)

    assert isinstance(forced, SettlementApplied)
    assert forced.new_ratings == {"a1": 988, "b1": 1012}
    assert _data(store, PLAYERS, "a1") == {"rating": 988}
    assert _data(store, participants_collection("m1"), "b1")["rating"] == {
        "before": 1000,
        "delta": 12,
        "after": 1012,
    }
    assert _data(store, MATCHES, "m1")["ratingSummary"]["delta"] == -12


def test_force_reverts_players_removed_from_the_rosters(store: SqlDocumentStore, seed_match) -> None:
    seed_match("m1", team_a=["a1", "a2"], team_b=["b1"], scoreA=3, scoreB=1)
    ledger = _ledger(store)
    ledger.settle("m1")
    participants = participants_collection("m1")
    store.batch_write([WriteOperation.set(participants, "a2", {"team": "spectator"})])

    forced = ledger.settle("m1", force=True)

    assert isinstance(forced, SettlementApplied)
    assert forced.new_ratings == {"a1": 1012, "b1": 988}
    assert _data(store, PLAYERS, "a2") == {"rating": 1000}
    assert _data(store, participants, "a2")["rating"] is None


def test_concurrent_settlements_apply_exactly_once(db_url: str, store: SqlDocumentStore, seed_match) -> None:
    seed_match("m1", team_a=["a1"], team_b=["b1"], scoreA=3, scoreB=1)
    workers = 4
    ledgers = [_ledger(open_document_store(db_url)) for _ in range(workers)]
    barrier = threading.Barrier(workers)

    def settle(ledger: SettlementLedger) -> SettlementApplied | SettlementSkipped:
        barrier.wait(timeout=10)
        return ledger.settle("m1")

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(settle, ledgers))

    applied = [result for result in results if isinstance(result, SettlementApplied)]
    skipped = [result for result in results if isinstance(result, SettlementSkipped)]
    assert len(applied) == 1
    assert skipped == [SettlementSkipped("m1", (SkipReason.ALREADY_SETTLED,))] * (workers - 1)
    assert _data(store, PLAYERS, "a1") == {"rating": 1012}
    assert _data(store, PLAYERS, "b1") == {"rating": 988}


def test_ineligible_match_is_skipped_without_writes(store: SqlDocumentStore, seed_match) -> None:
    seed_match("m1", team_a=["a1"], team_b=["b1"], ended_at=None)
    seed_match("m2", team_a=["a1"], team_b=[], scoreA=1, scoreB=0)

    first = _ledger(store).settle("m1")
    second = _ledger(store).settle("m2")

    assert first == SettlementSkipped("m1", (SkipReason.MISSING_ENDED_AT, SkipReason.UNRESOLVED_WINNER))
    assert second == SettlementSkipped("m2", (SkipReason.EMPTY_TEAM_B,))
    assert first.is_ineligible
    assert "eloCommitted" not in _data(store, MATCHES, "m1")
    assert store.list_documents(PLAYERS) == []


def test_strict_settlement_raises_for_ineligible_match(store: SqlDocumentStore, seed_match) -> None:
    seed_match("m1", team_a=["x"], team_b=["b1"], scoreA=2, scoreB=1)
    store.batch_write([WriteOperation.set(participants_collection("m1"), "x-again", {"uid": "x", "team": "B"})])

    with pytest.raises(IneligibleMatch) as excinfo:
        _ledger(store).settle("m1", strict=True)
    assert SkipReason.DUPLICATE_PLAYER in excinfo.value.reasons


def test_unranked_match_is_marked_settled_when_ranked_only(store: SqlDocumentStore, seed_match) -> None:
    seed_match("casual", team_a=["a1"], team_b=["b1"], scoreA=2, scoreB=1, category="casual")
    seed_match("ranked", team_a=["a1"], team_b=["b1"], scoreA=2, scoreB=1, category="ranked")
    ledger = _ledger(store, ranked_only=True)

    skipped = ledger.settle("casual")
    applied = ledger.settle("ranked")

    assert skipped == SettlementSkipped("casual", (SkipReason.UNRANKED,))
    assert _data(store, MATCHES, "casual")["eloCommitted"] is True
    assert "ratingSummary" not in _data(store, MATCHES, "casual")
    assert isinstance(applied, SettlementApplied)
    assert _data(store, PLAYERS, "a1") == {"rating": 1012}


def test_invalid_player_rating_aborts_without_partial_writes(
    store: SqlDocumentStore, seed_match, seed_player
) -> None:
    seed_match("m1", team_a=["a1"], team_b=["b1"], scoreA=2, scoreB=1)
    seed_player("b1", "not-a-number")

    with pytest.raises(InvalidDocument):
        _ledger(store).settle("m1")

    assert _data(store, PLAYERS, "a1") is None
    assert "eloCommitted" not in _data(store, MATCHES, "m1")


def test_missing_match_raises(store: SqlDocumentStore) -> None:
    with pytest.raises(MatchNotFound):
        _ledger(store).settle("ghost")
    with pytest.raises(ValueError):
        _ledger(store).settle("")


def test_custom_parameters_and_algo_version(store: SqlDocumentStore, seed_match) -> None:
    seed_match("m1", team_a=["a1"], team_b=["b1"], scoreA=2, scoreB=1)
    ledger = _ledger(store, params=EloParameters(k_factor=32.0, default_rating=1500), algo_version="v2")

    result = ledger.settle("m1")

    assert isinstance(result, SettlementApplied)
    assert result.new_ratings == {"a1": 1516, "b1": 1484}
    assert _data(store, MATCHES, "m1")["ratingAlgoVersion"] == "v2"
