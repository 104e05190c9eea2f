"""Tests for the SQLAlchemy document store."""

from __future__ import annotations

import pytest

from domain.errors import TransactionConflict
from repositories.sql_store import SqlDocumentStore
from repositories.store import (
    Document,
    FieldFilter,
    Transaction,
    WriteOperation,
    merge_data,
    sort_documents,
)


def test_merge_data_merges_nested_maps() -> None:
    existing = {"rating": {"before": 1000, "delta": 3}, "name": "p1"}
    merged = merge_data(existing, {"rating": {"delta": 12, "after": 1012}})
    assert merged == {"rating": {"before": 1000, "delta": 12, "after": 1012}, "name": "p1"}
    assert existing == {"rating": {"before": 1000, "delta": 3}, "name": "p1"}


def test_field_filter_operators() -> None:
    data = {"score": 5, "category": "ranked"}
    assert FieldFilter("category", "==", "ranked").matches(data)
    assert FieldFilter("category", "in", ("ranked", "casual")).matches(data)
    assert FieldFilter("score", ">=", 5).matches(data)
    assert not FieldFilter("score", "<", 5).matches(data)
    assert not FieldFilter("missing", "!=", 1).matches(data)
    assert not FieldFilter("category", ">", 3).matches(data)
    with pytest.raises(ValueError):
        FieldFilter("score", "~", 1).matches(data)


def test_sort_documents_descending_and_missing_last() -> None:
    documents = [
        Document("c", "a", {"n": 2}),
        Document("c", "b", {}),
        Document("c", "c", {"n": 7}),
        Document("c", "d", {"n": 2, "m": 1}),
    ]
    assert [doc.id for doc in sort_documents(documents, ["-n"])] == ["c", "a", "d", "b"]
    assert [doc.id for doc in sort_documents(documents, ["n", "-m"])] == ["d", "a", "c", "b"]


def test_set_merges_by_default_and_replaces_without_merge(store: SqlDocumentStore) -> None:
    store.batch_write([WriteOperation.set("players", "p1", {"rating": 1000, "name": "Ana"})])
    store.batch_write([WriteOperation.set("players", "p1", {"rating": 1012})])
    document = store.get_document("players", "p1")
    assert document is not None
    assert document.data == {"rating": 1012, "name": "Ana"}

    store.batch_write([WriteOperation.set("players", "p1", {"rating": 990}, merge=False)])
    document = store.get_document("players", "p1")
    assert document is not None
    assert document.data == {"rating": 990}


def test_update_of_missing_document_fails(store: SqlDocumentStore) -> None:
    with pytest.raises(LookupError):
        store.run_atomic_transaction(lambda tx: tx.update("matches", "nope", {"eloCommitted": True}))


def test_failed_transaction_leaves_store_untouched(store: SqlDocumentStore) -> None:
    store.batch_write([WriteOperation.set("players", "p1", {"rating": 1000})])

    def write_then_fail(tx: Transaction) -> None:
        tx.set("players", "p1", {"rating": 1500})
        tx.set("players", "p2", {"rating": 1500})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.run_atomic_transaction(write_then_fail)

    document = store.get_document("players", "p1")
    assert document is not None
    assert document.data == {"rating": 1000}
    assert store.get_document("players", "p2") is None


def test_conflict_is_retried_with_a_fresh_transaction(store: SqlDocumentStore) -> None:
    attempts: list[int] = []

    def flaky(tx: Transaction) -> str:
        attempts.append(len(attempts) + 1)
        tx.set("counters", "c1", {"attempt": len(attempts)})
        if len(attempts) == 1:
            raise TransactionConflict("simulated")
        return "done"

    assert store.run_atomic_transaction(flaky) == "done"
    assert attempts == [1, 2]
    document = store.get_document("counters", "c1")
    assert document is not None
    assert document.data == {"attempt": 2}


def test_conflict_gives_up_after_max_attempts(store: SqlDocumentStore) -> None:
    attempts: list[int] = []

    def always_conflicts(tx: Transaction) -> None:
        attempts.append(1)
        raise TransactionConflict("simulated")

    with pytest.raises(TransactionConflict):
        store.run_atomic_transaction(always_conflicts)
    assert len(attempts) == store.max_attempts


def test_transaction_reads_see_its_own_writes(store: SqlDocumentStore) -> None:
    def read_back(tx: Transaction) -> list[str]:
        tx.set("matches/m1/participants", "p2", {"team": "B"})
        tx.set("matches/m1/participants", "p1", {"team": "A"})
        document = tx.get("matches/m1/participants", "p1")
        assert document is not None and document.data == {"team": "A"}
        return [doc.id for doc in tx.list_documents("matches/m1/participants")]

    assert store.run_atomic_transaction(read_back) == ["p1", "p2"]


def test_list_documents_filters_orders_and_limits(store: SqlDocumentStore) -> None:
    store.batch_write(
        [
            WriteOperation.set("matches", "m1", {"endedAt": "2026-01-03", "category": "ranked"}),
            WriteOperation.set("matches", "m2", {"endedAt": "2026-01-01", "category": "ranked"}),
            WriteOperation.set("matches", "m3", {"endedAt": "2026-01-02", "category": "casual"}),
            WriteOperation.set("matches", "m4", {"category": "ranked"}),
            WriteOperation.set("matches/m1/participants", "p1", {"team": "A"}),
        ]
    )
    documents = store.list_documents(
        "matches",
        filters=[FieldFilter("category", "==", "ranked")],
        order_by=["endedAt"],
    )
    assert [doc.id for doc in documents] == ["m2", "m1", "m4"]
    assert [doc.id for doc in store.list_documents("matches", limit=2)] == ["m1", "m2"]


def test_batch_write_spans_several_chunks(store: SqlDocumentStore) -> None:
    assert store.batch_size == 2
    store.batch_write([WriteOperation.set("players", f"p{index}", {"rating": index}) for index in range(5)])
    assert [doc.data["rating"] for doc in store.list_documents("players")] == [0, 1, 2, 3, 4]


def test_store_rejects_invalid_settings(store: SqlDocumentStore) -> None:
    with pytest.raises(ValueError):
        SqlDocumentStore(store._session_factory, max_attempts=0)
    with pytest.raises(ValueError):
        SqlDocumentStore(store._session_factory, batch_size=0)
