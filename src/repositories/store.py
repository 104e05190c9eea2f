"""Document-store contract consumed by the settlement engine."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeVar

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class Document:
    collection: str
    id: str
    data: dict[str, Any]

    def get(self, field_name: str, default: Any = None) -> Any:
        return self.data.get(field_name, default)


@dataclass(frozen=True)
class FieldFilter:
    """Top-level field predicate; ``op`` is one of ==, !=, <, <=, >, >=, in."""

    field: str
    op: str
    value: Any

    def matches(self, data: Mapping[str, Any]) -> bool:
        actual = data.get(self.field, _MISSING)
        if self.op == "==":
            return actual is not _MISSING and actual == self.value
        if self.op == "!=":
            return actual is not _MISSING and actual != self.value
        if self.op == "in":
            return actual is not _MISSING and actual in self.value
        if actual is _MISSING or actual is None:
            return False
        try:
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            if self.op == ">=":
                return actual >= self.value
        except TypeError:
            return False
        raise ValueError(f"unsupported filter operator: {self.op!r}")


class WriteKind(str, Enum):
    SET = "set"
    UPDATE = "update"


@dataclass(frozen=True)
class WriteOperation:
    kind: WriteKind
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = True

    @classmethod
    def set(
        cls, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = True
    ) -> WriteOperation:
        return cls(WriteKind.SET, collection, doc_id, data, merge)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict[str, Any]) -> WriteOperation:
        return cls(WriteKind.UPDATE, collection, doc_id, data)


class Transaction(Protocol):
    """Read-then-write unit; all effects commit together or not at all."""

    def get(self, collection: str, doc_id: str) -> Document | None: ...

    def list_documents(self, collection: str) -> list[Document]: ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = True) -> None: ...

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...


class DocumentStore(Protocol):
    def get_document(self, collection: str, doc_id: str) -> Document | None: ...

    def list_documents(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[Document]: ...

    def run_atomic_transaction(self, fn: Callable[[Transaction], T]) -> T: ...

    def batch_write(self, operations: Sequence[WriteOperation]) -> None: ...


def merge_data(existing: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``patch`` into a copy of ``existing`` (nested maps merge, values replace)."""
    merged = dict(existing)
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_data(current, value)
        elif isinstance(value, Mapping):
            merged[key] = merge_data({}, value)
        else:
            merged[key] = value
    return merged


def sort_documents(documents: Sequence[Document], order_by: Sequence[str]) -> list[Document]:
    """Stable multi-key sort; ``-field`` sorts descending, missing values sort last."""
    ordered = list(documents)
    for key in reversed(order_by):
        descending = key.startswith("-")
        field_name = key[1:] if descending else key
        present = [doc for doc in ordered if doc.data.get(field_name) is not None]
        missing = [doc for doc in ordered if doc.data.get(field_name) is None]
        present.sort(key=lambda doc: doc.data[field_name], reverse=descending)
        ordered = present + missing
    return ordered


__all__ = [
    "Document",
    "DocumentStore",
    "FieldFilter",
    "Transaction",
    "WriteKind",
    "WriteOperation",
    "merge_data",
    "sort_documents",
]
