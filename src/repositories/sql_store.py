"""SQLAlchemy-backed document store."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from db import create_db_engine, create_session_factory
from domain.errors import StoreUnavailable, TransactionConflict
from models import Base, StoredDocument
from repositories.store import (
    Document,
    FieldFilter,
    WriteKind,
    WriteOperation,
    merge_data,
    sort_documents,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})


def ensure_document_schema(engine: Engine) -> None:
    """Create the documents table and its indexes if they do not exist."""
    Base.metadata.create_all(bind=engine, tables=[StoredDocument.__table__])


def open_document_store(db_url: str, *, batch_size: int = 450, max_attempts: int = 3) -> SqlDocumentStore:
    """Build the configured store for a script run, creating the schema when missing."""
    engine = create_db_engine(db_url)
    ensure_document_schema(engine)
    return SqlDocumentStore(
        create_session_factory(engine),
        batch_size=batch_size,
        max_attempts=max_attempts,
    )


def _to_document(row: StoredDocument) -> Document:
    return Document(collection=row.collection, id=row.doc_id, data=copy.deepcopy(row.data))


def _is_transient(exc: DBAPIError) -> bool:
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(exc.orig).lower()


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        raise TransactionConflict(f"concurrent write conflict: {exc.orig}") from exc
    except DBAPIError as exc:
        if _is_transient(exc):
            raise TransactionConflict(f"transient transaction failure: {exc.orig}") from exc
        if exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError)):
            raise StoreUnavailable(f"document store unavailable: {exc.orig}") from exc
        raise


class SqlTransaction:
    """Transaction handle bound to one open session transaction."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, collection: str, doc_id: str) -> Document | None:
        statement = (
            select(StoredDocument)
            .where(
                StoredDocument.collection == collection,
                StoredDocument.doc_id == doc_id,
            )
            .with_for_update()
        )
        row = self._session.execute(statement).scalar_one_or_none()
        return None if row is None else _to_document(row)

    def list_documents(self, collection: str) -> list[Document]:
        statement = (
            select(StoredDocument)
            .where(StoredDocument.collection == collection)
            .order_by(StoredDocument.doc_id)
        )
        return [_to_document(row) for row in self._session.execute(statement).scalars()]

    def set(self, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = True) -> None:
        row = self._session.get(StoredDocument, (collection, doc_id))
        if row is None:
            self._session.add(
                StoredDocument(collection=collection, doc_id=doc_id, data=merge_data({}, data))
            )
            self._session.flush()
            return
        row.data = merge_data(row.data, data) if merge else merge_data({}, data)

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        row = self._session.get(StoredDocument, (collection, doc_id))
        if row is None:
            raise LookupError(f"{collection}/{doc_id} does not exist")
        row.data = merge_data(row.data, data)

    def apply(self, operation: WriteOperation) -> None:
        if operation.kind is WriteKind.SET:
            self.set(operation.collection, operation.doc_id, operation.data, merge=operation.merge)
        elif operation.kind is WriteKind.UPDATE:
            self.update(operation.collection, operation.doc_id, operation.data)
        else:
            raise ValueError(f"unsupported write kind: {operation.kind!r}")


class SqlDocumentStore:
    """Document store over a single ``documents`` table.

    Atomic units run in one session transaction with row locks on reads;
    ``TransactionConflict`` re-runs the whole unit up to ``max_attempts``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        max_attempts: int = 3,
        batch_size: int = 450,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be greater than 0")
        if batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self.batch_size = batch_size

    def get_document(self, collection: str, doc_id: str) -> Document | None:
        with _translate_errors(), self._session_factory() as session:
            row = session.get(StoredDocument, (collection, doc_id))
            return None if row is None else _to_document(row)

    def list_documents(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[Document]:
        statement = (
            select(StoredDocument)
            .where(StoredDocument.collection == collection)
            .order_by(StoredDocument.doc_id)
        )
        with _translate_errors(), self._session_factory() as session:
            documents = [_to_document(row) for row in session.execute(statement).scalars()]

        documents = [doc for doc in documents if all(f.matches(doc.data) for f in filters)]
        documents = sort_documents(documents, order_by)
        if limit is not None:
            documents = documents[:limit]
        return documents

    def run_atomic_transaction(self, fn: Callable[[SqlTransaction], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._run_once(fn)
            except TransactionConflict as exc:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "transaction conflict, retrying attempt=%d/%d: %s",
                    attempt + 1,
                    self.max_attempts,
                    exc,
                )
        raise AssertionError("unreachable")

    def _run_once(self, fn: Callable[[SqlTransaction], T]) -> T:
        with _translate_errors(), self._session_factory() as session:
            with session.begin():
                return fn(SqlTransaction(session))

    def batch_write(self, operations: Sequence[WriteOperation]) -> None:
        """Apply writes in chunks; each chunk commits on its own."""
        for start in range(0, len(operations), self.batch_size):
            chunk = operations[start : start + self.batch_size]
            with _translate_errors(), self._session_factory() as session:
                with session.begin():
                    transaction = SqlTransaction(session)
                    for operation in chunk:
                        transaction.apply(operation)


__all__ = ["SqlDocumentStore", "SqlTransaction", "ensure_document_schema", "open_document_store"]
