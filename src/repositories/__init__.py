"""Document store and match document helpers."""

from repositories.match_repository import (
    MATCHES,
    PLAYERS,
    fetch_match_documents,
    fetch_participants,
    parse_match_document,
    parse_participant_document,
    participants_collection,
)
from repositories.sql_store import SqlDocumentStore, ensure_document_schema, open_document_store
from repositories.store import Document, DocumentStore, FieldFilter, Transaction, WriteOperation

__all__ = [
    "MATCHES",
    "PLAYERS",
    "Document",
    "DocumentStore",
    "FieldFilter",
    "SqlDocumentStore",
    "Transaction",
    "WriteOperation",
    "ensure_document_schema",
    "fetch_match_documents",
    "fetch_participants",
    "open_document_store",
    "parse_match_document",
    "parse_participant_document",
    "participants_collection",
]
