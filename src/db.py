"""Database engine/session helpers for the document store."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _use_immediate_transactions(engine: Engine) -> None:
    # Take the write lock at BEGIN so a settlement's reads are serialised
    # against concurrent settlements of the same match.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(db_url: str) -> Engine:
    """Create an engine; PostgreSQL relies on row locks, SQLite on an immediate write lock."""
    if make_url(db_url).get_backend_name() == "sqlite":
        engine = create_engine(db_url, connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS})
        _use_immediate_transactions(engine)
        return engine
    return create_engine(db_url, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to the provided engine."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
