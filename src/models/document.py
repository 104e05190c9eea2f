"""documents table model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base

DocumentPayload = JSON().with_variant(JSONB(), "postgresql")


class StoredDocument(Base):
    """One JSON document addressed by (collection path, document id).

    Subcollections use slash-separated paths, for example
    ``matches/m1/participants``.
    """

    __tablename__ = "documents"
    __table_args__ = (Index("idx_documents_collection", "collection"),)

    collection: Mapped[str] = mapped_column(String(255), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(DocumentPayload, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
