"""ORM models."""

from models.base import Base
from models.document import StoredDocument

__all__ = [
    "Base",
    "StoredDocument",
]
