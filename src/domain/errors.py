"""Error taxonomy for rating settlement."""

from __future__ import annotations

from collections.abc import Sequence

from domain.common import SkipReason


class RatingError(Exception):
    """Base class for settlement and rebuild failures."""


class UnresolvedOutcome(RatingError):
    """Raised when neither an explicit winner nor comparable scores exist."""

    def __init__(self, match_id: str | None = None) -> None:
        self.match_id = match_id
        label = f"match_id={match_id} " if match_id is not None else ""
        super().__init__(f"{label}has no resolvable winner (winnerTeam unset and scores missing)")


class IneligibleMatch(RatingError):
    """Raised by callers that require an eligible match."""

    def __init__(self, match_id: str, reasons: Sequence[SkipReason]) -> None:
        self.match_id = match_id
        self.reasons = tuple(reasons)
        labels = ", ".join(reason.value for reason in self.reasons)
        super().__init__(f"match_id={match_id} is not eligible for settlement: {labels}")


class MatchNotFound(RatingError):
    def __init__(self, match_id: str) -> None:
        self.match_id = match_id
        super().__init__(f"match_id={match_id} not found")


class InvalidDocument(RatingError):
    """A stored document has fields of the wrong shape."""

    def __init__(self, collection: str, doc_id: str, detail: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        self.detail = detail
        super().__init__(f"{collection}/{doc_id}: {detail}")


class TransactionConflict(RatingError):
    """Transient conflict; the whole read-compute-write unit may be retried."""


class StoreUnavailable(RatingError):
    """The document store cannot be reached."""


__all__ = [
    "IneligibleMatch",
    "InvalidDocument",
    "MatchNotFound",
    "RatingError",
    "StoreUnavailable",
    "TransactionConflict",
    "UnresolvedOutcome",
]
