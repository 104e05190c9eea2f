"""Validated reads of match, participant and player documents."""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from domain.common import MatchRecord, ParticipantRecord, Team, Winner
from domain.errors import InvalidDocument
from repositories.store import Document, DocumentStore, FieldFilter

MATCHES = "matches"
PLAYERS = "players"

SETTLED_FIELD = "eloCommitted"
RATING_FIELD = "rating"


def participants_collection(match_id: str) -> str:
    return f"{MATCHES}/{match_id}/participants"


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Normalise datetimes, ISO-8601 strings and epoch milliseconds to aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp {value!r}")
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"invalid timestamp {value!r}")
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=UTC)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"invalid timestamp {value!r}") from exc
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"invalid timestamp {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_score(document: Document, field_name: str) -> int | None:
    value = document.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidDocument(document.collection, document.id, f"{field_name}={value!r} is not a number")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidDocument(document.collection, document.id, f"{field_name}={value!r} is not an integer")
        return int(value)
    return value


def _parse_winner_team(document: Document) -> Winner | None:
    value = document.get("winnerTeam")
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidDocument(document.collection, document.id, f"winnerTeam={value!r} is not a string")
    normalized = value.strip().lower()
    if normalized == "a":
        return Winner.A
    if normalized == "b":
        return Winner.B
    if normalized == "draw":
        return Winner.DRAW
    return None


def _parse_optional_timestamp(document: Document, field_name: str) -> datetime | None:
    try:
        return parse_timestamp(document.get(field_name))
    except ValueError as exc:
        raise InvalidDocument(document.collection, document.id, f"{field_name}: {exc}") from exc


def parse_match_document(document: Document) -> MatchRecord:
    settled = document.get(SETTLED_FIELD, False)
    if settled is None:
        settled = False
    if not isinstance(settled, bool):
        raise InvalidDocument(document.collection, document.id, f"{SETTLED_FIELD}={settled!r} is not a boolean")

    status = document.get("status")
    algo_version = document.get("ratingAlgoVersion")

    return MatchRecord(
        match_id=document.id,
        status=None if status is None else str(status),
        score_a=_parse_score(document, "scoreA"),
        score_b=_parse_score(document, "scoreB"),
        winner_team=_parse_winner_team(document),
        ended_at=_parse_optional_timestamp(document, "endedAt"),
        created_at=_parse_optional_timestamp(document, "createdAt"),
        settled=settled,
        rating_algo_version=None if algo_version is None else str(algo_version),
        ranked=document.get("category") == "ranked" or document.get("isRanked") is True,
    )


def parse_participant_document(match_id: str, document: Document) -> ParticipantRecord:
    uid = document.get("uid")
    if uid is None:
        uid = document.id
    if not isinstance(uid, str) or not uid.strip():
        raise InvalidDocument(document.collection, document.id, f"uid={uid!r} is not a non-empty string")

    team_raw = document.get("team")
    if team_raw is not None and not isinstance(team_raw, str):
        raise InvalidDocument(document.collection, document.id, f"team={team_raw!r} is not a string")

    team: Team | None = None
    if team_raw is not None:
        normalized = team_raw.strip().upper()
        if normalized == Team.A.value:
            team = Team.A
        elif normalized == Team.B.value:
            team = Team.B

    return ParticipantRecord(match_id=match_id, doc_id=document.id, player_id=uid.strip(), team=team)


def parse_player_rating(document: Document | None) -> float | None:
    """Stored rating, or None when the player has no recorded rating."""
    if document is None:
        return None
    value = document.get(RATING_FIELD)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidDocument(document.collection, document.id, f"{RATING_FIELD}={value!r} is not a number")
    return float(value)


def parse_participants(match_id: str, documents: Sequence[Document]) -> list[ParticipantRecord]:
    return [parse_participant_document(match_id, document) for document in documents]


def parse_recorded_deltas(match_id: str, documents: Sequence[Document]) -> dict[str, int]:
    """Deltas written on participants by an earlier settlement, keyed by player id."""
    deltas: dict[str, int] = {}
    for document in documents:
        record = document.get(RATING_FIELD)
        if record is None:
            continue
        if not isinstance(record, dict):
            raise InvalidDocument(document.collection, document.id, f"{RATING_FIELD}={record!r} is not a map")
        delta = record.get("delta")
        if isinstance(delta, bool) or not isinstance(delta, (int, float)) or not float(delta).is_integer():
            raise InvalidDocument(document.collection, document.id, f"{RATING_FIELD}.delta={delta!r} is not an integer")
        player_id = parse_participant_document(match_id, document).player_id
        deltas[player_id] = deltas.get(player_id, 0) + int(delta)
    return deltas


def fetch_match_documents(store: DocumentStore, *, ranked_only: bool = False) -> list[Document]:
    """Fetch raw match documents; ordering is applied by the caller after parsing."""
    if not ranked_only:
        return store.list_documents(MATCHES)

    by_id: dict[str, Document] = {}
    for document in store.list_documents(MATCHES, filters=[FieldFilter("category", "==", "ranked")]):
        by_id[document.id] = document
    for document in store.list_documents(MATCHES, filters=[FieldFilter("isRanked", "==", True)]):
        by_id[document.id] = document
    return [by_id[doc_id] for doc_id in sorted(by_id)]


def fetch_participants(store: DocumentStore, match_id: str) -> list[ParticipantRecord]:
    return parse_participants(match_id, store.list_documents(participants_collection(match_id)))


def fetch_player_ids(store: DocumentStore) -> list[str]:
    return [document.id for document in store.list_documents(PLAYERS)]


__all__ = [
    "MATCHES",
    "PLAYERS",
    "RATING_FIELD",
    "SETTLED_FIELD",
    "fetch_match_documents",
    "fetch_participants",
    "fetch_player_ids",
    "format_timestamp",
    "parse_match_document",
    "parse_participant_document",
    "parse_participants",
    "parse_player_rating",
    "parse_recorded_deltas",
    "parse_timestamp",
    "participants_collection",
    "utc_now",
]
