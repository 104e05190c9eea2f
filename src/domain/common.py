"""Shared types for ranked match settlement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Team(str, Enum):
    A = "A"
    B = "B"


class Winner(str, Enum):
    """Resolved result of a match from team A's point of view."""

    A = "A"
    B = "B"
    DRAW = "draw"
    UNRESOLVED = "unresolved"


class SkipReason(str, Enum):
    """Labels used for skipped settlements and the rebuild reason histogram."""

    ALREADY_SETTLED = "already-settled"
    MISSING_ENDED_AT = "missing-endedAt"
    UNRESOLVED_WINNER = "unresolved-winner"
    EMPTY_TEAM_A = "empty-team-A"
    EMPTY_TEAM_B = "empty-team-B"
    DUPLICATE_PLAYER = "duplicate-player-across-teams"
    UNRANKED = "unranked"
    INVALID_DOCUMENT = "invalid-document"


@dataclass(frozen=True)
class MatchRecord:
    """Validated view of a match document."""

    match_id: str
    status: str | None = None
    score_a: int | None = None
    score_b: int | None = None
    winner_team: Winner | None = None
    ended_at: datetime | None = None
    created_at: datetime | None = None
    settled: bool = False
    rating_algo_version: str | None = None
    ranked: bool = False


@dataclass(frozen=True)
class ParticipantRecord:
    """Validated view of a participant document.

    ``team`` is None for participants without a playing side (spectators,
    referees); they never enter a roster.
    """

    match_id: str
    doc_id: str
    player_id: str
    team: Team | None = None


@dataclass(frozen=True)
class MatchOutcome:
    match_id: str
    team_a_ids: tuple[str, ...]
    team_b_ids: tuple[str, ...]
    winner: Winner
    score_a: int | None = None
    score_b: int | None = None
    duplicate_player_ids: tuple[str, ...] = field(default=())

    @property
    def player_ids(self) -> tuple[str, ...]:
        return self.team_a_ids + self.team_b_ids


__all__ = [
    "MatchOutcome",
    "MatchRecord",
    "ParticipantRecord",
    "SkipReason",
    "Team",
    "Winner",
]
