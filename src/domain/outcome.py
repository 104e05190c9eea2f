"""Normalise a match and its participants into a canonical outcome."""

from __future__ import annotations

from collections.abc import Sequence

from domain.common import MatchOutcome, MatchRecord, ParticipantRecord, SkipReason, Team, Winner
from domain.ratings.elo.calculator import winner_from_scores


def resolve_match_winner(match: MatchRecord) -> Winner:
    """Explicit ``winnerTeam`` beats score comparison; otherwise unresolved."""
    if match.winner_team is not None:
        return match.winner_team
    return winner_from_scores(match.score_a, match.score_b) or Winner.UNRESOLVED


def _unique(player_ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for player_id in player_ids:
        if player_id not in seen:
            seen.add(player_id)
            unique.append(player_id)
    return unique


def extract_outcome(match: MatchRecord, participants: Sequence[ParticipantRecord]) -> MatchOutcome:
    """Build rosters from participants with a playing side.

    Participants without a team are dropped. A player listed on both sides
    is removed from both rosters and reported in ``duplicate_player_ids``.
    """
    team_a = _unique([p.player_id for p in participants if p.team is Team.A])
    team_b = _unique([p.player_id for p in participants if p.team is Team.B])

    duplicates = set(team_a) & set(team_b)
    duplicate_ids = tuple(player_id for player_id in team_a if player_id in duplicates)

    return MatchOutcome(
        match_id=match.match_id,
        team_a_ids=tuple(player_id for player_id in team_a if player_id not in duplicates),
        team_b_ids=tuple(player_id for player_id in team_b if player_id not in duplicates),
        winner=resolve_match_winner(match),
        score_a=match.score_a,
        score_b=match.score_b,
        duplicate_player_ids=duplicate_ids,
    )


def eligibility_issues(match: MatchRecord, outcome: MatchOutcome) -> list[SkipReason]:
    """All reasons the match cannot be settled; empty when eligible."""
    issues: list[SkipReason] = []
    if match.ended_at is None:
        issues.append(SkipReason.MISSING_ENDED_AT)
    if outcome.winner is Winner.UNRESOLVED:
        issues.append(SkipReason.UNRESOLVED_WINNER)
    if outcome.duplicate_player_ids:
        issues.append(SkipReason.DUPLICATE_PLAYER)
    if not outcome.team_a_ids:
        issues.append(SkipReason.EMPTY_TEAM_A)
    if not outcome.team_b_ids:
        issues.append(SkipReason.EMPTY_TEAM_B)
    return issues


__all__ = ["eligibility_issues", "extract_outcome", "resolve_match_winner"]
