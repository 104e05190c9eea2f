"""Ranked team Elo logic with a uniform per-team delta."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from domain.common import MatchOutcome, Team, Winner
from domain.errors import UnresolvedOutcome

SCALE_FACTOR = 400.0
DEFAULT_K_FACTOR = 24.0
DEFAULT_RATING = 1000


@dataclass(frozen=True)
class EloParameters:
    k_factor: float = DEFAULT_K_FACTOR
    default_rating: int = DEFAULT_RATING


@dataclass(frozen=True)
class PlayerRatingChange:
    player_id: str
    team: Team
    before: int
    delta: int
    after: int


@dataclass(frozen=True)
class EloUpdate:
    """Result of one match update.

    ``delta_by_player`` and ``after_by_player`` are empty when either roster
    was empty; every rostered player is present otherwise, including zero
    deltas on a draw between equal teams.
    """

    delta_by_player: dict[str, int] = field(default_factory=dict)
    after_by_player: dict[str, int] = field(default_factory=dict)
    before_by_player: dict[str, int] = field(default_factory=dict)
    team_a_ids: tuple[str, ...] = ()
    team_b_ids: tuple[str, ...] = ()
    winner: Winner | None = None
    team_a_avg_before: float | None = None
    team_b_avg_before: float | None = None
    expected_score_a: float | None = None
    team_a_delta: int = 0

    @property
    def team_b_delta(self) -> int:
        return -self.team_a_delta

    @property
    def is_empty(self) -> bool:
        return not self.delta_by_player

    def changes(self) -> list[PlayerRatingChange]:
        changes = [
            PlayerRatingChange(
                player_id=player_id,
                team=Team.A,
                before=self.before_by_player[player_id],
                delta=self.delta_by_player[player_id],
                after=self.after_by_player[player_id],
            )
            for player_id in self.team_a_ids
        ]
        changes.extend(
            PlayerRatingChange(
                player_id=player_id,
                team=Team.B,
                before=self.before_by_player[player_id],
                delta=self.delta_by_player[player_id],
                after=self.after_by_player[player_id],
            )
            for player_id in self.team_b_ids
        )
        return changes


def calculate_expected_score(rating: float, opponent_rating: float) -> float:
    """Compute the Elo expected score for one side on the fixed 400-point scale."""
    return 1.0 / (1.0 + 10.0 ** ((opponent_rating - rating) / SCALE_FACTOR))


def round_half_away_from_zero(value: float) -> int:
    """Round to the nearest integer, sending exact .5 ties away from zero."""
    magnitude = abs(value)
    whole = math.floor(magnitude)
    rounded = whole + 1 if magnitude - whole >= 0.5 else whole
    return int(math.copysign(rounded, value)) if rounded else 0


def winner_from_scores(score_a: int | None, score_b: int | None) -> Winner | None:
    if score_a is None or score_b is None:
        return None
    if score_a > score_b:
        return Winner.A
    if score_b > score_a:
        return Winner.B
    return Winner.DRAW


def resolve_winner(
    winner: Winner | None,
    score_a: int | None = None,
    score_b: int | None = None,
) -> Winner:
    """Explicit winner first, then score comparison; never guesses a draw."""
    if winner is not None and winner is not Winner.UNRESOLVED:
        return winner
    resolved = winner_from_scores(score_a, score_b)
    if resolved is None:
        raise UnresolvedOutcome()
    return resolved


def actual_score_for_team_a(winner: Winner) -> float:
    if winner is Winner.A:
        return 1.0
    if winner is Winner.B:
        return 0.0
    if winner is Winner.DRAW:
        return 0.5
    raise UnresolvedOutcome()


def compute_update(
    team_a_ids: Sequence[str],
    team_b_ids: Sequence[str],
    current_rating_by_player: Mapping[str, float],
    winner: Winner | None = None,
    score_a: int | None = None,
    score_b: int | None = None,
    *,
    k_factor: float = DEFAULT_K_FACTOR,
    default_rating: int = DEFAULT_RATING,
) -> EloUpdate:
    """Compute per-player deltas and post-match ratings for one match."""
    if not team_a_ids or not team_b_ids:
        return EloUpdate()

    overlap = set(team_a_ids) & set(team_b_ids)
    if overlap:
        raise ValueError(f"players {sorted(overlap)} appear on both teams")

    resolved_winner = resolve_winner(winner, score_a, score_b)
    team_a_actual = actual_score_for_team_a(resolved_winner)

    def rating_of(player_id: str) -> float:
        rating = current_rating_by_player.get(player_id)
        return float(default_rating) if rating is None else float(rating)

    team_a_avg = sum(rating_of(player_id) for player_id in team_a_ids) / float(len(team_a_ids))
    team_b_avg = sum(rating_of(player_id) for player_id in team_b_ids) / float(len(team_b_ids))

    team_a_expected = calculate_expected_score(rating=team_a_avg, opponent_rating=team_b_avg)
    team_a_delta = round_half_away_from_zero(k_factor * (team_a_actual - team_a_expected))
    team_b_delta = -team_a_delta

    before_by_player: dict[str, int] = {}
    delta_by_player: dict[str, int] = {}
    after_by_player: dict[str, int] = {}
    for roster, delta in ((team_a_ids, team_a_delta), (team_b_ids, team_b_delta)):
        for player_id in roster:
            before = round_half_away_from_zero(rating_of(player_id))
            before_by_player[player_id] = before
            delta_by_player[player_id] = delta
            after_by_player[player_id] = before + delta

    return EloUpdate(
        delta_by_player=delta_by_player,
        after_by_player=after_by_player,
        before_by_player=before_by_player,
        team_a_ids=tuple(team_a_ids),
        team_b_ids=tuple(team_b_ids),
        winner=resolved_winner,
        team_a_avg_before=team_a_avg,
        team_b_avg_before=team_b_avg,
        expected_score_a=team_a_expected,
        team_a_delta=team_a_delta,
    )


class RankedEloCalculator:
    """Stateful match-by-match calculator used to replay history."""

    def __init__(
        self,
        params: EloParameters,
        *,
        initial_ratings: Mapping[str, int] | None = None,
    ) -> None:
        self.params = params
        self._ratings: dict[str, int] = dict(initial_ratings or {})

    def get_rating(self, player_id: str) -> int:
        return self._ratings.get(player_id, self.params.default_rating)

    def seed_player(self, player_id: str) -> None:
        self._ratings.setdefault(player_id, self.params.default_rating)

    def ratings(self) -> dict[str, int]:
        return dict(self._ratings)

    def tracked_player_count(self) -> int:
        return len(self._ratings)

    def process_outcome(self, outcome: MatchOutcome) -> EloUpdate:
        try:
            update = compute_update(
                outcome.team_a_ids,
                outcome.team_b_ids,
                self._ratings,
                winner=outcome.winner,
                score_a=outcome.score_a,
                score_b=outcome.score_b,
                k_factor=self.params.k_factor,
                default_rating=self.params.default_rating,
            )
        except UnresolvedOutcome as exc:
            raise UnresolvedOutcome(outcome.match_id) from exc

        self._ratings.update(update.after_by_player)
        return update


__all__ = [
    "DEFAULT_K_FACTOR",
    "DEFAULT_RATING",
    "EloParameters",
    "EloUpdate",
    "PlayerRatingChange",
    "RankedEloCalculator",
    "SCALE_FACTOR",
    "actual_score_for_team_a",
    "calculate_expected_score",
    "compute_update",
    "resolve_winner",
    "round_half_away_from_zero",
    "winner_from_scores",
]
