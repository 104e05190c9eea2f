"""Elo rating modules."""

from domain.ratings.elo.calculator import (
    EloParameters,
    EloUpdate,
    PlayerRatingChange,
    RankedEloCalculator,
    calculate_expected_score,
    compute_update,
    round_half_away_from_zero,
)
from domain.ratings.elo.config import (
    EloSystemConfig,
    SettlementOptions,
    default_elo_system_config,
    load_elo_system_config,
    resolve_elo_system_config,
)

__all__ = [
    "EloParameters",
    "EloSystemConfig",
    "EloUpdate",
    "PlayerRatingChange",
    "RankedEloCalculator",
    "SettlementOptions",
    "calculate_expected_score",
    "compute_update",
    "default_elo_system_config",
    "load_elo_system_config",
    "resolve_elo_system_config",
    "round_half_away_from_zero",
]
