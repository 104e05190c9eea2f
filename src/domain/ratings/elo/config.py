"""Load the ranked Elo system definition from a TOML file."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from domain.ratings.config_base import BaseSystemConfig, load_system_config
from domain.ratings.elo.calculator import DEFAULT_K_FACTOR, DEFAULT_RATING, EloParameters

DEFAULT_ALGO_VERSION = "v1"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[4] / "configs" / "default.toml"


@dataclass(frozen=True)
class SettlementOptions:
    ranked_only: bool = False
    sample_size: int = 3
    top_n: int = 10
    write_batch_size: int = 450


@dataclass(frozen=True)
class EloSystemConfig(BaseSystemConfig):
    """Configuration for ranked Elo settlement and rebuilds."""

    parameters: EloParameters
    settlement: SettlementOptions

    def as_config_json(self) -> dict[str, Any]:
        return {
            "algo_version": self.algo_version,
            "k_factor": self.parameters.k_factor,
            "default_rating": self.parameters.default_rating,
            "ranked_only": self.settlement.ranked_only,
        }

    def with_overrides(
        self,
        *,
        k_factor: float | None = None,
        algo_version: str | None = None,
        ranked_only: bool | None = None,
    ) -> EloSystemConfig:
        """Apply CLI overrides on top of the file values."""
        config = self
        if k_factor is not None:
            parameters = replace(config.parameters, k_factor=k_factor)
            _validate_parameters(file_path=config.file_path, parameters=parameters)
            config = replace(config, parameters=parameters)
        if algo_version is not None:
            if not algo_version.strip():
                raise ValueError("algo_version must not be empty")
            config = replace(config, algo_version=algo_version.strip())
        if ranked_only is not None:
            config = replace(config, settlement=replace(config.settlement, ranked_only=ranked_only))
        return config


def default_elo_system_config() -> EloSystemConfig:
    return EloSystemConfig(
        name="ranked_elo",
        description=None,
        file_path=DEFAULT_CONFIG_PATH,
        algo_version=DEFAULT_ALGO_VERSION,
        parameters=EloParameters(),
        settlement=SettlementOptions(),
    )


def load_elo_system_config(file_path: Path) -> EloSystemConfig:
    """Load and validate one ranked Elo TOML config file."""
    return load_system_config(file_path, _parse_elo_system_config)


def resolve_elo_system_config(config_path: Path | None = None) -> EloSystemConfig:
    """Explicit file, else the repository default file, else built-in defaults."""
    if config_path is not None:
        return load_elo_system_config(config_path)
    if DEFAULT_CONFIG_PATH.is_file():
        return load_elo_system_config(DEFAULT_CONFIG_PATH)
    return default_elo_system_config()


def _parse_elo_system_config(raw: dict[str, Any], file_path: Path) -> EloSystemConfig:
    system_raw = raw.get("system", {})
    elo_raw = raw.get("elo", {})
    settlement_raw = raw.get("settlement", {})

    name = str(system_raw.get("name", "")).strip()
    if not name:
        raise ValueError(f"{file_path}: [system].name is required")

    description_value = system_raw.get("description")
    description = None if description_value is None else str(description_value)

    algo_version = str(system_raw.get("algo_version", DEFAULT_ALGO_VERSION)).strip()
    if not algo_version:
        raise ValueError(f"{file_path}: [system].algo_version must not be empty")

    default_rating_value = elo_raw.get("default_rating", DEFAULT_RATING)
    if isinstance(default_rating_value, float) and not default_rating_value.is_integer():
        raise ValueError(f"{file_path}: [elo].default_rating must be an integer")

    parameters = EloParameters(
        k_factor=float(elo_raw.get("k_factor", DEFAULT_K_FACTOR)),
        default_rating=int(default_rating_value),
    )
    _validate_parameters(file_path=file_path, parameters=parameters)

    settlement = SettlementOptions(
        ranked_only=bool(settlement_raw.get("ranked_only", False)),
        sample_size=int(settlement_raw.get("sample_size", 3)),
        top_n=int(settlement_raw.get("top_n", 10)),
        write_batch_size=int(settlement_raw.get("write_batch_size", 450)),
    )
    if settlement.sample_size < 0:
        raise ValueError(f"{file_path}: [settlement].sample_size must be >= 0")
    if settlement.top_n < 0:
        raise ValueError(f"{file_path}: [settlement].top_n must be >= 0")
    if settlement.write_batch_size <= 0:
        raise ValueError(f"{file_path}: [settlement].write_batch_size must be > 0")

    return EloSystemConfig(
        name=name,
        description=description,
        file_path=file_path,
        algo_version=algo_version,
        parameters=parameters,
        settlement=settlement,
    )


def _validate_parameters(*, file_path: Path, parameters: EloParameters) -> None:
    if parameters.k_factor <= 0.0:
        raise ValueError(f"{file_path}: [elo].k_factor must be > 0")
    if parameters.default_rating <= 0:
        raise ValueError(f"{file_path}: [elo].default_rating must be > 0")
