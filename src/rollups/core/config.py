"""Configuration dataclasses for the rollup jobs.

Settings resolve CLI > YAML config file > defaults below. The packaged
``rollups/config.yaml`` mirrors these defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml


@dataclass
class BackfillConfig:
    """Batching for the tiered backfill."""

    batch_size: int = 100


@dataclass
class RefreshWindows:
    """Trailing windows (days) used by the daily refresh per rollup shape.

    ``None`` recomputes the shape over its full source.
    """

    player_stats_monthly: Optional[int] = 35
    player_server_stats: Optional[int] = 35
    player_map_stats: Optional[int] = 35
    player_best_scores: Optional[int] = 7
    player_server_high_scores: Optional[int] = 7
    server_hourly_patterns: Optional[int] = 60
    hourly_player_predictions: Optional[int] = 60
    hourly_activity_patterns: Optional[int] = 30
    server_map_stats: Optional[int] = 62
    map_server_hourly_patterns: Optional[int] = 60
    map_global_averages: Optional[int] = None

    def for_shape(self, shape: str) -> Optional[int]:
        if not hasattr(self, shape):
            raise KeyError(f"No refresh window configured for shape {shape!r}")
        return getattr(self, shape)


@dataclass
class RetentionConfig:
    """Weekly pruning of raw hourly observations."""

    horizon_days: int = 180
    batch_size: int = 10_000
    pause_seconds: float = 0.1


@dataclass
class ScheduleConfig:
    """Fixed UTC triggers for the background scheduler."""

    daily_hour: int = 4
    weekly_weekday: int = 0  # Monday
    weekly_hour: int = 3
    poll_seconds: float = 300.0
    max_attempts: int = 3
    backoff_seconds: float = 30.0
    max_backoff_seconds: float = 600.0


@dataclass
class RollupConfig:
    """All job settings in one place."""

    backfill: BackfillConfig = field(default_factory=BackfillConfig)
    refresh: RefreshWindows = field(default_factory=RefreshWindows)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    # Hourly profiles with fewer samples are treated as unreliable by readers
    min_pattern_samples: int = 3

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> RollupConfig:
        """Build a config from a (YAML-derived) mapping, ignoring unknown keys."""
        data = dict(data or {})
        sections = {
            "backfill": BackfillConfig,
            "refresh": RefreshWindows,
            "retention": RetentionConfig,
            "schedule": ScheduleConfig,
        }
        kwargs: dict[str, Any] = {}
        for name, section_cls in sections.items():
            raw = data.get(name) or {}
            if not isinstance(raw, Mapping):
                raise ValueError(f"Config section {name!r} must be a mapping")
            allowed = {f.name for f in fields(section_cls)}
            kwargs[name] = section_cls(
                **{k: v for k, v in raw.items() if k in allowed}
            )
        if "min_pattern_samples" in data:
            kwargs["min_pattern_samples"] = int(data["min_pattern_samples"])
        return cls(**kwargs)


def default_config_path() -> Path:
    return Path(__file__).resolve().parent.parent / "config.yaml"


def load_config(path: str | Path | None = None) -> RollupConfig:
    """Load a RollupConfig from YAML.

    Args:
        path: Config file. Defaults to the packaged ``config.yaml``; a missing
            default file yields the built-in defaults.

    Returns:
        RollupConfig instance.
    """
    cfg_path = Path(path) if path else default_config_path()
    if not cfg_path.exists():
        if path:
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        return RollupConfig()
    with cfg_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config format at {cfg_path}")
    return RollupConfig.from_mapping(data)


__all__ = [
    "BackfillConfig",
    "RefreshWindows",
    "RetentionConfig",
    "RollupConfig",
    "ScheduleConfig",
    "default_config_path",
    "load_config",
]
