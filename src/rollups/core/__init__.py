"""Pure building blocks of the rollup engine: tiers, percentiles, results."""

from rollups.core.config import RollupConfig, load_config
from rollups.core.errors import (
    InvariantViolation,
    LeaseError,
    RollupError,
    RollupFailure,
    TopKInvariantError,
)
from rollups.core.percentiles import PercentileProfile, estimate_percentiles
from rollups.core.results import (
    BatchOutcome,
    RoutineOutput,
    RoutineResult,
    RunSummary,
    TierResult,
)
from rollups.core.tiers import RecencyTier, classify, subjects_for_tier
from rollups.core.time import Clock

__all__ = [
    "BatchOutcome",
    "Clock",
    "InvariantViolation",
    "LeaseError",
    "PercentileProfile",
    "RecencyTier",
    "RollupConfig",
    "RollupError",
    "RollupFailure",
    "RoutineOutput",
    "RoutineResult",
    "RunSummary",
    "TierResult",
    "TopKInvariantError",
    "classify",
    "estimate_percentiles",
    "load_config",
    "subjects_for_tier",
]
