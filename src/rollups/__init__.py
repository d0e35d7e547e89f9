"""Incremental aggregate rollups over round participation logs."""

from __future__ import annotations

# Core functionality - Main API
from rollups.core import (
    Clock,
    PercentileProfile,
    RecencyTier,
    RollupConfig,
    RunSummary,
    estimate_percentiles,
    load_config,
)
from rollups.service import RollupService
from rollups.sql import create_all, create_engine

__version__ = "0.1.0"

__all__ = [
    # Service
    "RollupService",
    # Configuration
    "RollupConfig",
    "load_config",
    # Database
    "create_all",
    "create_engine",
    # Building blocks
    "Clock",
    "PercentileProfile",
    "RecencyTier",
    "RunSummary",
    "estimate_percentiles",
]
