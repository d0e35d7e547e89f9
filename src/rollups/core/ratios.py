"""Integer-safe ratio helpers shared by the polars aggregations."""

from __future__ import annotations

import polars as pl

from rollups.core.constants import RATIO_DIGITS


def kd_ratio(kills: int | float, deaths: int | float) -> float:
    """Kills per death; a zero death count yields the kill count itself."""
    if deaths:
        return round(kills / deaths, RATIO_DIGITS)
    return float(kills)


def rate(numerator: int | float, denominator: int | float) -> float:
    """Per-unit rate (e.g. kills per minute); zero when the denominator is 0."""
    if denominator and denominator > 0:
        return round(numerator / denominator, RATIO_DIGITS)
    return 0.0


def kd_ratio_expr(kills: str = "total_kills", deaths: str = "total_deaths") -> pl.Expr:
    """Polars expression equivalent of :func:`kd_ratio`."""
    return (
        pl.when(pl.col(deaths) > 0)
        .then((pl.col(kills) / pl.col(deaths)).round(RATIO_DIGITS))
        .otherwise(pl.col(kills).cast(pl.Float64))
    )


def rate_expr(numerator: str, denominator: str) -> pl.Expr:
    """Polars expression equivalent of :func:`rate`."""
    return (
        pl.when(pl.col(denominator) > 0)
        .then((pl.col(numerator) / pl.col(denominator)).round(RATIO_DIGITS))
        .otherwise(pl.lit(0.0))
    )


__all__ = ["kd_ratio", "kd_ratio_expr", "rate", "rate_expr"]
