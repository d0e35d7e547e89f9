"""Constants shared by the rollup routines and jobs."""

from __future__ import annotations

# Sentinel server scope for cross-server ("global") dimension rows
GLOBAL_SCOPE = ""

# Top-K leaderboard
TOP_K = 3
PERIOD_ALL_TIME = "all_time"
PERIOD_LAST_30_DAYS = "last_30_days"
PERIOD_THIS_WEEK = "this_week"
BEST_SCORE_PERIODS = (PERIOD_ALL_TIME, PERIOD_LAST_30_DAYS, PERIOD_THIS_WEEK)
LAST_30_DAYS = 30

# Coarse lease names, one per rollup category
LEASE_PLAYER_AGGREGATES = "player-aggregates"
LEASE_MAP_STATISTICS = "map-statistics"
LEASE_SERVER_ACTIVITY = "server-activity"
LEASE_NAMES = (
    LEASE_PLAYER_AGGREGATES,
    LEASE_MAP_STATISTICS,
    LEASE_SERVER_ACTIVITY,
)

# Games tracked by the game-level hourly rollups
TRACKED_GAMES = ("bf1942", "fh2", "bfvietnam")

# Percentiles stored on hourly distribution rows
PERCENTILES = (0.25, 0.5, 0.75, 0.9)

# Ratios are stored with this many decimal digits
RATIO_DIGITS = 3

# SQLite's historical SQLITE_MAX_VARIABLE_NUMBER; keeps multi-row VALUES safe
SQLITE_MAX_VARIABLES = 999

# Rollup shape identifiers
SHAPE_PLAYER_MONTHLY = "player_stats_monthly"
SHAPE_PLAYER_SERVER_WEEKLY = "player_server_stats"
SHAPE_PLAYER_MAP_MONTHLY = "player_map_stats"
SHAPE_PLAYER_BEST_SCORES = "player_best_scores"
SHAPE_PLAYER_SERVER_HIGH_SCORES = "player_server_high_scores"
SHAPE_SERVER_HOURLY_PATTERNS = "server_hourly_patterns"
SHAPE_HOURLY_PLAYER_PREDICTIONS = "hourly_player_predictions"
SHAPE_HOURLY_ACTIVITY_PATTERNS = "hourly_activity_patterns"
SHAPE_SERVER_MAP_STATS = "server_map_stats"
SHAPE_MAP_SERVER_HOURLY_PATTERNS = "map_server_hourly_patterns"
SHAPE_MAP_GLOBAL_AVERAGES = "map_global_averages"
