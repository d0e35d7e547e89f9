from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .engine import Base

# ---------------------------------------------------------------------------
# Raw log (written by the collectors, read-only for the rollup engine)
# ---------------------------------------------------------------------------


class Server(Base):
    __tablename__ = "servers"

    guid = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    game = Column(String, nullable=True)  # e.g. 'bf1942', 'fh2'


class Round(Base):
    __tablename__ = "rounds"
    __table_args__ = (
        Index("ix_rounds_server_start", "server_guid", "start_time"),
        Index("ix_rounds_start_time", "start_time"),
    )

    round_id = Column(String, primary_key=True)
    server_guid = Column(String, nullable=False)
    map_name = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    participant_count = Column(Integer, nullable=True)
    tickets1 = Column(Integer, nullable=True)
    tickets2 = Column(Integer, nullable=True)
    team1_label = Column(String, nullable=True)
    team2_label = Column(String, nullable=True)
    # Active rounds are still being played and are ignored by rollups
    is_active = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)


class PlayerSession(Base):
    """One player's participation in one round."""

    __tablename__ = "player_sessions"
    __table_args__ = (
        Index("ix_player_sessions_player_start", "player_name", "start_time"),
        Index("ix_player_sessions_start_time", "start_time"),
        Index("ix_player_sessions_round_id", "round_id"),
        Index("ix_player_sessions_server_start", "server_guid", "start_time"),
    )

    session_id = Column(Integer, primary_key=True, autoincrement=True)
    player_name = Column(String, nullable=False)
    server_guid = Column(String, nullable=False)
    map_name = Column(String, nullable=True)
    round_id = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=True)
    last_seen_time = Column(DateTime, nullable=True)
    total_score = Column(Integer, nullable=True)
    total_kills = Column(Integer, nullable=True)
    total_deaths = Column(Integer, nullable=True)
    average_ping = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)


class ServerOnlineCount(Base):
    """Hourly player-count observation for one server."""

    __tablename__ = "server_online_counts"
    __table_args__ = (
        UniqueConstraint(
            "server_guid", "hour_timestamp", name="uq_online_counts_server_hour"
        ),
        Index("ix_online_counts_hour", "hour_timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_guid = Column(String, nullable=False)
    hour_timestamp = Column(DateTime, nullable=False)
    avg_players = Column(Float, nullable=False)
    peak_players = Column(Integer, nullable=True)
    game = Column(String, nullable=True)


# ---------------------------------------------------------------------------
# Rollups (write-owned by the rollup engine)
# ---------------------------------------------------------------------------


class PlayerStatsMonthly(Base):
    __tablename__ = "player_stats_monthly"

    player_name = Column(String, primary_key=True)
    year = Column(Integer, primary_key=True)
    month = Column(Integer, primary_key=True)
    total_rounds = Column(Integer, nullable=False, default=0)
    total_kills = Column(Integer, nullable=False, default=0)
    total_deaths = Column(Integer, nullable=False, default=0)
    total_score = Column(Integer, nullable=False, default=0)
    total_play_time_minutes = Column(Float, nullable=False, default=0.0)
    avg_score_per_round = Column(Float, nullable=False, default=0.0)
    kd_ratio = Column(Float, nullable=False, default=0.0)
    kill_rate = Column(Float, nullable=False, default=0.0)
    first_round_time = Column(DateTime, nullable=True)
    last_round_time = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class PlayerServerStats(Base):
    """Per player and server totals in ISO-week buckets."""

    __tablename__ = "player_server_stats"
    __table_args__ = (
        Index("ix_player_server_stats_server", "server_guid", "year", "week"),
    )

    player_name = Column(String, primary_key=True)
    server_guid = Column(String, primary_key=True)
    year = Column(Integer, primary_key=True)  # ISO year
    week = Column(Integer, primary_key=True)  # ISO week 1-53
    total_rounds = Column(Integer, nullable=False, default=0)
    total_kills = Column(Integer, nullable=False, default=0)
    total_deaths = Column(Integer, nullable=False, default=0)
    total_score = Column(Integer, nullable=False, default=0)
    total_play_time_minutes = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, nullable=True)


class PlayerMapStats(Base):
    """Per player and map totals; server_guid '' holds the cross-server row."""

    __tablename__ = "player_map_stats"
    __table_args__ = (
        Index("ix_player_map_stats_map", "map_name", "server_guid"),
    )

    player_name = Column(String, primary_key=True)
    map_name = Column(String, primary_key=True)
    server_guid = Column(String, primary_key=True, default="")
    year = Column(Integer, primary_key=True)
    month = Column(Integer, primary_key=True)
    total_rounds = Column(Integer, nullable=False, default=0)
    total_kills = Column(Integer, nullable=False, default=0)
    total_deaths = Column(Integer, nullable=False, default=0)
    total_score = Column(Integer, nullable=False, default=0)
    total_play_time_minutes = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, nullable=True)


class PlayerBestScore(Base):
    __tablename__ = "player_best_scores"
    __table_args__ = (
        CheckConstraint("rank BETWEEN 1 AND 3", name="ck_best_scores_rank"),
        Index("ix_best_scores_period_end", "period", "round_end_time"),
    )

    player_name = Column(String, primary_key=True)
    period = Column(String, primary_key=True)  # all_time / last_30_days / this_week
    rank = Column(Integer, primary_key=True)
    final_score = Column(Integer, nullable=False)
    final_kills = Column(Integer, nullable=False, default=0)
    final_deaths = Column(Integer, nullable=False, default=0)
    map_name = Column(String, nullable=True)
    server_guid = Column(String, nullable=True)
    round_end_time = Column(DateTime, nullable=False)
    round_id = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class PlayerServerHighScore(Base):
    """Highest single-round score per player and server."""

    __tablename__ = "player_server_high_scores"

    player_name = Column(String, primary_key=True)
    server_guid = Column(String, primary_key=True)
    max_score = Column(Integer, nullable=False)
    round_id = Column(String, nullable=True)
    map_name = Column(String, nullable=True)
    achieved_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)


class ServerHourlyPattern(Base):
    __tablename__ = "server_hourly_patterns"

    server_guid = Column(String, primary_key=True)
    day_of_week = Column(Integer, primary_key=True)  # 0=Sunday .. 6=Saturday
    hour_of_day = Column(Integer, primary_key=True)
    avg_players = Column(Float, nullable=False, default=0.0)
    min_players = Column(Float, nullable=False, default=0.0)
    q25_players = Column(Float, nullable=False, default=0.0)
    median_players = Column(Float, nullable=False, default=0.0)
    q75_players = Column(Float, nullable=False, default=0.0)
    q90_players = Column(Float, nullable=False, default=0.0)
    max_players = Column(Float, nullable=False, default=0.0)
    data_points = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=True)


class HourlyPlayerPrediction(Base):
    __tablename__ = "hourly_player_predictions"

    game = Column(String, primary_key=True)
    day_of_week = Column(Integer, primary_key=True)
    hour_of_day = Column(Integer, primary_key=True)
    predicted_players = Column(Float, nullable=False, default=0.0)
    data_points = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=True)


class HourlyActivityPattern(Base):
    __tablename__ = "hourly_activity_patterns"

    game = Column(String, primary_key=True)
    day_of_week = Column(Integer, primary_key=True)
    hour_of_day = Column(Integer, primary_key=True)
    unique_players_avg = Column(Float, nullable=False, default=0.0)
    total_rounds_avg = Column(Float, nullable=False, default=0.0)
    avg_round_duration = Column(Float, nullable=False, default=0.0)
    period_type = Column(String, nullable=False)  # 'Weekday' / 'Weekend'
    updated_at = Column(DateTime, nullable=True)


class ServerMapStats(Base):
    __tablename__ = "server_map_stats"

    server_guid = Column(String, primary_key=True)
    map_name = Column(String, primary_key=True)
    year = Column(Integer, primary_key=True)
    month = Column(Integer, primary_key=True)
    total_rounds = Column(Integer, nullable=False, default=0)
    total_play_time_minutes = Column(Integer, nullable=False, default=0)
    avg_concurrent_players = Column(Float, nullable=False, default=0.0)
    peak_concurrent_players = Column(Integer, nullable=False, default=0)
    team1_victories = Column(Integer, nullable=False, default=0)
    team2_victories = Column(Integer, nullable=False, default=0)
    team1_label = Column(String, nullable=True)
    team2_label = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class MapServerHourlyPattern(Base):
    __tablename__ = "map_server_hourly_patterns"

    server_guid = Column(String, primary_key=True)
    map_name = Column(String, primary_key=True)
    game = Column(String, primary_key=True)
    day_of_week = Column(Integer, primary_key=True)
    hour_of_day = Column(Integer, primary_key=True)
    avg_players = Column(Float, nullable=False, default=0.0)
    times_played = Column(Integer, nullable=False, default=0)
    data_points = Column(Integer, nullable=False, default=0)  # distinct days
    updated_at = Column(DateTime, nullable=True)


class MapGlobalAverage(Base):
    __tablename__ = "map_global_averages"

    map_name = Column(String, primary_key=True)
    server_guid = Column(String, primary_key=True, default="")
    avg_kill_rate = Column(Float, nullable=False, default=0.0)  # kills/minute
    avg_score_rate = Column(Float, nullable=False, default=0.0)  # score/minute
    sample_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=True)


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class RollupRun(Base):
    """One completion record per (job run, rollup shape)."""

    __tablename__ = "rollup_runs"
    __table_args__ = (Index("ix_rollup_runs_job_started", "job", "started_at"),)

    run_id = Column(Integer, primary_key=True, autoincrement=True)
    job = Column(String, nullable=False)  # daily / weekly / backfill / subjects
    shape = Column(String, nullable=False)
    rows_written = Column(Integer, nullable=False, default=0)
    skipped_records = Column(Integer, nullable=False, default=0)
    duration_ms = Column(Integer, nullable=False, default=0)
    subject_count = Column(Integer, nullable=True)
    tier = Column(Integer, nullable=True)
    status = Column(String, nullable=False)  # ok / failed / cancelled
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False)
