from __future__ import annotations

# Database URL resolution order (first non-empty wins)
DATABASE_URL_ENVS: tuple[str, ...] = ("ROLLUPS_DATABASE_URL", "DATABASE_URL")

# Plain SQLite file path, used when no URL is configured
DB_PATH_ENV: str = "ROLLUPS_DB_PATH"

# Milliseconds a connection waits on a locked SQLite database
SQLITE_BUSY_TIMEOUT_MS: int = 30_000
