from __future__ import annotations

"""
Create the raw-log, rollup and telemetry tables (idempotent).

Usage:
  rollups_db_init --db-url sqlite:///data/rounds.db
  # or with the path in the environment
  ROLLUPS_DB_PATH=data/rounds.db rollups_db_init
"""

import argparse

from rollups.cli.common import add_common_arguments, bootstrap


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Create rollup tables (idempotent)"
    )
    add_common_arguments(parser)
    args = parser.parse_args(argv)
    bootstrap(args, "rollups_db_init")

    from rollups.sql import create_all, create_engine

    engine = create_engine(args.db_url)
    create_all(engine)
    print(f"Initialized tables at {engine.url.render_as_string(hide_password=True)}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
