from __future__ import annotations

"""
Weekly retention: drop stale this_week best scores and old hourly counts.

Usage:
  rollups_weekly --db-url sqlite:///data/rounds.db --horizon-days 180
"""

import argparse

from rollups.cli.common import (
    add_common_arguments,
    bootstrap,
    build_service,
    exit_code,
    install_cancel_handlers,
    log_summary,
)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Prune stale best-score entries and old online counts"
    )
    add_common_arguments(parser)
    parser.add_argument(
        "--horizon-days",
        type=int,
        default=None,
        help="Keep online counts newer than this many days (overrides config)",
    )
    args = parser.parse_args(argv)
    config = bootstrap(args, "rollups_weekly")
    if args.horizon_days is not None:
        config.retention.horizon_days = args.horizon_days

    service = build_service(args, config)
    summary = service.run_weekly(install_cancel_handlers())
    log_summary(summary)
    return exit_code(summary)


if __name__ == "__main__":
    raise SystemExit(main())
