from __future__ import annotations

"""
Recompute rollups from full history.

Usage:
  # everything: tiers 1-4, then the per-server/per-map shapes
  rollups_backfill --db-url sqlite:///data/rounds.db
  # one recency tier (1 = active in the last 7 days ... 4 = dormant)
  rollups_backfill --tier 1
  # specific players after a retroactive correction of their records
  rollups_backfill --subjects "Alpha" "Bravo"
"""

import argparse
import logging

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
        description="Tiered historical backfill of the rollup tables"
    )
    add_common_arguments(parser)
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--tier",
        type=int,
        choices=[1, 2, 3, 4],
        default=None,
        help="Backfill a single recency tier",
    )
    target.add_argument(
        "--subjects",
        nargs="+",
        default=None,
        help="Recompute only these players",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Subjects per batch (overrides config)",
    )
    args = parser.parse_args(argv)
    config = bootstrap(args, "rollups_backfill")
    if args.batch_size is not None:
        if args.batch_size < 1:
            parser.error("--batch-size must be positive")
        config.backfill.batch_size = args.batch_size
    logger = logging.getLogger("rollups.cli.backfill")

    service = build_service(args, config)
    cancel = install_cancel_handlers()
    if args.subjects:
        logger.info("Targeted recompute of %d subjects", len(args.subjects))
        summary = service.run_for_subjects(args.subjects, cancel)
    elif args.tier is not None:
        summary = service.backfill_tier(args.tier, cancel)
    else:
        summary = service.backfill_full(cancel)
    log_summary(summary)
    return exit_code(summary)


if __name__ == "__main__":
    raise SystemExit(main())
