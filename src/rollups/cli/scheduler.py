from __future__ import annotations

"""
Long-running scheduler for the daily refresh and the weekly retention.

Usage:
  rollups_scheduler --db-url sqlite:///data/rounds.db
  # run whatever is due right now and exit
  rollups_scheduler --once
"""

import argparse
import logging

from rollups.cli.common import (
    add_common_arguments,
    bootstrap,
    build_service,
    install_cancel_handlers,
)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Schedule daily refresh and weekly retention"
    )
    add_common_arguments(parser)
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run both jobs immediately and exit",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Stop after this many polling cycles",
    )
    args = parser.parse_args(argv)
    config = bootstrap(args, "rollups_scheduler")
    logger = logging.getLogger("rollups.cli.scheduler")

    service = build_service(args, config)
    cancel = install_cancel_handlers()
    scheduler = service.build_scheduler(cancel)

    if args.once:
        ok = True
        for job in scheduler.jobs:
            summary = scheduler.run_with_retry(job.schedule.name, job.action)
            ok = ok and summary is not None and summary.ok
        return 0 if ok else 1

    cycles = scheduler.run_forever(max_cycles=args.max_cycles)
    logger.info("Scheduler exiting after %d cycles", cycles)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
