"""Argument and wiring helpers shared by the rollup console scripts."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from typing import Optional

from rollups.core.config import RollupConfig, load_config
from rollups.core.logging import setup_logging
from rollups.core.results import RunSummary
from rollups.core.sentry import init_sentry

logger = logging.getLogger(__name__)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db-url",
        type=str,
        default=None,
        help="Database URL (overrides ROLLUPS_DATABASE_URL / DATABASE_URL / ROLLUPS_DB_PATH)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=os.getenv("ROLLUPS_CONFIG"),
        help="YAML file overriding batch sizes, windows and schedule",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("ROLLUPS_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )


def bootstrap(args: argparse.Namespace, context: str) -> RollupConfig:
    """Configure logging and error reporting, then load the job config."""
    setup_logging(level=args.log_level)
    init_sentry(context=context)
    return load_config(args.config)


def build_service(args: argparse.Namespace, config: RollupConfig):
    # Lazy import keeps ``--help`` fast
    from rollups.service import RollupService
    from rollups.sql import create_all, create_engine

    engine = create_engine(args.db_url)
    create_all(engine)
    return RollupService(engine, config)


def install_cancel_handlers(cancel: Optional[threading.Event] = None) -> threading.Event:
    """Turn SIGINT/SIGTERM into a cancellation request checked between batches."""
    cancel = cancel or threading.Event()

    def _handler(signum, _frame):
        logger.warning("Received signal %d; finishing the current batch", signum)
        cancel.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    return cancel


def exit_code(summary: RunSummary) -> int:
    if summary.cancelled:
        return 130
    return 0 if summary.ok else 1


def log_summary(summary: RunSummary) -> None:
    for shape, rows in sorted(summary.rows_by_shape().items()):
        logger.info("  %s: %d rows", shape, rows)
    for result in summary.failures:
        logger.error("  %s failed: %s", result.shape, result.failure.message)
    logger.info(
        "%s finished in %.2fs (%d rows, %d failures%s)",
        summary.job,
        summary.duration_seconds,
        summary.total_rows,
        len(summary.failures),
        ", cancelled" if summary.cancelled else "",
    )
