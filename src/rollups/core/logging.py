"""
Centralized logging configuration for the rollups package.

Every job and CLI logs through the ``rollups`` logger hierarchy so a single
``setup_logging`` call controls format and level for the whole engine.
"""

from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    format_style: str = "detailed",
    include_timestamp: bool = True,
) -> logging.Logger:
    """Set up centralized logging for the rollups package.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to logging.INFO.
        log_file: Optional file to write logs to. Defaults to None.
        format_style: Format style: "simple", "detailed", or "json". Defaults to "detailed".
        include_timestamp: Whether to include timestamps in log messages. Defaults to True.

    Returns:
        Configured logger instance.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger("rollups")
    logger.setLevel(level)

    logger.handlers.clear()

    if format_style == "simple":
        format_string = "%(levelname)s: %(message)s"
    elif format_style == "json":
        format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    elif include_timestamp:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    else:
        format_string = "%(name)s - %(levelname)s - %(message)s"

    formatter = logging.Formatter(format_string)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module/component.

    Module names already under the package are used as-is, anything else is
    nested below ``rollups``.
    """
    if name == "rollups" or name.startswith("rollups."):
        return logging.getLogger(name)
    return logging.getLogger(f"rollups.{name}")


@contextmanager
def log_timing(
    logger: logging.Logger, operation: str, level: int = logging.INFO
):
    """Context manager to log the timing of operations.

    Examples:
        >>> logger = get_logger(__name__)
        >>> with log_timing(logger, "weekly retention"):
        ...     pruner.run_weekly()
    """
    start_time = time.perf_counter()
    logger.log(level, "Starting %s", operation)

    try:
        yield
    except Exception as exception:
        elapsed_time = time.perf_counter() - start_time
        logger.error(
            "Failed %s after %.2fs: %s", operation, elapsed_time, exception
        )
        raise
    elapsed_time = time.perf_counter() - start_time
    logger.log(level, "Completed %s in %.2fs", operation, elapsed_time)


class ProgressLogger:
    """
    Context manager for logging progress of batched work.

    Examples
    --------
    >>> logger = get_logger(__name__)
    >>> with ProgressLogger(logger, "tier 1 backfill", total=12) as progress:
    ...     for i, batch in enumerate(batches):
    ...         rows = run(batch)
    ...         progress.update(i + 1, f"rows={rows}")
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        total: int | None = None,
        update_interval: int = 1,
    ) -> None:
        self.logger = logger
        self.operation = operation
        self.total = total
        self.update_interval = update_interval
        self.start_time: float | None = None
        self.last_update = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        if self.total:
            self.logger.info("Starting %s (0/%d)", self.operation, self.total)
        else:
            self.logger.info("Starting %s", self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.logger.info(
                "Completed %s in %.2fs", self.operation, self.elapsed
            )
        else:
            self.logger.error(
                "Failed %s after %.2fs: %s", self.operation, self.elapsed, exc_val
            )

    @property
    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time

    def update(self, current: int, message: str | None = None) -> None:
        """Update progress."""
        if (
            current - self.last_update < self.update_interval
            and current != self.total
        ):
            return
        elapsed_time = self.elapsed
        rate = current / elapsed_time if elapsed_time > 0 else 0

        if self.total:
            percentage = (current / self.total) * 100
            log_message = f"{self.operation}: {current}/{self.total} ({percentage:.1f}%) - {rate:.1f}/s"
            remaining = (self.total - current) / rate if rate > 0 else 0
            if remaining > 0:
                log_message += f" - ETA: {remaining:.1f}s"
        else:
            log_message = f"{self.operation}: {current} items - {rate:.1f}/s"
        if message:
            log_message += f" - {message}"

        self.logger.info(log_message)
        self.last_update = current


__all__ = ["ProgressLogger", "get_logger", "log_timing", "setup_logging"]
