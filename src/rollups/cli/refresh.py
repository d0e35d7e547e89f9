from __future__ import annotations

"""
Run the daily incremental refresh once, immediately.

Usage:
  rollups_refresh --db-url sqlite:///data/rounds.db
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
        description="Refresh every rollup over its trailing window"
    )
    add_common_arguments(parser)
    args = parser.parse_args(argv)
    config = bootstrap(args, "rollups_refresh")

    service = build_service(args, config)
    summary = service.refresh_now(install_cancel_handlers())
    log_summary(summary)
    return exit_code(summary)


if __name__ == "__main__":
    raise SystemExit(main())
