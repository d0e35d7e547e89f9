"""Statement builders shared by the recomputation routines.

``upsert_rows`` replaces hand-numbered multi-row VALUES statements: it takes a
table, its key columns and a list of row dicts and lets SQLAlchemy number the
placeholders, chunking so a single statement never exceeds SQLite's bound
variable limit.
"""

from __future__ import annotations

from typing import Any, Iterator, Mapping, Sequence

from sqlalchemy import and_, delete, or_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import ColumnElement

from rollups.core.constants import SQLITE_MAX_VARIABLES


def _as_table(table):
    return getattr(table, "__table__", table)


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of ``items`` of at most ``size`` elements."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def rows_per_statement(column_count: int) -> int:
    return max(1, SQLITE_MAX_VARIABLES // max(1, column_count))


def upsert_rows(
    conn: Connection,
    table,
    rows: Sequence[Mapping[str, Any]],
    key_columns: Sequence[str] | None = None,
) -> int:
    """Insert ``rows`` into ``table``, updating non-key columns on conflict.

    Args:
        conn: Open connection (normally inside ``engine.begin()``).
        table: Table or mapped class.
        rows: Row dicts, all with the same keys.
        key_columns: Conflict target. Defaults to the table's primary key.

    Returns:
        Number of rows submitted.
    """
    if not rows:
        return 0
    table = _as_table(table)
    columns = list(rows[0].keys())
    keys = list(key_columns or [c.name for c in table.primary_key.columns])
    for batch in chunked(list(rows), rows_per_statement(len(columns))):
        stmt = sqlite_insert(table).values(list(batch))
        set_map = {
            col: getattr(stmt.excluded, col) for col in columns if col not in keys
        }
        if set_map:
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c[k] for k in keys], set_=set_map
            )
        else:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=[table.c[k] for k in keys]
            )
        conn.execute(stmt)
    return len(rows)


def bucket_at_or_after(
    major_col: ColumnElement, minor_col: ColumnElement, bucket: tuple[int, int]
) -> ColumnElement:
    """``(major, minor) >= bucket`` for (year, month) or (ISO year, week) keys."""
    major, minor = bucket
    return or_(major_col > major, and_(major_col == major, minor_col >= minor))


def delete_rows(
    conn: Connection,
    table,
    *conditions: ColumnElement,
    subjects: Sequence[str] | None = None,
    subject_column: str = "player_name",
) -> int:
    """Phase-one delete of a rollup key set.

    ``subjects`` restricts the delete to a subject batch; ``None`` means all
    subjects. Subject lists are chunked to stay under the variable limit.

    Returns:
        Number of rows deleted.
    """
    table = _as_table(table)
    if subjects is None:
        stmt = delete(table)
        if conditions:
            stmt = stmt.where(*conditions)
        return conn.execute(stmt).rowcount or 0
    deleted = 0
    for batch in chunked(list(subjects), SQLITE_MAX_VARIABLES - 10):
        stmt = delete(table).where(table.c[subject_column].in_(list(batch)), *conditions)
        deleted += conn.execute(stmt).rowcount or 0
    return deleted


__all__ = [
    "bucket_at_or_after",
    "chunked",
    "delete_rows",
    "rows_per_statement",
    "upsert_rows",
]
