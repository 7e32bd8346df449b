"""
Reference migration: repoint foreign keys from losers onto survivors.

Referrer tables are independent of each other, so the order they are
processed in does not matter. Everything runs on the caller's connection,
inside the caller's transaction.
"""

from typing import Any, Iterator, Sequence

from loguru import logger
from sqlalchemy import case, func, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError

from consolidator.deduplication.exceptions import ReferentialIntegrityError, classify_db_error
from consolidator.deduplication.schema import ReflectedSchema
from consolidator.deduplication.types import ReferrerSpec


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most ``size`` items."""
    for i in range(0, len(items), size):
        yield items[i:i + size]


def count_references(
    conn: Connection,
    tables: ReflectedSchema,
    ids: Sequence[Any],
    referrers: Sequence[ReferrerSpec],
    batch_size: int,
) -> dict[str, int]:
    """Count referrer rows whose foreign key is one of ``ids``, per referrer."""
    ids = list(ids)
    counts: dict[str, int] = {}
    for ref in referrers:
        table = tables.referrers[ref.label]
        column = table.c[ref.column]
        total = 0
        for chunk in chunked(ids, batch_size):
            stmt = select(func.count()).select_from(table).where(column.in_(chunk))
            total += conn.execute(stmt).scalar_one()
        counts[ref.label] = total
    return counts


def repoint_references(
    conn: Connection,
    tables: ReflectedSchema,
    mapping: dict[Any, Any],
    referrers: Sequence[ReferrerSpec],
    batch_size: int,
) -> dict[str, int]:
    """
    Point every registered foreign key that references a loser at its survivor.

    Args:
        conn: Connection with an open transaction
        tables: Reflected entity and referrer tables
        mapping: loser id -> survivor id
        referrers: Registered (table, column) pairs
        batch_size: Max loser ids per UPDATE statement

    Returns:
        Rows repointed, keyed by "table.column"
    """
    losers = list(mapping)
    repointed: dict[str, int] = {}

    for ref in referrers:
        table = tables.referrers[ref.label]
        column = table.c[ref.column]
        total = 0

        for chunk in chunked(losers, batch_size):
            redirect = case({loser: mapping[loser] for loser in chunk}, value=column, else_=column)
            stmt = update(table).where(column.in_(chunk)).values({ref.column: redirect})
            try:
                total += conn.execute(stmt).rowcount
            except DBAPIError as exc:
                error = classify_db_error(exc)
                if isinstance(error, ReferentialIntegrityError) and error.table is None:
                    error.table = ref.table
                raise error from exc

        repointed[ref.label] = total
        logger.info(f"Repointed {total} row(s) in {ref.label}")

    return repointed
