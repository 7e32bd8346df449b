"""
Loser deletion.

Must only run after every registered referrer has been migrated. A foreign
key violation here means some referrer was left out of the configuration;
the whole run is aborted.
"""

from typing import Any, Sequence

from loguru import logger
from sqlalchemy import Table, delete
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError

from consolidator.deduplication.exceptions import ReferentialIntegrityError, classify_db_error
from consolidator.deduplication.migrator import chunked
from consolidator.deduplication.types import EntitySpec


def purge_losers(
    conn: Connection,
    table: Table,
    spec: EntitySpec,
    loser_ids: Sequence[Any],
    batch_size: int,
) -> int:
    """
    Delete every loser row from the entity table.

    Returns:
        Number of rows deleted

    Raises:
        ReferentialIntegrityError: If an unregistered referrer still points at a loser
    """
    id_col = table.c[spec.id_column]
    deleted = 0

    for chunk in chunked(list(loser_ids), batch_size):
        try:
            deleted += conn.execute(delete(table).where(id_col.in_(chunk))).rowcount
        except DBAPIError as exc:
            error = classify_db_error(exc, target=spec.name)
            if isinstance(error, ReferentialIntegrityError):
                logger.error(
                    f"[{spec.name}] purge blocked by foreign key"
                    + (f" from {error.table}" if error.table else "")
                    + "; check the referrer list"
                )
            raise error from exc

    logger.info(f"[{spec.name}] deleted {deleted} duplicate row(s) from {spec.table}")
    return deleted
