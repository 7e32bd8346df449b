"""
Post-mutation checks, run inside the consolidation transaction before commit.

A failure here means the consolidation logic itself is wrong (for example a
group only partially resolved), so the run is rolled back and not retried.
"""

from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from consolidator.deduplication.exceptions import VerificationError
from consolidator.deduplication.grouper import count_duplicate_groups
from consolidator.deduplication.migrator import chunked, count_references
from consolidator.deduplication.schema import ReflectedSchema
from consolidator.deduplication.types import EntitySpec


def verify(
    conn: Connection,
    tables: ReflectedSchema,
    spec: EntitySpec,
    mapping: dict[Any, Any],
    deleted: int,
    repointed: int,
    referenced_before: int,
    batch_size: int,
) -> None:
    """
    Assert the consolidation postconditions.

    - no natural-key value is held by more than one row
    - no registered referrer still points at a loser
    - every loser was deleted, and every survivor still exists
    - repointed rows do not exceed the referrer rows found before migration

    Raises:
        VerificationError: On the first violated postcondition
    """
    problems = []

    remaining = count_duplicate_groups(conn, tables.entity, spec)
    if remaining:
        problems.append(f"{remaining} duplicate group(s) remain")

    dangling = count_references(conn, tables, list(mapping), spec.referrers, batch_size)
    for label, count in dangling.items():
        if count:
            problems.append(f"{count} row(s) in {label} still point at deleted ids")

    if deleted != len(mapping):
        problems.append(f"deleted {deleted} row(s), expected {len(mapping)}")

    survivors = list(set(mapping.values()))
    id_col = tables.entity.c[spec.id_column]
    present = 0
    for chunk in chunked(survivors, batch_size):
        stmt = select(func.count()).select_from(tables.entity).where(id_col.in_(chunk))
        present += conn.execute(stmt).scalar_one()
    if present != len(survivors):
        problems.append(f"{len(survivors) - present} survivor row(s) missing")

    if repointed > referenced_before:
        problems.append(
            f"repointed {repointed} row(s) but only {referenced_before} referenced losers"
        )

    if problems:
        raise VerificationError(
            f"Verification failed for {spec.name!r}: " + "; ".join(problems),
            target=spec.name,
        )

    logger.info(
        f"[{spec.name}] verified: 0 duplicate groups, {deleted} deleted, {repointed} repointed"
    )
