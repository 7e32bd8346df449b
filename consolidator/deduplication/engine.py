"""
Consolidation engine.

Runs Grouper -> Selector -> Migrator -> Purger -> Verifier inside a single
transaction. Any failure rolls the whole invocation back; deadlocks and
serialization failures restart it from scratch a bounded number of times.
Running it when there are no duplicates is a committed no-op.
"""

from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from consolidator.config import Settings, get_settings
from consolidator.database import supported_isolation_level
from consolidator.deduplication.exceptions import (
    ConfigurationError,
    ConsolidationError,
    TransientStoreError,
    classify_db_error,
)
from consolidator.deduplication.grouper import count_null_key_rows, find_duplicate_groups
from consolidator.deduplication.migrator import count_references, repoint_references
from consolidator.deduplication.purger import purge_losers
from consolidator.deduplication.schema import reflect_schema
from consolidator.deduplication.selector import build_mapping, select_survivor
from consolidator.deduplication.types import (
    ConsolidationResult,
    DuplicateGroup,
    EntitySpec,
    RunState,
)
from consolidator.deduplication.verifier import verify


def _transition(result: ConsolidationResult, state: RunState) -> None:
    logger.debug(f"[{result.target}] {result.state.value} -> {state.value}")
    result.state = state


def _log_preview(spec: EntitySpec, groups: list[DuplicateGroup], limit: int) -> None:
    losers = sum(g.size - 1 for g in groups)
    logger.info(f"[{spec.name}] {len(groups)} duplicate group(s), {losers} row(s) to merge")
    for i, group in enumerate(groups[:limit], start=1):
        keep = select_survivor(group)
        drop = [m.id for m in group.members if m.id != keep]
        logger.info(f"  #{i} key={group.key!r} keep={keep!r} drop={drop!r}")
    if len(groups) > limit:
        logger.info(f"  ... {len(groups) - limit} more group(s)")


def scan(engine: Engine, spec: EntitySpec) -> list[DuplicateGroup]:
    """Read-only duplicate report for a target."""
    spec.validate()
    with engine.connect() as conn:
        tables = reflect_schema(conn, spec)
        groups = find_duplicate_groups(conn, tables.entity, spec)
        conn.rollback()
    return groups


def _run_once(engine: Engine, spec: EntitySpec, settings: Settings, dry_run: bool) -> ConsolidationResult:
    cfg = settings.consolidation
    result = ConsolidationResult(target=spec.name, dry_run=dry_run)
    level = supported_isolation_level(engine, cfg.isolation_level)

    try:
        with engine.connect() as conn:
            if level:
                conn = conn.execution_options(isolation_level=level)
            with conn.begin() as trans:
                tables = reflect_schema(conn, spec)

                if spec.null_keys == "reject":
                    nulls = count_null_key_rows(conn, tables.entity, spec)
                    if nulls:
                        raise ConfigurationError(
                            f"{nulls} row(s) in {spec.table} have a NULL natural-key column",
                            target=spec.name,
                        )

                groups = find_duplicate_groups(conn, tables.entity, spec)
                result.groups_found = len(groups)

                if not groups:
                    _transition(result, RunState.NO_DUPLICATES)
                    logger.info(f"[{spec.name}] no duplicates found")
                    _transition(result, RunState.DONE)
                    return result

                mapping = build_mapping(groups)
                result.losers = len(mapping)
                result.mapping = mapping
                referenced = count_references(
                    conn, tables, list(mapping), spec.referrers, cfg.batch_size
                )
                referenced_before = sum(referenced.values())

                if dry_run:
                    _log_preview(spec, groups, cfg.preview_groups)
                    result.repointed_by_referrer = referenced
                    result.repointed = referenced_before
                    trans.rollback()
                    logger.info(f"[{spec.name}] dry run complete, no changes written")
                    _transition(result, RunState.DONE)
                    return result

                _transition(result, RunState.MIGRATING)
                result.repointed_by_referrer = repoint_references(
                    conn, tables, mapping, spec.referrers, cfg.batch_size
                )
                result.repointed = sum(result.repointed_by_referrer.values())

                _transition(result, RunState.PURGING)
                result.deleted = purge_losers(
                    conn, tables.entity, spec, list(mapping), cfg.batch_size
                )

                _transition(result, RunState.VERIFYING)
                verify(
                    conn,
                    tables,
                    spec,
                    mapping,
                    deleted=result.deleted,
                    repointed=result.repointed,
                    referenced_before=referenced_before,
                    batch_size=cfg.batch_size,
                )

            _transition(result, RunState.COMMITTED)
            return result

    except DBAPIError as exc:
        _transition(result, RunState.ROLLED_BACK)
        error = classify_db_error(exc, target=spec.name)
        logger.error(f"[{spec.name}] rolled back: {error}")
        raise error from exc
    except ConsolidationError as exc:
        _transition(result, RunState.ROLLED_BACK)
        logger.error(f"[{spec.name}] rolled back: {exc}")
        raise


def consolidate(
    engine: Engine,
    spec: EntitySpec,
    *,
    dry_run: bool = False,
    settings: Optional[Settings] = None,
) -> ConsolidationResult:
    """
    Consolidate duplicate rows of one entity type.

    Args:
        engine: Engine for the store holding the entity and referrer tables
        spec: Target description; its referrer list must be complete
        dry_run: Scan and report only; the transaction is rolled back
        settings: Optional settings override (defaults to cached settings)

    Returns:
        ConsolidationResult with groups found, rows repointed and rows deleted

    Raises:
        ConfigurationError: Invalid spec or schema mismatch, before any mutation
        ReferentialIntegrityError: Foreign key violation; run rolled back
        VerificationError: Postcondition failed; run rolled back
        TransientStoreError: Still failing after the configured retries
    """
    settings = settings or get_settings()
    cfg = settings.consolidation
    spec.validate()

    started_at = datetime.now()
    mode = "DRY-RUN" if dry_run else "LIVE"
    logger.info(f"[{spec.name}] consolidating {spec.table} on {list(spec.natural_key)} ({mode})")

    retrying = Retrying(
        stop=stop_after_attempt(cfg.max_retries),
        wait=wait_exponential(multiplier=cfg.retry_delay, max=10),
        retry=retry_if_exception_type(TransientStoreError),
        before_sleep=lambda state: logger.warning(
            f"[{spec.name}] attempt {state.attempt_number} failed "
            f"({state.outcome.exception()}), retrying"
        ),
        reraise=True,
    )

    try:
        for attempt in retrying:
            with attempt:
                result = _run_once(engine, spec, settings, dry_run)
                result.attempts = attempt.retry_state.attempt_number
    except ConsolidationError as exc:
        logger.bind(audit=True, target=spec.name, dry_run=dry_run, error=type(exc).__name__).error(
            f"[{spec.name}] consolidation failed: {exc}"
        )
        raise

    result.started_at = started_at
    result.completed_at = datetime.now()

    merged = [[loser, survivor] for loser, survivor in result.mapping.items()]
    logger.bind(audit=True, result=result.as_dict(), mapping=merged).info(
        f"[{spec.name}] {result.state.value}: groups={result.groups_found} "
        f"repointed={result.repointed} deleted={result.deleted}"
    )
    return result
