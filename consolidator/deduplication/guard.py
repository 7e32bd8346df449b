"""
Uniqueness guard for the natural key.

Installs a unique index so the duplicate class cannot come back. On
PostgreSQL the index is built with CREATE INDEX CONCURRENTLY, which does not
block reads or writes but cannot run inside a transaction block, so the
Guard uses its own AUTOCOMMIT connection and never shares the consolidation
transaction.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy import Index, Table, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.schema import CreateIndex

from consolidator.deduplication.exceptions import GuardError
from consolidator.deduplication.grouper import count_duplicate_groups, key_expressions
from consolidator.deduplication.schema import reflect_schema
from consolidator.deduplication.types import EntitySpec


@dataclass
class GuardResult:
    """Outcome of a guard run."""
    target: str
    index_name: str
    created: bool = False
    rebuilt: bool = False
    existing: Optional[str] = None


def find_unique_index(conn: Connection, spec: EntitySpec) -> Optional[str]:
    """
    Name of an existing unique index or constraint covering the natural key.

    Expression indexes (casefolded keys) cannot be matched on columns after
    reflection, so those are recognised by name only.
    """
    if conn.dialect.name == "sqlite":
        # SQLite reflection drops expression indexes; read the DDL instead
        ddl = conn.execute(
            text("SELECT sql FROM sqlite_master WHERE type = 'index' AND name = :name"),
            {"name": spec.unique_index_name},
        ).scalar()
        if ddl and "UNIQUE" in ddl.upper():
            return spec.unique_index_name

    inspector = inspect(conn)
    wanted = set(spec.natural_key)

    for index in inspector.get_indexes(spec.table, schema=spec.schema):
        if index["name"] == spec.unique_index_name and index.get("unique"):
            return index["name"]
        if spec.casefold_columns:
            continue
        if index.get("unique") and set(index.get("column_names") or []) == wanted:
            return index["name"]

    if not spec.casefold_columns:
        for constraint in inspector.get_unique_constraints(spec.table, schema=spec.schema):
            if set(constraint.get("column_names") or []) == wanted:
                return constraint["name"] or "<unnamed unique constraint>"

    return None


def build_unique_index(table: Table, spec: EntitySpec) -> Index:
    """Unique index on the natural key, built concurrently on PostgreSQL."""
    return Index(
        spec.unique_index_name,
        *key_expressions(table, spec),
        unique=True,
        postgresql_concurrently=True,
    )


def _index_is_valid(conn: Connection, name: str) -> bool:
    """False for a PostgreSQL index left INVALID by an interrupted concurrent build."""
    if conn.dialect.name != "postgresql":
        return True
    valid = conn.execute(
        text(
            "SELECT i.indisvalid FROM pg_class c "
            "JOIN pg_index i ON i.indexrelid = c.oid WHERE c.relname = :name"
        ),
        {"name": name},
    ).scalar()
    return valid is None or bool(valid)


def _drop_index(conn: Connection, spec: EntitySpec, name: str) -> None:
    preparer = conn.dialect.identifier_preparer
    qualified = preparer.quote(name)
    if spec.schema:
        qualified = f"{preparer.quote_schema(spec.schema)}.{qualified}"
    conn.execute(text(f"DROP INDEX CONCURRENTLY IF EXISTS {qualified}"))


def ensure_unique_index(engine: Engine, spec: EntitySpec) -> GuardResult:
    """
    Make sure a unique index exists on the natural key.

    Idempotent: an existing valid unique index (or constraint) on the key is
    left alone. Refuses while duplicates still exist, since the build would
    fail anyway.

    Raises:
        GuardError: If duplicates remain or the index build fails
    """
    spec.validate()
    result = GuardResult(target=spec.name, index_name=spec.unique_index_name)
    is_postgres = engine.dialect.name == "postgresql"

    with engine.connect() as conn:
        if is_postgres:
            conn = conn.execution_options(isolation_level="AUTOCOMMIT")

        tables = reflect_schema(conn, spec)
        existing = find_unique_index(conn, spec)

        if existing and _index_is_valid(conn, existing):
            logger.info(f"[{spec.name}] unique index already present: {existing}")
            result.existing = existing
            _finish(conn, is_postgres)
            return result

        if existing:
            logger.warning(f"[{spec.name}] index {existing} is INVALID, rebuilding")
            _drop_index(conn, spec, existing)
            result.rebuilt = True

        remaining = count_duplicate_groups(conn, tables.entity, spec)
        if remaining:
            _finish(conn, is_postgres)
            raise GuardError(
                f"{remaining} duplicate group(s) in {spec.table}; consolidate before installing "
                f"{result.index_name}",
                target=spec.name,
            )

        index = build_unique_index(tables.entity, spec)
        logger.info(f"[{spec.name}] creating unique index {result.index_name}")
        try:
            conn.execute(CreateIndex(index, if_not_exists=True))
        except DBAPIError as exc:
            if not is_postgres:
                conn.rollback()
            raise GuardError(
                f"Could not create {result.index_name}: {exc.orig}", target=spec.name
            ) from exc

        _finish(conn, is_postgres)

    result.created = True
    return result


def _finish(conn: Connection, autocommit: bool) -> None:
    # Non-autocommit connections autobegan a transaction on first use.
    if not autocommit:
        conn.commit()
