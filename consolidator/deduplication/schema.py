"""
Schema validation for consolidation targets.

Reflects the entity table and every registered referrer table, and fails
fast with a ConfigurationError listing whatever is missing, before any row
is touched.
"""

from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy import MetaData, Table
from sqlalchemy.engine import Connection
from sqlalchemy.exc import NoSuchTableError

from consolidator.deduplication.exceptions import ConfigurationError
from consolidator.deduplication.types import EntitySpec


@dataclass
class ReflectedSchema:
    """Reflected tables for one target, keyed the way the components look them up."""
    entity: Table
    referrers: dict[str, Table] = field(default_factory=dict)


def _reflect(conn: Connection, metadata: MetaData, name: str, schema: str | None) -> Table | None:
    key = f"{schema}.{name}" if schema else name
    if key in metadata.tables:
        return metadata.tables[key]
    try:
        return Table(name, metadata, schema=schema, autoload_with=conn)
    except NoSuchTableError:
        return None


def reflect_schema(conn: Connection, spec: EntitySpec) -> ReflectedSchema:
    """
    Reflect and validate the tables a target touches.

    Raises:
        ConfigurationError: If a configured table or column is missing
    """
    metadata = MetaData()
    missing: list[str] = []

    entity = _reflect(conn, metadata, spec.table, spec.schema)
    if entity is None:
        raise ConfigurationError(f"Entity table {spec.table!r} does not exist", target=spec.name)

    required = [spec.id_column, spec.created_column, *spec.natural_key]
    missing.extend(f"{spec.table}.{col}" for col in required if col not in entity.c)

    referrers: dict[str, Table] = {}
    for ref in spec.referrers:
        table = _reflect(conn, metadata, ref.table, ref.schema)
        if table is None:
            qualified = f"{ref.schema}.{ref.table}" if ref.schema else ref.table
            missing.append(f"{qualified} (table)")
            continue
        if ref.column not in table.c:
            missing.append(ref.label)
            continue
        referrers[ref.label] = table

    if missing:
        lines = "\n".join(f"  - {item}" for item in missing)
        raise ConfigurationError(
            f"Schema does not match target {spec.name!r}. Missing:\n{lines}",
            target=spec.name,
        )

    logger.debug(
        f"[{spec.name}] schema ok: {spec.table} + {len(referrers)} referrer(s)"
    )
    return ReflectedSchema(entity=entity, referrers=referrers)
