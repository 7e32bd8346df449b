"""
Duplicate detection by natural key.

All queries here are read-only. Rows with a NULL in any natural-key column
never join a group: NULL keys do not collide with each other.
"""

from sqlalchemy import Table, and_, func, or_, select
from sqlalchemy.engine import Connection

from consolidator.deduplication.types import DuplicateGroup, EntitySpec, GroupMember


def key_expressions(table: Table, spec: EntitySpec) -> list:
    """Natural-key column expressions, lowercased for casefold columns."""
    return [
        func.lower(table.c[col]) if col in spec.casefold_columns else table.c[col]
        for col in spec.natural_key
    ]


def _keys_not_null(table: Table, spec: EntitySpec):
    return and_(*[table.c[col].isnot(None) for col in spec.natural_key])


def duplicate_keys(table: Table, spec: EntitySpec):
    """Subquery of natural-key values held by more than one row."""
    keys = key_expressions(table, spec)
    return (
        select(*[k.label(f"k{i}") for i, k in enumerate(keys)])
        .where(_keys_not_null(table, spec))
        .group_by(*keys)
        .having(func.count() > 1)
        .subquery("dup_keys")
    )


def find_duplicate_groups(conn: Connection, table: Table, spec: EntitySpec) -> list[DuplicateGroup]:
    """
    Partition rows by natural key and return only groups of size >= 2.

    Members of each group come back in the store's (created, id) order,
    undated rows last, and carry their position in it.
    """
    keys = key_expressions(table, spec)
    dup = duplicate_keys(table, spec)
    on = and_(*[k == dup.c[f"k{i}"] for i, k in enumerate(keys)])

    id_col = table.c[spec.id_column]
    created_col = table.c[spec.created_column]

    stmt = (
        select(id_col, created_col, *[dup.c[f"k{i}"] for i in range(len(keys))])
        .select_from(table.join(dup, on))
        .where(_keys_not_null(table, spec))
        .order_by(
            *[dup.c[f"k{i}"] for i in range(len(keys))],
            created_col.is_(None),
            created_col,
            id_col,
        )
    )

    groups: dict[tuple, DuplicateGroup] = {}
    for row in conn.execute(stmt):
        key = tuple(row)[2:]
        group = groups.get(key)
        if group is None:
            group = groups[key] = DuplicateGroup(key=key)
        group.members.append(
            GroupMember(id=row[0], created_at=row[1], position=len(group.members))
        )

    return list(groups.values())


def count_duplicate_groups(conn: Connection, table: Table, spec: EntitySpec) -> int:
    """Number of natural-key values currently held by more than one row."""
    dup = duplicate_keys(table, spec)
    return conn.execute(select(func.count()).select_from(dup)).scalar_one()


def count_null_key_rows(conn: Connection, table: Table, spec: EntitySpec) -> int:
    """Rows excluded from grouping because part of their natural key is NULL."""
    null_any = or_(*[table.c[col].is_(None) for col in spec.natural_key])
    return conn.execute(select(func.count()).select_from(table).where(null_any)).scalar_one()
