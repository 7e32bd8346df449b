# SPDX-License-Identifier: MIT
"""Tests for duplicate-group detection."""

from dataclasses import replace

from conftest import add_promos, at, snapshot
from consolidator.deduplication.grouper import (
    count_duplicate_groups,
    count_null_key_rows,
    find_duplicate_groups,
)
from consolidator.deduplication.schema import reflect_schema


def scan(engine, spec):
    with engine.connect() as conn:
        tables = reflect_schema(conn, spec)
        return (
            find_duplicate_groups(conn, tables.entity, spec),
            count_duplicate_groups(conn, tables.entity, spec),
            count_null_key_rows(conn, tables.entity, spec),
        )


class TestFindDuplicateGroups:
    """Partitioning rows by natural key."""

    def test_groups_of_one_are_excluded(self, db_engine, promo_spec):
        add_promos(
            db_engine,
            {"id": 1, "whopId": "w", "code": "A", "createdAt": at(1)},
            {"id": 2, "whopId": "w", "code": "B", "createdAt": at(1)},
            {"id": 3, "whopId": "x", "code": "A", "createdAt": at(1)},
        )
        groups, count, _ = scan(db_engine, promo_spec)
        assert groups == []
        assert count == 0

    def test_members_ordered_by_created_then_id(self, three_way_duplicates, promo_spec):
        groups, count, _ = scan(three_way_duplicates, promo_spec)
        assert count == 1
        assert len(groups) == 1
        assert groups[0].key == ("w", "A")
        assert [m.id for m in groups[0].members] == [2, 3, 1]

    def test_members_carry_their_store_position(self, three_way_duplicates, promo_spec):
        groups, _, _ = scan(three_way_duplicates, promo_spec)
        assert [(m.id, m.position) for m in groups[0].members] == [(2, 0), (3, 1), (1, 2)]

    def test_multi_column_key(self, db_engine, promo_spec):
        add_promos(
            db_engine,
            {"id": 1, "whopId": "w1", "code": "A", "createdAt": at(1)},
            {"id": 2, "whopId": "w2", "code": "A", "createdAt": at(1)},
            {"id": 3, "whopId": "w1", "code": "A", "createdAt": at(2)},
            {"id": 4, "whopId": "w2", "code": "B", "createdAt": at(2)},
        )
        groups, _, _ = scan(db_engine, promo_spec)
        assert [(g.key, [m.id for m in g.members]) for g in groups] == [(("w1", "A"), [1, 3])]

    def test_null_keys_never_collide(self, db_engine, promo_spec):
        add_promos(
            db_engine,
            {"id": 1, "whopId": None, "code": "A", "createdAt": at(1)},
            {"id": 2, "whopId": None, "code": "A", "createdAt": at(2)},
            {"id": 3, "whopId": "w", "code": None, "createdAt": at(3)},
        )
        groups, count, nulls = scan(db_engine, promo_spec)
        assert groups == []
        assert count == 0
        assert nulls == 3

    def test_case_sensitive_by_default(self, db_engine, promo_spec):
        add_promos(
            db_engine,
            {"id": 1, "whopId": "w", "code": "SAVE10", "createdAt": at(1)},
            {"id": 2, "whopId": "w", "code": "save10", "createdAt": at(2)},
        )
        groups, _, _ = scan(db_engine, promo_spec)
        assert groups == []

    def test_casefold_columns(self, db_engine, promo_spec):
        add_promos(
            db_engine,
            {"id": 1, "whopId": "w", "code": "SAVE10", "createdAt": at(2)},
            {"id": 2, "whopId": "w", "code": "save10", "createdAt": at(1)},
            {"id": 3, "whopId": "W", "code": "save10", "createdAt": at(1)},
        )
        spec = replace(promo_spec, casefold_columns=("code",))
        groups, count, _ = scan(db_engine, spec)
        assert count == 1
        assert groups[0].key == ("w", "save10")
        assert [m.id for m in groups[0].members] == [2, 1]

    def test_scan_is_read_only(self, three_way_duplicates, promo_spec):
        before = snapshot(three_way_duplicates)
        scan(three_way_duplicates, promo_spec)
        assert snapshot(three_way_duplicates) == before
