# SPDX-License-Identifier: MIT
"""Tests for the natural-key uniqueness guard."""

from dataclasses import replace

import pytest
from sqlalchemy import MetaData, insert
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError
from sqlalchemy.schema import CreateIndex

from conftest import add_promos, at
from consolidator.deduplication import GuardError, consolidate, ensure_unique_index
from consolidator.deduplication.guard import build_unique_index
from consolidator.models import PromoCode


class TestEnsureUniqueIndex:
    """Installing and confirming the unique index."""

    def test_creates_index(self, db_engine, promo_spec):
        add_promos(db_engine, {"id": 1, "whopId": "w", "code": "A", "createdAt": at(1)})

        result = ensure_unique_index(db_engine, promo_spec)

        assert result.created is True
        assert result.index_name == "promo_unique_whop_code"

    def test_prevents_new_duplicates(self, db_engine, promo_spec):
        add_promos(db_engine, {"id": 1, "whopId": "w", "code": "A", "createdAt": at(1)})
        ensure_unique_index(db_engine, promo_spec)

        with pytest.raises(IntegrityError):
            add_promos(db_engine, {"id": 2, "whopId": "w", "code": "A", "createdAt": at(2)})

    def test_idempotent(self, db_engine, promo_spec):
        ensure_unique_index(db_engine, promo_spec)

        second = ensure_unique_index(db_engine, promo_spec)

        assert second.created is False
        assert second.existing == "promo_unique_whop_code"

    def test_recognises_existing_index_under_other_name(self, db_engine, promo_spec):
        ensure_unique_index(db_engine, replace(promo_spec, index_name="ux_custom"))

        result = ensure_unique_index(db_engine, promo_spec)

        assert result.created is False
        assert result.existing == "ux_custom"

    def test_refuses_while_duplicates_exist(self, three_way_duplicates, promo_spec):
        with pytest.raises(GuardError, match="duplicate group"):
            ensure_unique_index(three_way_duplicates, promo_spec)

    def test_after_consolidation(self, three_way_duplicates, promo_spec, test_settings):
        consolidate(three_way_duplicates, promo_spec, settings=test_settings)

        result = ensure_unique_index(three_way_duplicates, promo_spec)

        assert result.created is True

    def test_null_keys_still_allowed(self, db_engine, promo_spec):
        ensure_unique_index(db_engine, promo_spec)

        add_promos(
            db_engine,
            {"id": 1, "whopId": None, "code": "A", "createdAt": at(1)},
            {"id": 2, "whopId": None, "code": "A", "createdAt": at(2)},
        )

    def test_casefold_index(self, db_engine, promo_spec):
        spec = replace(promo_spec, casefold_columns=("code",), index_name="promo_whop_codelower_uniq")
        add_promos(db_engine, {"id": 1, "whopId": "w", "code": "SAVE10", "createdAt": at(1)})

        assert ensure_unique_index(db_engine, spec).created is True
        assert ensure_unique_index(db_engine, spec).existing == "promo_whop_codelower_uniq"

        with pytest.raises(IntegrityError):
            with db_engine.begin() as conn:
                conn.execute(insert(PromoCode), [{"id": 2, "whopId": "w", "code": "save10", "createdAt": at(2)}])

    def test_casefold_refuses_case_variants(self, db_engine, promo_spec):
        spec = replace(promo_spec, casefold_columns=("code",), index_name="promo_whop_codelower_uniq")
        add_promos(
            db_engine,
            {"id": 1, "whopId": "w", "code": "SAVE10", "createdAt": at(1)},
            {"id": 2, "whopId": "w", "code": "save10", "createdAt": at(2)},
        )

        with pytest.raises(GuardError):
            ensure_unique_index(db_engine, spec)


class TestUniqueIndexDdl:
    """DDL the guard emits on PostgreSQL."""

    def compile_for_postgres(self, spec):
        table = PromoCode.__table__.to_metadata(MetaData())
        index = build_unique_index(table, spec)
        return str(CreateIndex(index, if_not_exists=True).compile(dialect=postgresql.dialect()))

    def test_concurrent_if_not_exists(self, promo_spec):
        ddl = self.compile_for_postgres(promo_spec)
        assert ddl.startswith("CREATE UNIQUE INDEX CONCURRENTLY IF NOT EXISTS promo_unique_whop_code")
        assert '"whopId"' in ddl and "code" in ddl

    def test_casefold_expression(self, promo_spec):
        spec = replace(promo_spec, casefold_columns=("code",), index_name="promo_whop_codelower_uniq")
        ddl = self.compile_for_postgres(spec)
        assert "CONCURRENTLY IF NOT EXISTS promo_whop_codelower_uniq" in ddl
        assert 'lower("PromoCode".code)' in ddl or "lower(code)" in ddl
