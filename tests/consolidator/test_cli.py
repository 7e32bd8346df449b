# SPDX-License-Identifier: MIT
"""Tests for the command line interface."""

import json
import sys

import pytest
from click.testing import CliRunner
from loguru import logger

from conftest import add_promos, add_submissions, add_trackings, at, promo_ids, snapshot, tracking_targets
from consolidator.deduplication import GuardError
from consolidator.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def seeded(db_engine):
    add_promos(
        db_engine,
        {"id": 1, "whopId": "w", "code": "SAVE10", "createdAt": at(2)},
        {"id": 2, "whopId": "w", "code": "SAVE10", "createdAt": at(1)},
        {"id": 3, "whopId": "w", "code": "OTHER", "createdAt": at(1)},
    )
    add_trackings(db_engine, 1, 3)
    add_submissions(db_engine, 1)
    return db_engine


class TestCli:
    """End-to-end runs against a SQLite database."""

    def test_targets(self, runner):
        result = runner.invoke(cli, ["targets"])
        assert result.exit_code == 0
        assert "promo_codes" in result.output

    def test_scan_reports_without_changes(self, runner, seeded, db_url):
        before = snapshot(seeded)

        result = runner.invoke(cli, ["--database-url", db_url, "scan", "promo_codes"])

        assert result.exit_code == 0
        assert "1 duplicate group" in result.output
        assert snapshot(seeded) == before

    def test_consolidate(self, runner, seeded, db_url):
        result = runner.invoke(cli, ["--database-url", db_url, "consolidate", "promo_codes"])

        assert result.exit_code == 0, result.output
        assert "Done" in result.output
        assert promo_ids(seeded) == [2, 3]
        assert tracking_targets(seeded) == {1: 2, 2: 3}
        assert "promo_unique_whop_code" in result.output

    def test_consolidate_dry_run(self, runner, seeded, db_url):
        before = snapshot(seeded)

        result = runner.invoke(cli, ["--database-url", db_url, "consolidate", "promo_codes", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert snapshot(seeded) == before

    def test_failure_exits_nonzero(self, runner, seeded, db_url, tmp_path):
        # Omits PromoCodeSubmission, which still references a loser
        path = tmp_path / "targets.json"
        path.write_text(json.dumps({
            "incomplete": {
                "table": "PromoCode",
                "natural_key": ["whopId", "code"],
                "created_column": "createdAt",
                "referrers": [{"table": "OfferTracking", "column": "promoCodeId"}],
            }
        }), encoding="utf-8")
        before = snapshot(seeded)

        result = runner.invoke(
            cli, ["--database-url", db_url, "--targets-file", str(path), "consolidate", "incomplete"]
        )

        assert result.exit_code == 1
        assert "ReferentialIntegrityError" in result.output
        assert snapshot(seeded) == before

    def test_unknown_target(self, runner, db_url):
        result = runner.invoke(cli, ["--database-url", db_url, "consolidate", "nope"])
        assert result.exit_code == 1
        assert "Unknown target" in result.output

    def test_guard_command(self, runner, db_engine, db_url):
        first = runner.invoke(cli, ["--database-url", db_url, "guard", "promo_codes"])
        second = runner.invoke(cli, ["--database-url", db_url, "guard", "promo_codes"])

        assert first.exit_code == 0
        assert "Created unique index" in first.output
        assert second.exit_code == 0
        assert "already present" in second.output

    def test_guard_refuses_with_duplicates(self, runner, seeded, db_url):
        result = runner.invoke(cli, ["--database-url", db_url, "guard", "promo_codes"])
        assert result.exit_code == 1

    def test_guard_failure_after_commit_still_reports(self, runner, seeded, db_url, mocker):
        mocker.patch(
            "consolidator.main.ensure_unique_index",
            side_effect=GuardError("index build failed", target="promo_codes"),
        )

        result = runner.invoke(cli, ["--database-url", db_url, "consolidate", "promo_codes"])

        assert result.exit_code == 1
        assert "Consolidation Summary" in result.output
        assert "committed" in result.output
        assert "index build failed" in result.output
        assert promo_ids(seeded) == [2, 3]


@pytest.fixture
def restore_logging():
    yield
    logger.remove()
    logger.add(sys.stderr)


class TestAuditLogOption:
    """--audit-log writes one JSON record per consolidation."""

    def test_writes_json_record(self, runner, seeded, db_url, tmp_path, restore_logging):
        audit = tmp_path / "audit.jsonl"

        result = runner.invoke(
            cli, ["--database-url", db_url, "--audit-log", str(audit), "consolidate", "promo_codes"]
        )

        assert result.exit_code == 0, result.output
        lines = audit.read_text().splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])["record"]
        assert record["extra"]["result"]["target"] == "promo_codes"
        assert record["extra"]["result"]["deleted"] == 1
        assert record["extra"]["mapping"] == [[1, 2]]
