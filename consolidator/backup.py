"""
Backup utilities for consolidation runs.
Dumps the tables a target touches before a live run deletes rows.
"""
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from loguru import logger
from sqlalchemy.engine import make_url

from consolidator.config import settings
from consolidator.deduplication.types import EntitySpec


@dataclass
class BackupResult:
    success: bool
    backup_id: str
    database_path: Path | None = None
    skipped: bool = False
    error: str | None = None


def backup_tables(spec: EntitySpec) -> list[str]:
    """Entity table plus every referrer table, schema-qualified where set."""
    names = [f"{spec.schema}.{spec.table}" if spec.schema else spec.table]
    for ref in spec.referrers:
        name = f"{ref.schema}.{ref.table}" if ref.schema else ref.table
        if name not in names:
            names.append(name)
    return names


def create_backup(spec: EntitySpec, url: str | None = None, backup_dir: Path | None = None) -> BackupResult:
    """Dump the target's tables with pg_dump before a destructive run.

    Args:
        spec: Target whose entity and referrer tables are dumped
        url: Database URL (defaults to configured database)
        backup_dir: Output directory (defaults to CONSOLIDATION_BACKUP_DIR)

    Returns:
        BackupResult with the dump path; skipped=True for non-PostgreSQL stores
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_id = f"{spec.name}_{timestamp}"
    result = BackupResult(success=True, backup_id=backup_id)

    db_url = make_url(url or settings.database.url)
    if not db_url.drivername.startswith("postgresql"):
        logger.warning(f"Backup skipped: pg_dump does not handle {db_url.drivername}")
        result.skipped = True
        return result

    backup_dir = Path(backup_dir or settings.consolidation.backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)
    db_dst = backup_dir / f"{backup_id}.dump"

    cmd = [
        "pg_dump",
        "-U", db_url.username or "",
        "-h", db_url.host or "localhost",
        "-p", str(db_url.port or 5432),
        "-Fc",
    ]
    for table in backup_tables(spec):
        # Quoted so pg_dump keeps mixed-case names
        cmd += ["-t", ".".join(f'"{part}"' for part in table.split("."))]
    cmd.append(db_url.database or "")

    try:
        env = os.environ.copy()
        env["PGPASSWORD"] = db_url.password or ""
        with open(db_dst, "wb") as f:
            subprocess.run(cmd, stdout=f, env=env, check=True)
        result.database_path = db_dst
        logger.info(f"Backed up {', '.join(backup_tables(spec))} -> {db_dst}")
    except FileNotFoundError:
        result.success = False
        result.error = "pg_dump not found"
        logger.error(result.error)
    except subprocess.CalledProcessError as e:
        result.success = False
        result.error = f"pg_dump failed: {e}"
        logger.error(result.error)

    return result
