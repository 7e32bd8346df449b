#!/usr/bin/env python3
"""
Duplicate-record consolidator - command line entry point.

Usage:
    python -m consolidator.main targets
    python -m consolidator.main scan promo_codes
    python -m consolidator.main consolidate promo_codes --dry-run
    python -m consolidator.main consolidate promo_codes --backup
    python -m consolidator.main guard promo_codes
"""

import sys
from pathlib import Path

import click
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from consolidator.backup import create_backup
from consolidator.database import create_db_engine
from consolidator.deduplication import (
    ConsolidationError,
    consolidate as run_consolidation,
    ensure_unique_index,
    scan as run_scan,
    select_survivor,
)
from consolidator.targets import get_target, load_targets
from consolidator.utils.logging import add_audit_log, setup_logging


console = Console()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--targets-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="JSON file with additional targets")
@click.option("--database-url", envvar="DATABASE_URL", help="Database URL (overrides POSTGRES_* settings)")
@click.option("--audit-log", envvar="CONSOLIDATION_AUDIT_LOG", type=click.Path(dir_okay=False, path_type=Path),
              help="Append a JSON record of every consolidation run to this file")
@click.pass_context
def cli(ctx, debug, targets_file, database_url, audit_log):
    """Duplicate-record consolidation and natural-key guard."""
    if debug:
        setup_logging(level="DEBUG")
    if audit_log:
        add_audit_log(audit_log)
    ctx.ensure_object(dict)
    ctx.obj["targets_file"] = targets_file
    ctx.obj["database_url"] = database_url


def _spec(ctx, name):
    try:
        return get_target(name, ctx.obj["targets_file"])
    except ConsolidationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def targets(ctx):
    """List configured consolidation targets."""
    try:
        specs = load_targets(ctx.obj["targets_file"])
    except ConsolidationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title="Consolidation Targets")
    table.add_column("Target")
    table.add_column("Table")
    table.add_column("Natural key")
    table.add_column("Referrers")
    table.add_column("Index")

    for name, spec in sorted(specs.items()):
        key = ", ".join(
            f"lower({col})" if col in spec.casefold_columns else col for col in spec.natural_key
        )
        refs = "\n".join(ref.label for ref in spec.referrers) or "[dim]none[/dim]"
        table.add_row(name, spec.table, key, refs, spec.unique_index_name)

    console.print(table)


@cli.command()
@click.argument("target")
@click.option("--limit", type=int, default=20, help="Max groups to display")
@click.pass_context
def scan(ctx, target, limit):
    """Report duplicate groups for TARGET without changing anything."""
    spec = _spec(ctx, target)
    engine = create_db_engine(ctx.obj["database_url"])

    try:
        groups = run_scan(engine, spec)
    except ConsolidationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    finally:
        engine.dispose()

    if not groups:
        console.print(f"[green]No duplicates in {spec.table}[/green]")
        return

    losers = sum(g.size - 1 for g in groups)
    console.print(f"[yellow]{len(groups)} duplicate group(s), {losers} row(s) would be merged[/yellow]")

    table = Table()
    table.add_column("Natural key")
    table.add_column("Rows")
    table.add_column("Keep")
    table.add_column("Drop")

    for group in groups[:limit]:
        keep = select_survivor(group)
        drop = ", ".join(str(m.id) for m in group.members if m.id != keep)
        table.add_row(repr(group.key), str(group.size), str(keep), drop)

    console.print(table)
    if len(groups) > limit:
        console.print(f"[dim]... {len(groups) - limit} more group(s)[/dim]")


@cli.command()
@click.argument("target")
@click.option("--dry-run", "-n", is_flag=True, help="Scan and report only; roll back")
@click.option("--guard/--no-guard", default=True, help="Install the unique index after a live run")
@click.option("--backup", is_flag=True, help="pg_dump the touched tables before a live run")
@click.pass_context
def consolidate(ctx, target, dry_run, guard, backup):
    """Merge duplicate rows of TARGET and repoint their references."""
    spec = _spec(ctx, target)
    engine = create_db_engine(ctx.obj["database_url"])

    mode = "DRY-RUN" if dry_run else "LIVE"
    console.print(f"\n[bold blue]Consolidating {spec.name}[/bold blue] ({mode})")
    console.print(f"Table: {spec.table}  Key: {', '.join(spec.natural_key)}\n")

    try:
        if backup and not dry_run:
            backup_result = create_backup(spec, url=ctx.obj["database_url"])
            if not backup_result.success:
                console.print(f"[red]Backup failed: {backup_result.error}[/red]")
                engine.dispose()
                sys.exit(1)

        result = run_consolidation(engine, spec, dry_run=dry_run)

    except ConsolidationError as e:
        engine.dispose()
        console.print(f"[red]✗ {type(e).__name__}: {escape(str(e))}[/red]")
        logger.debug(f"Consolidation of {spec.name} failed", exc_info=True)
        sys.exit(1)

    table = Table(title="Consolidation Summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Duplicate groups", str(result.groups_found))
    table.add_row("Rows deleted" if not dry_run else "Rows to delete",
                  str(result.deleted if not dry_run else result.losers))
    for label, count in result.repointed_by_referrer.items():
        table.add_row(f"{'Repointed' if not dry_run else 'To repoint'}: {label}", str(count))
    table.add_row("State", result.state.value)
    table.add_row("Attempts", str(result.attempts))
    if result.duration_seconds is not None:
        table.add_row("Duration", f"{result.duration_seconds:.1f}s")
    console.print(table)

    # The consolidation is committed at this point; a guard failure only
    # means the index is still missing.
    if guard and not dry_run:
        try:
            guard_result = ensure_unique_index(engine, spec)
        except ConsolidationError as e:
            console.print(f"[red]✗ Consolidation committed, but the guard failed: {escape(str(e))}[/red]")
            console.print(f"[yellow]Re-run 'guard {escape(spec.name)}' to install the index[/yellow]")
            sys.exit(1)
        finally:
            engine.dispose()
        status = "created" if guard_result.created else f"present ({guard_result.existing})"
        console.print(f"Unique index {guard_result.index_name}: {status}")
    else:
        engine.dispose()

    console.print("[green]✓ Done[/green]")


@cli.command()
@click.argument("target")
@click.pass_context
def guard(ctx, target):
    """Install (or confirm) the natural-key unique index for TARGET."""
    spec = _spec(ctx, target)
    engine = create_db_engine(ctx.obj["database_url"])

    try:
        result = ensure_unique_index(engine, spec)
    except ConsolidationError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        sys.exit(1)
    finally:
        engine.dispose()

    if result.created:
        verb = "Rebuilt" if result.rebuilt else "Created"
        console.print(f"[green]✓ {verb} unique index {result.index_name}[/green]")
    else:
        console.print(f"[green]✓ Unique index already present: {result.existing}[/green]")


if __name__ == "__main__":
    cli()
