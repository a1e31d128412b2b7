"""
Migration CLI commands for running and inspecting change logs.
"""

import asyncio
import re
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from docmigrate.core.exceptions import MigrationError

console = Console()


def get_runner(
    packages: Optional[list[str]] = None,
    database: Optional[str] = None,
    environment: Optional[str] = None,
    wait_for_lock: Optional[bool] = None,
):
    """Get migration runner instance."""
    from docmigrate.core.config import get_settings
    from docmigrate.core.mongo import create_client
    from docmigrate.log.logging import setup_logging
    from docmigrate.migrations.runner import MigrationRunner

    settings = get_settings()
    setup_logging(**settings.logging_config)
    config = settings.migration_config(
        scan_packages=tuple(packages) if packages else None,
        database=database,
        environment=environment,
        lock_wait_enabled=wait_for_lock,
    )
    return MigrationRunner(create_client(settings), config)


def _run(coro):
    return asyncio.run(coro)


def run(
    package: Annotated[
        Optional[list[str]],
        typer.Option("--package", "-p", help="Package holding change logs (repeatable)"),
    ] = None,
    database: Annotated[
        Optional[str],
        typer.Option("--database", "-d", help="Target database name"),
    ] = None,
    environment: Annotated[
        Optional[str],
        typer.Option("--env", "-e", help="Active environment tag"),
    ] = None,
    wait: Annotated[
        Optional[bool],
        typer.Option("--wait/--no-wait", help="Wait for the lock if another process holds it"),
    ] = None,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Exit with code 1 if any change set failed"),
    ] = False,
):
    """Apply pending change sets."""
    runner = get_runner(package, database, environment, wait)

    try:
        report = _run(runner.execute())
    except MigrationError as e:
        console.print(f"[red]Error: Migration failed ({e.error_code}): {e}[/red]")
        raise typer.Exit(1)
    finally:
        runner.close()

    if report is None:
        console.print("[yellow]Migration did not run (disabled or lock held by another process).[/yellow]")
        return

    table = Table(title=f"Execution Report ({report.installation_id})", show_header=True)
    table.add_column("Counter", style="cyan")
    table.add_column("Value", style="white")
    for key in ("scanned", "executed", "re_executed", "skipped", "postponed", "failed"):
        style = "red" if key == "failed" and report.failed else "white"
        table.add_row(key, f"[{style}]{getattr(report, key)}[/{style}]")
    console.print(table)

    if strict and report.failed:
        raise typer.Exit(1)


def status(
    database: Annotated[
        Optional[str],
        typer.Option("--database", "-d", help="Target database name"),
    ] = None,
):
    """Show whether a migration is in progress."""

    async def _status(runner):
        held = await runner.is_execution_in_progress()
        holder = await runner.lock.holder() if held else None
        return held, holder

    runner = get_runner(database=database)
    try:
        held, holder = _run(_status(runner))
    except MigrationError as e:
        console.print(f"[red]Error: Failed to get migration status: {e}[/red]")
        raise typer.Exit(1)
    finally:
        runner.close()

    console.print()
    console.print("[bold]Migration Status[/bold]")
    if held:
        console.print("  Lock:      [yellow]held[/yellow]")
        if holder:
            console.print(f"  Locked by: [cyan]{holder.get('locked_by', '-')}[/cyan]")
            console.print(f"  Locked at: [cyan]{holder.get('locked_at', '-')}[/cyan]")
    else:
        console.print("  Lock:      [green]free[/green]")


def history(
    database: Annotated[
        Optional[str],
        typer.Option("--database", "-d", help="Target database name"),
    ] = None,
    limit: Annotated[
        Optional[int],
        typer.Option("--limit", "-n", min=1, help="Show only the most recent entries"),
    ] = None,
):
    """Show the change log."""
    runner = get_runner(database=database)
    try:
        entries = _run(runner.history(limit=limit))
    except MigrationError as e:
        console.print(f"[red]Error: Failed to read change log: {e}[/red]")
        raise typer.Exit(1)
    finally:
        runner.close()

    if not entries:
        console.print("[yellow]Change log is empty.[/yellow]")
        return

    table = Table(title="Change Log", show_header=True)
    table.add_column("Change", style="cyan")
    table.add_column("Author", style="white")
    table.add_column("Status")
    table.add_column("Timestamp", style="dim")
    table.add_column("Error", style="red")

    for entry in entries:
        color = "green" if entry.status.value == "INSTALLED" else "red"
        table.add_row(
            entry.change_id,
            entry.author,
            f"[{color}]{entry.status.value}[/{color}]",
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.error or "",
        )

    console.print(table)


def unlock(
    database: Annotated[
        Optional[str],
        typer.Option("--database", "-d", help="Target database name"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompt"),
    ] = False,
):
    """Remove the migration lock left behind by a crashed process."""

    if not force:
        confirm = typer.confirm(
            "Are you sure no migration is running? Removing a live lock allows concurrent runs."
        )
        if not confirm:
            console.print("[yellow]Unlock cancelled.[/yellow]")
            raise typer.Exit(0)

    runner = get_runner(database=database)
    try:
        _run(runner.release_lock())
    except MigrationError as e:
        console.print(f"[red]Error: Unlock failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        runner.close()

    console.print("[green]Migration lock released.[/green]")


def new(
    name: Annotated[str, typer.Argument(help="Name for the change log module (use_underscores)")],
    directory: Annotated[
        Path,
        typer.Option("--dir", help="Change log package directory"),
    ] = Path("changelogs"),
    author: Annotated[
        str,
        typer.Option("--author", "-a", help="Author recorded on the change sets"),
    ] = "unknown",
):
    """Create a new change log module."""

    if not re.fullmatch(r"[A-Za-z0-9_]+", name):
        console.print("[red]Error: Change log name must be alphanumeric with underscores only[/red]")
        raise typer.Exit(1)

    directory.mkdir(parents=True, exist_ok=True)
    init_file = directory / "__init__.py"
    if not init_file.exists():
        init_file.write_text("")

    existing = [f.name for f in directory.glob("v*.py")]
    versions = []
    for f in existing:
        try:
            versions.append(int(f[1:].split("_")[0]))
        except ValueError:
            pass

    next_version = max(versions, default=0) + 1
    order = f"{next_version:03d}"
    filepath = directory / f"v{order}_{name}.py"

    template = f'''"""
Change log: {name.replace('_', ' ')}
Created: {datetime.now().strftime('%Y-%m-%d')}
"""

from motor.motor_asyncio import AsyncIOMotorDatabase

from docmigrate.migrations import ChangeLog

changelog = ChangeLog("{name}", order="{order}")


@changelog.changeset("{name}-001", author="{author}", order="001", description="{name.replace('_', ' ')}")
async def change_001(db: AsyncIOMotorDatabase) -> None:
    """Apply change."""
    # TODO: Implement change
    pass
'''

    filepath.write_text(template)

    console.print()
    console.print(f"[green]Created change log file:[/green] {filepath}")
