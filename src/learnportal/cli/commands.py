"""CLI commands for portal administration.

Commands:
- check: Run the consistency check (re-seeds the admin after a wipe)
- users: List accounts with their session counts
- sessions: List the sessions of one user
- cleanup-sessions: Purge sessions past the retention window
- backup / restore: Export or import every table as JSON
- reset: Delete one user's data or every table
- sync-push / sync-recover: Replicate to or recover from the remote store
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from learnportal.config.app_config import load_app_config
from learnportal.core.engine import PortalEngine, create_engine
from learnportal.db.maintenance import (
    create_backup,
    reset_all,
    reset_user_data,
    restore_backup,
)
from learnportal.logging_setup import configure_logging

app = typer.Typer(
    name="portal",
    help="Administration of the learning portal's local records.",
    no_args_is_help=True,
)

console = Console()

_state = {"verbose": False}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine log lines"),
) -> None:
    """Learning portal admin tools."""
    _state["verbose"] = verbose


def _engine() -> PortalEngine:
    config = load_app_config()
    level = config.logging.level if _state["verbose"] else "WARNING"
    configure_logging(level, config.logging.json)
    return create_engine(config)


# =============================================================================
# DIRECTORY
# =============================================================================


@app.command()
def check() -> None:
    """Verify the user directory and repair it if needed."""
    engine = _engine()
    report = engine.checker.check()
    details = report.details

    if not report.success:
        console.print(f"[red]✗ Consistency check failed: {details.get('message')}[/red]")
        raise typer.Exit(code=1)

    color = {"success": "green", "repaired": "yellow"}.get(report.status, "red")
    console.print(f"[{color}]✓ Consistency check: {report.status}[/{color}]")
    console.print(f"  [dim]users:[/dim]  {details['users']}")
    console.print(f"  [dim]admins:[/dim] {details['admins']}")
    if details["seeded"]:
        console.print(f"  [dim]seeded:[/dim] {', '.join(details['seeded'])}")
    if details["repaired"]:
        console.print(f"  [dim]repaired:[/dim] {', '.join(details['repaired'])}")
    if report.status == "warning":
        console.print(f"[yellow]⚠ {details.get('message')}[/yellow]")
        raise typer.Exit(code=1)


@app.command()
def users() -> None:
    """List accounts."""
    engine = _engine()
    accounts = engine.users.list()
    if not accounts:
        console.print("[yellow]No users. Run 'portal check' to seed the administrator.[/yellow]")
        return

    table = Table(title="Users")
    table.add_column("Username")
    table.add_column("Role")
    table.add_column("Active")
    table.add_column("Sessions", justify="right")
    table.add_column("Last login")
    for user in accounts:
        table.add_row(
            user.username,
            user.role.value,
            "yes" if user.is_active else "no",
            str(len(user.sessions)),
            user.last_login or "-",
        )
    console.print(table)


@app.command()
def sessions(
    username: str = typer.Argument(..., help="Account whose sessions to list"),
) -> None:
    """List the sessions of a user, most recently used first."""
    engine = _engine()
    if not engine.users.exists(username):
        console.print(f"[red]✗ User not found: {username}[/red]")
        raise typer.Exit(code=1)

    listed = engine.sessions.list_sessions(username)
    table = Table(title=f"Sessions of {username}")
    table.add_column("Token")
    table.add_column("Device")
    table.add_column("Created")
    table.add_column("Last used")
    for session in listed:
        table.add_row(session.masked_token(), session.device_id, session.created_at, session.last_used)
    console.print(table)


@app.command(name="cleanup-sessions")
def cleanup_sessions() -> None:
    """Purge sessions older than the retention window."""
    engine = _engine()
    removed = engine.sessions.cleanup_expired()
    console.print(f"[green]✓ Removed {removed} expired sessions[/green]")


# =============================================================================
# BACKUP / RESET
# =============================================================================


@app.command()
def backup(
    output: Path | None = typer.Option(None, "--output", "-o", help="Backup file path"),
) -> None:
    """Export every table to a JSON backup."""
    engine = _engine()
    result = create_backup(engine.store, output, engine.clock)
    if not result.success:
        console.print(f"[red]✗ {result.message}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ {result.message}[/green]")
    console.print(f"  [dim]tables:[/dim]  {result.tables}")
    console.print(f"  [dim]records:[/dim] {result.records}")


@app.command()
def restore(
    file: Path = typer.Argument(..., help="Backup file created by 'portal backup'"),
) -> None:
    """Restore tables from a JSON backup."""
    engine = _engine()
    result = restore_backup(engine.store, file.expanduser())
    if not result.success:
        console.print(f"[red]✗ {result.message}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ {result.message}[/green]")
    report = engine.checker.check()
    console.print(f"  [dim]consistency:[/dim] {report.status}")


@app.command()
def reset(
    user_data: str | None = typer.Option(
        None, "--user-data", help="Delete the progress, logs and settings of one user"
    ),
    all_tables: bool = typer.Option(False, "--all", help="Delete every table, users included"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete records. The administrator is re-seeded by the next check."""
    if bool(user_data) == all_tables:
        console.print("[red]✗ Use exactly one of --user-data USERNAME or --all[/red]")
        raise typer.Exit(code=1)

    engine = _engine()
    if all_tables:
        if not yes and not typer.confirm("Delete ALL tables, including every account?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(code=1)
        result = reset_all(engine.store)
    else:
        if not engine.users.exists(user_data):
            console.print(f"[red]✗ User not found: {user_data}[/red]")
            raise typer.Exit(code=1)
        if not yes and not typer.confirm(f"Delete all data of {user_data}?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(code=1)
        result = reset_user_data(engine.store, user_data)

    if not result.success:
        console.print(f"[red]✗ {result.message}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ {result.message}[/green]")
    if all_tables:
        console.print("  Run 'portal check' (or start the API) to re-seed the administrator.")


# =============================================================================
# REPLICATION
# =============================================================================


async def _push(engine: PortalEngine):
    try:
        if not await engine.coordinator.check_connection():
            return None
        engine.coordinator.push_all(engine.store)
        return await engine.coordinator.flush()
    finally:
        await engine.aclose()


async def _recover(engine: PortalEngine, table: str, username: str | None) -> int | None:
    try:
        if not await engine.coordinator.check_connection():
            return None
        return await engine.coordinator.recover(engine.store, table, username)
    finally:
        await engine.aclose()


def _require_sync(engine: PortalEngine) -> None:
    if not engine.config.sync.enabled:
        console.print("[red]✗ Replication is disabled (set sync.remote_url or LEARNPORTAL_REMOTE_URL)[/red]")
        raise typer.Exit(code=1)


@app.command(name="sync-push")
def sync_push() -> None:
    """Replicate every local record to the remote store."""
    engine = _engine()
    _require_sync(engine)
    report = asyncio.run(_push(engine))
    if report is None:
        console.print("[yellow]⚠ Remote store unreachable, nothing sent[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Replicated {report.succeeded}/{report.attempted} records[/green]")
    if report.failed:
        console.print(f"  [yellow]failed:[/yellow] {report.failed}")


@app.command(name="sync-recover")
def sync_recover(
    table: str = typer.Argument("progress", help="Table to recover"),
    username: str | None = typer.Option(None, "--user", "-u", help="Owner of a user-scoped table"),
) -> None:
    """Copy records missing locally back from the remote store."""
    engine = _engine()
    _require_sync(engine)
    restored = asyncio.run(_recover(engine, table, username))
    if restored is None:
        console.print("[yellow]⚠ Remote store unreachable, nothing recovered[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Recovered {restored} records into {table}[/green]")


if __name__ == "__main__":
    app()
