"""
fieldops CLI
Commands: migrate, mode, status, sync, queue, retry, discard, devices, ping, server
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

app = typer.Typer(
    name="fieldops",
    help="fieldops: field-service client core (schema, mode, offline sync)",
    add_completion=False,
)
console = Console()

# Keep the console readable; details still go to the log file
logging.getLogger("httpx").setLevel(logging.WARNING)


def _bootstrap():
    """Reconcile the schema and bind services. The background loop is never started here."""
    from fieldops.bootstrap import configure_logging, startup
    from fieldops.config.settings import settings

    configure_logging(settings)
    for handler in logging.getLogger().handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(logging.WARNING)   # console only; the log file keeps INFO
    return startup(settings, start_sync=False)


def _require_remote(ctx):
    if not ctx.is_remote:
        console.print("[yellow]Local mode:[/] there is no server to sync with. "
                      "Set DB_MODE=Remote and DB_SERVER_URL in .env.")
        raise typer.Exit(1)


def _fmt(value) -> str:
    if value is None:
        return "-"
    return str(value).replace("T", " ")[:19]


# ── migrate ───────────────────────────────────────────────────────────────────

@app.command()
def migrate(verbose: bool = typer.Option(False, "--verbose", "-v", help="List every statement")):
    """Bring the local database schema up to date without losing data."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    result = ctx.reconcile_result

    if not result.connected:
        console.print(Panel(
            "\n".join(result.warnings) or "Database unreachable",
            title="Schema", border_style="red",
        ))
        shutdown(ctx)
        raise typer.Exit(1)

    headline = "[green]Changes applied[/]" if result.changes_applied else "[dim]Schema already up to date[/]"
    console.print(Panel(
        f"{headline}\n"
        f"Applied   : [cyan]{len(result.applied)}[/]\n"
        f"Warnings  : [yellow]{len(result.warnings)}[/]\n"
        f"Duration  : {result.duration_seconds:.2f}s",
        title="Schema",
        border_style="green" if not result.warnings else "yellow",
    ))

    if verbose or result.failed:
        table = Table(box=box.SIMPLE)
        table.add_column("Phase")
        table.add_column("Outcome")
        table.add_column("Statement", overflow="fold")
        for o in result.outcomes:
            if not verbose and o.outcome != "failed":
                continue
            style = {"applied": "green", "failed": "red"}.get(o.outcome, "dim")
            table.add_row(o.phase, f"[{style}]{o.outcome}[/]", o.error or o.statement)
        console.print(table)
    shutdown(ctx)


# ── mode ──────────────────────────────────────────────────────────────────────

@app.command()
def mode():
    """Show the resolved mode and which implementation each capability uses."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    endpoint = ctx.resolution.endpoint or "-"
    console.print(f"Mode: [bold cyan]{ctx.resolution.mode}[/]   Server: {endpoint}")

    table = Table(title="Capabilities", box=box.ROUNDED)
    table.add_column("Capability", style="cyan")
    table.add_column("Bound to")
    colors = {"local": "white", "cached": "blue", "remote": "magenta"}
    for name, variant in ctx.services.bindings().items():
        table.add_row(name, f"[{colors.get(variant, 'white')}]{variant}[/]")
    console.print(table)
    shutdown(ctx)


# ── status ────────────────────────────────────────────────────────────────────

@app.command()
def status():
    """Schema, mode and offline-queue summary."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    lines = [
        f"Mode              : [cyan]{ctx.resolution.mode}[/]",
        f"Schema changes    : {'[green]applied[/]' if ctx.reconcile_result.changes_applied else '[dim]none[/]'}",
        f"Schema warnings   : [yellow]{len(ctx.reconcile_result.warnings)}[/]",
    ]
    if ctx.is_remote:
        st = ctx.coordinator.status()
        last = ctx.protocol.get_cursor("jobs")
        lines += [
            f"Server            : {ctx.resolution.endpoint}",
            f"Pending changes   : [cyan]{st['pending_changes']}[/]",
            f"Failed changes    : [red]{st['failed_changes']}[/]",
            f"Last jobs pull    : {_fmt(last.isoformat() if last else None)}",
        ]
    console.print(Panel("\n".join(lines), title="fieldops Status", border_style="blue"))
    shutdown(ctx)


# ── sync ──────────────────────────────────────────────────────────────────────

@app.command()
def sync(full: bool = typer.Option(False, "--full", help="Forget cursors and pull everything")):
    """Run one sync cycle now: pull from the server, then push queued changes."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    _require_remote(ctx)
    if full:
        ctx.protocol.reset_cursors()

    with console.status("[bold]Syncing...[/]"):
        result = ctx.coordinator.sync_now()

    color = {"success": "green", "partial": "yellow", "failed": "red"}[result.status]
    body = (
        f"Status    : [{color}]{result.status}[/]\n"
        f"Pulled    : [cyan]{result.total_pulled}[/]\n"
        f"Pushed    : [cyan]{result.pushed}[/]\n"
        f"Failed    : [red]{result.failed}[/]\n"
        f"Remaining : {result.remaining}"
    )
    if result.errors:
        body += "\n\n" + "\n".join(f"[dim]- {e}[/]" for e in result.errors[:10])
    console.print(Panel(body, title="Sync", border_style=color))
    shutdown(ctx)
    if result.status == "failed":
        raise typer.Exit(1)


# ── queue ─────────────────────────────────────────────────────────────────────

@app.command()
def queue(show_all: bool = typer.Option(False, "--all", "-a", help="Include pending entries")):
    """List failed (and optionally pending) offline changes."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    _require_remote(ctx)
    entries = ctx.queue.failed_entries()
    if show_all:
        entries = ctx.queue.pending_entries() + entries

    if not entries:
        console.print("[dim]Offline queue is empty.[/]")
        shutdown(ctx)
        return

    table = Table(title="Offline Queue", box=box.ROUNDED)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Change")
    table.add_column("Status", justify="center")
    table.add_column("Tries", justify="right")
    table.add_column("Queued", no_wrap=True)
    table.add_column("Last error", overflow="fold")
    for e in sorted(entries, key=lambda c: c.id):
        style = "red" if e.status == "failed" else "yellow"
        table.add_row(
            str(e.id),
            e.description or f"{e.operation} {e.entity_type}/{e.entity_id}",
            f"[{style}]{e.status}[/]",
            str(e.retry_count),
            _fmt(e.queued_at.isoformat() if e.queued_at else None),
            e.last_error or "",
        )
    console.print(table)
    shutdown(ctx)


@app.command()
def retry(
    entry_id: Optional[int] = typer.Argument(None, help="Queue entry id"),
    all_failed: bool = typer.Option(False, "--all", help="Retry every failed entry"),
):
    """Put failed changes back in line for the next sync."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    _require_remote(ctx)
    if all_failed:
        count = ctx.queue.retry_all_failed()
        console.print(f"[green]Re-queued {count} change(s).[/]")
    elif entry_id is None:
        console.print("[red]Error:[/] give an entry id or --all")
        shutdown(ctx)
        raise typer.Exit(1)
    elif ctx.queue.retry(entry_id):
        console.print(f"[green]Re-queued #{entry_id}.[/]")
    else:
        console.print(f"[red]No failed entry #{entry_id}.[/]")
        shutdown(ctx)
        raise typer.Exit(1)
    shutdown(ctx)


@app.command()
def discard(
    entry_id: int = typer.Argument(..., help="Queue entry id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Drop a queued change. It will never reach the server."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    _require_remote(ctx)
    entry = ctx.queue.get(entry_id)
    if entry is None:
        console.print(f"[red]Queue entry not found:[/] {entry_id}")
        shutdown(ctx)
        raise typer.Exit(1)
    if not yes and not typer.confirm(f"Discard '{entry.description}'?"):
        shutdown(ctx)
        raise typer.Exit(0)
    ctx.queue.discard(entry_id)
    console.print(f"[yellow]Discarded #{entry_id}.[/]")
    shutdown(ctx)


# ── devices ───────────────────────────────────────────────────────────────────

@app.command()
def devices():
    """List devices registered for sync."""
    from fieldops.bootstrap import shutdown
    from fieldops.sync.devices import list_devices

    ctx = _bootstrap()
    devs = list_devices(ctx.session_factory)
    if not devs:
        console.print("[dim]No devices registered yet.[/]")
        shutdown(ctx)
        return

    table = Table(title="Devices", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Platform")
    table.add_column("App", justify="right")
    table.add_column("Last sync", no_wrap=True)
    table.add_column("Active", justify="center")
    for d in devs:
        name = f"{d['name']} [green](this)[/]" if d["is_current"] else d["name"]
        table.add_row(
            name,
            f"{d['platform'] or ''} {d['os_version'] or ''}".strip(),
            d["app_version"] or "",
            _fmt(d["last_sync_at"]),
            "[green]yes[/]" if d["is_active"] else "[red]no[/]",
        )
    console.print(table)
    shutdown(ctx)


# ── ping ──────────────────────────────────────────────────────────────────────

@app.command()
def ping():
    """Check that the configured server answers."""
    from fieldops.bootstrap import shutdown

    ctx = _bootstrap()
    _require_remote(ctx)
    reachable, message = ctx.api.test_connection()
    console.print(f"[green]OK[/] {message}" if reachable else f"[red]Unreachable:[/] {message}")
    shutdown(ctx)
    if not reachable:
        raise typer.Exit(1)


# ── server ────────────────────────────────────────────────────────────────────

@app.command()
def server(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Start the local status API (and, in Remote mode, background sync)."""
    import uvicorn
    console.print(f"[green]Starting fieldops API server[/] → http://{host}:{port}")
    uvicorn.run("fieldops.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
