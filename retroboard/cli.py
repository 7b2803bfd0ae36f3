from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from retroboard import services
from retroboard.collection import ActionFailed, RetroNotFound
from retroboard.config import get_settings
from retroboard.db import init_db
from retroboard.results import build_export, collect_results, export_filename, export_xlsx, summarize
from retroboard.sections import ACTION_ITEMS
from retroboard.store import Store
from retroboard.utils import format_date

app = typer.Typer(help="Retroboard: team retrospectives from the command line")
console = Console()

T = TypeVar("T")


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.ERROR
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db: str | None = typer.Option(None, "--db", help="SQLite database file (overrides RETROBOARD_DB)."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if db:
        os.environ["RETROBOARD_DB"] = str(Path(db).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _run(action: Callable[[Store], Awaitable[T]]) -> T:
    """Open the configured store and run *action* against it."""
    settings = get_settings()
    if not settings.uses_rest:
        init_db(settings.database_path)

    async def runner() -> T:
        async with services.open_store(settings) as store:
            return await action(store)

    try:
        return asyncio.run(runner())
    except RetroNotFound as exc:
        console.print(f"[red]Retrospective {exc.retro_id} not found[/red]")
        raise typer.Exit(code=1) from exc
    except ActionFailed as exc:
        console.print(f"[red]{exc.title}:[/red] {exc.description}")
        raise typer.Exit(code=1) from exc


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """List retrospectives, newest first."""
    retros = [services.retro_summary(r) for r in _run(services.list_retros)]
    if _wants_json(ctx):
        _echo_json(retros)
        return
    if not retros:
        console.print("[dim]No retrospectives yet.[/dim]")
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Created")
    for retro in retros:
        table.add_row(str(retro["id"]), retro["name"], retro["date"])
    console.print(Panel(table, title="Retrospectives", border_style="cyan"))


@app.command("create")
def create_command(ctx: typer.Context, name: str = typer.Argument(..., help="Retrospective name.")) -> None:
    """Create a retrospective."""
    retro = _run(lambda store: services.create_retro(store, name))
    if retro is None:
        raise typer.BadParameter("Please enter a retro name")
    summary = services.retro_summary(retro)
    if _wants_json(ctx):
        _echo_json(summary)
        return
    console.print(f"[green]✓[/green] Created retrospective [bold]{summary['name']}[/bold] (id {summary['id']})")


@app.command("results")
def results_command(ctx: typer.Context, retro_id: int = typer.Argument(..., help="Retrospective id.")) -> None:
    """Show the aggregated results of a retrospective."""
    results = _run(lambda store: collect_results(store, retro_id))
    if _wants_json(ctx):
        _echo_json({**results, "summary": summarize(results)})
        return

    console.print(Panel(
        f"[bold]{results['name']}[/bold]\n{format_date(results['created_at'])}",
        border_style="cyan",
    ))
    for section in results["sections"]:
        table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
        if section["name"] == ACTION_ITEMS:
            table.add_column("Description")
            table.add_column("Owner")
            table.add_column("Priority")
            for item in section["action_items"] or []:
                table.add_row(item["description"], item["assigned_owner"], item["priority"])
        else:
            table.add_column("Item")
            table.add_column("Upvotes", justify="right")
            for item in section["items"]:
                table.add_row(item["content"], str(item["upvotes"]))
        console.print(Panel(table, title=section["title"], border_style="magenta"))

    summary = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    summary.add_column("Section", style="bold")
    summary.add_column("Count", justify="right")
    for row in summarize(results):
        summary.add_row(row["title"], str(row["count"]))
    console.print(Panel(summary, title="Summary", border_style="yellow"))


@app.command("export")
def export_command(
    ctx: typer.Context,
    retro_id: int = typer.Argument(..., help="Retrospective id."),
    out: Path | None = typer.Option(None, "--out", help="Output file or directory (default: current directory)."),
    xlsx: bool = typer.Option(False, "--xlsx", help="Write an Excel workbook instead of JSON."),
) -> None:
    """Export the results as JSON (or XLSX) to retro-results-<name>.<ext>."""
    results = _run(lambda store: collect_results(store, retro_id))
    document = build_export(results)
    filename = export_filename(results["name"], "xlsx" if xlsx else "json")

    target = out or Path.cwd()
    if target.is_dir():
        target = target / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    if xlsx:
        target.write_bytes(export_xlsx(document))
    else:
        target.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    if _wants_json(ctx):
        _echo_json({"path": str(target), "sections": len(document["sections"])})
        return
    console.print(f"[green]✓[/green] Wrote {target}")


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8002, help="Port."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the web app with uvicorn."""
    import uvicorn
    uvicorn.run("retroboard.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
