from __future__ import annotations

import json
import logging
import os
from datetime import date
from pathlib import Path
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from cfptrack import services
from cfptrack.config import get_settings
from cfptrack.db import init_db, session_scope
from cfptrack.deadlines import check_cfp_deadlines
from cfptrack.errors import TrackerError
from cfptrack.scorer import set_threshold

app = typer.Typer(help="Conference talk proposal tracker")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    level = {0: logging.ERROR, 1: logging.INFO}.get(verbose, logging.DEBUG)
    if json_output:
        # stderr; stdout carries the JSON payload.
        handler: logging.Handler = logging.StreamHandler()
        fmt = "%(levelname)s %(name)s: %(message)s"
    else:
        # Event and talk names may contain brackets.
        handler = RichHandler(console=console, show_time=False, show_path=False, markup=False)
        fmt = "%(message)s"
    logging.basicConfig(level=level, format=fmt, handlers=[handler], force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    home: str | None = typer.Option(
        None, "--home", help="Project root; the default database lives in <home>/data/.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if home:
        os.environ["CFPTRACK_HOME"] = str(Path(home).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    if value is None:
        return "-"
    return str(value)


def _render_table(
    title: str, columns: list[str], rows: list[list[str]], *, border_style: str = "cyan",
) -> None:
    table = Table(show_header=True, header_style=f"bold {border_style}", box=ROUNDED)
    for i, col in enumerate(columns):
        table.add_column(col, style="bold" if i == 0 else None)
    for row in rows:
        table.add_row(*row)
    console.print(Panel(table, title=title, border_style=border_style))


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    scalars = [[k, _format_scalar(v)] for k, v in payload.items() if not isinstance(v, (dict, list))]
    if scalars:
        _render_table(title, ["Field", "Value"], scalars)
    else:
        console.print(Panel(f"[bold]{title}[/bold]", border_style="cyan"))

    for key, value in payload.items():
        section = f"{title} · {key}"
        if isinstance(value, dict):
            rows = [[str(k), _format_scalar(v)] for k, v in value.items()]
            _render_table(section, ["Key", "Value"], rows, border_style="magenta")
        elif isinstance(value, list) and value and isinstance(value[0], dict):
            columns = list(value[0])
            rows = [[_format_scalar(item.get(c)) for c in columns] for item in value]
            _render_table(section, columns, rows, border_style="yellow")
        elif isinstance(value, list):
            _render_table(section, ["Item"], [[_format_scalar(v)] for v in value], border_style="yellow")


def _parse_optional_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter("Date must be YYYY-MM-DD") from exc


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command(
    ctx: typer.Context,
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    _print("init-db", {"status": "ok", "database_url_override": db_url}, ctx)


@app.command("add-user")
def add_user_command(
    ctx: typer.Context,
    name: str = typer.Option(..., help="Display name."),
    email: str = typer.Option(..., help="Email; the part before @ becomes the @mention username."),
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        try:
            user = services.create_user(session, name, email)
        except TrackerError as exc:
            raise typer.BadParameter(str(exc)) from exc
        session.commit()
        payload = services.user_dict(user)
    _print("add-user", payload, ctx)


@app.command("users")
def users_command(
    ctx: typer.Context,
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        users = services.list_users(session)
    _print("users", {"count": len(users), "users": users}, ctx)


@app.command("check-deadlines")
def check_deadlines_command(
    ctx: typer.Context,
    today: str | None = typer.Option(None, help="Run as if today were this date (YYYY-MM-DD)."),
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    run_date = _parse_optional_date(today)
    init_db(db_url)
    with session_scope() as session:
        result = check_cfp_deadlines(session, today=run_date)
        session.commit()
    _print("check-deadlines", result.to_dict(), ctx)


@app.command("set-threshold")
def set_threshold_command(
    ctx: typer.Context,
    value: int = typer.Argument(..., help="Minimum weighted score for a recommended event (0-900)."),
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        try:
            set_threshold(session, value)
        except TrackerError as exc:
            raise typer.BadParameter(str(exc)) from exc
        session.commit()
    _print("set-threshold", {"threshold": value}, ctx)


@app.command("stats")
def stats_command(
    ctx: typer.Context,
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        stats = services.compute_stats(session)
    _print("stats", stats, ctx)


@app.command("serve")
def serve_command(
    host: str | None = typer.Option(None, help="Bind address (default from CFPTRACK_HOST)."),
    port: int | None = typer.Option(None, help="Port (default from CFPTRACK_PORT)."),
) -> None:
    import uvicorn
    settings = get_settings()
    uvicorn.run("cfptrack.app:app", host=host or settings.host, port=port or settings.port)


@app.command("mcp")
def mcp_command() -> None:
    """Run the MCP tool server over stdio."""
    from cfptrack.mcp_server import main
    main()


if __name__ == "__main__":
    app()
