from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from accord import calculations, chain, negotiation, services
from accord.config import get_settings
from accord.db import current_database_url, init_db, session_scope
from accord.errors import Result

app = typer.Typer(help="Accord: negotiate mentorship and co-founder agreements")
console = Console()

DB_URL_HELP = "Optional SQLAlchemy DB URL"


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
    home: str | None = typer.Option(None, "--home", help="Directory holding data/accord.db."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if home:
        os.environ["ACCORD_HOME"] = str(Path(home).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def _render_table(title: str, rows: list[tuple[str, str]], *, border_style: str = "cyan") -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for name, value in rows:
        table.add_row(name, value)
    console.print(Panel(table, title=title, border_style=border_style))


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return
    scalars = [(k, _format_scalar(v)) for k, v in payload.items()
               if isinstance(v, (str, int, float, bool)) or v is None]
    _render_table(title, scalars)
    for key, value in payload.items():
        if isinstance(value, dict):
            _render_table(f"{title} · {key}", [(k, _format_scalar(v)) for k, v in value.items()],
                          border_style="magenta")


def _print_agreements(title: str, items: list[dict[str, Any]], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(items, indent=2, ensure_ascii=False, default=str))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    for column in ("ID", "Project", "Type", "Status", "Payment", "Initiator", "Other", "Turn", "Counter to"):
        table.add_column(column)
    for a in items:
        table.add_row(
            str(a["id"]), str(a["project_id"]), a["agreement_type"], a["status"], a["payment_type"],
            _format_scalar(a["initiator_id"]), _format_scalar(a["other_party_id"]),
            _format_scalar(a["whose_turn"]), _format_scalar(a["counter_to_id"]),
        )
    console.print(Panel(table, title=f"{title} ({len(items)})", border_style="cyan"))


def _fail(result: Result, ctx: typer.Context) -> None:
    payload = result.as_dict()
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        console.print(f"[red]✗[/red] {payload['error']} [dim]({payload['error_code']})[/dim]")
        for err in payload["errors"]:
            console.print(f"  [yellow]{err['field']}[/yellow] {err['message']}")
    raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


@app.command("serve")
def serve_command(
    host: str | None = typer.Option(None, help="Bind address (default from ACCORD_HOST)."),
    port: int | None = typer.Option(None, help="Port (default from ACCORD_PORT)."),
) -> None:
    """Run the REST API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("accord.app:app", host=host or settings.host, port=port or settings.port)


@app.command("mcp")
def mcp_command() -> None:
    """Run the MCP server over stdio."""
    from accord.mcp_server import main

    main()


@app.command("init-db")
def init_db_command(
    ctx: typer.Context,
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    init_db(db_url)
    _print("init-db", {"status": "ok", "database_url": current_database_url()}, ctx)


# ---------------------------------------------------------------------------
# Browsing
# ---------------------------------------------------------------------------


@app.command("list")
def list_command(
    ctx: typer.Context,
    user_id: int = typer.Option(..., "--user-id", help="Participant whose agreements to list."),
    status: str | None = typer.Option(None, help="Comma-separated statuses."),
    role: str | None = typer.Option(None, help="Comma-separated roles."),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        items = [services.agreement_summary(a)
                 for a in services.list_agreements(session, user_id, status=status, role=role)]
    _print_agreements(f"Agreements of user {user_id}", items, ctx)


@app.command("show")
def show_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    user_id: int | None = typer.Option(None, "--user-id", help="Include this participant's permissions."),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        found = services.view_agreement(session, agreement_id, user_id)
        if not found.ok:
            _fail(found, ctx)
        detail = services.agreement_detail(session, found.value, user_id)
    detail.pop("participants")
    _print(f"Agreement #{agreement_id}", detail, ctx)


@app.command("history")
def history_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        found = services.get_agreement(session, agreement_id)
        if not found.ok:
            _fail(found, ctx)
        items = [services.agreement_summary(a) for a in chain.chain_history(session, found.value)]
    _print_agreements(f"Negotiation chain of #{agreement_id}", items, ctx)


@app.command("cost")
def cost_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        found = services.get_agreement(session, agreement_id)
        if not found.ok:
            _fail(found, ctx)
        agreement = found.value
        cost = calculations.total_cost(agreement)
        payload = {
            "agreement_id": agreement.id,
            "duration_in_weeks": calculations.duration_in_weeks(agreement),
            "total_cost": float(cost) if cost is not None else None,
            "payment_details": calculations.payment_details(agreement),
        }
    _print(f"Cost of #{agreement_id}", payload, ctx)


@app.command("turn")
def turn_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    init_db(db_url)
    with session_scope() as session:
        found = services.get_agreement(session, agreement_id)
        if not found.ok:
            _fail(found, ctx)
        holder = negotiation.whose_turn(session, found.value)
    _print(f"Turn on #{agreement_id}", {"agreement_id": agreement_id, "whose_turn": holder}, ctx)


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


def _act(ctx: typer.Context, label: str, agreement_id: int, user_id: int, db_url: str | None,
         operation: Callable[..., Result]) -> None:
    init_db(db_url)
    with session_scope() as session:
        result = operation(session, agreement_id, user_id)
        if not result.ok:
            session.rollback()
            _fail(result, ctx)
        session.commit()
        agreement = result.value
        payload = {"id": agreement.id, "status": agreement.status,
                   "whose_turn": negotiation.whose_turn(session, agreement)}
    if not _wants_json(ctx):
        console.print(f"[green]✓[/green] {label} #{agreement_id}")
    _print(f"Agreement #{agreement_id}", payload, ctx)


@app.command("accept")
def accept_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    user_id: int = typer.Option(..., "--user-id"),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    _act(ctx, "Accepted", agreement_id, user_id, db_url, services.accept_agreement)


@app.command("reject")
def reject_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    user_id: int = typer.Option(..., "--user-id"),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    _act(ctx, "Rejected", agreement_id, user_id, db_url, services.reject_agreement)


@app.command("complete")
def complete_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    user_id: int = typer.Option(..., "--user-id"),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    _act(ctx, "Completed", agreement_id, user_id, db_url, services.complete_agreement)


@app.command("cancel")
def cancel_command(
    ctx: typer.Context,
    agreement_id: int = typer.Argument(...),
    user_id: int = typer.Option(..., "--user-id"),
    db_url: str | None = typer.Option(default=None, help=DB_URL_HELP),
) -> None:
    _act(ctx, "Cancelled", agreement_id, user_id, db_url, services.cancel_agreement)


if __name__ == "__main__":
    app()
