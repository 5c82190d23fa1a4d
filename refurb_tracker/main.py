from __future__ import annotations

import asyncio
import sys
from datetime import date, datetime
from typing import Awaitable, Callable, Optional, Type, TypeVar

import typer
from pydantic import BaseModel, ValidationError
from rich.console import Console

from refurb_tracker.config import get_settings
from refurb_tracker.domain.models import (
    CompletionDraft,
    Priority,
    RefurbRequest,
    RequestDraft,
    SessionContext,
)
from refurb_tracker.errors import RefurbError
from refurb_tracker.lifecycle import available_lifecycles
from refurb_tracker.notifier import format_new_request_alert
from refurb_tracker.reporter import (
    print_activity,
    print_metrics,
    print_requests,
    print_status_counts,
)
from refurb_tracker.request_store import RequestFilters, TransitionResult
from refurb_tracker.service import RefurbService, open_service
from refurb_tracker.utils.logging import configure_logging

app = typer.Typer(help="Refurb Tracker CLI.")
console = Console()

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

TECH_OPTION = typer.Option(..., "--tech", "-t", help="Technician id acting on the request.")
PIN_OPTION = typer.Option(..., "--pin", prompt=True, hide_input=True, help="Technician PIN.")
BY_OPTION = typer.Option("Hub", "--by", help="Name recorded as the hub operator.")


def _run(action: Callable[[RefurbService], Awaitable[T]]) -> T:
    """Open the service, run one action, and map domain errors to exit code 1."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def runner() -> T:
        async with open_service(settings) as service:
            return await action(service)

    try:
        return asyncio.run(runner())
    except (RefurbError, PermissionError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


async def _session(service: RefurbService, tech_id: str, pin: str) -> SessionContext:
    return await service.reference.build_session(tech_id, pin)


def _draft(model: Type[M], **values) -> M:
    try:
        return model(**values)
    except ValidationError as exc:
        console.print(f"[red]{exc.errors()[0]['msg']}[/red]")
        raise typer.Exit(code=1) from exc


def _report(result: TransitionResult) -> None:
    req = result.request
    console.print(f"[green]{req.human_request_code}[/green] is now [bold]{req.status}[/bold]")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning.message}")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"lifecycle={settings.lifecycle} (available: {', '.join(available_lifecycles())}) "
        f"timezone={settings.timezone} windows={settings.short_window_days}/"
        f"{settings.long_window_days}d"
    )


@app.command()
def requests(
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Location id."),
    tech: Optional[str] = typer.Option(None, "--tech", "-t", help="Technician id."),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Exact status."),
    open_only: bool = typer.Option(False, "--open", help="Hide requests in terminal states."),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Free-text search."),
    counts: bool = typer.Option(False, "--counts", help="Also show counts per status."),
) -> None:
    """
    List requests, newest first. Due deliveries are marked received on read.
    """
    filters = RequestFilters(
        location_id=location,
        tech_id=tech,
        status=status,
        exclude_terminal=open_only,
        search=search,
    )

    async def action(service: RefurbService):
        records = await service.requests.list_requests(filters)
        status_counts = await service.requests.status_counts() if counts else None
        return records, status_counts

    records, status_counts = _run(action)
    print_requests(records, console)
    if counts:
        print_status_counts(status_counts, console)


@app.command()
def activity(request_id: str = typer.Argument(..., help="Request id.")) -> None:
    """
    Show the audit trail of one request.
    """
    entries = _run(lambda service: service.requests.activity(request_id))
    print_activity(entries, console)


@app.command()
def submit(
    instrument: str = typer.Option(..., "--instrument", "-i", help="Instrument type."),
    quantity: int = typer.Option(..., "--quantity", "-n", min=1, max=999),
    brand: Optional[str] = typer.Option(None, "--brand"),
    priority: Optional[Priority] = typer.Option(None, "--priority"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    tech_id: str = TECH_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """
    Submit a refurbishment request for the technician's location.
    """
    draft = _draft(
        RequestDraft,
        instrument_type=instrument,
        quantity=quantity,
        brand=brand,
        priority=priority,
        notes=notes,
    )

    async def action(service: RefurbService) -> RefurbRequest:
        session = await _session(service, tech_id, pin)
        return await service.requests.submit(session, draft)

    created = _run(action)
    console.print(
        f"Submitted [green]{created.human_request_code}[/green] ({created.status})"
    )


@app.command()
def ship(
    request_id: str = typer.Argument(..., help="Request id."),
    expected: datetime = typer.Option(
        ..., "--expected", formats=["%Y-%m-%d"], help="Expected delivery date."
    ),
    by: str = BY_OPTION,
) -> None:
    """
    Mark a request shipped with its expected delivery date.
    """
    expected_day: date = expected.date()
    _report(_run(lambda service: service.requests.ship(request_id, expected_day, performed_by=by)))


@app.command()
def start(
    request_id: str = typer.Argument(..., help="Request id."),
    tech_id: str = TECH_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """
    Start work on a received request.
    """

    async def action(service: RefurbService) -> TransitionResult:
        session = await _session(service, tech_id, pin)
        return await service.requests.start_work(session, request_id)

    _report(_run(action))


@app.command()
def complete(
    request_id: str = typer.Argument(..., help="Request id."),
    tech_id: str = TECH_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """
    Mark work on a request complete.
    """

    async def action(service: RefurbService) -> TransitionResult:
        session = await _session(service, tech_id, pin)
        return await service.requests.complete_work(session, request_id)

    _report(_run(action))


@app.command()
def pickup(
    request_id: str = typer.Argument(..., help="Request id."),
    by: str = BY_OPTION,
) -> None:
    """
    Confirm the hub picked up a completed request.
    """
    _report(_run(lambda service: service.requests.confirm_pickup(request_id, performed_by=by)))


@app.command()
def begin(
    request_id: str = typer.Argument(..., help="Request id."),
    by: str = BY_OPTION,
) -> None:
    """
    Start fulfilling a pending request.
    """
    _report(_run(lambda service: service.requests.begin_fulfillment(request_id, performed_by=by)))


@app.command()
def fulfill(
    request_id: str = typer.Argument(..., help="Request id."),
    quantity: int = typer.Option(..., "--quantity", "-n", min=0, max=999),
    fulfilled_by: str = typer.Option(..., "--fulfilled-by", help="Who fulfilled it."),
    notes: Optional[str] = typer.Option(None, "--notes"),
) -> None:
    """
    Fulfil a request. A quantity different from the request is a warning only.
    """
    _report(
        _run(lambda service: service.requests.fulfill(request_id, quantity, fulfilled_by, notes))
    )


@app.command()
def cancel(
    request_id: str = typer.Argument(..., help="Request id."),
    reason: Optional[str] = typer.Option(None, "--reason"),
    by: str = BY_OPTION,
) -> None:
    """
    Cancel an open request.
    """
    _report(_run(lambda service: service.requests.cancel(request_id, reason, performed_by=by)))


@app.command("log-completion")
def log_completion(
    instrument: str = typer.Option(..., "--instrument", "-i", help="Instrument type."),
    brand: str = typer.Option(..., "--brand"),
    quantity: int = typer.Option(..., "--quantity", "-n", min=1, max=999),
    armband: bool = typer.Option(False, "--armband", help="Yellow armband applied."),
    qc_signed: bool = typer.Option(False, "--qc-signed", help="QC card signed."),
    notes: Optional[str] = typer.Option(None, "--notes"),
    tech_id: str = TECH_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """
    Log today's completed refurbishments for the technician's location.
    """
    draft = _draft(
        CompletionDraft,
        instrument_type=instrument,
        brand=brand,
        quantity_completed=quantity,
        yellow_armband_applied=armband,
        qc_card_signed=qc_signed,
        notes=notes,
    )

    async def action(service: RefurbService):
        session = await _session(service, tech_id, pin)
        return await service.completions.log_completion(session, draft)

    logged = _run(action)
    console.print(
        f"Logged [green]{logged.quantity_completed}x {logged.instrument_type}[/green] "
        f"for {logged.completion_date.isoformat()}"
    )


@app.command()
def metrics() -> None:
    """
    Show rolling 7/30-day capacity per location and by category.
    """
    print_metrics(_run(lambda service: service.metrics.collect()), console)


@app.command()
def watch() -> None:
    """
    Print new-request alerts and change notices until interrupted.
    """

    async def action(service: RefurbService) -> None:
        def on_refresh() -> None:
            console.print("[dim]Requests changed[/dim]")

        def on_new_request(request: RefurbRequest) -> None:
            console.print(f"[bold green]{format_new_request_alert(request)}[/bold green]")

        def on_completion() -> None:
            console.print("[dim]Completion logged[/dim]")

        async with await service.notifier.watch_requests(on_refresh, on_new_request):
            async with await service.notifier.watch_completions(on_completion):
                console.print("Watching for changes. Press Ctrl+C to stop.")
                await asyncio.Event().wait()

    _run(action)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
