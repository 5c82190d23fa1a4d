from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from refurb_tracker.domain.models import ActivityLogEntry, RefurbRequest
from refurb_tracker.metrics import CapacityReport

_STATUS_STYLES = {
    "Requested": "yellow",
    "Pending": "yellow",
    "Shipped": "blue",
    "Received": "cyan",
    "In Progress": "magenta",
    "Complete": "green",
    "Fulfilled": "green",
    "Picked Up": "dim",
    "Cancelled": "red",
}


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value is not None else "-"


def print_requests(requests: Sequence[RefurbRequest], console: Optional[Console] = None) -> None:
    """
    Render requests as a rich table, newest first as given.
    """
    console = console or Console()

    if not requests:
        console.print("[yellow]No requests match.[/yellow]")
        return

    table = Table(title="Refurbishment Requests", box=box.ROUNDED)
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Location")
    table.add_column("Technician")
    table.add_column("Instrument")
    table.add_column("Qty", justify="right", style="magenta")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Created", style="dim")
    table.add_column("Expected", style="dim")

    for req in requests:
        style = _STATUS_STYLES.get(req.status, "white")
        qty = str(req.quantity_requested)
        if req.quantity_fulfilled is not None:
            qty = f"{req.quantity_fulfilled}/{req.quantity_requested}"
        table.add_row(
            req.human_request_code,
            req.location.city if req.location else "Unknown",
            req.technician.name if req.technician else "-",
            " ".join(
                part
                for part in (req.instrument.brand, req.instrument.instrument_type)
                if part
            ),
            qty,
            req.priority.value if req.priority else "-",
            f"[{style}]{req.status}[/{style}]",
            _fmt_time(req.created_at),
            req.expected_delivery.isoformat() if req.expected_delivery else "-",
        )

    console.print(table)


def print_status_counts(counts: Optional[Dict[str, int]], console: Optional[Console] = None) -> None:
    console = console or Console()
    if counts is None:
        console.print("[yellow]Status counts unavailable.[/yellow]")
        return
    table = Table(title="Requests by Status", box=box.SIMPLE)
    table.add_column("Status")
    table.add_column("Count", justify="right", style="bold")
    for status, count in counts.items():
        style = _STATUS_STYLES.get(status, "white")
        table.add_row(f"[{style}]{status}[/{style}]", str(count))
    console.print(table)


def print_activity(entries: List[ActivityLogEntry], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Activity", box=box.SIMPLE)
    table.add_column("When", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("By")
    table.add_column("Details")
    for entry in entries:
        details = ", ".join(f"{k}={v}" for k, v in entry.details.items())
        table.add_row(_fmt_time(entry.created_at), entry.action, entry.performed_by, details)
    console.print(table)


def print_metrics(report: CapacityReport, console: Optional[Console] = None) -> None:
    """
    Render the capacity report: per-location windows and category shares.
    """
    console = console or Console()

    locations = Table(
        title="Refurbishment Capacity",
        box=box.ROUNDED,
        caption=f"Generated {_fmt_time(report.generated_at)}",
    )
    locations.add_column("Store", style="cyan", no_wrap=True)
    locations.add_column("City")
    locations.add_column(f"Last {report.short.days} days", justify="right", style="green")
    locations.add_column(f"Last {report.long.days} days", justify="right", style="bold green")
    locations.add_column("Daily avg", justify="right", style="yellow")

    for row in report.summary():
        locations.add_row(
            row.store_number,
            row.city,
            f"{row.short_count:,}",
            f"{row.long_count:,}",
            f"{row.daily_average:.1f}",
        )
    locations.add_row(
        "[bold]Total[/bold]",
        "",
        f"[bold]{report.short.total:,}[/bold]",
        f"[bold]{report.long.total:,}[/bold]",
        f"[bold]{report.long.total / report.long.days:.1f}[/bold]",
    )
    console.print(locations)

    categories = Table(title=f"By Category ({report.long.days} days)", box=box.SIMPLE)
    categories.add_column("Category", style="cyan")
    categories.add_column("Units", justify="right")
    categories.add_column("Share", justify="right", style="magenta")
    for share in report.categories:
        categories.add_row(share.category, f"{share.count:,}", f"{share.percentage:.1f}%")
    console.print(categories)
