"""CLI commands for psi-agenda."""

import json
from datetime import date
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from psi_agenda.agenda.state import AgendaState
from psi_agenda.billing.summary import summarize
from psi_agenda.billing.tasks import derive_tasks
from psi_agenda.config import get_settings
from psi_agenda.scheduling.conflicts import ConflictResolver
from psi_agenda.scheduling.models import Event, Patient, PaymentEvent, PaymentStatus, parse_date
from psi_agenda.scheduling.recurrence import generate_for_patients

app = typer.Typer(
    name="psi-agenda",
    help="Recurring session scheduling and billing for therapy practices",
    add_completion=False,
)
console = Console()

_events_adapter = TypeAdapter(list[Event])


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def _read_json(path: Path) -> Any:
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {path}: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def _load_patients(path: Path) -> list[Patient]:
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("patients", [])
    if not isinstance(data, list):
        console.print(f"[red]Expected a list of patients in {path}[/red]")
        raise typer.Exit(1)
    try:
        return [Patient.model_validate(item) for item in data]
    except ValidationError as e:
        console.print(f"[red]Invalid patient record: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def _load_state(path: Optional[Path]) -> AgendaState:
    if path is None:
        return AgendaState()
    data = _read_json(path)
    if not isinstance(data, dict):
        console.print(f"[red]Expected an object with override buckets in {path}[/red]")
        raise typer.Exit(1)
    return AgendaState.from_storage(
        overrides=data.get("appointment_overrides"),
        extra_sessions=data.get("extra_sessions"),
        payment_overrides=data.get("payment_overrides"),
    )


def _parse_month(value: str) -> date:
    month = parse_date(f"{value.strip()}-01") if len(value.strip()) == 7 else parse_date(value)
    if month is None:
        console.print(f"[red]Invalid month: {value}. Use YYYY-MM[/red]")
        raise typer.Exit(1)
    return month.replace(day=1)


def _parse_day(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    day = parse_date(value)
    if day is None:
        console.print(f"[red]Invalid date: {value}. Use YYYY-MM-DD[/red]")
        raise typer.Exit(1)
    return day


def _print_json(events: list) -> None:
    console.print_json(_events_adapter.dump_json(events, by_alias=True).decode())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def occurrences(
    patients_file: Path = typer.Argument(..., help="JSON file with patient records"),
    month: str = typer.Option(..., "--month", "-m", help="Target month (YYYY-MM)"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List the sessions patient schedules generate in a month, without overrides."""
    sessions = generate_for_patients(_load_patients(patients_file), _parse_month(month))

    if output_json:
        _print_json(sessions)
        return

    table = Table(title=f"Sessions {month}")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Patient")
    table.add_column("Duration", justify="right")
    table.add_column("Rate", justify="right")
    for s in sessions:
        table.add_row(s.date.isoformat(), s.time, s.name or s.patient_id, str(s.duration), str(s.rate))
    console.print(table)
    console.print(f"{len(sessions)} sessions")


@app.command()
def agenda(
    patients_file: Path = typer.Argument(..., help="JSON file with patient records"),
    month: str = typer.Option(..., "--month", "-m", help="Target month (YYYY-MM)"),
    state_file: Optional[Path] = typer.Option(
        None, "--state", "-s", help="JSON file with override buckets"
    ),
    min_date: Optional[str] = typer.Option(None, "--min-date", help="Hide events before this date"),
    today: Optional[str] = typer.Option(None, "--today", help="Reference date for overdue payments"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the month's visible sessions and payment events."""
    events = _load_state(state_file).aggregate(
        _load_patients(patients_file),
        _parse_month(month),
        min_date=_parse_day(min_date),
        today=_parse_day(today),
    )

    if output_json:
        _print_json(events)
        return

    table = Table(title=f"Agenda {month}")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Kind")
    table.add_column("Patient")
    table.add_column("Status")
    table.add_column("Amount", justify="right")
    for e in events:
        is_payment = isinstance(e, PaymentEvent)
        status_color = "red" if is_payment and e.status == PaymentStatus.OVERDUE else "white"
        table.add_row(
            e.date.isoformat(),
            e.time,
            e.kind,
            e.name or e.patient_id,
            f"[{status_color}]{e.status.value}[/{status_color}]",
            str(e.rate),
        )
    console.print(table)


@app.command()
def conflicts(
    patients_file: Path = typer.Argument(..., help="JSON file with existing patient records"),
    candidate_file: Path = typer.Option(
        ..., "--candidate", "-c", help="JSON file with the schedule being saved"
    ),
    ignore_id: Optional[str] = typer.Option(None, "--ignore", help="Patient id to leave out"),
):
    """Check a candidate schedule against active patients and suggest free slots."""
    patients = _load_patients(patients_file)
    try:
        candidate = Patient.model_validate(_read_json(candidate_file))
    except ValidationError as e:
        console.print(f"[red]Invalid candidate record: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    result = ConflictResolver.from_settings().check_schedule(candidate, patients, ignore_id)

    if not result.has_conflict:
        console.print("[green]No conflict[/green]")
        return

    who = result.conflicting_patient_name or result.conflicting_patient_id
    lines = [f"[bold]Conflicts with:[/bold] {who}", f"[bold]Window:[/bold] {result.window}"]
    if result.suggestions:
        lines.append("[bold]Suggestions:[/bold]")
        lines.extend(f"  - {s.day_of_week} {s.time}" for s in result.suggestions)
    else:
        lines.append("No free slots found")
    console.print(Panel("\n".join(lines), title="Schedule Conflict", border_style="red"))
    raise typer.Exit(2)


@app.command()
def summary(
    patients_file: Path = typer.Argument(..., help="JSON file with patient records"),
    month: str = typer.Option(..., "--month", "-m", help="Target month (YYYY-MM)"),
    state_file: Optional[Path] = typer.Option(
        None, "--state", "-s", help="JSON file with override buckets"
    ),
    today: Optional[str] = typer.Option(None, "--today", help="Reference date for overdue payments"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Revenue, receivables and patient flow for a month."""
    patients = _load_patients(patients_file)
    target = _parse_month(month)
    events = _load_state(state_file).aggregate(patients, target, today=_parse_day(today))
    result = summarize(patients, events, target)

    if output_json:
        console.print_json(result.model_dump_json())
        return

    revenue = result.revenue
    console.print(
        Panel(
            f"[bold]Received:[/bold] {revenue.received} ({revenue.paid_count} paid)\n"
            f"[bold]Overdue:[/bold] {revenue.overdue} ({revenue.overdue_count} overdue)\n"
            f"[bold]Open:[/bold] {revenue.pending_count}",
            title=f"Revenue {month}",
            border_style="green" if not revenue.overdue_count else "yellow",
        )
    )

    if result.receivables.items:
        table = Table(title="Receivables")
        table.add_column("Patient")
        table.add_column("Recurrence")
        table.add_column("Due")
        table.add_column("Sessions", justify="right")
        table.add_column("Estimated", justify="right")
        for item in result.receivables.items:
            table.add_row(
                item.name or item.patient_id,
                item.recurrence.value,
                item.due_label,
                str(item.sessions_count),
                str(item.estimated),
            )
        console.print(table)
        console.print(f"[bold]Total:[/bold] {result.receivables.total}")

    flow = result.flow
    console.print(
        f"Active: {flow.active_count}  New: {flow.new_patients}  Exited: {flow.exited_patients}"
    )
    if flow.adjustment_overdue:
        console.print(f"[yellow]Rate adjustment due: {', '.join(flow.adjustment_overdue)}[/yellow]")


@app.command()
def tasks(
    patients_file: Path = typer.Argument(..., help="JSON file with patient records"),
    month: str = typer.Option(..., "--month", "-m", help="Target month (YYYY-MM)"),
    state_file: Optional[Path] = typer.Option(
        None, "--state", "-s", help="JSON file with override buckets"
    ),
    today: Optional[str] = typer.Option(None, "--today", help="Reference date for due tasks"),
    show_done: bool = typer.Option(False, "--done", help="Also list handled tasks"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Sessions to confirm, notes to write and payments to collect."""
    reference = _parse_day(today)
    events = _load_state(state_file).aggregate(
        _load_patients(patients_file), _parse_month(month), today=reference
    )
    result = derive_tasks(events, today=reference)

    if output_json:
        console.print_json(result.model_dump_json(by_alias=True))
        return

    if not result.open:
        console.print("[green]Nothing to do[/green]")
    else:
        table = Table(title=f"Open tasks ({len(result.open)})")
        table.add_column("Due")
        table.add_column("Type")
        table.add_column("Task")
        for task in result.open:
            overdue = task.due < result.today
            due = f"[red]{task.due.isoformat()}[/red]" if overdue else task.due.isoformat()
            table.add_row(due, task.type.value, escape(task.title))
        console.print(table)

    if show_done and result.done:
        console.print(f"[dim]{len(result.done)} done[/dim]")
        for task in result.done:
            console.print(f"  [dim]{task.due.isoformat()} {escape(task.title)}[/dim]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print(f"Starting psi-agenda API server on {host}:{port}")
    uvicorn.run(
        "psi_agenda.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def version():
    """Show version information."""
    from psi_agenda import __version__

    console.print(f"psi-agenda v{__version__}")
