"""Rich console rendering for the taskrelay CLI."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from taskrelay.domain.models import StepStatus, TaskStatus

if TYPE_CHECKING:
    from taskrelay.domain.audit_event import AuditEvent
    from taskrelay.domain.models import (
        FailureReport,
        RegistryEntry,
        ResumeOutcome,
        TaskRecord,
    )
    from taskrelay.domain.workflow import WorkflowTemplate

# Shared console instances
console = Console()
error_console = Console(stderr=True)

_STATUS_STYLE = {
    TaskStatus.IDLE: "dim",
    TaskStatus.IN_PROGRESS: "yellow",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
}
_STEP_MARK = {
    StepStatus.PENDING: "[dim]·[/dim]",
    StepStatus.RUNNING: "[yellow]▶[/yellow]",
    StepStatus.DONE: "[green]✓[/green]",
    StepStatus.FAILED: "[red]✗[/red]",
}


def print_error(message: str, hint: str | None = None) -> None:
    """Print formatted error message to stderr."""
    content = Text(f"ERROR: {message}", style="bold red")
    if hint:
        content.append(f"\n\nHint: {hint}", style="yellow")
    error_console.print(Panel(content, title="Error", border_style="red"))


def print_success(message: str) -> None:
    console.print(Panel(message, title="Success", border_style="green"))


def print_record(record: TaskRecord) -> None:
    """Print a task record: identity, steps and counters."""
    style = _STATUS_STYLE[record.status]
    console.print(
        Panel(
            f"[bold]Task:[/bold] {record.task_id}\n"
            f"[bold]Lineage:[/bold] {record.lineage_id}\n"
            f"[bold]Command:[/bold] {record.command} {escape(repr(record.argument))}\n"
            f"[bold]Status:[/bold] [{style}]{record.status.value}[/{style}]"
            + (
                f"\n[bold]Reason:[/bold] {escape(record.failure_reason)}"
                if record.failure_reason
                else ""
            ),
            title="Task Record",
        )
    )

    table = Table(show_header=True, box=None)
    table.add_column("", width=2)
    table.add_column("Step", style="cyan")
    table.add_column("Kind", style="dim")
    table.add_column("Retries", justify="right")
    table.add_column("Protocols", style="magenta")
    table.add_column("Summary / last failure")
    for i, step in enumerate(record.steps):
        marker = _STEP_MARK[step.status]
        if i == record.current_step_index and record.status == TaskStatus.IN_PROGRESS:
            marker = "[bold yellow]→[/bold yellow]"
        failure = record.last_failure(step.name)
        if step.summary:
            note = escape(step.summary[:120])
        elif failure:
            note = f"[red]{escape(failure[:120])}[/red]"
        else:
            note = ""
        table.add_row(
            marker,
            step.name,
            step.kind.value,
            str(record.retry_count(step.name)),
            ", ".join(record.protocols_for(step.name)),
            note,
        )
    console.print(table)

    if record.checkpoint.next_step_summary:
        console.print(f"\n[bold]Next:[/bold] {escape(record.checkpoint.next_step_summary)}")
    if record.checkpoint.files_touched:
        console.print(
            "[bold]Files:[/bold] " + ", ".join(sorted(record.checkpoint.files_touched))
        )
    for finding in record.findings:
        console.print(f"[yellow]{finding.kind.value}[/yellow] {escape(finding.detail)}")


def print_failure_report(report: FailureReport) -> None:
    """Print the aggregate report of a halted workflow."""
    console.print(
        Panel(
            Text(report.reason, style="bold red"),
            title=f"Task {report.task_id[:12]} ({report.command}) halted",
            border_style="red",
        )
    )

    table = Table(title="Last failure per step", show_header=True, box=None)
    table.add_column("Step", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Error (summary)", style="red")
    for failure in report.failures:
        summary = failure.detail.split("\n")[0][:100]
        table.add_row(failure.step_name, str(failure.attempts), escape(summary))
    console.print(table)

    if report.files_touched:
        console.print("\n[bold]Files touched:[/bold]")
        for path in report.files_touched:
            console.print(f"  {path}")
    if report.findings:
        console.print("\n[bold]Open findings:[/bold]")
        for finding in report.findings:
            console.print(f"  [yellow]{finding.kind.value}[/yellow] {escape(finding.detail)}")

    console.print(f"\n[bold]Recommended action:[/bold] {escape(report.recommended_action)}")


def print_resume_outcome(outcome: ResumeOutcome) -> None:
    if outcome.next_step_name is None:
        console.print(
            f"Task {outcome.task_id} is [bold]{outcome.status.value}[/bold]; "
            "nothing to resume."
        )
        return
    console.print(
        f"Task {outcome.task_id} would continue at step "
        f"{outcome.next_step_index} '[cyan]{outcome.next_step_name}[/cyan]'"
        + (f": {escape(outcome.next_step_summary)}" if outcome.next_step_summary else "")
    )


def print_events(events: Sequence[AuditEvent]) -> None:
    """Print the audit trail of one task."""
    if not events:
        console.print("[dim]No audit events found.[/dim]")
        return
    table = Table(title="Audit Trail", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Step")
    table.add_column("Attempt", justify="right")
    table.add_column("Verdict")
    table.add_column("Detail")
    for event in events:
        detail = ", ".join(event.entries) if event.entries else event.summary
        table.add_row(
            event.created_at[11:19],
            event.event_type.value,
            event.step_name or "",
            "" if event.attempt is None else str(event.attempt),
            event.verdict or "",
            escape(detail[:80]),
        )
    console.print(table)


def print_records(records: Sequence[TaskRecord]) -> None:
    if not records:
        console.print("[dim]No task records found.[/dim]")
        return
    table = Table(title="Task Records")
    table.add_column("Task ID", style="cyan")
    table.add_column("Command")
    table.add_column("Status")
    table.add_column("Step", justify="right")
    table.add_column("Created", style="dim")
    for record in records:
        style = _STATUS_STYLE[record.status]
        table.add_row(
            record.task_id[:12] + "...",
            record.command,
            f"[{style}]{record.status.value}[/{style}]",
            f"{min(record.current_step_index + 1, len(record.steps))}/{len(record.steps)}",
            record.created_at[:19],
        )
    console.print(table)


def print_templates(templates: Sequence[WorkflowTemplate]) -> None:
    for template in templates:
        console.print(f"\n[bold]{template.command}[/bold]: {escape(template.description)}")
        for i, step in enumerate(template.steps, 1):
            who = ", ".join(w.name for w in step.workers) if step.workers else step.role
            retry = f" (retry from {step.remediate_from})" if step.remediate_from else ""
            console.print(f"  {i}. {step.name} ({step.kind.value}: {who}){retry}")


def print_selection(role: str, entries: Sequence[RegistryEntry]) -> None:
    if not entries:
        console.print(f"[dim]No protocols apply for role '{role}'.[/dim]")
        return
    table = Table(title=f"Protocols for {role}")
    table.add_column("Name", style="cyan")
    table.add_column("Tags", style="magenta")
    table.add_column("Applies to")
    table.add_column("Content", style="dim")
    for entry in entries:
        table.add_row(
            entry.name,
            ", ".join(entry.tags),
            escape(entry.applicability_description),
            entry.content_ref,
        )
    console.print(table)
