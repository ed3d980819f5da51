"""taskrelay command line interface."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

import click

from taskrelay import __version__
from taskrelay.application.resume_service import ResumeController
from taskrelay.application.state_machine import WorkflowStateMachine
from taskrelay.config import EngineConfig, load_config
from taskrelay.console import (
    console,
    print_error,
    print_events,
    print_failure_report,
    print_record,
    print_records,
    print_resume_outcome,
    print_selection,
    print_success,
    print_templates,
)
from taskrelay.domain.audit_event import AuditEventType
from taskrelay.domain.exceptions import (
    TaskRecordNotFound,
    TaskRelayError,
    WorkflowAborted,
    WorkflowHalted,
)
from taskrelay.domain.interfaces import WorkerInterface
from taskrelay.domain.models import ResumeAction
from taskrelay.domain.selection import ProtocolRegistry
from taskrelay.domain.workflow import default_catalog
from taskrelay.infrastructure.persistence import (
    FilesystemAuditLog,
    FilesystemTaskRecordStore,
)
from taskrelay.infrastructure.registry import load_registry
from taskrelay.infrastructure.workers import CommandWorker, ScriptedWorker
from taskrelay.logging_setup import setup_logging

logger = logging.getLogger(__name__)


# =============================================================================
# Engine wiring
# =============================================================================


@dataclass
class Engine:
    """Adapters built from one EngineConfig."""

    config: EngineConfig
    store: FilesystemTaskRecordStore
    audit_log: FilesystemAuditLog
    registry: ProtocolRegistry

    @classmethod
    def from_config(cls, config: EngineConfig) -> Engine:
        return cls(
            config=config,
            store=FilesystemTaskRecordStore(config.store_dir, config.lock_timeout),
            audit_log=FilesystemAuditLog(config.store_dir),
            registry=load_registry(config.registry_path),
        )

    def worker(self, simulate: bool = False) -> WorkerInterface:
        if simulate:
            return ScriptedWorker()
        return CommandWorker(self.config.workers, timeout=self.config.fan_out_timeout)

    def machine(self, worker: WorkerInterface) -> WorkflowStateMachine:
        return WorkflowStateMachine(
            self.store,
            worker,
            catalog=default_catalog(),
            registry=self.registry,
            audit_log=self.audit_log,
            budget=self.config.budget,
            fan_out_timeout=self.config.fan_out_timeout,
            timeout_policy=self.config.timeout_policy,
            max_protocols=self.config.max_protocols,
        )

    def resolve_task_id(self, prefix: str) -> str:
        """Expand a task id prefix to the unique full id.

        Raises:
            TaskRecordNotFound: If no record matches
            click.UsageError: If several records match
        """
        matching = [i for i in self.store.list_task_ids() if i.startswith(prefix)]
        if prefix in matching:
            return prefix
        if not matching:
            raise TaskRecordNotFound(f"Task record not found: {prefix}")
        if len(matching) > 1:
            raise click.UsageError(
                f"Task id prefix '{prefix}' is ambiguous ({len(matching)} matches)"
            )
        return matching[0]


F = TypeVar("F", bound=Callable[..., Any])


def handle_errors(func: F) -> F:
    """
    Decorator mapping taskrelay errors to console output and exit codes.

    Exit codes:
        1: the workflow halted or was aborted (needs a human)
        2: configuration, store or usage error
    """

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except WorkflowHalted as e:
            print_failure_report(e.report)
            raise SystemExit(1) from None
        except WorkflowAborted as e:
            print_error(str(e))
            raise SystemExit(1) from None
        except TaskRelayError as e:
            print_error(str(e))
            raise SystemExit(2) from None

    return wrapper  # type: ignore[return-value]


def simulate_option(func: F) -> F:
    return click.option(
        "--simulate",
        is_flag=True,
        help="Use a scripted worker that passes every step (dry run)",
    )(func)


# =============================================================================
# CLI Commands
# =============================================================================


@click.group()
@click.version_option(__version__, prog_name="taskrelay")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Path to config JSON",
)
@click.option(
    "--store-dir",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory for task records and audit logs (default: .taskrelay)",
)
@click.option(
    "--log-file",
    default=None,
    type=click.Path(),
    help="Path to log file",
)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    help="Enable verbose (DEBUG) logging to console",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    store_dir: str | None,
    log_file: str | None,
    verbose: bool,
) -> None:
    """taskrelay: resumable multi-step task workflows with bounded retries."""
    setup_logging(log_file=log_file, verbose=verbose)
    try:
        config = load_config(config_path).with_overrides(store_dir=store_dir)
    except TaskRelayError as e:
        print_error(str(e), hint="Check the file passed with --config")
        raise SystemExit(2) from None
    ctx.obj = config


def _engine(ctx: click.Context) -> Engine:
    config: EngineConfig = ctx.obj
    return Engine.from_config(config)


@cli.command()
@click.argument("command")
@click.argument("argument")
@click.option(
    "--lineage",
    default=None,
    help="Task id whose lineage this task joins (shares its retry budget)",
)
@simulate_option
@click.pass_context
@handle_errors
def run(
    ctx: click.Context,
    command: str,
    argument: str,
    lineage: str | None,
    simulate: bool,
) -> None:
    """Start COMMAND on ARGUMENT and drive it to completion."""
    engine = _engine(ctx)
    if not simulate and not engine.config.workers:
        print_error(
            "No workers configured",
            hint="Add a 'workers' section (role -> argv) to the config, or pass --simulate",
        )
        raise SystemExit(2)

    lineage_id = None
    if lineage is not None:
        lineage_id = engine.store.get(engine.resolve_task_id(lineage)).lineage_id

    machine = engine.machine(engine.worker(simulate))
    record = machine.start(command, argument, lineage_id=lineage_id)
    console.print(f"Task [cyan]{record.task_id}[/cyan] started ({command})")
    record = machine.run(record.task_id)
    print_success(f"Task {record.task_id} completed")


@cli.command()
@click.argument("task_id")
@click.option("--dry-run", is_flag=True, help="Show where the task would continue")
@simulate_option
@click.pass_context
@handle_errors
def resume(ctx: click.Context, task_id: str, dry_run: bool, simulate: bool) -> None:
    """Continue an interrupted task from its last checkpoint."""
    engine = _engine(ctx)
    task_id = engine.resolve_task_id(task_id)
    controller = ResumeController(engine.store, engine.machine(engine.worker(simulate)))

    outcome = controller.resume(task_id)
    print_resume_outcome(outcome)
    if dry_run or outcome.action == ResumeAction.NOOP:
        return

    record = controller.continue_workflow(task_id)
    print_success(f"Task {record.task_id} completed")


@cli.command()
@click.argument("task_id")
@click.pass_context
@handle_errors
def status(ctx: click.Context, task_id: str) -> None:
    """Show a task record."""
    engine = _engine(ctx)
    print_record(engine.store.get(engine.resolve_task_id(task_id)))


@cli.command("list")
@click.pass_context
@handle_errors
def list_tasks(ctx: click.Context) -> None:
    """List all task records."""
    engine = _engine(ctx)
    records = [engine.store.get(i) for i in engine.store.list_task_ids()]
    print_records(sorted(records, key=lambda r: r.created_at))


@cli.command()
@click.argument("task_id")
@click.option("--reason", default="aborted by user", help="Reason recorded on the task")
@click.pass_context
@handle_errors
def abort(ctx: click.Context, task_id: str, reason: str) -> None:
    """Mark a task FAILED so no controller continues it."""
    engine = _engine(ctx)
    task_id = engine.resolve_task_id(task_id)
    record = engine.machine(engine.worker()).abort(task_id, reason)
    console.print(f"Task {record.task_id} is {record.status.value}")


@cli.command()
@click.argument("task_id")
@click.option(
    "--type",
    "event_type",
    default=None,
    type=click.Choice([t.value for t in AuditEventType], case_sensitive=False),
    help="Only show events of this type",
)
@click.pass_context
@handle_errors
def audit(ctx: click.Context, task_id: str, event_type: str | None) -> None:
    """Show the audit trail of a task."""
    engine = _engine(ctx)
    task_id = engine.resolve_task_id(task_id)
    selected = AuditEventType(event_type.upper()) if event_type else None
    print_events(engine.audit_log.get_events(task_id, selected))


@cli.command()
def commands() -> None:
    """List the available commands and their steps."""
    catalog = default_catalog()
    print_templates([catalog.get(name) for name in catalog.commands()])


@cli.command()
@click.argument("role")
@click.argument("description")
@click.option("--max-k", default=None, type=int, help="Maximum entries to select")
@click.pass_context
@handle_errors
def protocols(
    ctx: click.Context, role: str, description: str, max_k: int | None
) -> None:
    """Show which protocols ROLE would receive for DESCRIPTION."""
    config: EngineConfig = ctx.obj
    registry = load_registry(config.registry_path)
    k = config.max_protocols if max_k is None else max_k
    print_selection(role, registry.select(role, description, k))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
