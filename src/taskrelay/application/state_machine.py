"""
WorkflowStateMachine: drives a task record through its command template.

One controller per record. Steps run strictly in order; a parallel group is
handed to the FanOutCoordinator and joined before the machine moves on. Every
completed step is checkpointed through the store, every failure consults the
RetryBudgetTracker, and only two kinds of outcome leave the machine:
WorkflowHalted (the task needs a human) and WorkflowAborted.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from taskrelay.application.audit_emitter import AuditEmitter
from taskrelay.application.fan_out import FanOutCoordinator, TimeoutPolicy
from taskrelay.application.retry_budget import Granted, RetryBudget, RetryBudgetTracker
from taskrelay.domain.exceptions import (
    EscalationRequired,
    RetryBudgetExhausted,
    TaskAlreadyRunning,
    TaskRecordImmutable,
    WorkflowAborted,
    WorkflowIntegrityError,
)
from taskrelay.domain.interfaces import (
    AuditLogInterface,
    TaskRecordStoreInterface,
    WorkerInterface,
)
from taskrelay.domain.models import (
    ContextSnapshot,
    FailureReport,
    RegistryEntry,
    StepFailure,
    StepKind,
    StepStatus,
    TaskRecord,
    TaskStatus,
    Verdict,
    WorkerResult,
    WorkerStatus,
)
from taskrelay.domain.selection import DEFAULT_MAX_K, ProtocolRegistry, find_protocol_gaps
from taskrelay.domain.workflow import (
    StepDefinition,
    TemplateCatalog,
    WorkflowTemplate,
    compute_template_ref,
    default_catalog,
)

logger = logging.getLogger(__name__)

EXHAUSTED_ACTION = (
    "Automatic retries are used up. Inspect the failures above, fix the "
    "underlying problem by hand, then start a new command on the same lineage."
)
BLOCKED_ACTION = (
    "A worker reported a condition a retry cannot fix. Resolve it by hand "
    "before re-running the command."
)


@dataclass(frozen=True)
class _StepOutcome:
    """Normalized result of one step attempt, sequential or parallel."""

    verdict: Verdict
    detail: str
    files: tuple[str, ...] = ()


class WorkflowStateMachine:
    """
    Executes command templates over persisted task records.

    The machine keeps no workflow state of its own beyond which records it is
    currently driving: everything needed to continue lives in the store.
    """

    def __init__(
        self,
        store: TaskRecordStoreInterface,
        worker: WorkerInterface,
        *,
        catalog: TemplateCatalog | None = None,
        registry: ProtocolRegistry | None = None,
        audit_log: AuditLogInterface | None = None,
        budget: RetryBudget | None = None,
        fan_out_timeout: float | None = None,
        timeout_policy: TimeoutPolicy = TimeoutPolicy.REMEDIATE,
        max_protocols: int = DEFAULT_MAX_K,
    ):
        """
        Args:
            store: Task record store (the single source of truth)
            worker: Worker port used for every step
            catalog: Command templates (defaults to implement, fix and test)
            registry: Protocol registry (defaults to an empty one)
            audit_log: Append-only audit trail (no audit trail if None)
            budget: Retry caps (defaults: 3 per step, 5 per lineage)
            fan_out_timeout: Seconds to wait for a parallel group
            timeout_policy: How timed-out group members are counted
            max_protocols: Upper bound on entries selected per role
        """
        self._store = store
        self._worker = worker
        self._catalog = catalog or default_catalog()
        self._registry = registry or ProtocolRegistry(())
        self._audit_log = audit_log
        self._tracker = RetryBudgetTracker(store, budget)
        self._fan_out = FanOutCoordinator(worker, fan_out_timeout, timeout_policy)
        self._max_protocols = max_protocols
        self._active: dict[str, threading.Event] = {}
        self._active_lock = threading.Lock()

    @property
    def store(self) -> TaskRecordStoreInterface:
        return self._store

    @property
    def catalog(self) -> TemplateCatalog:
        return self._catalog

    @property
    def tracker(self) -> RetryBudgetTracker:
        return self._tracker

    def _emitter(self, task_id: str) -> AuditEmitter:
        return AuditEmitter(self._audit_log, task_id)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def start(
        self, command: str, argument: str, *, lineage_id: str | None = None
    ) -> TaskRecord:
        """
        Create a task record for ``command`` and move it to IN_PROGRESS.

        Raises:
            UnknownCommand: If no template is registered for ``command``
        """
        template = self._catalog.get(command)
        record = self._store.create(
            command,
            argument,
            template.initial_steps(),
            template_ref=compute_template_ref(template),
            lineage_id=lineage_id,
        )
        record = self._store.start(record.task_id, template.next_step_summary(0))
        self._emitter(record.task_id).task_created(command, argument)
        logger.info("Started %s task %s: %s", command, record.task_id, argument)
        return record

    def execute(
        self, command: str, argument: str, *, lineage_id: str | None = None
    ) -> TaskRecord:
        """Start a task and drive it to completion."""
        record = self.start(command, argument, lineage_id=lineage_id)
        return self.run(record.task_id)

    def run(self, task_id: str) -> TaskRecord:
        """
        Drive a record from its current step until it is COMPLETED.

        Terminal records are returned unchanged.

        Returns:
            The COMPLETED record

        Raises:
            RetryBudgetExhausted: If a retry was denied
            EscalationRequired: If a worker reported a non-recoverable failure
            WorkflowAborted: If the task was aborted while being driven
            TaskAlreadyRunning: If this machine is already driving the record
            WorkflowIntegrityError: If the command template changed
        """
        with self._claim(task_id) as cancel_event:
            try:
                return self._drive(task_id, cancel_event)
            except TaskRecordImmutable:
                record = self._store.get(task_id)
                if record.status == TaskStatus.FAILED:
                    raise WorkflowAborted(task_id, record.failure_reason) from None
                raise

    def abort(self, task_id: str, reason: str = "aborted by user") -> TaskRecord:
        """
        Finalize a record as FAILED and stop any in-flight join.

        Safe to call while the record is being driven by another thread; the
        driving thread raises WorkflowAborted and discards late results.
        """
        with self._active_lock:
            cancel_event = self._active.get(task_id)
        if cancel_event is not None:
            cancel_event.set()
        record = self._store.get(task_id)
        if record.is_terminal:
            return record
        record = self._store.finalize(task_id, TaskStatus.FAILED, f"aborted: {reason}")
        self._emitter(task_id).task_aborted(reason)
        logger.warning("Task %s aborted: %s", task_id, reason)
        return record

    def template_for(self, record: TaskRecord) -> WorkflowTemplate:
        """
        Template the record was created from.

        Raises:
            UnknownCommand: If the command is no longer registered
            WorkflowIntegrityError: If the template changed since creation
        """
        template = self._catalog.get(record.command)
        if record.template_ref and compute_template_ref(template) != record.template_ref:
            raise WorkflowIntegrityError(
                f"Template for '{record.command}' changed since task "
                f"{record.task_id} was created; refusing to continue"
            )
        return template

    # =========================================================================
    # EXECUTION
    # =========================================================================

    @contextmanager
    def _claim(self, task_id: str) -> Iterator[threading.Event]:
        with self._active_lock:
            if task_id in self._active:
                raise TaskAlreadyRunning(f"Task {task_id} is already being driven")
            cancel_event = threading.Event()
            self._active[task_id] = cancel_event
        try:
            yield cancel_event
        finally:
            with self._active_lock:
                self._active.pop(task_id, None)

    def _drive(self, task_id: str, cancel_event: threading.Event) -> TaskRecord:
        record = self._store.get(task_id)
        if record.is_terminal:
            return record
        template = self.template_for(record)
        if record.status == TaskStatus.IDLE:
            record = self._store.start(task_id, template.next_step_summary(0))

        while not record.is_terminal:
            if cancel_event.is_set():
                raise WorkflowAborted(task_id, "cancelled")
            record = self._run_step(record, template, cancel_event)

        if record.status == TaskStatus.FAILED:
            raise WorkflowAborted(task_id, record.failure_reason)
        self._emitter(task_id).task_finalized(record.status.value)
        logger.info("Task %s completed", task_id)
        return record

    def _run_step(
        self,
        record: TaskRecord,
        template: WorkflowTemplate,
        cancel_event: threading.Event,
    ) -> TaskRecord:
        index = record.current_step_index
        definition = template.step(index)
        # Retries charged to later steps that re-enter here also re-run this step
        attempt = 1 + sum(
            record.retry_count(name)
            for name in (definition.name, *template.remediated_by(definition.name))
        )
        emitter = self._emitter(record.task_id)

        protocols = self._select_protocols(record, definition, attempt)
        record = self._store.mark_running(
            record.task_id, index, tuple(e.name for e in protocols)
        )
        snapshot = self._snapshot(record, definition, attempt, protocols)
        if record.findings:
            # Open findings travel with this attempt's snapshot only
            record = self._store.clear_findings(record.task_id)

        emitter.step_start(definition.name, definition.roles, attempt)
        logger.info(
            "Task %s step %d/%d '%s' (attempt %d)",
            record.task_id,
            index + 1,
            len(template),
            definition.name,
            attempt,
        )

        outcome = self._invoke(definition, snapshot, cancel_event)
        if cancel_event.is_set():
            raise WorkflowAborted(record.task_id, "cancelled")

        if definition.coverage_checks:
            record = self._check_coverage(record, template, definition)

        if outcome.verdict == Verdict.ALL_PASS:
            record = self._store.checkpoint(
                record.task_id,
                index,
                outcome.detail,
                outcome.files,
                template.next_step_summary(index + 1),
            )
            emitter.step_pass(definition.name, attempt, outcome.detail)
            logger.info("Step '%s' passed", definition.name)
            return record

        record = self._store.record_failure(
            record.task_id, index, outcome.detail, outcome.files
        )
        emitter.step_fail(definition.name, attempt, outcome.verdict.value, outcome.detail)
        logger.warning(
            "Step '%s' %s: %s", definition.name, outcome.verdict.value, outcome.detail
        )

        if outcome.verdict == Verdict.BLOCKED:
            reason = f"Step '{definition.name}' blocked: {outcome.detail}"
            report = self._halt(record, reason, BLOCKED_ACTION)
            raise EscalationRequired(reason, report)

        decision = self._tracker.try_consume(record.task_id, definition.name)
        if isinstance(decision, Granted):
            target = definition.remediate_from or definition.name
            target_index = template.index_of(target)
            record = self._store.reenter(
                record.task_id, target_index, template.next_step_summary(target_index)
            )
            emitter.retry_granted(definition.name, decision.attempt_number, target)
            logger.info(
                "Retry granted for '%s' (attempt %d), re-entering at '%s'",
                definition.name,
                decision.attempt_number,
                target,
            )
            return record

        emitter.retry_denied(definition.name, decision.reason)
        reason = f"Step '{definition.name}' failed: {decision.reason}"
        report = self._halt(record, reason, EXHAUSTED_ACTION)
        raise RetryBudgetExhausted(reason, report)

    def _invoke(
        self,
        definition: StepDefinition,
        snapshot: ContextSnapshot,
        cancel_event: threading.Event,
    ) -> _StepOutcome:
        if definition.kind == StepKind.PARALLEL_GROUP:
            report = self._fan_out.run(
                definition.workers, snapshot, cancel_event=cancel_event
            )
            files = sorted({f for r in report.results for f in r.files_touched})
            return _StepOutcome(report.verdict, report.summary(), tuple(files))

        try:
            result = self._worker.invoke(
                definition.role, snapshot, definition.instructions_ref
            )
        except Exception as e:
            logger.warning(
                "Worker for '%s' raised %s: %s", definition.name, type(e).__name__, e
            )
            result = WorkerResult(
                worker_name=definition.role,
                status=WorkerStatus.ERROR,
                detail=f"{type(e).__name__}: {e}",
            )
        if result.passed:
            verdict = Verdict.ALL_PASS
        elif result.recoverable:
            verdict = Verdict.REMEDIATE
        else:
            verdict = Verdict.BLOCKED
        return _StepOutcome(verdict, result.detail, tuple(result.files_touched))

    # =========================================================================
    # CONTEXT AND PROTOCOLS
    # =========================================================================

    def _select_protocols(
        self, record: TaskRecord, definition: StepDefinition, attempt: int
    ) -> tuple[RegistryEntry, ...]:
        selected: dict[str, RegistryEntry] = {}
        emitter = self._emitter(record.task_id)
        for role in definition.roles:
            entries = self._registry.select(role, record.argument, self._max_protocols)
            emitter.protocols_selected(
                definition.name, role, attempt, [e.name for e in entries]
            )
            logger.debug(
                "Protocols for %s/%s: %s",
                definition.name,
                role,
                ", ".join(e.name for e in entries) or "(none)",
            )
            for entry in entries:
                selected.setdefault(entry.name, entry)
        return tuple(selected.values())

    def _snapshot(
        self,
        record: TaskRecord,
        definition: StepDefinition,
        attempt: int,
        protocols: tuple[RegistryEntry, ...],
    ) -> ContextSnapshot:
        index = record.current_step_index
        prior = tuple(
            (s.name, s.summary)
            for s in record.steps[:index]
            if s.status == StepStatus.DONE
        )
        # A re-entered remediation step also sees why the later step failed
        failures = [
            f"{name}: {detail}"
            for name, detail in record.last_failures
            if name == definition.name
            or self._remediates_from(record, name, definition.name)
        ]
        return ContextSnapshot(
            task_id=record.task_id,
            command=record.command,
            argument=record.argument,
            step_name=definition.name,
            attempt=attempt,
            prior_outputs=prior,
            protocols=protocols,
            findings=record.findings,
            last_failure="\n".join(failures) or None,
            files_touched=tuple(sorted(record.checkpoint.files_touched)),
        )

    def _remediates_from(self, record: TaskRecord, step_name: str, target: str) -> bool:
        template = self._catalog.get(record.command)
        try:
            return template.step(template.index_of(step_name)).remediate_from == target
        except KeyError:
            return False

    def _check_coverage(
        self, record: TaskRecord, template: WorkflowTemplate, definition: StepDefinition
    ) -> TaskRecord:
        # Only steps before this one count; later steps may hold stale selections
        index = template.index_of(definition.name)
        upstream_steps = {s.name for s in template.steps[:index]}
        upstream = {
            name: entries
            for name, entries in record.protocols_used
            if name in upstream_steps
        }
        gaps = find_protocol_gaps(
            record.argument,
            upstream,
            self._registry,
            definition.coverage_checks,
            definition.name,
        )
        if not gaps:
            return record
        emitter = self._emitter(record.task_id)
        for gap in gaps:
            emitter.protocol_gap(gap)
            logger.warning(
                "Protocol gap at '%s': %s (%s)", gap.step_name, gap.detail, gap.tag
            )
        return self._store.add_findings(record.task_id, gaps)

    # =========================================================================
    # FAILURE REPORTING
    # =========================================================================

    def _halt(self, record: TaskRecord, reason: str, action: str) -> FailureReport:
        record = self._store.finalize(record.task_id, TaskStatus.FAILED, reason)
        self._emitter(record.task_id).task_finalized(record.status.value, reason)
        logger.error("Task %s failed: %s", record.task_id, reason)
        return self.failure_report(record, reason, action)

    def failure_report(
        self, record: TaskRecord, reason: str = "", action: str = ""
    ) -> FailureReport:
        """
        Aggregate the last failure of every step in the record's lineage.

        Failures of sibling records are listed as ``command/step``.
        """
        failures = [
            StepFailure(step.name, record.retry_count(step.name) + 1, detail)
            for step in record.steps
            if (detail := record.last_failure(step.name)) is not None
        ]
        files = set(record.checkpoint.files_touched)
        for sibling in self._store.list_lineage(record.lineage_id):
            if sibling.task_id == record.task_id:
                continue
            files.update(sibling.checkpoint.files_touched)
            failures.extend(
                StepFailure(
                    f"{sibling.command}/{name}", sibling.retry_count(name) + 1, detail
                )
                for name, detail in sibling.last_failures
            )
        return FailureReport(
            task_id=record.task_id,
            command=record.command,
            reason=reason or record.failure_reason,
            failures=tuple(failures),
            files_touched=tuple(sorted(files)),
            findings=record.findings,
            recommended_action=action or EXHAUSTED_ACTION,
        )
