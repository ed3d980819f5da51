"""
Task record transitions.

Pure functions from one TaskRecord value to the next. Stores apply them under
their per-id lock and persist the result in a single write, which is what makes
each store operation atomic. Every transition checks the record invariants
before returning:

- IN_PROGRESS implies 0 <= current_step_index < len(steps)
- terminal records are never mutated (finalize is a no-op on them)
- the index only moves backwards through reenter()
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, datetime

from taskrelay.domain.exceptions import CheckpointConflict, TaskRecordImmutable
from taskrelay.domain.models import (
    Checkpoint,
    Finding,
    Step,
    StepStatus,
    TaskRecord,
    TaskStatus,
)


MANUAL_INTERVENTION = "manual intervention required"


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


def _set(pairs: tuple[tuple[str, object], ...], key: str, value: object) -> tuple:
    data = dict(pairs)
    data[key] = value
    return tuple(sorted(data.items()))


def _require_mutable(record: TaskRecord) -> None:
    if record.is_terminal:
        raise TaskRecordImmutable(
            f"Task {record.task_id} is {record.status.value}; no further changes"
        )


def _require_in_progress(record: TaskRecord) -> None:
    _require_mutable(record)
    if record.status != TaskStatus.IN_PROGRESS:
        raise CheckpointConflict(
            f"Task {record.task_id} is {record.status.value}, not in progress"
        )


def _require_current(record: TaskRecord, step_index: int) -> None:
    if step_index != record.current_step_index:
        raise CheckpointConflict(
            f"Task {record.task_id}: step {step_index} is not the current step "
            f"({record.current_step_index})"
        )


def _bump(record: TaskRecord, **changes: object) -> TaskRecord:
    updated = replace(record, version=record.version + 1, **changes)
    check_invariants(updated)
    return updated


def _with_step(record: TaskRecord, index: int, **changes: object) -> tuple[Step, ...]:
    steps = list(record.steps)
    steps[index] = replace(steps[index], **changes)
    return tuple(steps)


def check_invariants(record: TaskRecord) -> None:
    """Raise ValueError if the record violates a structural invariant."""
    if record.status == TaskStatus.IN_PROGRESS and not (
        0 <= record.current_step_index < len(record.steps)
    ):
        raise ValueError(
            f"Task {record.task_id}: in progress with index "
            f"{record.current_step_index} outside 0..{len(record.steps) - 1}"
        )
    if any(count < 0 for _, count in record.retry_counts):
        raise ValueError(f"Task {record.task_id}: negative retry count")


# =============================================================================
# TRANSITIONS
# =============================================================================


def new_record(
    command: str,
    argument: str,
    steps: tuple[Step, ...],
    *,
    template_ref: str = "",
    lineage_id: str | None = None,
    task_id: str | None = None,
) -> TaskRecord:
    """Create an IDLE record positioned at step 0."""
    if not steps:
        raise ValueError("A task record needs at least one step")
    task_id = task_id or str(uuid.uuid4())
    return TaskRecord(
        task_id=task_id,
        lineage_id=lineage_id or task_id,
        command=command,
        argument=argument,
        status=TaskStatus.IDLE,
        steps=tuple(steps),
        template_ref=template_ref,
        created_at=utc_now(),
    )


def start(record: TaskRecord, next_step_summary: str) -> TaskRecord:
    _require_mutable(record)
    if record.status != TaskStatus.IDLE:
        raise CheckpointConflict(f"Task {record.task_id} already started")
    return _bump(
        record,
        status=TaskStatus.IN_PROGRESS,
        current_step_index=0,
        started_at=utc_now(),
        checkpoint=replace(record.checkpoint, next_step_summary=next_step_summary),
    )


def mark_running(
    record: TaskRecord, step_index: int, protocols: tuple[str, ...] = ()
) -> TaskRecord:
    _require_in_progress(record)
    _require_current(record, step_index)
    step = record.steps[step_index]
    return _bump(
        record,
        steps=_with_step(record, step_index, status=StepStatus.RUNNING),
        protocols_used=_set(record.protocols_used, step.name, tuple(protocols)),
    )


def checkpoint(
    record: TaskRecord,
    step_index: int,
    summary: str,
    files: Iterable[str] = (),
    next_step_summary: str = "",
) -> TaskRecord:
    """Complete the current step and advance in one value.

    Completing the last step also finalizes the record as COMPLETED, so the
    index never points past the steps while the record is in progress.
    """
    _require_in_progress(record)
    _require_current(record, step_index)
    now = utc_now()
    step = record.steps[step_index]
    steps = _with_step(
        record, step_index, status=StepStatus.DONE, completed_at=now, summary=summary
    )
    new_checkpoint = Checkpoint(
        completed_summary=f"{step.name}: {summary}" if summary else step.name,
        next_step_summary=next_step_summary,
        files_touched=record.checkpoint.files_touched | frozenset(files),
    )
    next_index = step_index + 1
    if next_index >= len(record.steps):
        return _bump(
            record,
            steps=steps,
            checkpoint=replace(new_checkpoint, next_step_summary=""),
            current_step_index=next_index,
            status=TaskStatus.COMPLETED,
            completed_at=now,
        )
    return _bump(
        record,
        steps=steps,
        checkpoint=new_checkpoint,
        current_step_index=next_index,
    )


def record_failure(
    record: TaskRecord, step_index: int, detail: str, files: Iterable[str] = ()
) -> TaskRecord:
    _require_in_progress(record)
    _require_current(record, step_index)
    step = record.steps[step_index]
    files = frozenset(files)
    return _bump(
        record,
        steps=_with_step(record, step_index, status=StepStatus.FAILED),
        last_failures=_set(record.last_failures, step.name, detail),
        checkpoint=replace(
            record.checkpoint,
            files_touched=record.checkpoint.files_touched | files,
        ),
    )


def increment_retry(record: TaskRecord, step_name: str) -> TaskRecord:
    _require_in_progress(record)
    record.step_index(step_name)  # KeyError for unknown steps
    return _bump(
        record,
        retry_counts=_set(
            record.retry_counts, step_name, record.retry_count(step_name) + 1
        ),
    )


def reenter(record: TaskRecord, step_index: int, next_step_summary: str) -> TaskRecord:
    """Move back to ``step_index``; steps up to the current one become PENDING."""
    _require_in_progress(record)
    if not 0 <= step_index <= record.current_step_index:
        raise CheckpointConflict(
            f"Task {record.task_id}: cannot re-enter step {step_index} from "
            f"{record.current_step_index}"
        )
    steps = list(record.steps)
    for i in range(step_index, record.current_step_index + 1):
        steps[i] = replace(steps[i], status=StepStatus.PENDING, completed_at=None)
    return _bump(
        record,
        steps=tuple(steps),
        current_step_index=step_index,
        checkpoint=replace(record.checkpoint, next_step_summary=next_step_summary),
    )


def add_findings(record: TaskRecord, findings: Iterable[Finding]) -> TaskRecord:
    _require_in_progress(record)
    merged = record.findings + tuple(f for f in findings if f not in record.findings)
    return _bump(record, findings=merged)


def clear_findings(record: TaskRecord) -> TaskRecord:
    _require_in_progress(record)
    if not record.findings:
        return record
    return _bump(record, findings=())


def finalize(record: TaskRecord, status: TaskStatus, reason: str = "") -> TaskRecord:
    """Move to COMPLETED or FAILED; no-op if already terminal."""
    if not status.is_terminal:
        raise ValueError(f"finalize() needs a terminal status, got {status.value}")
    if record.is_terminal:
        return record
    steps = record.steps
    checkpoint = record.checkpoint
    if status == TaskStatus.FAILED and record.current_step is not None:
        current = record.current_step
        if current.status in (StepStatus.PENDING, StepStatus.RUNNING):
            steps = _with_step(
                record, record.current_step_index, status=StepStatus.FAILED
            )
    if status == TaskStatus.FAILED and reason:
        # The halt reason replaces the next action in the same write
        checkpoint = replace(
            checkpoint, next_step_summary=f"{MANUAL_INTERVENTION}: {reason}"
        )
    return _bump(
        record,
        status=status,
        steps=steps,
        checkpoint=checkpoint,
        failure_reason=reason,
        completed_at=utc_now(),
    )
