"""
Domain interfaces (Ports) for taskrelay.

These abstract base classes define the contracts that adapters must satisfy.
They have no external dependencies and represent the core domain boundaries.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from taskrelay.domain.audit_event import AuditEvent, AuditEventType
    from taskrelay.domain.models import (
        ContextSnapshot,
        Finding,
        Step,
        TaskRecord,
        TaskStatus,
        WorkerResult,
    )


class WorkerInterface(ABC):
    """
    Port for worker invocation.

    A worker is opaque to the orchestration core: it receives a role, an
    immutable context snapshot and a reference to its instructions, and
    returns a structured verdict.

    Note (Concurrency):
        Members of a parallel group call invoke() concurrently from several
        threads with the same snapshot. Implementations must not keep
        per-call mutable state on the instance without their own locking.
    """

    @abstractmethod
    def invoke(
        self,
        role: str,
        context_snapshot: "ContextSnapshot",
        instructions_ref: str,
    ) -> "WorkerResult":
        """
        Run one unit of work.

        Args:
            role: Role being executed (e.g. "developer", "tester")
            context_snapshot: Read-only reference material for this attempt
            instructions_ref: Opaque reference to the task instructions

        Returns:
            WorkerResult with status PASS, FAIL or ERROR
        """
        pass


class TaskRecordStoreInterface(ABC):
    """
    Port for task record persistence.

    Every mutating call is a single atomic write serialized per task id.
    Terminal records (COMPLETED, FAILED) reject every mutation except
    finalize(), which is an idempotent no-op on them.
    """

    @abstractmethod
    def create(
        self,
        command: str,
        argument: str,
        steps: tuple["Step", ...],
        *,
        template_ref: str = "",
        lineage_id: str | None = None,
    ) -> "TaskRecord":
        """Create an IDLE record positioned at step 0."""
        pass

    @abstractmethod
    def get(self, task_id: str) -> "TaskRecord":
        """
        Retrieve a record by id.

        Raises:
            TaskRecordNotFound: If no record exists
            TaskRecordCorrupted: If the stored record is unreadable
        """
        pass

    @abstractmethod
    def list_lineage(self, lineage_id: str) -> list["TaskRecord"]:
        """All records sharing a lineage, oldest first."""
        pass

    @abstractmethod
    def start(self, task_id: str, next_step_summary: str) -> "TaskRecord":
        """Transition IDLE -> IN_PROGRESS."""
        pass

    @abstractmethod
    def mark_running(
        self, task_id: str, step_index: int, protocols: tuple[str, ...] = ()
    ) -> "TaskRecord":
        """Mark the current step RUNNING and record the protocols handed to it."""
        pass

    @abstractmethod
    def checkpoint(
        self,
        task_id: str,
        step_index: int,
        summary: str,
        files: Iterable[str] = (),
        next_step_summary: str = "",
    ) -> "TaskRecord":
        """
        Atomically complete ``step_index`` and advance.

        Updates (current_step_index, checkpoint, steps[step_index]) together.
        Completing the last step finalizes the record as COMPLETED.

        Raises:
            CheckpointConflict: If step_index is not the current index, or a
                concurrent writer holds the record
            TaskRecordImmutable: If the record is terminal
        """
        pass

    @abstractmethod
    def record_failure(
        self,
        task_id: str,
        step_index: int,
        detail: str,
        files: Iterable[str] = (),
    ) -> "TaskRecord":
        """Mark the current step FAILED and keep ``detail`` as its last failure.

        Files touched by the failed attempt are merged into the checkpoint so
        a failure report can list them.
        """
        pass

    @abstractmethod
    def increment_retry(self, task_id: str, step_name: str) -> "TaskRecord":
        """Add one to retry_counts[step_name]. Counters never decrease."""
        pass

    @abstractmethod
    def reenter(
        self, task_id: str, step_index: int, next_step_summary: str
    ) -> "TaskRecord":
        """
        Move execution back to ``step_index`` for a remediation retry.

        Steps from ``step_index`` through the current index return to PENDING.

        Raises:
            CheckpointConflict: If step_index is ahead of the current index
        """
        pass

    @abstractmethod
    def add_findings(
        self, task_id: str, findings: Iterable["Finding"]
    ) -> "TaskRecord":
        """Attach findings for the next attempt to pick up."""
        pass

    @abstractmethod
    def clear_findings(self, task_id: str) -> "TaskRecord":
        """Drop findings once an attempt has received them."""
        pass

    @abstractmethod
    def finalize(
        self, task_id: str, status: "TaskStatus", reason: str = ""
    ) -> "TaskRecord":
        """
        Move the record to a terminal status.

        Idempotent: on an already-terminal record this is a no-op returning
        the stored record.
        """
        pass


class AuditLogInterface(ABC):
    """Port for the append-only audit trail."""

    @abstractmethod
    def append(self, event: "AuditEvent") -> str:
        """Append an event and return its id."""
        pass

    @abstractmethod
    def get_events(
        self,
        task_id: str,
        event_type: "AuditEventType | None" = None,
        step_name: str | None = None,
    ) -> list["AuditEvent"]:
        """Events for a task in creation order, optionally filtered."""
        pass
