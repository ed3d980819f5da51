"""
Domain exceptions for taskrelay.

Two families reach callers: WorkflowHalted (the task failed and needs a human)
and StoreError (the persistence layer itself is unreliable). They are kept
apart so callers can tell a failed task from a broken store.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskrelay.domain.models import FailureReport


class TaskRelayError(Exception):
    """Base class for all taskrelay errors."""


# =============================================================================
# WORKFLOW OUTCOMES
# =============================================================================


class WorkflowHalted(TaskRelayError):
    """
    Raised when a workflow transitions to FAILED and needs manual action.

    Carries the aggregate failure report; no further automatic action is
    attempted on the record.
    """

    def __init__(self, message: str, report: "FailureReport"):
        """
        Args:
            message: Human-readable error message
            report: Last failure per step, files touched, recommended action
        """
        super().__init__(message)
        self.report = report


class RetryBudgetExhausted(WorkflowHalted):
    """Raised when the per-step or global retry cap denies another attempt."""


class EscalationRequired(WorkflowHalted):
    """Raised when a worker reports a non-recoverable condition."""


class WorkflowAborted(TaskRelayError):
    """Raised when a workflow is cancelled while it is being driven."""

    def __init__(self, task_id: str, reason: str = ""):
        super().__init__(f"Task {task_id} aborted: {reason}" if reason else task_id)
        self.task_id = task_id
        self.reason = reason


class WorkflowIntegrityError(TaskRelayError):
    """Raised when a command template changed since the record was created."""


class UnknownCommand(TaskRelayError, KeyError):
    """Raised when no workflow template exists for a command name."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(TaskRelayError):
    """Base class for task record store failures."""


class TaskRecordNotFound(StoreError, KeyError):
    """Raised when no record exists for a task id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class CheckpointConflict(StoreError):
    """Raised when a write races another writer or targets a stale index."""


class TaskAlreadyRunning(CheckpointConflict):
    """Raised when a second controller tries to drive the same record."""


class TaskRecordImmutable(StoreError):
    """Raised when mutating a COMPLETED or FAILED record."""


class TaskRecordCorrupted(StoreError):
    """Raised when a persisted record cannot be read or fails validation."""


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigurationError(TaskRelayError):
    """Raised when configuration or registry files are invalid or missing."""
