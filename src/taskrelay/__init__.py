"""
taskrelay: resumable multi-step task workflows.

Drives a named task ("implement a change", "fix a defect") through an ordered
sequence of steps, fans some steps out to parallel workers, checkpoints every
completed step and bounds automatic retries before a human is needed.

Example:
    from taskrelay import WorkflowStateMachine
    from taskrelay.infrastructure import InMemoryTaskRecordStore, ScriptedWorker

    machine = WorkflowStateMachine(InMemoryTaskRecordStore(), ScriptedWorker())
    record = machine.execute("implement", "add a REST endpoint for orders")
"""

from taskrelay.application.resume_service import ResumeController
from taskrelay.application.retry_budget import RetryBudget
from taskrelay.application.state_machine import WorkflowStateMachine
from taskrelay.domain.exceptions import (
    EscalationRequired,
    RetryBudgetExhausted,
    TaskRelayError,
    WorkflowAborted,
    WorkflowHalted,
)
from taskrelay.domain.models import TaskRecord, TaskStatus

__version__ = "0.1.0"

__all__ = [
    "EscalationRequired",
    "ResumeController",
    "RetryBudget",
    "RetryBudgetExhausted",
    "TaskRecord",
    "TaskRelayError",
    "TaskStatus",
    "WorkflowAborted",
    "WorkflowHalted",
    "WorkflowStateMachine",
    "__version__",
]
