"""
Application layer for taskrelay.

Contains the orchestration services that coordinate domain objects.
"""

from taskrelay.application.audit_emitter import AuditEmitter
from taskrelay.application.fan_out import FanOutCoordinator, TimeoutPolicy, aggregate
from taskrelay.application.resume_service import ResumeController
from taskrelay.application.retry_budget import (
    Denied,
    Granted,
    RetryBudget,
    RetryBudgetTracker,
)
from taskrelay.application.state_machine import WorkflowStateMachine

__all__ = [
    "AuditEmitter",
    "Denied",
    "FanOutCoordinator",
    "Granted",
    "ResumeController",
    "RetryBudget",
    "RetryBudgetTracker",
    "TimeoutPolicy",
    "WorkflowStateMachine",
    "aggregate",
]
