"""
Domain layer for taskrelay.

Contains records, templates, predicates and ports with no external dependencies.
"""

from taskrelay.domain.exceptions import (
    CheckpointConflict,
    ConfigurationError,
    EscalationRequired,
    RetryBudgetExhausted,
    StoreError,
    TaskAlreadyRunning,
    TaskRecordCorrupted,
    TaskRecordImmutable,
    TaskRecordNotFound,
    TaskRelayError,
    UnknownCommand,
    WorkflowAborted,
    WorkflowHalted,
    WorkflowIntegrityError,
)
from taskrelay.domain.interfaces import (
    AuditLogInterface,
    TaskRecordStoreInterface,
    WorkerInterface,
)
from taskrelay.domain.models import (
    Checkpoint,
    ContextSnapshot,
    FailureReport,
    FanOutReport,
    Finding,
    FindingKind,
    RegistryEntry,
    ResumeAction,
    ResumeOutcome,
    Step,
    StepFailure,
    StepKind,
    StepStatus,
    TaskRecord,
    TaskStatus,
    Verdict,
    WorkerResult,
    WorkerSpec,
    WorkerStatus,
)
from taskrelay.domain.selection import (
    CoverageCheck,
    ProtocolRegistry,
    find_protocol_gaps,
    predicate_from_dict,
)
from taskrelay.domain.workflow import (
    StepDefinition,
    TemplateCatalog,
    WorkflowTemplate,
    compute_template_ref,
    default_catalog,
)

__all__ = [
    # Models
    "Checkpoint",
    "ContextSnapshot",
    "FailureReport",
    "FanOutReport",
    "Finding",
    "FindingKind",
    "RegistryEntry",
    "ResumeAction",
    "ResumeOutcome",
    "Step",
    "StepFailure",
    "StepKind",
    "StepStatus",
    "TaskRecord",
    "TaskStatus",
    "Verdict",
    "WorkerResult",
    "WorkerSpec",
    "WorkerStatus",
    # Templates
    "StepDefinition",
    "TemplateCatalog",
    "WorkflowTemplate",
    "compute_template_ref",
    "default_catalog",
    # Selection
    "CoverageCheck",
    "ProtocolRegistry",
    "find_protocol_gaps",
    "predicate_from_dict",
    # Interfaces
    "AuditLogInterface",
    "TaskRecordStoreInterface",
    "WorkerInterface",
    # Exceptions
    "CheckpointConflict",
    "ConfigurationError",
    "EscalationRequired",
    "RetryBudgetExhausted",
    "StoreError",
    "TaskAlreadyRunning",
    "TaskRecordCorrupted",
    "TaskRecordImmutable",
    "TaskRecordNotFound",
    "TaskRelayError",
    "UnknownCommand",
    "WorkflowAborted",
    "WorkflowHalted",
    "WorkflowIntegrityError",
]
