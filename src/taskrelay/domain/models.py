"""
Domain models for taskrelay.

Pure data structures for task records, steps, checkpoints, worker results and
fan-out reports. Records are immutable (frozen dataclasses): every store write
produces a new value, so a reader holding a record never sees it change.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskrelay.domain.selection import ApplicabilityPredicate

# =============================================================================
# TASK RECORD
# =============================================================================


class TaskStatus(Enum):
    """Lifecycle of one workflow instance."""

    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class StepKind(Enum):
    """Shape of a workflow step."""

    SEQUENTIAL = "sequential"  # One worker invocation
    PARALLEL_GROUP = "parallel_group"  # Fan-out with full barrier join


class StepStatus(Enum):
    """Status of a single step within a task record."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Step:
    """One unit of work in a task record."""

    name: str
    kind: StepKind
    status: StepStatus = StepStatus.PENDING
    completed_at: str | None = None
    summary: str = ""  # Output summary recorded at checkpoint time


@dataclass(frozen=True)
class Checkpoint:
    """Progress marker plus human-readable summary."""

    completed_summary: str = ""
    next_step_summary: str = ""
    files_touched: frozenset[str] = frozenset()


class FindingKind(Enum):
    """Kinds of non-fatal findings attached to a task record."""

    PROTOCOL_GAP = "PROTOCOL_GAP"


@dataclass(frozen=True)
class Finding:
    """Non-fatal finding surfaced to the next attempt."""

    kind: FindingKind
    step_name: str  # Step that raised the finding
    detail: str
    tag: str = ""  # Expected protocol class (e.g. "security")


@dataclass(frozen=True)
class TaskRecord:
    """
    Persisted state of one workflow instance.

    Mappings are stored as sorted tuples of pairs so the record stays hashable
    and comparable; use the accessor methods to read them.
    """

    task_id: str
    lineage_id: str
    command: str
    argument: str
    status: TaskStatus
    steps: tuple[Step, ...]
    current_step_index: int = 0
    checkpoint: Checkpoint = field(default_factory=Checkpoint)
    retry_counts: tuple[tuple[str, int], ...] = ()
    last_failures: tuple[tuple[str, str], ...] = ()
    protocols_used: tuple[tuple[str, tuple[str, ...]], ...] = ()
    findings: tuple[Finding, ...] = ()
    template_ref: str = ""
    failure_reason: str = ""
    version: int = 0
    created_at: str = ""
    started_at: str | None = None
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def current_step(self) -> Step | None:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    def step_index(self, name: str) -> int:
        """Index of the step called ``name``.

        Raises:
            KeyError: If the record has no such step.
        """
        for i, step in enumerate(self.steps):
            if step.name == name:
                return i
        raise KeyError(f"Step not found: {name}")

    def retry_count(self, step_name: str) -> int:
        return dict(self.retry_counts).get(step_name, 0)

    @property
    def total_retries(self) -> int:
        return sum(count for _, count in self.retry_counts)

    def last_failure(self, step_name: str) -> str | None:
        return dict(self.last_failures).get(step_name)

    def protocols_for(self, step_name: str) -> tuple[str, ...]:
        return dict(self.protocols_used).get(step_name, ())


# =============================================================================
# WORKERS AND FAN-OUT
# =============================================================================


class WorkerStatus(Enum):
    """Outcome reported by a single worker invocation."""

    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"  # Worker crashed or never returned


@dataclass(frozen=True)
class WorkerResult:
    """Structured verdict of one worker."""

    worker_name: str
    status: WorkerStatus
    detail: str = ""
    recoverable: bool = True  # False means a retry cannot help
    files_touched: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return self.status == WorkerStatus.PASS

    @property
    def blocking(self) -> bool:
        return not self.passed and not self.recoverable


@dataclass(frozen=True)
class WorkerSpec:
    """One member of a parallel group."""

    name: str
    role: str
    instructions_ref: str


class Verdict(Enum):
    """Aggregated outcome of a parallel group."""

    ALL_PASS = "ALL_PASS"
    REMEDIATE = "REMEDIATE"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class FanOutReport:
    """Ephemeral join result of a parallel group."""

    results: tuple[WorkerResult, ...]
    verdict: Verdict

    @property
    def failures(self) -> tuple[WorkerResult, ...]:
        return tuple(r for r in self.results if not r.passed)

    def summary(self) -> str:
        return "; ".join(
            f"{r.worker_name}={r.status.value}"
            + (f" ({r.detail})" if r.detail and not r.passed else "")
            for r in self.results
        )


# =============================================================================
# PROTOCOL REGISTRY
# =============================================================================


@dataclass(frozen=True)
class RegistryEntry:
    """Named, independently selectable unit of task-specific guidance."""

    name: str
    owning_role: str
    applicability_description: str
    content_ref: str
    predicate: "ApplicabilityPredicate"
    tags: tuple[str, ...] = ()


# =============================================================================
# CONTEXT SNAPSHOT
# =============================================================================


@dataclass(frozen=True)
class ContextSnapshot:
    """
    Immutable reference bundle handed to a worker.

    Assembled once per step attempt and shared read-only by every member of
    a parallel group.
    """

    task_id: str
    command: str
    argument: str
    step_name: str
    attempt: int
    prior_outputs: tuple[tuple[str, str], ...] = ()  # (step name, summary)
    protocols: tuple[RegistryEntry, ...] = ()
    findings: tuple[Finding, ...] = ()
    last_failure: str | None = None
    files_touched: tuple[str, ...] = ()


# =============================================================================
# RESUME AND FAILURE REPORTING
# =============================================================================


class ResumeAction(Enum):
    """What the resume controller decided."""

    CONTINUE = "continue"
    NOOP = "noop"


@dataclass(frozen=True)
class ResumeOutcome:
    """Decision derived strictly from current_step_index and the checkpoint."""

    task_id: str
    status: TaskStatus
    action: ResumeAction
    next_step_index: int | None = None
    next_step_name: str | None = None
    next_step_summary: str = ""


@dataclass(frozen=True)
class StepFailure:
    """Last failure recorded for one step."""

    step_name: str
    attempts: int
    detail: str


@dataclass(frozen=True)
class FailureReport:
    """User-visible report produced when a workflow halts."""

    task_id: str
    command: str
    reason: str
    failures: tuple[StepFailure, ...]
    files_touched: tuple[str, ...] = ()
    findings: tuple[Finding, ...] = ()
    recommended_action: str = ""
