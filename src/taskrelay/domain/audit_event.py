"""Audit trail models: protocol selections, retries and step transitions."""

from dataclasses import dataclass
from enum import Enum


class AuditEventType(str, Enum):
    """Types of audit events."""

    TASK_CREATED = "TASK_CREATED"
    STEP_START = "STEP_START"
    STEP_PASS = "STEP_PASS"
    STEP_FAIL = "STEP_FAIL"
    PROTOCOL_SELECTED = "PROTOCOL_SELECTED"
    PROTOCOL_GAP = "PROTOCOL_GAP"
    RETRY_GRANTED = "RETRY_GRANTED"
    RETRY_DENIED = "RETRY_DENIED"
    TASK_FINALIZED = "TASK_FINALIZED"
    TASK_ABORTED = "TASK_ABORTED"


@dataclass(frozen=True)
class AuditEvent:
    """Single append-only audit entry keyed by task id.

    Written for post-hoc debugging; the control logic never reads it back.
    """

    event_id: str
    event_type: AuditEventType
    task_id: str
    step_name: str | None = None
    role: str | None = None
    attempt: int | None = None
    verdict: str | None = None  # "PASS", "FAIL", "REMEDIATE", "BLOCKED", ...
    entries: tuple[str, ...] = ()  # Registry entry names or finding tags
    summary: str = ""
    created_at: str = ""  # ISO 8601
