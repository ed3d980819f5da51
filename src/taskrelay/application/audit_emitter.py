"""Audit event emission service."""

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from taskrelay.domain.audit_event import AuditEvent, AuditEventType
from taskrelay.domain.interfaces import AuditLogInterface
from taskrelay.domain.models import Finding


class AuditEmitter:
    """Emits audit events for one task.

    Provides convenience methods for the events the state machine writes,
    handling ID generation and timestamps. With no audit log configured every
    method is a no-op.
    """

    def __init__(self, audit_log: AuditLogInterface | None, task_id: str) -> None:
        self._log = audit_log
        self._task_id = task_id

    def _emit(self, event_type: AuditEventType, **fields: Any) -> None:
        if self._log is None:
            return
        self._log.append(
            AuditEvent(
                event_id=str(uuid.uuid4()),
                event_type=event_type,
                task_id=self._task_id,
                created_at=datetime.now(UTC).isoformat(),
                **fields,
            )
        )

    def task_created(self, command: str, argument: str) -> None:
        self._emit(AuditEventType.TASK_CREATED, summary=f"{command}: {argument}"[:500])

    def step_start(self, step_name: str, roles: Iterable[str], attempt: int) -> None:
        """Emit STEP_START when a step attempt begins."""
        self._emit(
            AuditEventType.STEP_START,
            step_name=step_name,
            role=",".join(roles),
            attempt=attempt,
        )

    def protocols_selected(
        self, step_name: str, role: str, attempt: int, names: Iterable[str]
    ) -> None:
        """Emit PROTOCOL_SELECTED, including empty selections."""
        self._emit(
            AuditEventType.PROTOCOL_SELECTED,
            step_name=step_name,
            role=role,
            attempt=attempt,
            entries=tuple(names),
        )

    def protocol_gap(self, finding: Finding) -> None:
        self._emit(
            AuditEventType.PROTOCOL_GAP,
            step_name=finding.step_name,
            entries=(finding.tag,),
            summary=finding.detail,
        )

    def step_pass(self, step_name: str, attempt: int, summary: str) -> None:
        """Emit STEP_PASS when a step is checkpointed."""
        self._emit(
            AuditEventType.STEP_PASS,
            step_name=step_name,
            attempt=attempt,
            verdict="PASS",
            summary=summary[:500],
        )

    def step_fail(
        self, step_name: str, attempt: int, verdict: str, detail: str
    ) -> None:
        """Emit STEP_FAIL with the verdict (FAIL, REMEDIATE, BLOCKED, ERROR)."""
        self._emit(
            AuditEventType.STEP_FAIL,
            step_name=step_name,
            attempt=attempt,
            verdict=verdict,
            summary=detail[:500],
        )

    def retry_granted(self, step_name: str, attempt: int, reenter_at: str) -> None:
        self._emit(
            AuditEventType.RETRY_GRANTED,
            step_name=step_name,
            attempt=attempt,
            summary=f"re-entering at '{reenter_at}'",
        )

    def retry_denied(self, step_name: str, reason: str) -> None:
        self._emit(AuditEventType.RETRY_DENIED, step_name=step_name, summary=reason)

    def task_finalized(self, status: str, reason: str = "") -> None:
        self._emit(AuditEventType.TASK_FINALIZED, verdict=status, summary=reason)

    def task_aborted(self, reason: str) -> None:
        self._emit(AuditEventType.TASK_ABORTED, summary=reason)
