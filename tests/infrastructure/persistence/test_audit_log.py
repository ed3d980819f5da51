"""Tests for the audit log implementations."""

import pytest

from taskrelay.application.audit_emitter import AuditEmitter
from taskrelay.domain.audit_event import AuditEvent, AuditEventType
from taskrelay.domain.models import Finding, FindingKind
from taskrelay.infrastructure.persistence.audit_log import (
    FilesystemAuditLog,
    InMemoryAuditLog,
)


@pytest.fixture(params=["memory", "filesystem"])
def log(request, tmp_path):
    if request.param == "memory":
        return InMemoryAuditLog()
    return FilesystemAuditLog(tmp_path)


def event(task_id: str, event_type: AuditEventType, step: str | None = None) -> AuditEvent:
    return AuditEvent(
        event_id=f"{task_id}-{event_type.value}-{step}",
        event_type=event_type,
        task_id=task_id,
        step_name=step,
    )


class TestAuditLog:
    def test_append_returns_id(self, log):
        assert log.append(event("t1", AuditEventType.TASK_CREATED)) == "t1-TASK_CREATED-None"

    def test_events_in_append_order(self, log):
        log.append(event("t1", AuditEventType.TASK_CREATED))
        log.append(event("t1", AuditEventType.STEP_START, "analyze"))
        log.append(event("t1", AuditEventType.STEP_PASS, "analyze"))
        types = [e.event_type for e in log.get_events("t1")]
        assert types == [
            AuditEventType.TASK_CREATED,
            AuditEventType.STEP_START,
            AuditEventType.STEP_PASS,
        ]

    def test_events_scoped_by_task(self, log):
        log.append(event("t1", AuditEventType.TASK_CREATED))
        log.append(event("t2", AuditEventType.TASK_CREATED))
        assert [e.task_id for e in log.get_events("t2")] == ["t2"]

    def test_filters(self, log):
        log.append(event("t1", AuditEventType.STEP_START, "analyze"))
        log.append(event("t1", AuditEventType.STEP_START, "review"))
        log.append(event("t1", AuditEventType.STEP_FAIL, "review"))
        assert len(log.get_events("t1", AuditEventType.STEP_START)) == 2
        assert len(log.get_events("t1", step_name="review")) == 2
        assert len(log.get_events("t1", AuditEventType.STEP_FAIL, "analyze")) == 0

    def test_unknown_task_has_no_events(self, log):
        assert log.get_events("nobody") == []


class TestFilesystemAuditLog:
    def test_jsonl_per_task(self, tmp_path):
        log = FilesystemAuditLog(tmp_path)
        emitter = AuditEmitter(log, "t1")
        emitter.protocols_selected("analyze", "architect", 1, ["rest-api-design"])
        emitter.protocol_gap(
            Finding(FindingKind.PROTOCOL_GAP, "review", "no security", "security")
        )
        lines = (tmp_path / "audit" / "t1.jsonl").read_text().splitlines()
        assert len(lines) == 2

        reread = FilesystemAuditLog(tmp_path).get_events("t1")
        assert reread[0].entries == ("rest-api-design",)
        assert reread[1].event_type == AuditEventType.PROTOCOL_GAP
        assert reread[1].summary == "no security"


class TestAuditEmitter:
    def test_no_log_is_a_noop(self):
        """Without a log every emitter method does nothing."""
        emitter = AuditEmitter(None, "t1")
        emitter.task_created("implement", "x")
        emitter.retry_denied("validate", "global cap reached")

    def test_events_are_stamped(self):
        log = InMemoryAuditLog()
        AuditEmitter(log, "t1").step_fail("validate", 2, "REMEDIATE", "x" * 800)
        (stored,) = log.get_events("t1")
        assert stored.event_id
        assert stored.created_at
        assert stored.attempt == 2
        assert stored.verdict == "REMEDIATE"
        assert len(stored.summary) == 500
