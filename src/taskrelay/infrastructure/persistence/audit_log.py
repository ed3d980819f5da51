"""Audit log implementations."""

import json
import threading
from pathlib import Path
from typing import Any

from taskrelay.domain.audit_event import AuditEvent, AuditEventType
from taskrelay.domain.interfaces import AuditLogInterface


class InMemoryAuditLog(AuditLogInterface):
    """In-memory implementation for testing."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def append(self, event: AuditEvent) -> str:
        with self._lock:
            self._events.append(event)
        return event.event_id

    def get_events(
        self,
        task_id: str,
        event_type: AuditEventType | None = None,
        step_name: str | None = None,
    ) -> list[AuditEvent]:
        with self._lock:
            events = list(self._events)
        return [
            e
            for e in events
            if e.task_id == task_id
            and (event_type is None or e.event_type == event_type)
            and (step_name is None or e.step_name == step_name)
        ]


class FilesystemAuditLog(AuditLogInterface):
    """Filesystem implementation storing one JSONL file per task."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)
        self.audit_dir = self.base_path / "audit"
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_task_file(self, task_id: str) -> Path:
        return self.audit_dir / f"{task_id}.jsonl"

    def append(self, event: AuditEvent) -> str:
        line = json.dumps(self._event_to_dict(event)) + "\n"
        with self._lock, open(self._get_task_file(event.task_id), "a") as f:
            f.write(line)
        return event.event_id

    def get_events(
        self,
        task_id: str,
        event_type: AuditEventType | None = None,
        step_name: str | None = None,
    ) -> list[AuditEvent]:
        path = self._get_task_file(task_id)
        if not path.exists():
            return []
        events: list[AuditEvent] = []
        with open(path) as f:
            for line in f:
                if not line.strip():
                    continue
                event = self._dict_to_event(json.loads(line))
                if event_type and event.event_type != event_type:
                    continue
                if step_name and event.step_name != step_name:
                    continue
                events.append(event)
        return events

    def _event_to_dict(self, event: AuditEvent) -> dict[str, Any]:
        """Serialize event to dict."""
        return {
            "event_id": event.event_id,
            "event_type": event.event_type.value,
            "task_id": event.task_id,
            "step_name": event.step_name,
            "role": event.role,
            "attempt": event.attempt,
            "verdict": event.verdict,
            "entries": list(event.entries),
            "summary": event.summary,
            "created_at": event.created_at,
        }

    def _dict_to_event(self, data: dict[str, Any]) -> AuditEvent:
        """Deserialize dict to event."""
        return AuditEvent(
            event_id=data["event_id"],
            event_type=AuditEventType(data["event_type"]),
            task_id=data["task_id"],
            step_name=data.get("step_name"),
            role=data.get("role"),
            attempt=data.get("attempt"),
            verdict=data.get("verdict"),
            entries=tuple(data.get("entries", ())),
            summary=data.get("summary", ""),
            created_at=data.get("created_at", ""),
        )
