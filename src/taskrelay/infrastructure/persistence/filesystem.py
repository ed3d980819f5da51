"""
Filesystem implementation of the task record store.

One JSON file per record under ``<base_dir>/records``. Each write goes to a
temporary file that is then renamed over the record, so a reader (or a
process killed mid-write) only ever sees the previous or the next version.
"""

import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import jsonschema

from taskrelay.domain.exceptions import TaskRecordCorrupted, TaskRecordNotFound
from taskrelay.domain.models import (
    Checkpoint,
    Finding,
    FindingKind,
    Step,
    StepKind,
    StepStatus,
    TaskRecord,
    TaskStatus,
)
from taskrelay.infrastructure.persistence.base import (
    DEFAULT_LOCK_TIMEOUT,
    LockingTaskRecordStore,
)
from taskrelay.schemas import validate_task_record

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
_TASK_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


def record_to_dict(record: TaskRecord) -> dict[str, Any]:
    """Serialize a record to its stable JSON form."""
    return {
        "schema_version": SCHEMA_VERSION,
        "task_id": record.task_id,
        "lineage_id": record.lineage_id,
        "command": record.command,
        "argument": record.argument,
        "status": record.status.value,
        "steps": [
            {
                "name": s.name,
                "kind": s.kind.value,
                "status": s.status.value,
                "completed_at": s.completed_at,
                "summary": s.summary,
            }
            for s in record.steps
        ],
        "current_step_index": record.current_step_index,
        "checkpoint": {
            "completed_summary": record.checkpoint.completed_summary,
            "next_step_summary": record.checkpoint.next_step_summary,
            "files_touched": sorted(record.checkpoint.files_touched),
        },
        # Serialize tuple pairs → dict for JSON object format (matches schema)
        "retry_counts": dict(record.retry_counts),
        "last_failures": dict(record.last_failures),
        "protocols_used": {k: list(v) for k, v in record.protocols_used},
        "findings": [
            {
                "kind": f.kind.value,
                "step_name": f.step_name,
                "detail": f.detail,
                "tag": f.tag,
            }
            for f in record.findings
        ],
        "template_ref": record.template_ref,
        "failure_reason": record.failure_reason,
        "version": record.version,
        "created_at": record.created_at,
        "started_at": record.started_at,
        "completed_at": record.completed_at,
    }


def dict_to_record(data: dict[str, Any]) -> TaskRecord:
    """Deserialize a record; the input must already satisfy the schema."""
    checkpoint = data["checkpoint"]
    return TaskRecord(
        task_id=data["task_id"],
        lineage_id=data["lineage_id"],
        command=data["command"],
        argument=data["argument"],
        status=TaskStatus(data["status"]),
        steps=tuple(
            Step(
                name=s["name"],
                kind=StepKind(s["kind"]),
                status=StepStatus(s["status"]),
                completed_at=s.get("completed_at"),
                summary=s.get("summary", ""),
            )
            for s in data["steps"]
        ),
        current_step_index=data["current_step_index"],
        checkpoint=Checkpoint(
            completed_summary=checkpoint["completed_summary"],
            next_step_summary=checkpoint["next_step_summary"],
            files_touched=frozenset(checkpoint["files_touched"]),
        ),
        # Deserialize dict → sorted tuple pairs for immutability
        retry_counts=tuple(sorted(data["retry_counts"].items())),
        last_failures=tuple(sorted(data["last_failures"].items())),
        protocols_used=tuple(
            sorted((k, tuple(v)) for k, v in data["protocols_used"].items())
        ),
        findings=tuple(
            Finding(
                kind=FindingKind(f["kind"]),
                step_name=f["step_name"],
                detail=f["detail"],
                tag=f.get("tag", ""),
            )
            for f in data["findings"]
        ),
        template_ref=data.get("template_ref", ""),
        failure_reason=data.get("failure_reason", ""),
        version=data["version"],
        created_at=data.get("created_at", ""),
        started_at=data.get("started_at"),
        completed_at=data.get("completed_at"),
    )


class FilesystemTaskRecordStore(LockingTaskRecordStore):
    """
    Persistent task record store.

    Records are validated against the bundled JSON Schema on every read;
    files that cannot be parsed or validated raise TaskRecordCorrupted rather
    than being silently skipped or repaired.
    """

    def __init__(
        self, base_dir: str | Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    ) -> None:
        super().__init__(lock_timeout)
        self._base_dir = Path(base_dir)
        self._records_dir = self._base_dir / "records"
        self._records_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _get_record_path(self, task_id: str) -> Path:
        if not _TASK_ID.match(task_id):
            raise TaskRecordNotFound(f"Invalid task id: {task_id!r}")
        return self._records_dir / f"{task_id}.json"

    def _read(self, path: Path) -> TaskRecord:
        try:
            with open(path) as f:
                data = json.load(f)
            validate_task_record(data)
            return dict_to_record(data)
        except (json.JSONDecodeError, jsonschema.ValidationError, ValueError) as e:
            logger.error("Corrupted task record %s: %s", path, e)
            raise TaskRecordCorrupted(f"Cannot read task record {path}: {e}") from e

    def _load(self, task_id: str) -> TaskRecord:
        path = self._get_record_path(task_id)
        if not path.exists():
            raise TaskRecordNotFound(f"Task record not found: {task_id}")
        return self._read(path)

    def _save(self, record: TaskRecord) -> None:
        """Atomically replace the record using write-to-temp + rename."""
        path = self._get_record_path(record.task_id)
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(record_to_dict(record), f, indent=2)
        temp_path.replace(path)  # Atomic on POSIX

    def _all(self) -> Iterable[TaskRecord]:
        return [self._read(path) for path in sorted(self._records_dir.glob("*.json"))]

    def list_task_ids(self) -> list[str]:
        """Ids of all stored records, sorted."""
        return sorted(path.stem for path in self._records_dir.glob("*.json"))
