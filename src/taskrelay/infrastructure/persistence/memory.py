"""
In-memory implementation of the task record store.

Useful for testing and ephemeral runs.
"""

from collections.abc import Iterable

from taskrelay.domain.exceptions import TaskRecordNotFound
from taskrelay.domain.models import TaskRecord
from taskrelay.infrastructure.persistence.base import (
    DEFAULT_LOCK_TIMEOUT,
    LockingTaskRecordStore,
)


class InMemoryTaskRecordStore(LockingTaskRecordStore):
    """Simple in-memory store for testing."""

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        super().__init__(lock_timeout)
        self._records: dict[str, TaskRecord] = {}

    def _load(self, task_id: str) -> TaskRecord:
        if task_id not in self._records:
            raise TaskRecordNotFound(f"Task record not found: {task_id}")
        return self._records[task_id]

    def _save(self, record: TaskRecord) -> None:
        # Records are immutable values, so swapping the reference is the write
        self._records[record.task_id] = record

    def _all(self) -> Iterable[TaskRecord]:
        return list(self._records.values())
