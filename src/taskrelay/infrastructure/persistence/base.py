"""
Shared write path for task record stores.

Every mutating call loads the record, applies one pure transition from
taskrelay.domain.task_record and saves the result, all under a lock held for
that task id. Adapters only provide load, save and enumeration.
"""

import logging
import threading
from abc import abstractmethod
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from taskrelay.domain import task_record as transitions
from taskrelay.domain.exceptions import CheckpointConflict
from taskrelay.domain.interfaces import TaskRecordStoreInterface
from taskrelay.domain.models import Finding, Step, TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0  # Seconds a writer waits for a busy record


class LockingTaskRecordStore(TaskRecordStoreInterface):
    """Serializes writers per task id; subclasses decide where records live."""

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self._lock_timeout = lock_timeout
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Adapter hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _load(self, task_id: str) -> TaskRecord:
        """Read a record; raise TaskRecordNotFound if absent."""

    @abstractmethod
    def _save(self, record: TaskRecord) -> None:
        """Replace the stored record in one write."""

    @abstractmethod
    def _all(self) -> Iterable[TaskRecord]:
        """Every stored record."""

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @contextmanager
    def _locked(self, task_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(task_id, threading.Lock())
        if not lock.acquire(timeout=self._lock_timeout):
            logger.warning(
                "Gave up waiting %.1fs for task %s", self._lock_timeout, task_id
            )
            raise CheckpointConflict(
                f"Task {task_id} is being written by another writer"
            )
        try:
            yield
        finally:
            lock.release()

    def _apply(
        self,
        task_id: str,
        transition: Callable[..., TaskRecord],
        *args: Any,
        **kwargs: Any,
    ) -> TaskRecord:
        with self._locked(task_id):
            record = self._load(task_id)
            updated = transition(record, *args, **kwargs)
            if updated is not record:
                self._save(updated)
            return updated

    # -------------------------------------------------------------------------
    # TaskRecordStoreInterface
    # -------------------------------------------------------------------------

    def create(
        self,
        command: str,
        argument: str,
        steps: tuple[Step, ...],
        *,
        template_ref: str = "",
        lineage_id: str | None = None,
    ) -> TaskRecord:
        record = transitions.new_record(
            command, argument, steps, template_ref=template_ref, lineage_id=lineage_id
        )
        with self._locked(record.task_id):
            self._save(record)
        logger.debug("Created task %s (%s)", record.task_id, command)
        return record

    def get(self, task_id: str) -> TaskRecord:
        return self._load(task_id)

    def list_lineage(self, lineage_id: str) -> list[TaskRecord]:
        return sorted(
            (r for r in self._all() if r.lineage_id == lineage_id),
            key=lambda r: (r.created_at, r.task_id),
        )

    def start(self, task_id: str, next_step_summary: str) -> TaskRecord:
        return self._apply(task_id, transitions.start, next_step_summary)

    def mark_running(
        self, task_id: str, step_index: int, protocols: tuple[str, ...] = ()
    ) -> TaskRecord:
        return self._apply(task_id, transitions.mark_running, step_index, protocols)

    def checkpoint(
        self,
        task_id: str,
        step_index: int,
        summary: str,
        files: Iterable[str] = (),
        next_step_summary: str = "",
    ) -> TaskRecord:
        return self._apply(
            task_id,
            transitions.checkpoint,
            step_index,
            summary,
            tuple(files),
            next_step_summary,
        )

    def record_failure(
        self,
        task_id: str,
        step_index: int,
        detail: str,
        files: Iterable[str] = (),
    ) -> TaskRecord:
        return self._apply(
            task_id, transitions.record_failure, step_index, detail, tuple(files)
        )

    def increment_retry(self, task_id: str, step_name: str) -> TaskRecord:
        return self._apply(task_id, transitions.increment_retry, step_name)

    def reenter(
        self, task_id: str, step_index: int, next_step_summary: str
    ) -> TaskRecord:
        return self._apply(task_id, transitions.reenter, step_index, next_step_summary)

    def add_findings(self, task_id: str, findings: Iterable[Finding]) -> TaskRecord:
        return self._apply(task_id, transitions.add_findings, tuple(findings))

    def clear_findings(self, task_id: str) -> TaskRecord:
        return self._apply(task_id, transitions.clear_findings)

    def finalize(
        self, task_id: str, status: TaskStatus, reason: str = ""
    ) -> TaskRecord:
        record = self._apply(task_id, transitions.finalize, status, reason)
        logger.debug("Task %s finalized as %s", task_id, record.status.value)
        return record
