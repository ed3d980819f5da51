"""
RetryBudgetTracker: bounded automatic remediation.

A pure counter over the task record store. Two caps apply:
- per_step_cap: attempts consumed by one step of one record
- global_cap: attempts consumed by every step of every record in the lineage,
  so a chain of commands on the same change cannot retry indefinitely
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskrelay.domain.interfaces import TaskRecordStoreInterface

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryBudget:
    """Hard caps on automatic retries."""

    per_step_cap: int = 3
    global_cap: int = 5

    def __post_init__(self) -> None:
        if self.per_step_cap < 0 or self.global_cap < 0:
            raise ValueError("Retry caps must be non-negative")


@dataclass(frozen=True)
class Granted:
    """Retry allowed. ``attempt_number`` is the attempt about to run (2 = first retry)."""

    attempt_number: int

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Denied:
    """Retry refused; the workflow must fail and wait for a human."""

    reason: str

    def __bool__(self) -> bool:
        return False


RetryDecision = Granted | Denied


class RetryBudgetTracker:
    """
    Grants or denies retries against the per-step and lineage-wide caps.

    The check and the increment happen under one lock per lineage, so two
    records of the same lineage cannot both take the last unit of budget.
    """

    def __init__(
        self,
        store: TaskRecordStoreInterface,
        budget: RetryBudget | None = None,
    ) -> None:
        """
        Args:
            store: Task record store holding the counters
            budget: Caps to enforce (defaults: 3 per step, 5 global)
        """
        self._store = store
        self._budget = budget or RetryBudget()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def budget(self) -> RetryBudget:
        return self._budget

    def _lineage_lock(self, lineage_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(lineage_id, threading.Lock())

    def lineage_total(self, lineage_id: str) -> int:
        """Retries consumed by all records of a lineage."""
        return sum(r.total_retries for r in self._store.list_lineage(lineage_id))

    def try_consume(self, task_id: str, step_name: str) -> RetryDecision:
        """
        Consume one unit of budget for ``step_name`` if both caps allow it.

        Args:
            task_id: Record whose step failed
            step_name: Step that failed

        Returns:
            Granted with the next attempt number, or Denied with the cap hit
        """
        record = self._store.get(task_id)
        with self._lineage_lock(record.lineage_id):
            record = self._store.get(task_id)
            used = record.retry_count(step_name)
            if used >= self._budget.per_step_cap:
                reason = (
                    f"per-step cap reached for '{step_name}' "
                    f"({used}/{self._budget.per_step_cap})"
                )
                logger.info("Retry denied for %s: %s", task_id, reason)
                return Denied(reason)

            total = self.lineage_total(record.lineage_id)
            if total >= self._budget.global_cap:
                reason = f"global cap reached ({total}/{self._budget.global_cap})"
                logger.info("Retry denied for %s: %s", task_id, reason)
                return Denied(reason)

            record = self._store.increment_retry(task_id, step_name)
            attempt = record.retry_count(step_name) + 1
            logger.debug(
                "Retry granted for %s/%s: attempt %d (lineage total %d)",
                task_id,
                step_name,
                attempt,
                total + 1,
            )
            return Granted(attempt)
