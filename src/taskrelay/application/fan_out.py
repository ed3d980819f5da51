"""
FanOutCoordinator: concurrent worker invocation with a full barrier join.

Every member of a parallel group runs on its own thread against the same
immutable snapshot and writes only its own WorkerResult. The join waits for
all members (or the timeout); a failed member never cancels the others.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Sequence
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING

from taskrelay.domain.exceptions import WorkflowAborted
from taskrelay.domain.models import (
    FanOutReport,
    Verdict,
    WorkerResult,
    WorkerSpec,
    WorkerStatus,
)

if TYPE_CHECKING:
    from taskrelay.domain.interfaces import WorkerInterface
    from taskrelay.domain.models import ContextSnapshot

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05  # Seconds between cancellation checks during a join


class TimeoutPolicy(str, Enum):
    """How a member that misses the join deadline is counted."""

    REMEDIATE = "remediate"  # Recoverable ERROR: the whole step is retried
    BLOCK = "block"  # Non-recoverable ERROR: the step is blocked


def aggregate(results: Sequence[WorkerResult]) -> Verdict:
    """Merge independent results into one verdict.

    BLOCKED if any member is a non-recoverable failure, REMEDIATE if any
    member failed recoverably, ALL_PASS otherwise. Independent of order.
    """
    if any(r.blocking for r in results):
        return Verdict.BLOCKED
    if any(not r.passed for r in results):
        return Verdict.REMEDIATE
    return Verdict.ALL_PASS


class FanOutCoordinator:
    """Runs a parallel group and joins on every member."""

    def __init__(
        self,
        worker: WorkerInterface,
        timeout: float | None = None,
        timeout_policy: TimeoutPolicy = TimeoutPolicy.REMEDIATE,
    ) -> None:
        """
        Args:
            worker: Worker port invoked once per spec
            timeout: Seconds to wait for the whole group (None waits forever)
            timeout_policy: Whether a timed-out member is recoverable
        """
        self._worker = worker
        self._timeout = timeout
        self._timeout_policy = TimeoutPolicy(timeout_policy)

    def _invoke(self, spec: WorkerSpec, snapshot: ContextSnapshot) -> WorkerResult:
        try:
            result = self._worker.invoke(spec.role, snapshot, spec.instructions_ref)
        except Exception as e:
            logger.warning("Worker %s raised %s: %s", spec.name, type(e).__name__, e)
            return WorkerResult(
                worker_name=spec.name,
                status=WorkerStatus.ERROR,
                detail=f"{type(e).__name__}: {e}",
            )
        if not isinstance(result, WorkerResult):
            return WorkerResult(
                worker_name=spec.name,
                status=WorkerStatus.ERROR,
                detail=f"Worker returned {type(result).__name__}, not WorkerResult",
            )
        # Each member owns exactly one output slot, named after its spec
        return replace(result, worker_name=spec.name)

    def _timed_out(self, spec: WorkerSpec) -> WorkerResult:
        return WorkerResult(
            worker_name=spec.name,
            status=WorkerStatus.ERROR,
            detail=f"No result within {self._timeout}s",
            recoverable=self._timeout_policy == TimeoutPolicy.REMEDIATE,
        )

    def run(
        self,
        worker_specs: Sequence[WorkerSpec],
        snapshot: ContextSnapshot,
        *,
        cancel_event: threading.Event | None = None,
    ) -> FanOutReport:
        """
        Invoke all specs concurrently and wait for every one of them.

        Members run on daemon threads owned by this call. A member still
        running when the join gives up is abandoned: its result is dropped
        and it cannot keep the process alive.

        Args:
            worker_specs: Members of the group
            snapshot: Shared read-only context
            cancel_event: When set, the join stops and results are discarded

        Returns:
            FanOutReport with results in spec order and the aggregated verdict

        Raises:
            WorkflowAborted: If cancel_event is set before the join completes
        """
        if not worker_specs:
            return FanOutReport(results=(), verdict=Verdict.ALL_PASS)

        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        finished: queue.SimpleQueue[tuple[int, WorkerResult]] = queue.SimpleQueue()
        collected: dict[int, WorkerResult] = {}

        def member(index: int, spec: WorkerSpec) -> None:
            finished.put((index, self._invoke(spec, snapshot)))

        for index, spec in enumerate(worker_specs):
            threading.Thread(
                target=member,
                args=(index, spec),
                name=f"fanout-{snapshot.step_name}-{spec.name}",
                daemon=True,
            ).start()

        while len(collected) < len(worker_specs):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    "Join for %s/%s cancelled with %d members outstanding",
                    snapshot.task_id,
                    snapshot.step_name,
                    len(worker_specs) - len(collected),
                )
                raise WorkflowAborted(snapshot.task_id, "cancelled during join")
            wait_for = POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                wait_for = min(wait_for, remaining)
            try:
                index, result = finished.get(timeout=wait_for)
            except queue.Empty:
                continue
            collected[index] = result

        results = []
        for index, spec in enumerate(worker_specs):
            if index in collected:
                results.append(collected[index])
            else:
                logger.warning(
                    "Worker %s timed out in %s/%s",
                    spec.name,
                    snapshot.task_id,
                    snapshot.step_name,
                )
                results.append(self._timed_out(spec))

        report = FanOutReport(results=tuple(results), verdict=aggregate(results))
        logger.debug(
            "Join for %s/%s: %s", snapshot.task_id, snapshot.step_name, report.summary()
        )
        return report
