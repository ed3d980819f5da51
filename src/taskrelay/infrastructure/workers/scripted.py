"""
Scripted worker for tests and dry runs.

Returns predefined results in sequence, keyed by instructions reference (or
by role as a fallback).
"""

import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from taskrelay.domain.interfaces import WorkerInterface
from taskrelay.domain.models import ContextSnapshot, WorkerResult, WorkerStatus

ScriptItem = WorkerResult | BaseException | Callable[[ContextSnapshot], WorkerResult]


@dataclass(frozen=True)
class WorkerCall:
    """One recorded invocation."""

    role: str
    instructions_ref: str
    snapshot: ContextSnapshot


class ScriptedWorker(WorkerInterface):
    """Returns predefined results for testing.

    Each key of ``script`` (an instructions reference such as
    ``"validate/functional"`` or a role such as ``"developer"``) maps to the
    items returned by successive calls. An item may be a WorkerResult, an
    exception to raise, or a callable receiving the snapshot. Once a key's
    items are used up, calls PASS.
    """

    def __init__(self, script: Mapping[str, Sequence[ScriptItem]] | None = None):
        """
        Args:
            script: Items to play back per instructions reference or role
        """
        self._script = {key: list(items) for key, items in (script or {}).items()}
        self._calls: list[WorkerCall] = []
        self._lock = threading.Lock()

    def _next_item(self, role: str, instructions_ref: str) -> ScriptItem | None:
        with self._lock:
            for key in (instructions_ref, role):
                items = self._script.get(key)
                if items:
                    return items.pop(0)
            return None

    def invoke(
        self,
        role: str,
        context_snapshot: ContextSnapshot,
        instructions_ref: str,
    ) -> WorkerResult:
        """Play back the next scripted item for this reference or role."""
        with self._lock:
            self._calls.append(WorkerCall(role, instructions_ref, context_snapshot))
        item = self._next_item(role, instructions_ref)
        if item is None:
            return WorkerResult(
                worker_name=role,
                status=WorkerStatus.PASS,
                detail=f"{instructions_ref or role} done",
            )
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, WorkerResult):
            return item
        return item(context_snapshot)

    @property
    def calls(self) -> list[WorkerCall]:
        """Invocations so far, in call order."""
        with self._lock:
            return list(self._calls)

    def calls_for(self, instructions_ref: str) -> list[WorkerCall]:
        return [c for c in self.calls if c.instructions_ref == instructions_ref]
