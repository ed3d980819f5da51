"""Application service for resuming interrupted tasks.

Provides clean separation of resume logic from workflow execution, with
template reference verification so a record is never continued against a
template that changed underneath it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from taskrelay.domain.models import ResumeAction, ResumeOutcome, TaskStatus

if TYPE_CHECKING:
    from taskrelay.application.state_machine import WorkflowStateMachine
    from taskrelay.domain.interfaces import TaskRecordStoreInterface
    from taskrelay.domain.models import TaskRecord

logger = logging.getLogger(__name__)


class ResumeController:
    """Application service for continuing tasks after an interruption.

    Progress is taken from ``current_step_index`` and the checkpoint alone;
    step statuses, the audit log and files on disk are never consulted.
    """

    def __init__(
        self,
        store: TaskRecordStoreInterface,
        state_machine: WorkflowStateMachine,
    ) -> None:
        """Initialize resume controller.

        Args:
            store: Task record store to reload records from.
            state_machine: Machine that continues CONTINUE outcomes.
        """
        self._store = store
        self._machine = state_machine

    def resume(self, task_id: str) -> ResumeOutcome:
        """Decide how to continue a task without changing anything.

        Args:
            task_id: Record to inspect.

        Returns:
            NOOP with the stored status for IDLE, COMPLETED and FAILED
            records; CONTINUE with the step at the stored index otherwise.

        Raises:
            TaskRecordNotFound: If the record does not exist.
            WorkflowIntegrityError: If the command template changed.
        """
        record = self._store.get(task_id)
        if record.status != TaskStatus.IN_PROGRESS:
            return ResumeOutcome(
                task_id=record.task_id,
                status=record.status,
                action=ResumeAction.NOOP,
            )

        template = self._machine.template_for(record)
        index = record.current_step_index
        return ResumeOutcome(
            task_id=record.task_id,
            status=record.status,
            action=ResumeAction.CONTINUE,
            next_step_index=index,
            next_step_name=template.step(index).name,
            next_step_summary=record.checkpoint.next_step_summary,
        )

    def continue_workflow(self, task_id: str) -> TaskRecord:
        """Resume and, when there is work left, hand the record to the machine.

        Returns:
            The stored record for NOOP outcomes, the COMPLETED record otherwise.
        """
        outcome = self.resume(task_id)
        if outcome.action == ResumeAction.NOOP:
            logger.info(
                "Task %s is %s; nothing to resume", task_id, outcome.status.value
            )
            return self._store.get(task_id)

        logger.info(
            "Resuming task %s at step %d '%s'",
            task_id,
            outcome.next_step_index,
            outcome.next_step_name,
        )
        return self._machine.run(task_id)
