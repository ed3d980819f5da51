"""
Subprocess worker.

Runs one configured command per role. The context snapshot is written to the
process as JSON on stdin; the process answers with one JSON WorkerResult on
stdout:

    {"status": "PASS" | "FAIL" | "ERROR", "detail": "...",
     "recoverable": true, "files_touched": ["src/app.py"]}
"""

import json
import logging
import subprocess
from collections.abc import Mapping, Sequence
from typing import Any

from taskrelay.domain.interfaces import WorkerInterface
from taskrelay.domain.models import ContextSnapshot, WorkerResult, WorkerStatus

logger = logging.getLogger(__name__)


def snapshot_to_dict(
    snapshot: ContextSnapshot, role: str, instructions_ref: str
) -> dict[str, Any]:
    """Serialize the worker request."""
    return {
        "role": role,
        "instructions_ref": instructions_ref,
        "task_id": snapshot.task_id,
        "command": snapshot.command,
        "argument": snapshot.argument,
        "step_name": snapshot.step_name,
        "attempt": snapshot.attempt,
        "prior_outputs": dict(snapshot.prior_outputs),
        "protocols": [
            {
                "name": e.name,
                "owning_role": e.owning_role,
                "content_ref": e.content_ref,
                "tags": list(e.tags),
            }
            for e in snapshot.protocols
        ],
        "findings": [
            {"kind": f.kind.value, "step_name": f.step_name, "detail": f.detail, "tag": f.tag}
            for f in snapshot.findings
        ],
        "last_failure": snapshot.last_failure,
        "files_touched": list(snapshot.files_touched),
    }


def parse_result(worker_name: str, stdout: str) -> WorkerResult:
    """
    Parse the JSON verdict printed by a worker process.

    Raises:
        ValueError: If stdout is not a valid verdict
    """
    data = json.loads(stdout)
    if not isinstance(data, dict):
        raise ValueError("worker output must be a JSON object")
    files = data.get("files_touched", [])
    if not isinstance(files, list) or not all(isinstance(f, str) for f in files):
        raise ValueError("files_touched must be a list of strings")
    return WorkerResult(
        worker_name=worker_name,
        status=WorkerStatus(str(data.get("status", "")).upper()),
        detail=str(data.get("detail", "")),
        recoverable=bool(data.get("recoverable", True)),
        files_touched=tuple(files),
    )


class CommandWorker(WorkerInterface):
    """Invokes an external program per role."""

    def __init__(
        self,
        commands: Mapping[str, Sequence[str]],
        timeout: float | None = None,
        cwd: str | None = None,
    ):
        """
        Args:
            commands: Role -> argv; instructions_ref is appended as last argument
            timeout: Seconds before the process is killed
            cwd: Working directory for the process
        """
        self._commands = {role: list(argv) for role, argv in commands.items()}
        self.timeout = timeout
        self._cwd = cwd

    @property
    def roles(self) -> list[str]:
        return sorted(self._commands)

    def invoke(
        self,
        role: str,
        context_snapshot: ContextSnapshot,
        instructions_ref: str,
    ) -> WorkerResult:
        """
        Run the role's command and parse its verdict.

        Returns:
            WorkerResult; process failures become ERROR results
        """
        argv = self._commands.get(role)
        if argv is None:
            return WorkerResult(
                worker_name=role,
                status=WorkerStatus.ERROR,
                detail=f"No worker command configured for role '{role}'",
                recoverable=False,
            )

        payload = json.dumps(snapshot_to_dict(context_snapshot, role, instructions_ref))
        logger.debug("Running %s worker: %s", role, " ".join(argv))
        try:
            proc = subprocess.run(
                [*argv, instructions_ref],
                input=payload,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self._cwd,
            )
        except subprocess.TimeoutExpired:
            return WorkerResult(
                worker_name=role,
                status=WorkerStatus.ERROR,
                detail=f"Timeout: worker exceeded {self.timeout}s",
            )
        except OSError as e:
            return WorkerResult(
                worker_name=role,
                status=WorkerStatus.ERROR,
                detail=f"Cannot start worker: {e}",
                recoverable=False,
            )

        try:
            return parse_result(role, proc.stdout)
        except ValueError as e:
            stderr = proc.stderr.strip()[-500:]
            return WorkerResult(
                worker_name=role,
                status=WorkerStatus.ERROR,
                detail=(
                    f"Exit code {proc.returncode}, unreadable output ({e})"
                    + (f": {stderr}" if stderr else "")
                ),
            )
