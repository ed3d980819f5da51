"""Tests for the taskrelay command line."""

import json
import logging

import pytest
from click.testing import CliRunner

from taskrelay import __version__
from taskrelay import console as console_module
from taskrelay.application.state_machine import WorkflowStateMachine
from taskrelay.cli import cli
from taskrelay.domain.models import TaskStatus
from taskrelay.infrastructure.persistence import (
    FilesystemAuditLog,
    FilesystemTaskRecordStore,
)
from taskrelay.infrastructure.workers.scripted import ScriptedWorker


@pytest.fixture(autouse=True)
def reset_package_logger():
    """The CLI binds logging to the runner's streams; drop them afterwards."""
    yield
    logger = logging.getLogger("taskrelay")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep table cells on one line so names can be matched."""
    monkeypatch.setattr(console_module.console, "width", 200)
    monkeypatch.setattr(console_module.error_console, "width", 200)


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def invoke(store_dir):
    runner = CliRunner()

    def _invoke(*args: str):
        return runner.invoke(cli, ["--store-dir", str(store_dir), *args])

    return _invoke


def only_task_id(store_dir) -> str:
    (task_id,) = FilesystemTaskRecordStore(store_dir).list_task_ids()
    return task_id


class TestRun:
    def test_simulated_run_completes(self, invoke, store_dir):
        result = invoke("run", "implement", "add a REST endpoint", "--simulate")
        assert result.exit_code == 0, result.output
        assert "completed" in result.output

        record = FilesystemTaskRecordStore(store_dir).get(only_task_id(store_dir))
        assert record.status == TaskStatus.COMPLETED
        assert FilesystemAuditLog(store_dir).get_events(record.task_id)

    def test_no_workers_configured(self, invoke):
        result = invoke("run", "implement", "x")
        assert result.exit_code == 2
        assert "No workers configured" in result.output

    def test_unknown_command(self, invoke):
        result = invoke("run", "deploy", "x", "--simulate")
        assert result.exit_code == 2
        assert "Unknown command" in result.output

    def test_halted_run_prints_report(self, tmp_path, store_dir):
        """A blocking worker failure exits 1 with the failure report."""
        config = tmp_path / "taskrelay.json"
        config.write_text(json.dumps({"workers": {"architect": ["/nonexistent/worker"]}}))
        result = CliRunner().invoke(
            cli,
            ["--config", str(config), "--store-dir", str(store_dir), "run", "fix", "crash"],
        )
        assert result.exit_code == 1
        assert "Recommended action" in result.output
        record = FilesystemTaskRecordStore(store_dir).get(only_task_id(store_dir))
        assert record.status == TaskStatus.FAILED

    def test_lineage_option(self, invoke, store_dir):
        invoke("run", "fix", "crash", "--simulate")
        first = only_task_id(store_dir)
        result = invoke("run", "test", "cover crash", "--simulate", "--lineage", first[:8])
        assert result.exit_code == 0, result.output
        assert len(FilesystemTaskRecordStore(store_dir).list_lineage(first)) == 2


class TestInspection:
    @pytest.fixture
    def task_id(self, invoke, store_dir):
        invoke("run", "test", "cover the parser", "--simulate")
        return only_task_id(store_dir)

    def test_status_by_prefix(self, invoke, task_id):
        result = invoke("status", task_id[:6])
        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        assert "plan" in result.output

    def test_status_unknown(self, invoke, task_id):
        result = invoke("status", "zzzz")
        assert result.exit_code == 2
        assert "not found" in result.output

    def test_list(self, invoke, task_id):
        result = invoke("list")
        assert result.exit_code == 0
        assert task_id[:12] in result.output

    def test_audit(self, invoke, task_id):
        result = invoke("audit", task_id, "--type", "step_pass")
        assert result.exit_code == 0, result.output
        assert "STEP_PASS" in result.output
        assert "STEP_START" not in result.output

    def test_resume_completed_is_noop(self, invoke, task_id):
        result = invoke("resume", task_id, "--simulate")
        assert result.exit_code == 0
        assert "nothing to resume" in result.output

    def test_abort_completed_keeps_status(self, invoke, task_id):
        result = invoke("abort", task_id)
        assert result.exit_code == 0
        assert "completed" in result.output


class TestResumeAndAbort:
    @pytest.fixture
    def started_id(self, store_dir):
        store = FilesystemTaskRecordStore(store_dir)
        return WorkflowStateMachine(store, ScriptedWorker()).start("fix", "crash").task_id

    def test_dry_run_shows_next_step(self, invoke, started_id, store_dir):
        result = invoke("resume", started_id, "--dry-run")
        assert result.exit_code == 0, result.output
        assert "reproduce" in result.output
        store = FilesystemTaskRecordStore(store_dir)
        assert store.get(started_id).status == TaskStatus.IN_PROGRESS

    def test_resume_completes(self, invoke, started_id, store_dir):
        result = invoke("resume", started_id, "--simulate")
        assert result.exit_code == 0, result.output
        store = FilesystemTaskRecordStore(store_dir)
        assert store.get(started_id).status == TaskStatus.COMPLETED

    def test_abort(self, invoke, started_id, store_dir):
        result = invoke("abort", started_id, "--reason", "wrong ticket")
        assert result.exit_code == 0
        record = FilesystemTaskRecordStore(store_dir).get(started_id)
        assert record.status == TaskStatus.FAILED
        assert "wrong ticket" in record.failure_reason


class TestCatalogCommands:
    def test_commands(self, invoke):
        result = invoke("commands")
        assert result.exit_code == 0
        for name in ("implement", "fix", "test"):
            assert name in result.output

    def test_protocols(self, invoke):
        result = invoke("protocols", "architect", "REST endpoint publishing events")
        assert result.exit_code == 0
        assert "rest-api-design" in result.output
        assert "event-driven-design" in result.output

    def test_protocols_max_k_zero(self, invoke):
        result = invoke("protocols", "architect", "REST endpoint", "--max-k", "0")
        assert "No protocols apply" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert __version__ in result.output

    def test_bad_config_exits_2(self, tmp_path):
        config = tmp_path / "taskrelay.json"
        config.write_text(json.dumps({"per_step_cap": "three"}))
        result = CliRunner().invoke(cli, ["--config", str(config), "commands"])
        assert result.exit_code == 2
        assert "per_step_cap" in result.output
