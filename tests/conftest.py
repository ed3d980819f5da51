"""Shared pytest fixtures for taskrelay tests."""

from collections.abc import Callable

import pytest

from helpers import make_entry
from taskrelay.application.retry_budget import RetryBudget
from taskrelay.application.state_machine import WorkflowStateMachine
from taskrelay.domain.models import ContextSnapshot
from taskrelay.domain.selection import ProtocolRegistry
from taskrelay.domain.workflow import default_catalog
from taskrelay.infrastructure.persistence.audit_log import InMemoryAuditLog
from taskrelay.infrastructure.persistence.filesystem import FilesystemTaskRecordStore
from taskrelay.infrastructure.persistence.memory import InMemoryTaskRecordStore
from taskrelay.infrastructure.workers.scripted import ScriptedWorker


@pytest.fixture
def sample_snapshot() -> ContextSnapshot:
    return ContextSnapshot(
        task_id="task-001",
        command="implement",
        argument="add a REST endpoint for orders",
        step_name="validate",
        attempt=1,
    )


@pytest.fixture
def memory_store() -> InMemoryTaskRecordStore:
    return InMemoryTaskRecordStore(lock_timeout=1.0)


@pytest.fixture
def fs_store(tmp_path) -> FilesystemTaskRecordStore:
    return FilesystemTaskRecordStore(tmp_path / "store", lock_timeout=1.0)


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):
    """Each store implementation in turn."""
    if request.param == "memory":
        return InMemoryTaskRecordStore(lock_timeout=1.0)
    return FilesystemTaskRecordStore(tmp_path / "store", lock_timeout=1.0)


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def registry() -> ProtocolRegistry:
    """Small registry without any security-tagged entry."""
    return ProtocolRegistry(
        [
            make_entry("architecture-baseline", "architect"),
            make_entry("rest-api-design", "architect", "rest", "endpoint", "api"),
            make_entry("event-driven-design", "architect", "event", "events", "queue"),
            make_entry("data-migration", "architect", "migration", "schema"),
            make_entry("coding-standards", "developer"),
            make_entry("review-checklist", "reviewer"),
        ]
    )


@pytest.fixture
def make_machine(
    memory_store, audit_log, registry
) -> Callable[..., WorkflowStateMachine]:
    """Factory for a machine over the in-memory store and audit log."""

    def _make(worker=None, **kwargs) -> WorkflowStateMachine:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("audit_log", audit_log)
        kwargs.setdefault("budget", RetryBudget(per_step_cap=3, global_cap=5))
        return WorkflowStateMachine(
            memory_store,
            worker or ScriptedWorker(),
            catalog=default_catalog(),
            **kwargs,
        )

    return _make
