"""
Infrastructure layer for taskrelay.

Contains adapters for external concerns (persistence, audit log, registry, workers).
"""

from taskrelay.infrastructure.persistence import (
    FilesystemAuditLog,
    FilesystemTaskRecordStore,
    InMemoryAuditLog,
    InMemoryTaskRecordStore,
)
from taskrelay.infrastructure.registry import load_registry
from taskrelay.infrastructure.workers import CommandWorker, ScriptedWorker

__all__ = [
    # Persistence
    "InMemoryTaskRecordStore",
    "FilesystemTaskRecordStore",
    "InMemoryAuditLog",
    "FilesystemAuditLog",
    # Registry
    "load_registry",
    # Workers
    "CommandWorker",
    "ScriptedWorker",
]
