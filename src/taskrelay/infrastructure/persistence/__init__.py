"""
Persistence adapters for task records and the audit log.
"""

from taskrelay.infrastructure.persistence.audit_log import (
    FilesystemAuditLog,
    InMemoryAuditLog,
)
from taskrelay.infrastructure.persistence.filesystem import FilesystemTaskRecordStore
from taskrelay.infrastructure.persistence.memory import InMemoryTaskRecordStore

__all__ = [
    "InMemoryTaskRecordStore",
    "FilesystemTaskRecordStore",
    "InMemoryAuditLog",
    "FilesystemAuditLog",
]
