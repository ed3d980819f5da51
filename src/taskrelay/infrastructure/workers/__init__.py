"""
Worker adapters.
"""

from taskrelay.infrastructure.workers.command import CommandWorker
from taskrelay.infrastructure.workers.scripted import ScriptedWorker

__all__ = [
    "CommandWorker",
    "ScriptedWorker",
]
