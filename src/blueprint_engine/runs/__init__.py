"""Automation run records and their stores."""

from .backends import SQLiteBackend
from .models import RunRecord, RunStatus
from .store import InMemoryRunStore, RunStore, SQLiteRunStore

__all__ = [
    "InMemoryRunStore",
    "RunRecord",
    "RunStatus",
    "RunStore",
    "SQLiteBackend",
    "SQLiteRunStore",
]
