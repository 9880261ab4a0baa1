"""SQLite access for run persistence."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

MEMORY_PATH = ":memory:"


class SQLiteBackend:
    """Thread-aware SQLite access.

    Each thread gets its own connection, opened lazily. File databases run in
    WAL mode so readers are not blocked while a run record is being written.
    An in-memory database exists only inside its connection, so ``:memory:``
    uses one connection shared by every thread. ``close`` closes the
    connections of every thread.
    """

    def __init__(self, db_path: str | Path = "blueprint-runs.db", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._shared: sqlite3.Connection | None = None

        if self.db_path != MEMORY_PATH:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        if self.db_path == MEMORY_PATH:
            with self._lock:
                if self._shared is None:
                    self._shared = self._open()
                    self._connections.append(self._shared)
                return self._shared

        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        conn = self._open()
        self._local.conn = conn
        with self._lock:
            self._connections.append(conn)
        return conn

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self.db_path != MEMORY_PATH:
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._connect().execute(query, params)

    def executescript(self, script: str) -> None:
        """Run a multi-statement script (schema setup) and commit it."""
        conn = self._connect()
        conn.executescript(script)
        conn.commit()

    def fetchone(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        row = self.execute(query, params).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        return [dict(row) for row in self.execute(query, params)]

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Commit on success, roll back and re-raise on error."""
        conn = self._connect()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        with self._lock:
            connections, self._connections = self._connections, []
            self._shared = None
        for conn in connections:
            conn.close()
        self._local = threading.local()
