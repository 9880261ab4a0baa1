"""Run record stores.

Every run writes its own record keyed by its execution id: an insert when the
run starts and an upsert when it finishes.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

from .backends import SQLiteBackend
from .models import RunRecord, RunStatus

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS automation_runs (
    id TEXT PRIMARY KEY,
    automation_id TEXT NOT NULL,
    status TEXT NOT NULL,
    trigger_data TEXT,
    duration_ms INTEGER,
    details_log TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_automation_runs_automation
    ON automation_runs (automation_id);
"""


class RunStore(ABC):
    """Persistence collaborator for RunRecords."""

    @abstractmethod
    def upsert(self, record: RunRecord) -> None:
        """Insert or replace the record with ``record.id``."""
        pass

    @abstractmethod
    def get(self, run_id: str) -> RunRecord | None:
        """Fetch a record by execution id."""
        pass

    @abstractmethod
    def list_runs(
        self, automation_id: str | None = None, status: RunStatus | None = None
    ) -> list[RunRecord]:
        """List records, newest first."""
        pass


class InMemoryRunStore(RunStore):
    """Dict-backed store for tests and embedded use."""

    def __init__(self):
        self._records: dict[str, RunRecord] = {}

    def upsert(self, record: RunRecord) -> None:
        existing = self._records.get(record.id)
        stored = record.model_copy(deep=True)
        if existing is not None:
            stored.created_at = existing.created_at
        self._records[record.id] = stored

    def get(self, run_id: str) -> RunRecord | None:
        record = self._records.get(run_id)
        return record.model_copy(deep=True) if record else None

    def list_runs(
        self, automation_id: str | None = None, status: RunStatus | None = None
    ) -> list[RunRecord]:
        records = [
            r.model_copy(deep=True)
            for r in self._records.values()
            if (automation_id is None or r.automation_id == automation_id)
            and (status is None or r.status == status)
        ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)


class SQLiteRunStore(RunStore):
    """RunStore persisted in an ``automation_runs`` SQLite table."""

    def __init__(self, db_path: str | Path | None = None, backend: SQLiteBackend | None = None):
        if backend is None:
            if db_path is None:
                from blueprint_engine.config import get_settings

                db_path = get_settings().database_path
            backend = SQLiteBackend(db_path)
        self.backend = backend
        self.backend.executescript(SCHEMA)

    def upsert(self, record: RunRecord) -> None:
        now = datetime.now(UTC)
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO automation_runs (
                    id, automation_id, status, trigger_data, duration_ms,
                    details_log, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    trigger_data = excluded.trigger_data,
                    duration_ms = excluded.duration_ms,
                    details_log = excluded.details_log,
                    updated_at = excluded.updated_at
                """,
                (
                    record.id,
                    record.automation_id,
                    record.status.value,
                    json.dumps(record.trigger_data, default=str),
                    record.duration_ms,
                    json.dumps(record.details_log, default=str),
                    record.created_at.isoformat(),
                    now.isoformat(),
                ),
            )
        logger.debug(f"Stored run {record.id} with status {record.status.value}")

    def get(self, run_id: str) -> RunRecord | None:
        row = self.backend.fetchone("SELECT * FROM automation_runs WHERE id = ?", (run_id,))
        if not row:
            return None
        return self._row_to_record(row)

    def list_runs(
        self, automation_id: str | None = None, status: RunStatus | None = None
    ) -> list[RunRecord]:
        conditions = []
        params: list = []

        if automation_id:
            conditions.append("automation_id = ?")
            params.append(automation_id)

        if status:
            conditions.append("status = ?")
            params.append(status.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        rows = self.backend.fetchall(
            f"SELECT * FROM automation_runs WHERE {where_clause} ORDER BY created_at DESC",
            tuple(params),
        )
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: dict) -> RunRecord:
        return RunRecord(
            id=row["id"],
            automation_id=row["automation_id"],
            status=RunStatus(row["status"]),
            trigger_data=json.loads(row["trigger_data"]) if row["trigger_data"] else {},
            duration_ms=row["duration_ms"],
            details_log=json.loads(row["details_log"]) if row["details_log"] else {},
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def close(self) -> None:
        self.backend.close()
