"""Pydantic models for automation run records."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RunStatus(str, Enum):
    """Status of an automation run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunRecord(BaseModel):
    """One row per execution attempt of an automation."""

    id: str
    automation_id: str
    status: RunStatus = RunStatus.RUNNING
    trigger_data: Any = Field(default_factory=dict)
    duration_ms: int | None = None
    details_log: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_finished(self) -> bool:
        return self.status != RunStatus.RUNNING
