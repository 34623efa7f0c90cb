"""Data models for persisted run state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import OutcomeKind
from ..errors import InvalidRunTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    """Lifecycle of a run. Only forward moves are allowed."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED}

_ALLOWED = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.RUNNING: _TERMINAL,
}


class RunRecord(BaseModel):
    """Persisted state of one run."""

    run_id: str
    workflow_type: str
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None
    failed_step: Optional[str] = None
    current_step: Optional[str] = None
    payload: Any = None
    outputs: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: RunStatus, error: Optional[str] = None) -> None:
        """Move to ``status``.

        Raises:
            InvalidRunTransition: If the move is not forward from the current status.
        """
        status = RunStatus(status)
        if status not in _ALLOWED.get(self.status, set()):
            raise InvalidRunTransition(self.run_id, self.status.value, status.value)
        self.status = status
        if error is not None:
            self.error = error
        self.updated_at = utcnow()


class AttemptRecord(BaseModel):
    """One try of one step. Never mutated once appended."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    step_name: str
    step_index: int = Field(ge=0)
    attempt: int = Field(ge=1)
    outcome: OutcomeKind
    timestamp: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.run_id, self.step_name, self.attempt)
