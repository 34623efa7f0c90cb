"""Repository abstraction for run history persistence."""

from __future__ import annotations

from typing import Protocol

from .models import AttemptRecord, RunRecord


class RunHistoryStore(Protocol):
    """Protocol for run history backends.

    Attempt records are append-only. Backends must treat a second append
    with the same ``(run_id, step_name, attempt)`` as a no-op.
    """

    async def create_run(self, record: RunRecord) -> None:
        """Persist a newly created run."""

    async def save_run(self, record: RunRecord) -> None:
        """Persist the current state of an existing run."""

    async def get_run(self, run_id: str) -> RunRecord:
        """Return the run.

        Raises:
            UnknownRun: If no such run exists.
        """

    async def list_runs(self) -> list[RunRecord]:
        """Return all persisted runs, oldest first."""

    async def append(self, attempt: AttemptRecord) -> bool:
        """Append an attempt record; return ``False`` if it was already present."""

    async def list_attempts(self, run_id: str) -> list[AttemptRecord]:
        """Return attempts ordered by step position, then attempt number.

        Raises:
            UnknownRun: If no such run exists.
        """
