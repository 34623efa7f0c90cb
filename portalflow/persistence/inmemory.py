"""In-memory implementation of the run history store."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, List, Tuple

from ..errors import UnknownRun
from .models import AttemptRecord, RunRecord
from .repository import RunHistoryStore


class InMemoryRunHistoryStore(RunHistoryStore):
    """Store run state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, RunRecord] = {}
        self._attempts: Dict[str, List[AttemptRecord]] = defaultdict(list)
        self._keys: set[Tuple[str, str, int]] = set()
        # appends are serialised per run, never across unrelated runs
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    async def create_run(self, record: RunRecord) -> None:
        self._runs[record.run_id] = record.model_copy(deep=True)

    async def save_run(self, record: RunRecord) -> None:
        if record.run_id not in self._runs:
            raise UnknownRun(record.run_id)
        self._runs[record.run_id] = record.model_copy(deep=True)

    async def get_run(self, run_id: str) -> RunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise UnknownRun(run_id)
        return run.model_copy(deep=True)

    async def list_runs(self) -> list[RunRecord]:
        runs = sorted(self._runs.values(), key=lambda r: r.created_at)
        return [run.model_copy(deep=True) for run in runs]

    async def append(self, attempt: AttemptRecord) -> bool:
        if attempt.run_id not in self._runs:
            raise UnknownRun(attempt.run_id)
        async with self._locks[attempt.run_id]:
            # ignore duplicate delivery of the same attempt
            if attempt.key in self._keys:
                return False
            self._keys.add(attempt.key)
            self._attempts[attempt.run_id].append(attempt)
            return True

    async def list_attempts(self, run_id: str) -> list[AttemptRecord]:
        if run_id not in self._runs:
            raise UnknownRun(run_id)
        return sorted(
            self._attempts.get(run_id, []), key=lambda a: (a.step_index, a.attempt)
        )
