"""In-memory notifier for testing."""

from __future__ import annotations

import asyncio
from typing import List

from ..persistence.models import RunRecord
from .base import BaseNotifier


class InMemoryNotifier(BaseNotifier):
    """Collects published records in process."""

    def __init__(self) -> None:
        self.records: List[RunRecord] = []
        self._lock = asyncio.Lock()

    async def publish(self, record: RunRecord) -> None:
        async with self._lock:
            self.records.append(record.model_copy(deep=True))

    def for_run(self, run_id: str) -> List[RunRecord]:
        return [r for r in self.records if r.run_id == run_id]
