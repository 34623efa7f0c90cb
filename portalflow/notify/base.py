"""Base notifier interface for terminal run notifications."""

from __future__ import annotations

import abc

from ..persistence.models import RunRecord


class BaseNotifier(metaclass=abc.ABCMeta):
    """Receives each run's terminal record exactly once."""

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, record: RunRecord) -> None:
        """Deliver a terminal run record."""
        raise NotImplementedError
