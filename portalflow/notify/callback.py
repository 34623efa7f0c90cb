"""Notifier that hands terminal records to an application callback."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Union

from ..persistence.models import RunRecord
from .base import BaseNotifier

TerminalHook = Callable[[RunRecord], Union[None, Awaitable[Any]]]


class CallbackNotifier(BaseNotifier):
    """Invoke a sync or async callable with each terminal record."""

    def __init__(self, callback: TerminalHook) -> None:
        self._callback = callback

    async def publish(self, record: RunRecord) -> None:
        result = self._callback(record)
        if inspect.isawaitable(result):
            await result
