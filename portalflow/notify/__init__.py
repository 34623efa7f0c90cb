"""Notifier factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PortalflowConfig, load_config
from .base import BaseNotifier
from .callback import CallbackNotifier, TerminalHook
from .inmemory import InMemoryNotifier


def get_notifier(
    backend: Optional[str] = None, config: Optional[PortalflowConfig] = None
) -> Optional[BaseNotifier]:
    """Factory function to get the configured notifier.

    Returns ``None`` for the ``none`` backend.
    """

    config = config or load_config()
    backend = (
        backend
        or os.getenv("PORTALFLOW_NOTIFIER")
        or config.notifications.backend
    ).lower()

    if backend == "none":
        return None
    elif backend == "inmemory":
        return InMemoryNotifier()
    elif backend == "redis":
        from .redis import RedisNotifier

        redis_conf = config.notifications.redis
        return RedisNotifier(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            channel=redis_conf.channel,
        )
    else:
        raise ValueError(f"Unsupported notifier backend: {backend}")


__all__ = [
    "BaseNotifier",
    "CallbackNotifier",
    "InMemoryNotifier",
    "TerminalHook",
    "get_notifier",
]
