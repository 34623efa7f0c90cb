"""Redis notifier publishing terminal records on a pub/sub channel."""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as redis

from ..persistence.models import RunRecord
from .base import BaseNotifier


class RedisNotifier(BaseNotifier):
    """Publish each terminal run record as JSON to a Redis channel."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        channel: str = "portalflow:runs",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.channel = channel
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, record: RunRecord) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.publish(self.channel, record.model_dump_json())
