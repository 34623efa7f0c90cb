"""Persistence layer for portalflow run history."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PortalflowConfig, load_config
from .inmemory import InMemoryRunHistoryStore
from .models import AttemptRecord, RunRecord, RunStatus
from .repository import RunHistoryStore
from .sqlite import SQLiteRunHistoryStore

_repository_instance: RunHistoryStore | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[PortalflowConfig] = None
) -> RunHistoryStore:
    """Factory function to obtain a run history store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``PORTALFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned. URLs naming an async
    SQLAlchemy driver (``dialect+driver://``) use the SQLModel store.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("PORTALFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryRunHistoryStore()
        return _repository_instance

    scheme = database_url.split("://", 1)[0]
    if "+" in scheme:
        from ..db import SQLModelRunHistoryStore

        _repository_instance = SQLModelRunHistoryStore(database_url)
    elif scheme == "sqlite":
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteRunHistoryStore(path)
    elif scheme in ("postgres", "postgresql"):
        from .postgres import PostgresRunHistoryStore

        _repository_instance = PostgresRunHistoryStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "AttemptRecord",
    "RunRecord",
    "RunStatus",
    "RunHistoryStore",
    "InMemoryRunHistoryStore",
    "SQLiteRunHistoryStore",
    "get_repository",
]
