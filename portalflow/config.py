from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class RedisConfig(BaseModel):
    """Configuration for the Redis notifier."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    channel: str = "portalflow:runs"


class NotificationConfig(BaseModel):
    """Where terminal run records are pushed."""

    backend: Literal["none", "inmemory", "redis"] = "none"
    redis: RedisConfig = RedisConfig()


class RetryConfig(BaseModel):
    """Default backoff for steps that do not declare their own."""

    initial_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1


class LoggingConfig(BaseModel):
    level: str = "INFO"


class PortalflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    notifications: NotificationConfig = NotificationConfig()
    retry: RetryConfig = RetryConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Optional[str] = None) -> PortalflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PORTALFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PORTALFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PortalflowConfig(**data)
    else:
        config = PortalflowConfig()

    env_db_url = os.getenv("PORTALFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_notifier = os.getenv("PORTALFLOW_NOTIFIER")
    if env_notifier:
        config.notifications.backend = env_notifier.lower()
    return config
