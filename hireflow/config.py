from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .jobs import BackoffPolicy


class RedisConfig(BaseModel):
    """Configuration for the Redis job store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "hireflow"


class QueueSpec(BaseModel):
    """Worker lanes and retry defaults for one logical queue.

    ``lanes`` is ordered by dequeue priority; each value is the lane's
    worker concurrency.
    """

    lanes: Dict[str, int]
    attempts: int = 3
    backoff: BackoffPolicy = BackoffPolicy()


def _default_queues() -> Dict[str, QueueSpec]:
    return {
        "workflow": QueueSpec(
            lanes={"execute-action": 5},
            attempts=3,
            backoff=BackoffPolicy(type="exponential", delay_ms=2000),
        ),
        "email": QueueSpec(
            lanes={"high-priority": 3, "normal-priority": 10, "low-priority": 2},
            attempts=3,
            backoff=BackoffPolicy(type="exponential", delay_ms=1000),
        ),
        "schedule": QueueSpec(
            lanes={"create-schedule": 3},
            attempts=3,
            backoff=BackoffPolicy(type="exponential", delay_ms=2000),
        ),
        "notification": QueueSpec(
            lanes={"send-notification": 8},
            attempts=2,
            backoff=BackoffPolicy(type="fixed", delay_ms=5000),
        ),
    }


class QueueSettings(BaseModel):
    """Job store backend, per-queue settings and retention windows."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    queues: Dict[str, QueueSpec] = Field(default_factory=_default_queues)
    completed_retention_hours: float = 24
    failed_retention_days: float = 7
    poll_interval: float = 0.1

    @field_validator("queues")
    @classmethod
    def _fill_missing_queues(cls, v: Dict[str, QueueSpec]) -> Dict[str, QueueSpec]:
        merged = _default_queues()
        merged.update(v)
        return merged


class ServiceEndpoint(BaseModel):
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 10.0


class ServicesConfig(BaseModel):
    """Remote collaborators used by the action processors."""

    email: ServiceEndpoint = ServiceEndpoint()
    calendar: ServiceEndpoint = ServiceEndpoint()
    ai: ServiceEndpoint = ServiceEndpoint()


class HireflowConfig(BaseModel):
    """Top-level configuration model."""

    queue: QueueSettings = QueueSettings()
    services: ServicesConfig = ServicesConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> HireflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to HIREFLOW_CONFIG env
            variable or 'hireflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("HIREFLOW_CONFIG", "hireflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = HireflowConfig(**data)
    else:
        config = HireflowConfig()

    env_db_url = os.getenv("HIREFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_backend = os.getenv("HIREFLOW_QUEUE_BACKEND")
    if env_backend:
        config.queue.backend = env_backend.lower()
    env_level = os.getenv("HIREFLOW_LOG_LEVEL")
    if env_level:
        config.log_level = env_level.upper()
    return config
