"""Dependency health reporting models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class DependencyHealth(BaseModel):
    """Breaker state and rolling counters for one external dependency."""

    name: str
    state: CircuitState
    consecutive_failures: int = 0
    failure_threshold: int
    cooldown_seconds: float
    cooldown_deadline: Optional[datetime] = None
    total_attempts: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_rejections: int = 0
    average_latency_ms: float = 0.0
    health_percentage: int = 100
    last_failure_at: Optional[datetime] = None
    last_reset_at: datetime
    probe_healthy: Optional[bool] = None
    probe_detail: Optional[dict[str, Any]] = None


class HealthSnapshot(BaseModel):
    """Aggregate health across every registered dependency."""

    ready: bool
    overall_health: int
    dependencies: dict[str, DependencyHealth] = Field(default_factory=dict)
    fallbacks: dict[str, list[str]] = Field(default_factory=dict)
    timestamp: datetime
