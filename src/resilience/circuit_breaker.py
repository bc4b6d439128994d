"""
Per-dependency circuit breaker.

CLOSED -> OPEN after ``failure_threshold`` consecutive failures.
OPEN rejects immediately until the cooldown deadline; the deadline is
checked lazily on the next call, there is no background timer.
HALF_OPEN admits exactly one probe: success closes the circuit, failure
re-opens it with a fresh cooldown measured from the failure.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, TypeVar

from src.resilience.errors import CircuitOpenError, classify_error
from src.schemas.health_schema import CircuitState, DependencyHealth
from src.utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


class CircuitBreaker:
    """Fail-fast guard around one external dependency."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Clock = utcnow,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        if cooldown_seconds <= 0:
            raise ValueError(f"cooldown_seconds must be > 0, got {cooldown_seconds}")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._cooldown_deadline: Optional[datetime] = None
        self._probe_in_flight = False
        self._last_failure_at: Optional[datetime] = None
        self._reset_stats()

    def _reset_stats(self) -> None:
        self._total_attempts = 0
        self._total_successes = 0
        self._total_failures = 0
        self._total_rejections = 0
        self._average_latency_ms = 0.0
        self._last_reset_at = self._clock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def cooldown_deadline(self) -> Optional[datetime]:
        return self._cooldown_deadline

    def _admit(self, context: dict[str, Any]) -> None:
        """Decide whether a call may run; raise CircuitOpenError if not."""
        if self._state == CircuitState.OPEN:
            if self._cooldown_deadline is not None and self._clock() < self._cooldown_deadline:
                self._reject(context)
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info("Circuit '%s' transitioning to HALF_OPEN", self.name)

        if self._state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                self._reject(context)
            self._probe_in_flight = True

    def _reject(self, context: dict[str, Any]) -> None:
        self._total_rejections += 1
        # A half-open breaker has no future deadline; callers wait on the probe.
        next_retry_at = self._cooldown_deadline if self._state == CircuitState.OPEN else None
        logger.warning(
            "Circuit '%s' is %s, rejecting %s (next attempt at %s)",
            self.name, self._state.value, context.get("operation", "call"),
            next_retry_at.isoformat() if next_retry_at else "after probe",
        )
        raise CircuitOpenError(
            self.name,
            next_retry_at=next_retry_at,
            failure_count=self._consecutive_failures,
            context=context,
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Run ``operation`` under breaker protection.

        Raises:
            CircuitOpenError: While open (or while a half-open probe is in
                flight); the operation is not run.
            DependencyError: The classified failure of the operation, after
                the breaker state has been updated.
        """
        ctx = {**(context or {}), "dependency": self.name}
        self._admit(ctx)

        self._total_attempts += 1
        started = time.perf_counter()
        try:
            result = await operation()
        except Exception as exc:
            error = classify_error(exc, ctx)
            self._on_failure()
            logger.error(
                "Call through circuit '%s' failed: %s (%s, consecutive failures: %d)",
                self.name, error.message, error.kind.value, self._consecutive_failures,
            )
            if error is exc:
                raise
            raise error from exc
        except BaseException:
            # Cancellation: release a half-open probe slot without judging the dependency.
            self._probe_in_flight = False
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        self._on_success(latency_ms)
        return result

    def _on_success(self, latency_ms: float) -> None:
        self._total_successes += 1
        self._average_latency_ms += (latency_ms - self._average_latency_ms) / self._total_successes
        self._consecutive_failures = 0
        self._probe_in_flight = False
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._cooldown_deadline = None
            logger.info("Circuit '%s' closed after successful probe", self.name)

    def _on_failure(self) -> None:
        now = self._clock()
        self._total_failures += 1
        self._consecutive_failures += 1
        self._last_failure_at = now
        self._probe_in_flight = False

        if (
            self._state == CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._cooldown_deadline = now + timedelta(seconds=self.cooldown_seconds)
            logger.error(
                "Circuit '%s' opened after %d consecutive failures (threshold %d), "
                "next attempt at %s",
                self.name, self._consecutive_failures, self.failure_threshold,
                self._cooldown_deadline.isoformat(),
            )

    def reset(self) -> None:
        """Operator-triggered recovery: close the circuit and clear all counters."""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._cooldown_deadline = None
        self._probe_in_flight = False
        self._last_failure_at = None
        self._reset_stats()
        logger.info("Circuit '%s' manually reset", self.name)

    def snapshot(self) -> DependencyHealth:
        """Current state and counters for health reporting."""
        state = self._state
        if (
            state == CircuitState.OPEN
            and self._cooldown_deadline is not None
            and self._clock() >= self._cooldown_deadline
        ):
            state = CircuitState.HALF_OPEN
        attempts = self._total_attempts
        return DependencyHealth(
            name=self.name,
            state=state,
            consecutive_failures=self._consecutive_failures,
            failure_threshold=self.failure_threshold,
            cooldown_seconds=self.cooldown_seconds,
            cooldown_deadline=self._cooldown_deadline,
            total_attempts=attempts,
            total_successes=self._total_successes,
            total_failures=self._total_failures,
            total_rejections=self._total_rejections,
            average_latency_ms=round(self._average_latency_ms, 3),
            health_percentage=round(self._total_successes / attempts * 100) if attempts else 100,
            last_failure_at=self._last_failure_at,
            last_reset_at=self._last_reset_at,
        )
