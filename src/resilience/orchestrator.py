"""
Dependency orchestrator: the single entry point for outbound calls.

Every dependency operation runs through the same pipeline::

    fallback( circuit_breaker( retry( timeout( raw call ) ) ) )

The fallback layer only applies to operations with a registered fallback.
Callers never talk to dependency clients directly; they call
``invoke(dependency, operation, *args)``.

Initialization is two-phase: dependencies are registered first, then
``initialize()`` probes each one once (best-effort, failures are logged
and recorded but never fatal) and marks the orchestrator ready. Any
``invoke`` before that raises ``OrchestratorNotReadyError``.
"""

import asyncio
import inspect
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Mapping, Optional, TypeVar

from src.config import ResilienceConfig, settings
from src.logging_context import get_session_logger
from src.resilience.circuit_breaker import CircuitBreaker, Clock
from src.resilience.degradation import FallbackFn, FallbackRegistry
from src.resilience.errors import (
    DependencyError,
    ErrorKind,
    OrchestratorNotReadyError,
)
from src.resilience.retry import DEFAULT_RETRY_POLICIES, RetryPolicy, SleepFn, execute_with_retry
from src.schemas.health_schema import HealthSnapshot
from src.utils import utcnow

logger = get_session_logger(__name__)

T = TypeVar("T")

Operation = Callable[..., Awaitable[Any]]


@dataclass
class InvocationResult(Generic[T]):
    """Value returned by ``invoke``, tagged when a fallback served it."""

    value: T
    dependency: str
    operation: str
    fallback_used: bool = False
    error: Optional[DependencyError] = None


@dataclass
class _Dependency:
    name: str
    breaker: CircuitBreaker
    operations: dict[str, Operation]
    timeout_seconds: float
    health_check: Optional[Callable[[], Awaitable[Any]]] = None
    client: Any = None
    probe_healthy: Optional[bool] = None
    probe_detail: dict[str, Any] = field(default_factory=dict)


class DependencyOrchestrator:
    """Composes classification, retry, circuit breaking and fallbacks."""

    def __init__(
        self,
        config: Optional[ResilienceConfig] = None,
        *,
        retry_policies: Mapping[ErrorKind, RetryPolicy] = DEFAULT_RETRY_POLICIES,
        fallbacks: Optional[FallbackRegistry] = None,
        clock: Clock = utcnow,
        sleep: SleepFn = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._config = config or settings.resilience
        self._retry_policies = dict(retry_policies)
        self._fallbacks = fallbacks or FallbackRegistry()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._dependencies: dict[str, _Dependency] = {}
        self._ready = False
        self._init_lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def fallbacks(self) -> FallbackRegistry:
        return self._fallbacks

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def register_dependency(
        self,
        name: str,
        operations: Mapping[str, Operation],
        *,
        health_check: Optional[Callable[[], Awaitable[Any]]] = None,
        client: Any = None,
        failure_threshold: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CircuitBreaker:
        """Register a dependency's operations and build its circuit breaker."""
        defaults = self._config.for_dependency(name)
        breaker = CircuitBreaker(
            name,
            failure_threshold=failure_threshold or defaults.failure_threshold,
            cooldown_seconds=cooldown_seconds or defaults.cooldown_seconds,
            clock=self._clock,
        )
        self._dependencies[name] = _Dependency(
            name=name,
            breaker=breaker,
            operations=dict(operations),
            timeout_seconds=timeout_seconds or self._config.call_timeout_seconds,
            health_check=health_check,
            client=client,
        )
        logger.info(
            "Dependency '%s' registered with operations %s (threshold %d, cooldown %.0fs)",
            name, sorted(operations), breaker.failure_threshold, breaker.cooldown_seconds,
        )
        return breaker

    def register_fallback(self, dependency: str, operation: str, fallback: FallbackFn) -> None:
        self._fallbacks.register_fallback(dependency, operation, fallback)

    def get_breaker(self, name: str) -> CircuitBreaker:
        return self._require(name).breaker

    def _require(self, name: str) -> _Dependency:
        dependency = self._dependencies.get(name)
        if dependency is None:
            raise DependencyError(
                f"Dependency '{name}' not registered. Available: {sorted(self._dependencies)}",
                ErrorKind.NOT_FOUND,
                context={"dependency": name},
            )
        return dependency

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def initialize(self) -> None:
        """Probe every dependency once, then mark the orchestrator ready."""
        async with self._init_lock:
            if self._ready:
                return
            logger.info("Initializing %d dependencies...", len(self._dependencies))
            await asyncio.gather(
                *(self._probe(dep) for dep in self._dependencies.values())
            )
            self._ready = True
            logger.info(
                "Dependency orchestrator ready: %s",
                {name: dep.probe_healthy for name, dep in self._dependencies.items()},
            )

    async def _probe(self, dependency: _Dependency) -> None:
        if dependency.health_check is None:
            return
        try:
            result = await asyncio.wait_for(
                dependency.health_check(), self._config.health_check_timeout_seconds
            )
        except Exception as exc:
            dependency.probe_healthy = False
            dependency.probe_detail = {"error": str(exc) or type(exc).__name__}
            logger.warning(
                "Health probe for '%s' failed, continuing with degraded functionality: %s",
                dependency.name, exc,
            )
            return

        detail = result if isinstance(result, dict) else {"result": result}
        dependency.probe_healthy = bool(
            detail.get("healthy") or detail.get("connected") or detail.get("success")
        )
        dependency.probe_detail = detail
        logger.debug("Health probe for '%s': %s", dependency.name, detail)

    async def shutdown(self) -> None:
        """Close clients that hold connections and mark the orchestrator not ready."""
        self._ready = False
        for dependency in self._dependencies.values():
            close = getattr(dependency.client, "aclose", None)
            if close is None:
                continue
            try:
                outcome = close()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Error closing client for '%s'", dependency.name)
        logger.info("Dependency orchestrator shut down")

    # ------------------------------------------------------------------ #
    # Invocation
    # ------------------------------------------------------------------ #

    async def invoke(
        self,
        dependency: str,
        operation: str,
        *args: Any,
        context: Optional[dict[str, Any]] = None,
    ) -> InvocationResult[Any]:
        """
        Call ``dependency.operation(*args)`` through the resilience pipeline.

        Soft failures (result objects with ``success=False``) are returned
        as values; only raised failures are retried and counted.

        Raises:
            OrchestratorNotReadyError: Before ``initialize()`` completes.
            DependencyError: The classified failure when no fallback served it.
        """
        if not self._ready:
            raise OrchestratorNotReadyError()

        dep = self._require(dependency)
        raw = dep.operations.get(operation)
        if raw is None:
            raise DependencyError(
                f"Operation '{operation}' not registered for '{dependency}'",
                ErrorKind.NOT_FOUND,
                context={"dependency": dependency, "operation": operation},
            )

        ctx = {
            **(context or {}),
            "dependency": dependency,
            "operation": operation,
            "timeout": dep.timeout_seconds,
        }

        async def guarded(*call_args: Any) -> Any:
            return await dep.breaker.execute(
                lambda: execute_with_retry(
                    lambda: asyncio.wait_for(raw(*call_args), dep.timeout_seconds),
                    self._retry_policies,
                    ctx,
                    sleep=self._sleep,
                    rng=self._rng,
                ),
                ctx,
            )

        if self._fallbacks.has_fallback(dependency, operation):
            outcome = await self._fallbacks.execute_with_fallback(
                dependency, operation, guarded, args, ctx
            )
            return InvocationResult(
                value=outcome.value,
                dependency=dependency,
                operation=operation,
                fallback_used=outcome.fallback_used,
                error=outcome.error,
            )

        value = await guarded(*args)
        return InvocationResult(value=value, dependency=dependency, operation=operation)

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #

    def get_health_snapshot(self) -> HealthSnapshot:
        """Per-dependency breaker state and counters plus overall health."""
        reports = {}
        for name, dep in self._dependencies.items():
            report = dep.breaker.snapshot()
            report.probe_healthy = dep.probe_healthy
            report.probe_detail = dep.probe_detail or None
            reports[name] = report

        healthy = sum(
            1 for report in reports.values()
            if report.state.value == "closed" and report.probe_healthy is not False
        )
        overall = round(healthy / len(reports) * 100) if reports else 100
        return HealthSnapshot(
            ready=self._ready,
            overall_health=overall,
            dependencies=reports,
            fallbacks=self._fallbacks.registered(),
            timestamp=self._clock(),
        )

    def reset_circuit(self, name: str) -> None:
        """Operator-triggered recovery for one dependency's breaker."""
        self._require(name).breaker.reset()
        logger.info("Circuit reset requested for '%s'", name)
