"""
Graceful degradation: registered fallbacks per (dependency, operation).

Fallbacks are plain functions (sync or async) kept in an explicit table.
They must be side-effect-light and must never call the dependency they
stand in for.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from src.resilience.errors import DependencyError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

FallbackFn = Callable[..., Any]


@dataclass
class FallbackOutcome(Generic[T]):
    """Result of a call that may have been served by a fallback."""

    value: T
    fallback_used: bool = False
    original_error: Optional[str] = None
    error: Optional[DependencyError] = None


class FallbackRegistry:
    """Explicit table of fallbacks keyed by dependency and operation name."""

    def __init__(self) -> None:
        self._fallbacks: dict[tuple[str, str], FallbackFn] = {}

    def register_fallback(self, dependency: str, operation: str, fallback: FallbackFn) -> None:
        """Register (or replace) the fallback for one dependency operation."""
        self._fallbacks[(dependency, operation)] = fallback
        logger.info("Fallback registered for %s.%s", dependency, operation)

    def register_fallbacks(self, dependency: str, fallbacks: dict[str, FallbackFn]) -> None:
        """Register several operations of one dependency at once."""
        for operation, fallback in fallbacks.items():
            self.register_fallback(dependency, operation, fallback)

    def has_fallback(self, dependency: str, operation: str) -> bool:
        return (dependency, operation) in self._fallbacks

    def get_fallback(self, dependency: str, operation: str) -> Optional[FallbackFn]:
        return self._fallbacks.get((dependency, operation))

    def registered(self) -> dict[str, list[str]]:
        """Registered operations grouped by dependency, for health reporting."""
        grouped: dict[str, list[str]] = {}
        for dependency, operation in sorted(self._fallbacks):
            grouped.setdefault(dependency, []).append(operation)
        return grouped

    async def execute_with_fallback(
        self,
        dependency: str,
        operation: str,
        primary: Callable[..., Awaitable[T]],
        args: Sequence[Any] = (),
        context: Optional[dict[str, Any]] = None,
    ) -> FallbackOutcome[T]:
        """
        Run ``primary(*args)``; on failure serve the registered fallback.

        Returns:
            FallbackOutcome with ``fallback_used`` set when the fallback
            produced the value, plus the original error message.

        Raises:
            DependencyError: The original classified error, when no fallback
                is registered or the fallback itself fails.
        """
        ctx = {**(context or {}), "dependency": dependency, "operation": operation}
        try:
            return FallbackOutcome(value=await primary(*args))
        except Exception as exc:
            error = classify_error(exc, ctx)
            fallback = self._fallbacks.get((dependency, operation))
            if fallback is None:
                if error is exc:
                    raise
                raise error from exc

            logger.warning(
                "%s.%s failed (%s: %s), using fallback",
                dependency, operation, error.kind.value, error.message,
            )
            try:
                value = fallback(*args)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as fallback_exc:
                logger.error(
                    "Fallback for %s.%s also failed: %s (primary error: %s)",
                    dependency, operation, fallback_exc, error.message,
                )
                raise error from fallback_exc

            return FallbackOutcome(
                value=value,
                fallback_used=True,
                original_error=error.message,
                error=error,
            )
