"""
Bounded retry with exponential backoff and jitter.

Policies are configured per error kind at startup and never mutated.
The wait between attempts is an ``await`` on an injectable sleep
coroutine, so other in-flight turns keep running while one call backs off.

Usage:
    result = await execute_with_retry(
        lambda: client.extract_fields(text, fields),
        DEFAULT_RETRY_POLICIES,
        {"dependency": "extraction", "operation": "extract_fields"},
    )
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from src.resilience.errors import DependencyError, ErrorKind, RETRYABLE_KINDS, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one error kind. Delays are in seconds."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0 and 1, got {self.jitter}")

    def compute_delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay before retrying after the given zero-based failed attempt."""
        backoff = min(self.max_delay, self.base_delay * (self.multiplier ** attempt))
        return backoff * (1 + rng() * self.jitter)


_EXTERNAL_POLICY = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=10.0, jitter=0.1)

DEFAULT_RETRY_POLICIES: dict[ErrorKind, RetryPolicy] = {
    ErrorKind.EXTERNAL_DEPENDENCY: _EXTERNAL_POLICY,
    ErrorKind.SERVICE_UNAVAILABLE: _EXTERNAL_POLICY,
    ErrorKind.NETWORK: RetryPolicy(max_attempts=4, base_delay=2.0, max_delay=15.0, jitter=0.2),
    ErrorKind.TIMEOUT: RetryPolicy(max_attempts=3, base_delay=1.5, max_delay=8.0, jitter=0.1),
    ErrorKind.RATE_LIMIT: RetryPolicy(max_attempts=6, base_delay=5.0, max_delay=60.0, jitter=0.3),
}

PolicySpec = Union[RetryPolicy, Mapping[ErrorKind, RetryPolicy]]


def policy_for(policies: PolicySpec, kind: ErrorKind) -> RetryPolicy:
    """Resolve the policy governing a given error kind."""
    if isinstance(policies, RetryPolicy):
        return policies
    return policies.get(kind) or policies.get(ErrorKind.EXTERNAL_DEPENDENCY) or _EXTERNAL_POLICY


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policies: PolicySpec = DEFAULT_RETRY_POLICIES,
    context: Optional[dict[str, Any]] = None,
    *,
    sleep: SleepFn = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """
    Run ``operation`` until it succeeds or the retry budget runs out.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policies: A single policy, or a mapping of error kind to policy.
        context: Logging/classification context (dependency, operation...).

    Returns:
        The first successful result.

    Raises:
        DependencyError: The classified failure, when it is not retryable
            or the attempts for its kind are exhausted.
    """
    ctx = dict(context or {})
    attempt = 0

    while True:
        try:
            result = await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error: DependencyError = classify_error(exc, ctx)
            attempt += 1
            policy = policy_for(policies, error.kind)

            if error.kind not in RETRYABLE_KINDS or attempt >= policy.max_attempts:
                if error.kind in RETRYABLE_KINDS:
                    logger.error(
                        "All %d attempts failed for %s: %s (%s)",
                        attempt, ctx.get("operation", "operation"),
                        error.message, error.kind.value,
                    )
                if error is exc:
                    raise
                raise error from exc

            delay = policy.compute_delay(attempt - 1, rng)
            if error.kind == ErrorKind.RATE_LIMIT and error.retry_after is not None:
                delay = min(policy.max_delay, max(delay, error.retry_after))

            logger.warning(
                "Attempt %d/%d of %s failed (%s: %s). Retrying in %.2fs",
                attempt, policy.max_attempts, ctx.get("operation", "operation"),
                error.kind.value, error.message, delay,
            )
            await sleep(delay)
            continue

        if attempt > 0:
            logger.info(
                "Retry succeeded for %s on attempt %d",
                ctx.get("operation", "operation"), attempt + 1,
            )
        return result
