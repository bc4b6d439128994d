from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.degradation import FallbackOutcome, FallbackRegistry
from src.resilience.errors import (
    CircuitOpenError,
    DependencyError,
    ErrorKind,
    OrchestratorNotReadyError,
    classify_error,
    user_facing_message,
)
from src.resilience.orchestrator import DependencyOrchestrator, InvocationResult
from src.resilience.retry import DEFAULT_RETRY_POLICIES, RetryPolicy, execute_with_retry

__all__ = [
    "ErrorKind",
    "DependencyError",
    "CircuitOpenError",
    "OrchestratorNotReadyError",
    "classify_error",
    "user_facing_message",
    "RetryPolicy",
    "DEFAULT_RETRY_POLICIES",
    "execute_with_retry",
    "CircuitBreaker",
    "FallbackRegistry",
    "FallbackOutcome",
    "DependencyOrchestrator",
    "InvocationResult",
]
