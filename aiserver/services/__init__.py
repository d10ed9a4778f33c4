"""
Service layer infrastructure - resilience patterns for external API calls.

Provides:
- CircuitBreaker: Fails fast while a dependency is unhealthy
- Retry executor: Exponential backoff with jitter for transient failures
- Registry: Named, shared breakers for every external dependency
- ServiceClient: HTTP client combining both patterns
"""

from aiserver.services.errors import (
    ServiceError,
    CircuitOpenError,
    OperationFailedError,
    RateLimitError,
    RequestTimeoutError,
    RetryError,
    ServiceUnavailableError,
)
from aiserver.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
)
from aiserver.services.retry import (
    DATABASE_RETRY,
    EXTERNAL_API_RETRY,
    FILE_SYSTEM_RETRY,
    RetryConfig,
    RetryResult,
    compute_delay,
    execute_with_retry,
    is_retryable_http_error,
    make_retry_runner,
    retry_database,
    retry_external_api,
    retry_file_system,
)
from aiserver.services.registry import (
    BREAKER_CONFIGS,
    build_default_registry,
    clear_registry,
    get_all_circuit_breaker_stats,
    get_registry,
    init_registry,
    reset_all_circuit_breakers,
)
from aiserver.services.client import ServiceClient

__all__ = [
    # Errors
    "ServiceError",
    "CircuitOpenError",
    "OperationFailedError",
    "RateLimitError",
    "RequestTimeoutError",
    "RetryError",
    "ServiceUnavailableError",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    # Retry
    "DATABASE_RETRY",
    "EXTERNAL_API_RETRY",
    "FILE_SYSTEM_RETRY",
    "RetryConfig",
    "RetryResult",
    "compute_delay",
    "execute_with_retry",
    "is_retryable_http_error",
    "make_retry_runner",
    "retry_database",
    "retry_external_api",
    "retry_file_system",
    # Registry
    "BREAKER_CONFIGS",
    "build_default_registry",
    "clear_registry",
    "get_all_circuit_breaker_stats",
    "get_registry",
    "init_registry",
    "reset_all_circuit_breakers",
    # Client
    "ServiceClient",
]
