"""Shared fixtures for the reliability layer tests."""

from typing import Callable

import httpx
import pytest

from aiserver.services.circuit_breaker import CircuitBreakerRegistry
from aiserver.services.client import ServiceClient
from aiserver.services.registry import build_default_registry, clear_registry
from aiserver.services.retry import RetryConfig, make_retry_runner, is_retryable_http_error


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# Same contract as retry_external_api but without real backoff delays
fast_retry = make_retry_runner(
    RetryConfig(
        max_attempts=3,
        base_delay=0.0,
        max_delay=0.0,
        jitter=False,
        retry_condition=is_retryable_http_error,
    )
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_global_registry():
    """Never leak the process-wide registry between tests."""
    clear_registry()
    yield
    clear_registry()


@pytest.fixture
def registry() -> CircuitBreakerRegistry:
    return build_default_registry()


@pytest.fixture
def make_client(registry):
    """Build a ServiceClient whose HTTP traffic is answered by ``handler``."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> ServiceClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ServiceClient(registry=registry, http_client=http_client)

    return factory
