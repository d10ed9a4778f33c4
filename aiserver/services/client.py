"""
ServiceClient - Unified async HTTP client with resilience patterns.

Every provider request goes through:
- CircuitBreaker for the dependency (fail fast while it is down)
- A retry profile for transient failures (network errors, 5xx, 429, 408)

The breaker wraps the retry loop, so one logical operation counts as a
single success or failure no matter how many attempts it took.
"""

from typing import Any, Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from aiserver.services.circuit_breaker import CircuitBreakerRegistry
from aiserver.services.errors import (
    RateLimitError,
    RequestTimeoutError,
    ServiceError,
    ServiceUnavailableError,
)
from aiserver.services.registry import get_registry
from aiserver.services.retry import retry_external_api

T = TypeVar("T")

RetryRunner = Callable[[Callable[[], Awaitable[T]], str | None], Awaitable[T]]


class ServiceClient:
    """
    HTTP client that routes every call through a circuit breaker and a retry policy.

    Usage:
        client = ServiceClient(registry=build_default_registry())

        data = await client.request(
            "bfl",
            "GET",
            "https://api.us1.bfl.ai/v1/finetune_details",
            params={"finetune_id": finetune_id},
            operation_name="bfl-get-finetune-details",
        )
    """

    def __init__(
        self,
        registry: CircuitBreakerRegistry | None = None,
        default_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._registry = registry
        self._default_timeout = default_timeout

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client
        self._owns_http_client = http_client is None

    @property
    def registry(self) -> CircuitBreakerRegistry:
        if self._registry is None:
            self._registry = get_registry()
        return self._registry

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._default_timeout),
                follow_redirects=True,
            )
            self._owns_http_client = True
        return self._http_client

    async def call(
        self,
        service_id: str,
        operation: Callable[[], Awaitable[T]],
        operation_name: str | None = None,
        retry: RetryRunner = retry_external_api,
    ) -> T:
        """
        Run one logical operation against a dependency.

        Raises:
            CircuitOpenError: If the dependency's circuit is open
            OperationFailedError: If a named operation exhausted its retries
            Exception: The operation's own error for unnamed operations
        """
        breaker = self.registry.get(service_id)
        return await breaker.execute(lambda: retry(operation, operation_name))

    async def request(
        self,
        service_id: str,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_data: Any = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        timeout: float | None = None,
        operation_name: str | None = None,
        expect_json: bool = True,
        accept_status: Callable[[int], bool] | None = None,
        retry: RetryRunner = retry_external_api,
    ) -> Any:
        """
        Make an HTTP request with resilience patterns.

        Args:
            service_id: Dependency name (selects the circuit breaker)
            method: HTTP method (GET, POST, etc.)
            url: Full URL to request
            params: Query parameters
            headers: Request headers
            json_data: JSON body
            data: Form fields
            files: Multipart files
            timeout: Override request timeout
            operation_name: Logical operation name used in errors and logs
            expect_json: Decode the body as JSON (raw bytes otherwise)
            accept_status: Predicate deciding which status codes count as
                success (default: 2xx)
            retry: Retry runner for this call

        Returns:
            Decoded JSON, raw bytes, or the httpx.Response when
            accept_status is given
        """

        async def do_request() -> Any:
            return await self._execute_request(
                service_id=service_id,
                method=method,
                url=url,
                params=params,
                headers=headers or {},
                json_data=json_data,
                data=data,
                files=files,
                timeout=timeout or self._default_timeout,
                expect_json=expect_json,
                accept_status=accept_status,
            )

        do_request.__name__ = operation_name or f"{service_id}-{method.lower()}"
        return await self.call(service_id, do_request, operation_name, retry)

    async def _execute_request(
        self,
        service_id: str,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        headers: dict[str, str],
        json_data: Any,
        data: dict[str, Any] | None,
        files: dict[str, Any] | None,
        timeout: float,
        expect_json: bool,
        accept_status: Callable[[int], bool] | None,
    ) -> Any:
        """Execute the actual HTTP request."""
        client = await self._get_http_client()

        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                headers=headers,
                json=json_data,
                data=data,
                files=files,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(service_id, timeout) from e

        if accept_status is not None:
            if accept_status(response.status_code):
                return response
            raise _status_error(service_id, response)

        if response.is_error:
            raise _status_error(service_id, response)

        if not expect_json:
            return response.content
        return response.json()

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client and self._owns_http_client:
            await self._http_client.aclose()
        self._http_client = None
        logger.debug("ServiceClient closed")

    async def __aenter__(self) -> "ServiceClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    # Health and status methods

    def get_health_status(self) -> dict[str, Any]:
        """Get circuit breaker health for all dependencies."""
        return {
            "circuit_breakers": self.registry.get_all_status(),
            "open_circuits": self.registry.get_open_circuits(),
        }

    def get_circuit_status(self, service_id: str) -> dict[str, Any] | None:
        """Get circuit breaker status for a specific dependency."""
        if service_id not in self.registry:
            return None
        return self.registry.get(service_id).get_stats().to_dict()

    def reset_circuit(self, service_id: str) -> bool:
        """Reset circuit breaker for a dependency."""
        return self.registry.reset(service_id)


def _status_error(service_id: str, response: httpx.Response) -> ServiceError:
    """Translate an unsuccessful response into a service error."""
    status = response.status_code
    if status == 429:
        retry_after = response.headers.get("retry-after")
        try:
            seconds = float(retry_after) if retry_after else None
        except ValueError:
            seconds = None
        return RateLimitError(service_id, seconds)

    message = f"HTTP {status}: {response.text[:200]}"
    code = _error_code(response)
    if status >= 500:
        return ServiceUnavailableError(
            message, service_id=service_id, status_code=status, code=code
        )
    return ServiceError(message, service_id=service_id, status_code=status, code=code)


def _error_code(response: httpx.Response) -> str | None:
    """Pull an application error code (e.g. PostgREST's "PGRST301") from a JSON body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("code"), str):
        return body["code"]
    return None


# Global client instance
_global_client: ServiceClient | None = None


def get_service_client() -> ServiceClient:
    """Get the global service client instance."""
    global _global_client
    if _global_client is None:
        _global_client = ServiceClient()
    return _global_client


async def close_service_client() -> None:
    """Close the global service client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
