"""
Base provider interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from aiserver.services.client import ServiceClient

T = TypeVar("T")


class BaseProvider(ABC):
    """
    Abstract base class for all external generation providers.

    All providers should:
    - Use ServiceClient for HTTP requests (circuit breaker + retry)
    - Name every operation so failures say which call broke
    - Report health as a bool without raising
    """

    def __init__(self, client: ServiceClient | None = None):
        from aiserver.services.client import get_service_client

        self.client = client or get_service_client()

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Dependency name, also the circuit breaker name."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the provider has the credentials it needs."""
        ...

    @abstractmethod
    async def health_check(self, operation_name: str | None = None) -> bool:
        """Probe the provider; never raises."""
        ...

    async def _request(self, method: str, url: str, operation_name: str, **kwargs: Any) -> Any:
        return await self.client.request(
            self.service_id, method, url, operation_name=operation_name, **kwargs
        )

    async def _probe(
        self,
        probe: Callable[[], Awaitable[bool]],
        operation_name: str,
    ) -> bool:
        """Run a health probe, turning any failure into False."""
        try:
            return await probe()
        except Exception as e:
            logger.error(f"{self.service_id} health check failed ({operation_name}): {e}")
            return False
