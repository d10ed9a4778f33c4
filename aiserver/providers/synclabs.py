"""
Sync Labs lip-sync video generation.
"""

from typing import Any

from loguru import logger

from aiserver.providers.base import BaseProvider
from aiserver.services.client import ServiceClient
from aiserver.services.errors import ServiceError
from aiserver.services.registry import SYNCLABS
from aiserver.settings import global_settings

LIPSYNC_MODEL = "lipsync-1.9.0-beta"


class SyncLabsProvider(BaseProvider):
    """Sync Labs client guarded by the ``synclabs`` circuit breaker."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: ServiceClient | None = None,
    ):
        super().__init__(client)
        self.api_key = global_settings.synclabs_api_key if api_key is None else api_key
        self.base_url = (base_url or global_settings.synclabs_base_url).rstrip("/")

    @property
    def service_id(self) -> str:
        return SYNCLABS

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key}

    async def generate_lip_sync(
        self,
        video_url: str,
        audio_url: str,
        webhook_url: str | None = None,
        operation_name: str = "synclabs-generate-lipsync",
    ) -> dict[str, Any]:
        """Submit a lip-sync job. The finished video arrives on ``webhook_url``."""
        body = {
            "model": LIPSYNC_MODEL,
            "input": [
                {"type": "video", "url": video_url},
                {"type": "audio", "url": audio_url},
            ],
            "options": {"output_format": "mp4"},
            "webhookUrl": webhook_url,
        }
        result = await self._request(
            "POST",
            f"{self.base_url}/generate",
            operation_name,
            headers=self._headers(),
            json_data=body,
        )
        if not result.get("id"):
            raise ServiceError(
                f"{operation_name}: response has no generation id",
                service_id=self.service_id,
            )

        logger.info(f"Sync Labs lip-sync submitted: {result['id']}")
        return result

    async def get_generation(
        self,
        generation_id: str,
        operation_name: str = "synclabs-get-generation",
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{self.base_url}/generate/{generation_id}",
            operation_name,
            headers=self._headers(),
        )

    async def health_check(self, operation_name: str | None = None) -> bool:
        operation_name = operation_name or "synclabs-health-check"

        async def probe() -> bool:
            await self._request(
                "GET",
                f"{self.base_url}/status",
                operation_name,
                headers=self._headers(),
                timeout=5.0,
            )
            return True

        return await self._probe(probe, operation_name)
