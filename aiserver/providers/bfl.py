"""
BFL (Black Forest Labs) fine-tuning API.

Fine-tunes are created with the user's Telegram id stored in
``finetune_comment`` so the webhook handler can route results back.
"""

from typing import Any

from loguru import logger
from pydantic import BaseModel

from aiserver.providers.base import BaseProvider
from aiserver.services.client import ServiceClient
from aiserver.services.registry import BFL
from aiserver.settings import global_settings


class FinetuneRequest(BaseModel):
    """Options for a BFL fine-tune job."""

    file_data: str  # base64-encoded zip of training images
    finetune_comment: str
    trigger_word: str
    mode: str = "character"
    iterations: int = 1000
    learning_rate: float = 0.00001
    captioning: bool = True
    priority: str = "high_res_only"
    finetune_type: str = "full"
    lora_rank: int = 32
    webhook_url: str | None = None
    webhook_secret: str | None = None


class BFLProvider(BaseProvider):
    """BFL fine-tune client guarded by the ``bfl`` circuit breaker."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: ServiceClient | None = None,
    ):
        super().__init__(client)
        self.api_key = global_settings.bfl_api_key if api_key is None else api_key
        self.base_url = (base_url or global_settings.bfl_base_url).rstrip("/")

    @property
    def service_id(self) -> str:
        return BFL

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {"X-Key": self.api_key, "Content-Type": "application/json"}

    async def create_finetune(
        self,
        request: FinetuneRequest,
        operation_name: str = "bfl-create-finetune",
    ) -> dict[str, Any]:
        """Start a fine-tune job. Returns the API response with ``finetune_id``."""
        logger.info(
            f"BFL create finetune: trigger_word={request.trigger_word} "
            f"mode={request.mode} iterations={request.iterations}"
        )
        result = await self._request(
            "POST",
            f"{self.base_url}/finetune",
            operation_name,
            headers=self._headers(),
            json_data=request.model_dump(),
        )
        logger.info(f"BFL finetune created: {result.get('finetune_id')}")
        return result

    async def get_finetune_details(
        self,
        finetune_id: str,
        operation_name: str = "bfl-get-finetune-details",
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{self.base_url}/finetune_details",
            operation_name,
            params={"finetune_id": finetune_id},
            headers=self._headers(),
        )

    async def get_telegram_id_from_finetune(
        self,
        finetune_id: str,
        operation_name: str = "bfl-get-telegram-id",
    ) -> str | None:
        """Read the Telegram id stored in a fine-tune's comment, None on any failure."""
        try:
            data = await self.get_finetune_details(finetune_id, operation_name)
        except Exception as e:
            logger.error(f"BFL get telegram id failed for {finetune_id}: {e}")
            return None

        telegram_id = (data.get("finetune_details") or {}).get("finetune_comment")
        return telegram_id or None

    async def health_check(self, operation_name: str | None = None) -> bool:
        """BFL has no health endpoint; an unknown id answering 400/404 means the API is up."""
        operation_name = operation_name or "bfl-health-check"

        async def probe() -> bool:
            response = await self._request(
                "GET",
                f"{self.base_url}/finetune_details",
                operation_name,
                params={"finetune_id": "test"},
                headers=self._headers(),
                accept_status=lambda status: status < 500,
            )
            logger.debug(f"BFL health check status {response.status_code}")
            return True

        return await self._probe(probe, operation_name)
