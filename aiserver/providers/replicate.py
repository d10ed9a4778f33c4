"""
Replicate predictions, models and trainings over the HTTP API.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable

from loguru import logger

from aiserver.providers.base import BaseProvider
from aiserver.services.client import ServiceClient
from aiserver.services.errors import ServiceError
from aiserver.services.registry import REPLICATE
from aiserver.settings import global_settings

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})


class ReplicateProvider(BaseProvider):
    """Replicate client guarded by the ``replicate`` circuit breaker."""

    def __init__(
        self,
        api_token: str | None = None,
        base_url: str | None = None,
        client: ServiceClient | None = None,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(client)
        self.api_token = (
            global_settings.replicate_api_token if api_token is None else api_token
        )
        self.base_url = (base_url or global_settings.replicate_base_url).rstrip("/")
        self.poll_interval = poll_interval
        self._sleep = sleep

    @property
    def service_id(self) -> str:
        return REPLICATE

    def is_configured(self) -> bool:
        return bool(self.api_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def create_prediction(
        self,
        model: str,
        model_input: dict[str, Any],
        webhook: str | None = None,
        operation_name: str = "replicate-create-prediction",
    ) -> dict[str, Any]:
        """
        Start a prediction.

        ``model`` is either ``owner/name`` (latest version) or
        ``owner/name:version``.
        """
        body: dict[str, Any] = {"input": model_input}
        if webhook:
            body["webhook"] = webhook
            body["webhook_events_filter"] = ["completed"]

        if ":" in model:
            body["version"] = model.split(":", 1)[1]
            url = f"{self.base_url}/predictions"
        else:
            url = f"{self.base_url}/models/{model}/predictions"

        logger.info(f"Replicate create prediction: model={model}")
        return await self._request(
            "POST", url, operation_name, headers=self._headers(), json_data=body
        )

    async def get_prediction(
        self,
        prediction_id: str,
        operation_name: str = "replicate-get-prediction",
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{self.base_url}/predictions/{prediction_id}",
            operation_name,
            headers=self._headers(),
        )

    async def run(
        self,
        model: str,
        model_input: dict[str, Any],
        timeout: float = 600.0,
        operation_name: str = "replicate-run",
    ) -> Any:
        """Create a prediction and poll it to completion. Returns its output."""
        prediction = await self.create_prediction(
            model, model_input, operation_name=operation_name
        )
        deadline = time.monotonic() + timeout

        while prediction.get("status") not in TERMINAL_STATUSES:
            if time.monotonic() >= deadline:
                raise ServiceError(
                    f"{operation_name}: prediction {prediction.get('id')} "
                    f"did not finish within {timeout}s",
                    service_id=self.service_id,
                )
            await self._sleep(self.poll_interval)
            prediction = await self.get_prediction(
                prediction["id"], operation_name=operation_name
            )

        if prediction["status"] != "succeeded":
            raise ServiceError(
                f"{operation_name}: prediction {prediction.get('id')} "
                f"{prediction['status']}: {prediction.get('error')}",
                service_id=self.service_id,
            )

        logger.info(f"Replicate prediction {prediction.get('id')} succeeded")
        return prediction.get("output")

    async def get_model(
        self,
        owner: str,
        name: str,
        operation_name: str = "replicate-get-model",
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{self.base_url}/models/{owner}/{name}",
            operation_name,
            headers=self._headers(),
        )

    async def create_model(
        self,
        owner: str,
        name: str,
        visibility: str = "private",
        hardware: str = "gpu-t4",
        description: str | None = None,
        operation_name: str = "replicate-create-model",
    ) -> dict[str, Any]:
        logger.info(f"Replicate create model: {owner}/{name}")
        return await self._request(
            "POST",
            f"{self.base_url}/models",
            operation_name,
            headers=self._headers(),
            json_data={
                "owner": owner,
                "name": name,
                "visibility": visibility,
                "hardware": hardware,
                "description": description,
            },
        )

    async def list_models(
        self,
        operation_name: str = "replicate-list-models",
    ) -> list[dict[str, Any]]:
        result = await self._request(
            "GET", f"{self.base_url}/models", operation_name, headers=self._headers()
        )
        return result.get("results", [])

    async def get_latest_model_url(
        self,
        owner: str,
        name: str,
        operation_name: str = "replicate-get-latest-model-url",
    ) -> str:
        """Return ``owner/name:version`` for the newest version of a trained model."""
        model = await self.get_model(owner, name, operation_name=operation_name)
        version = (model.get("latest_version") or {}).get("id")
        if not version:
            raise ServiceError(
                f"Model {owner}/{name} not found or has no version yet.",
                service_id=self.service_id,
                status_code=404,
            )
        return f"{owner}/{name}:{version}"

    async def create_training(
        self,
        owner: str,
        name: str,
        version: str,
        destination: str,
        training_input: dict[str, Any],
        webhook: str | None = None,
        operation_name: str = "replicate-create-training",
    ) -> dict[str, Any]:
        """Start a LoRA training that publishes into ``destination``."""
        logger.info(f"Replicate create training: {owner}/{name} -> {destination}")
        body: dict[str, Any] = {"destination": destination, "input": training_input}
        if webhook:
            body["webhook"] = webhook
        return await self._request(
            "POST",
            f"{self.base_url}/models/{owner}/{name}/versions/{version}/trainings",
            operation_name,
            headers=self._headers(),
            json_data=body,
        )

    async def get_training(
        self,
        training_id: str,
        operation_name: str = "replicate-get-training",
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{self.base_url}/trainings/{training_id}",
            operation_name,
            headers=self._headers(),
        )

    async def cancel_training(
        self,
        training_id: str,
        operation_name: str = "replicate-cancel-training",
    ) -> dict[str, Any]:
        logger.info(f"Replicate cancel training: {training_id}")
        return await self._request(
            "POST",
            f"{self.base_url}/trainings/{training_id}/cancel",
            operation_name,
            headers=self._headers(),
        )

    async def health_check(self, operation_name: str | None = None) -> bool:
        operation_name = operation_name or "replicate-health-check"

        async def probe() -> bool:
            await self._request(
                "GET", f"{self.base_url}/account", operation_name, headers=self._headers()
            )
            return True

        return await self._probe(probe, operation_name)
