"""
HuggingFace Space (JoyCaption) image captioning.

The Gradio API is two-step: POST the inputs to get an event id, then GET
the event stream and take the first ``data:`` line carrying a result.
"""

import json

from loguru import logger

from aiserver.providers.base import BaseProvider
from aiserver.services.client import ServiceClient
from aiserver.services.errors import ServiceError
from aiserver.services.registry import HUGGINGFACE
from aiserver.settings import global_settings

DEFAULT_CAPTION_PROMPT = (
    "Describe the image in detail, including colors, style, mood, and composition."
)


def parse_caption_stream(text: str) -> str | None:
    """Return the caption from a Gradio event stream, or None if absent."""
    for line in text.splitlines():
        if not line.startswith("data: "):
            continue
        try:
            data = json.loads(line[len("data: "):])
        except ValueError:
            logger.warning(f"Skipping unparseable event line: {line[:80]}")
            continue
        if isinstance(data, list) and len(data) > 1 and data[1]:
            return data[1]
    return None


class HuggingFaceProvider(BaseProvider):
    """JoyCaption space client guarded by the ``huggingface`` circuit breaker."""

    def __init__(
        self,
        space_url: str | None = None,
        client: ServiceClient | None = None,
    ):
        super().__init__(client)
        self.space_url = (space_url or global_settings.huggingface_space_url).rstrip("/")

    @property
    def service_id(self) -> str:
        return HUGGINGFACE

    def is_configured(self) -> bool:
        return bool(self.space_url)

    async def generate_image_caption(
        self,
        image_url: str,
        caption_type: str = "Descriptive",
        caption_length: str = "long",
        extra_options: list[str] | None = None,
        operation_name: str = "huggingface-image-caption",
    ) -> str:
        """Caption an image (used as the prompt for image-to-prompt)."""
        logger.info(
            f"HuggingFace caption: type={caption_type} length={caption_length}"
        )
        init = await self._request(
            "POST",
            f"{self.space_url}/call/stream_chat",
            operation_name,
            json_data={
                "data": [
                    {"path": image_url},
                    caption_type,
                    caption_length,
                    extra_options or [DEFAULT_CAPTION_PROMPT],
                    "",
                    "",
                ]
            },
            timeout=30.0,
        )
        event_id = init.get("event_id") if isinstance(init, dict) else init
        if not event_id:
            raise ServiceError(
                f"{operation_name}: no event id in response",
                service_id=self.service_id,
            )

        logger.debug(f"HuggingFace polling event {event_id}")
        stream = await self._request(
            "GET",
            f"{self.space_url}/call/stream_chat/{event_id}",
            operation_name,
            timeout=60.0,
            expect_json=False,
        )

        caption = parse_caption_stream(stream.decode("utf-8", errors="replace"))
        if not caption:
            raise ServiceError(
                f"{operation_name}: no caption in event stream",
                service_id=self.service_id,
            )

        logger.info(f"HuggingFace caption ready ({len(caption)} chars)")
        return caption

    async def health_check(self, operation_name: str | None = None) -> bool:
        """Any non-5xx answer from the space root means it is reachable."""
        operation_name = operation_name or "huggingface-health-check"

        async def probe() -> bool:
            await self._request(
                "GET",
                f"{self.space_url}/",
                operation_name,
                timeout=10.0,
                accept_status=lambda status: status < 500,
            )
            return True

        return await self._probe(probe, operation_name)
