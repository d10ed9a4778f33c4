"""
ElevenLabs text-to-speech and voice cloning.
"""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from aiserver.providers.base import BaseProvider
from aiserver.services.client import ServiceClient
from aiserver.services.registry import ELEVENLABS
from aiserver.settings import global_settings


class ElevenLabsProvider(BaseProvider):
    """ElevenLabs client guarded by the ``elevenlabs`` circuit breaker."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model_id: str | None = None,
        client: ServiceClient | None = None,
    ):
        super().__init__(client)
        self.api_key = global_settings.elevenlabs_api_key if api_key is None else api_key
        self.base_url = (base_url or global_settings.elevenlabs_base_url).rstrip("/")
        self.model_id = model_id or global_settings.elevenlabs_model_id

    @property
    def service_id(self) -> str:
        return ELEVENLABS

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {"xi-api-key": self.api_key}

    async def generate_speech(
        self,
        voice_id: str,
        text: str,
        model_id: str | None = None,
        operation_name: str = "elevenlabs-generate",
    ) -> bytes:
        """Synthesize ``text`` with a voice. Returns MP3 bytes."""
        model = model_id or self.model_id
        logger.info(
            f"ElevenLabs generate speech: voice={voice_id} model={model} "
            f"text_length={len(text)}"
        )
        audio = await self._request(
            "POST",
            f"{self.base_url}/text-to-speech/{voice_id}",
            operation_name,
            headers={**self._headers(), "Accept": "audio/mpeg"},
            json_data={"text": text, "model_id": model},
            expect_json=False,
        )
        logger.info(f"ElevenLabs speech ready: {len(audio)} bytes")
        return audio

    async def create_voice(
        self,
        name: str,
        description: str,
        file_path: str | Path,
        operation_name: str = "elevenlabs-create-voice",
    ) -> str:
        """Clone a voice from a sample recording. Returns the new voice id."""
        path = Path(file_path)
        # Read once so every retry attempt re-sends the full sample
        sample = path.read_bytes()
        logger.info(f"ElevenLabs create voice: name={name} sample={path.name}")

        result = await self._request(
            "POST",
            f"{self.base_url}/voices/add",
            operation_name,
            headers=self._headers(),
            data={
                "name": name,
                "description": description,
                "labels": json.dumps({"accent": "neutral"}),
            },
            files={"files": (path.name, sample)},
        )
        voice_id = result["voice_id"]
        logger.info(f"ElevenLabs voice created: {voice_id}")
        return voice_id

    async def get_voices(
        self,
        operation_name: str = "elevenlabs-get-voices",
    ) -> list[dict[str, Any]]:
        result = await self._request(
            "GET",
            f"{self.base_url}/voices",
            operation_name,
            headers=self._headers(),
        )
        return result.get("voices", [])

    async def delete_voice(
        self,
        voice_id: str,
        operation_name: str = "elevenlabs-delete-voice",
    ) -> None:
        await self._request(
            "DELETE",
            f"{self.base_url}/voices/{voice_id}",
            operation_name,
            headers=self._headers(),
        )
        logger.info(f"ElevenLabs voice deleted: {voice_id}")

    async def health_check(self, operation_name: str | None = None) -> bool:
        operation_name = operation_name or "elevenlabs-health-check"

        async def probe() -> bool:
            await self._request(
                "GET",
                f"{self.base_url}/user",
                operation_name,
                headers=self._headers(),
            )
            return True

        return await self._probe(probe, operation_name)
