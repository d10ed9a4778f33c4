"""
Downloads of generated media (Replicate outputs, Telegram attachments).
"""

import asyncio
from pathlib import Path

from loguru import logger

from aiserver.providers.base import BaseProvider
from aiserver.services.circuit_breaker import CircuitState
from aiserver.services.registry import FILE_DOWNLOAD
from aiserver.services.retry import retry_file_system


class FileDownloader(BaseProvider):
    """Fetches files under the ``file-download`` breaker and writes them with file-system retries."""

    @property
    def service_id(self) -> str:
        return FILE_DOWNLOAD

    def is_configured(self) -> bool:
        return True

    async def download(
        self,
        url: str,
        destination: str | Path,
        timeout: float = 120.0,
        operation_name: str = "file-download",
    ) -> Path:
        """Download ``url`` to ``destination``, creating parent directories."""
        content = await self._request(
            "GET", url, operation_name, timeout=timeout, expect_json=False
        )

        path = Path(destination)

        async def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, content)

        await retry_file_system(write, f"{operation_name}-write")
        logger.info(f"Downloaded {len(content)} bytes to {path}")
        return path

    async def health_check(self, operation_name: str | None = None) -> bool:
        """Downloads have no single upstream; healthy unless the breaker is open."""
        return self.client.registry.get(self.service_id).state != CircuitState.OPEN
