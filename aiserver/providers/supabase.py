"""
Supabase (PostgREST) table access under the database retry profile.
"""

from typing import Any

from loguru import logger

from aiserver.providers.base import BaseProvider
from aiserver.services.client import ServiceClient
from aiserver.services.registry import SUPABASE
from aiserver.services.retry import retry_database
from aiserver.settings import global_settings


def eq_filters(filters: dict[str, Any] | None) -> dict[str, str]:
    """Turn ``{"telegram_id": 42}`` into PostgREST ``{"telegram_id": "eq.42"}``."""
    return {column: f"eq.{value}" for column, value in (filters or {}).items()}


class SupabaseProvider(BaseProvider):
    """Supabase REST client guarded by the ``supabase`` circuit breaker."""

    def __init__(
        self,
        url: str | None = None,
        service_key: str | None = None,
        client: ServiceClient | None = None,
    ):
        super().__init__(client)
        self.url = (url or global_settings.supabase_url).rstrip("/")
        self.service_key = (
            global_settings.supabase_service_key if service_key is None else service_key
        )

    @property
    def service_id(self) -> str:
        return SUPABASE

    def is_configured(self) -> bool:
        return bool(self.url and self.service_key)

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _rest(self, method: str, path: str, operation_name: str, **kwargs: Any) -> Any:
        return await self._request(
            method,
            f"{self.url}/rest/v1/{path}",
            operation_name,
            retry=retry_database,
            **kwargs,
        )

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        operation_name: str = "supabase-select",
    ) -> list[dict[str, Any]]:
        params = {"select": columns, **eq_filters(filters)}
        if limit is not None:
            params["limit"] = str(limit)
        rows = await self._rest(
            "GET", table, operation_name, params=params, headers=self._headers()
        )
        logger.debug(f"Supabase SELECT {table}: {len(rows)} rows")
        return rows

    async def insert(
        self,
        table: str,
        values: dict[str, Any] | list[dict[str, Any]],
        operation_name: str = "supabase-insert",
    ) -> list[dict[str, Any]]:
        logger.info(f"Supabase INSERT into {table}")
        return await self._rest(
            "POST",
            table,
            operation_name,
            headers=self._headers("return=representation"),
            json_data=values,
        )

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        filters: dict[str, Any],
        operation_name: str = "supabase-update",
    ) -> list[dict[str, Any]]:
        logger.info(f"Supabase UPDATE {table} where {filters}")
        return await self._rest(
            "PATCH",
            table,
            operation_name,
            params=eq_filters(filters),
            headers=self._headers("return=representation"),
            json_data=values,
        )

    async def delete(
        self,
        table: str,
        filters: dict[str, Any],
        operation_name: str = "supabase-delete",
    ) -> list[dict[str, Any]]:
        logger.info(f"Supabase DELETE from {table} where {filters}")
        return await self._rest(
            "DELETE",
            table,
            operation_name,
            params=eq_filters(filters),
            headers=self._headers("return=representation"),
        )

    async def rpc(
        self,
        function_name: str,
        params: dict[str, Any] | None = None,
        operation_name: str = "supabase-rpc",
    ) -> Any:
        logger.info(f"Supabase RPC {function_name}")
        return await self._rest(
            "POST",
            f"rpc/{function_name}",
            operation_name,
            headers=self._headers(),
            json_data=params or {},
        )

    async def get_user_by_telegram_id(
        self,
        telegram_id: str | int,
        operation_name: str = "supabase-get-user-by-telegram-id",
    ) -> dict[str, Any] | None:
        rows = await self.select(
            "users",
            filters={"telegram_id": str(telegram_id)},
            limit=1,
            operation_name=operation_name,
        )
        return rows[0] if rows else None

    async def get_user_balance(
        self,
        telegram_id: str | int,
        bot_name: str | None = None,
        operation_name: str = "supabase-get-user-balance",
    ) -> Any:
        return await self.rpc(
            "get_user_balance",
            {"user_telegram_id": str(telegram_id), "p_bot_name": bot_name},
            operation_name=operation_name,
        )

    async def health_check(self, operation_name: str | None = None) -> bool:
        operation_name = operation_name or "supabase-health-check"

        async def probe() -> bool:
            await self.select("users", columns="id", limit=1, operation_name=operation_name)
            return True

        return await self._probe(probe, operation_name)
