"""Warehouse client holder injected into routes via ``app.state``."""

import logging
from collections.abc import Callable

from common.errors import ConfigurationError
from common.settings import Settings
from db.warehouse.client import (
    ClickHouseWarehouseClient,
    HogQLWarehouseClient,
    QueryResult,
    WarehouseClient,
)

logger = logging.getLogger(__name__)

BACKENDS = ("hogql", "clickhouse")


def build_warehouse_client(settings: Settings) -> WarehouseClient:
    """Build the client for ``settings.warehouse_backend``."""
    if settings.warehouse_backend == "hogql":
        return HogQLWarehouseClient.from_settings(settings)
    if settings.warehouse_backend == "clickhouse":
        return ClickHouseWarehouseClient.from_settings(settings)
    raise ConfigurationError(
        f"Unknown WAREHOUSE_BACKEND '{settings.warehouse_backend}'. "
        f"Expected one of: {', '.join(BACKENDS)}"
    )


class WarehouseService:
    """Lazily builds the configured warehouse client and can rebuild it.

    ``reset()`` drops the current client (closing its connections) so the next
    query picks up fresh settings or credentials.
    """

    def __init__(
        self,
        settings: Settings,
        factory: Callable[[Settings], WarehouseClient] = build_warehouse_client,
    ):
        self.settings = settings
        self._factory = factory
        self._client: WarehouseClient | None = None

    @property
    def backend(self) -> str:
        return self.settings.warehouse_backend

    @property
    def is_configured(self) -> bool:
        """Whether the backend has the credentials it needs."""
        if self.backend == "hogql":
            return bool(self.settings.posthog_api_key and self.settings.posthog_project_id)
        return self.backend in BACKENDS

    @property
    def host(self) -> str:
        if self.backend == "clickhouse":
            return f"{self.settings.clickhouse_host}:{self.settings.clickhouse_port}"
        return self.settings.posthog_host

    def get_client(self) -> WarehouseClient:
        if self._client is None:
            self._client = self._factory(self.settings)
            logger.info(f"Warehouse client built for backend '{self.backend}'")
        return self._client

    async def query(self, text: str) -> QueryResult:
        return await self.get_client().query(text)

    async def reset(self, settings: Settings | None = None) -> None:
        """Drop the current client; optionally switch to new settings."""
        await self.close()
        if settings is not None:
            self.settings = settings
        logger.info("Warehouse client reset")

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    def status(self) -> dict:
        return {
            "backend": self.backend,
            "host": self.host,
            "configured": self.is_configured,
            "connected": self._client is not None,
        }
