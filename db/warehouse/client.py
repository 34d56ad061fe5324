"""Analytics warehouse clients.

Both backends accept a query string in the warehouse's expression language and
return a ``QueryResult``. Transport and upstream failures are raised as
``ExternalAPIError`` so the REST layer can answer 502.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import clickhouse_connect
import httpx
from clickhouse_connect.driver.client import Client
from clickhouse_connect.driver.exceptions import ClickHouseError
from pydantic import BaseModel, Field

from common.errors import ConfigurationError, ExternalAPIError
from common.settings import Settings

logger = logging.getLogger(__name__)


class QueryResult(BaseModel):
    """Raw tabular result of a warehouse query."""

    results: list[Any] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)


class WarehouseClient(ABC):
    """Executes query strings against an analytics warehouse."""

    name: str = "warehouse"

    @abstractmethod
    async def query(self, text: str) -> QueryResult:
        """Run ``text`` and return its rows."""

    async def close(self) -> None:
        """Release network resources."""


class HogQLWarehouseClient(WarehouseClient):
    """Client for the PostHog HogQL query API."""

    name = "PostHog"

    def __init__(
        self,
        host: str,
        api_key: str,
        project_id: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.host = host.rstrip("/")
        self.project_id = project_id
        self.client = httpx.AsyncClient(
            base_url=self.host,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "HogQLWarehouseClient":
        """Create client from settings, failing if credentials are missing."""
        if not settings.posthog_api_key:
            raise ConfigurationError(
                "PostHog API key is not configured. Set POSTHOG_API_KEY environment variable."
            )
        if not settings.posthog_project_id:
            raise ConfigurationError(
                "PostHog project ID is not configured. Set POSTHOG_PROJECT_ID environment variable."
            )
        return cls(
            host=settings.posthog_host,
            api_key=settings.posthog_api_key,
            project_id=settings.posthog_project_id,
            timeout=settings.warehouse_timeout,
        )

    async def query(self, text: str) -> QueryResult:
        payload = {"query": {"kind": "HogQLQuery", "query": text}}
        try:
            response = await self.client.post(
                f"/api/projects/{self.project_id}/query/", json=payload
            )
        except httpx.HTTPError as e:
            logger.error(f"HogQL request failed: {e!r}")
            raise ExternalAPIError(self.name, f"HogQL query failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"HogQL query returned {response.status_code}: {response.text[:500]}")
            raise ExternalAPIError(
                self.name,
                f"HogQL query failed: {response.text[:500]}",
                details={"status": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            logger.error("HogQL query returned a non-JSON body")
            raise ExternalAPIError(self.name, "HogQL query returned invalid JSON") from e

        if not isinstance(body, dict):
            return QueryResult()
        results = body.get("results")
        columns = body.get("columns")
        if not isinstance(results, list):
            logger.warning(f"HogQL query returned no result rows: {type(results).__name__}")
            return QueryResult()
        if not isinstance(columns, list):
            columns = []
        return QueryResult(results=results, columns=[str(c) for c in columns])

    async def close(self) -> None:
        await self.client.aclose()


class ClickHouseWarehouseClient(WarehouseClient):
    """ClickHouse client wrapper using clickhouse-connect.

    clickhouse-connect is synchronous, so queries run in a worker thread.
    """

    name = "ClickHouse"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        database: str,
        client: Client | None = None,
    ):
        self._params = {
            "host": host,
            "port": port,
            "username": username,
            "password": password,
            "database": database,
        }
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClickHouseWarehouseClient":
        """Create client from settings. The connection opens on first query."""
        return cls(
            host=settings.clickhouse_host,
            port=settings.clickhouse_port,
            username=settings.clickhouse_user,
            password=settings.clickhouse_password,
            database=settings.clickhouse_database,
        )

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = clickhouse_connect.get_client(**self._params)
        return self._client

    def _run(self, text: str) -> QueryResult:
        result = self._get_client().query(text)
        return QueryResult(
            results=[list(row) for row in result.result_rows],
            columns=list(result.column_names),
        )

    async def query(self, text: str) -> QueryResult:
        try:
            return await asyncio.to_thread(self._run, text)
        except (ClickHouseError, OSError) as e:
            logger.error(f"ClickHouse query failed: {e!r}")
            raise ExternalAPIError(self.name, f"Query failed: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
