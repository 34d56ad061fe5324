"""Fixtures for API route tests.

Each test gets its own app bound to an in-memory database and a stub
warehouse client, so no network or Postgres is needed.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from common.models import Role
from common.settings import Settings
from db.postgres import add_member, create_organization, get_session
from db.warehouse import QueryResult, WarehouseService
from rest.main import create_app


@pytest.fixture
def warehouse_client():
    """Stub warehouse client; set ``query.return_value`` per test."""
    client = MagicMock()
    client.query = AsyncMock(return_value=QueryResult())
    client.close = AsyncMock()
    return client


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        posthog_api_key="phx_test",
        posthog_project_id="1",
    )


@pytest.fixture
def client(settings, warehouse_client):
    """Create test client with a fresh database and stubbed warehouse."""
    app = create_app(settings)
    app.state.warehouse = WarehouseService(settings, factory=lambda s: warehouse_client)

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def session_headers():
    """Headers the dashboard frontend forwards for a signed-in user."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"x-user-id": user_id, "x-user-email": f"{user_id}@example.com"}

    return _headers


@pytest.fixture
def grant_role(client):
    """Create an organization and give a user a role in it."""

    def _grant(user_id: str, role: Role) -> None:
        async def _seed():
            async with get_session() as session:
                org = await create_organization(session, f"org-of-{user_id}")
                await add_member(session, org.id, user_id, role)

        client.portal.call(_seed)

    return _grant
