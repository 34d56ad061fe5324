"""FastAPI dependencies for authentication, services and database access."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from db.postgres.engine import get_session as get_postgres_session
from db.warehouse import WarehouseService
from rest.services.api_keys import ApiKeyService
from rest.services.auth import (
    HeaderIdentityProvider,
    IdentityProvider,
    RequestAuthenticator,
    RoleGate,
)
from rest.services.metrics import MetricsService


async def get_db_session():
    """Get a database session."""
    async with get_postgres_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_api_key_service(session: DbSession) -> ApiKeyService:
    return ApiKeyService(session)


ApiKeys = Annotated[ApiKeyService, Depends(get_api_key_service)]


def get_identity_provider(session: DbSession) -> IdentityProvider:
    return HeaderIdentityProvider(session)


Identity = Annotated[IdentityProvider, Depends(get_identity_provider)]


async def get_authenticated_subject(
    request: Request,
    api_keys: ApiKeys,
    identity: Identity,
) -> str:
    """
    Resolve the calling subject.

    Accepts either:
    - Authorization: Bearer sk_analytics_...  (API key)
    - x-user-id / x-user-email headers        (dashboard session)

    A present Authorization header must carry a valid key; it never falls
    back to the session headers.
    """
    return await RequestAuthenticator(api_keys, identity).authenticate(request)


AuthenticatedSubject = Annotated[str, Depends(get_authenticated_subject)]


async def get_admin_subject(subject_id: AuthenticatedSubject, identity: Identity) -> str:
    """Authenticated subject holding ADMIN or OWNER in some organization."""
    await RoleGate(identity).require_admin(subject_id)
    return subject_id


AdminSubject = Annotated[str, Depends(get_admin_subject)]


def get_warehouse_service(request: Request) -> WarehouseService:
    return request.app.state.warehouse


Warehouse = Annotated[WarehouseService, Depends(get_warehouse_service)]


def get_metrics_service(request: Request, warehouse: Warehouse) -> MetricsService:
    return MetricsService(warehouse, internal_ips=request.app.state.settings.internal_ips)


Metrics = Annotated[MetricsService, Depends(get_metrics_service)]
