"""Request authentication and role checks.

A request authenticates either with ``Authorization: Bearer <api key>`` or with
the dashboard session forwarded by the frontend (``x-user-id`` headers). Once
an Authorization header is present it decides the outcome on its own: a bad
or rejected key never falls back to the session.
"""

import logging
from abc import ABC, abstractmethod

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from common.errors import AuthenticationError, AuthorizationError
from common.models import OrganizationMembership, Role, Session, has_min_role
from db.postgres.organization import list_memberships_by_user
from rest.services.api_keys import ApiKeyService

logger = logging.getLogger(__name__)

MALFORMED_HEADER_MESSAGE = "Invalid Authorization header format. Expected: Bearer <api_key>"
NO_CREDENTIALS_MESSAGE = (
    "No authentication provided. Include API key in Authorization header or sign in."
)
ADMIN_REQUIRED_MESSAGE = "Admin role required for this operation"


class IdentityProvider(ABC):
    """Source of interactive sessions and organization roles."""

    @abstractmethod
    def get_session(self, request: Request) -> Session | None:
        """Session for ``request``, or None when not signed in."""

    @abstractmethod
    async def get_subject_roles(self, subject_id: str) -> list[OrganizationMembership]:
        """Current organization memberships of ``subject_id``."""


class HeaderIdentityProvider(IdentityProvider):
    """Sessions from frontend-forwarded headers, roles from the membership table.

    The frontend passes:
    - x-user-id: Subject's unique ID
    - x-user-email: Subject's email (optional)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def get_session(self, request: Request) -> Session | None:
        subject_id = (request.headers.get("x-user-id") or "").strip()
        if not subject_id:
            return None
        return Session(subject_id=subject_id, email=request.headers.get("x-user-email"))

    async def get_subject_roles(self, subject_id: str) -> list[OrganizationMembership]:
        return await list_memberships_by_user(self.session, subject_id)


def parse_bearer_token(authorization: str) -> str:
    """Extract the token from a ``Bearer <token>`` header value."""
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthenticationError(MALFORMED_HEADER_MESSAGE)
    return parts[1].strip()


class RequestAuthenticator:
    """Resolve the subject a request acts for."""

    def __init__(self, api_keys: ApiKeyService, identity: IdentityProvider):
        self.api_keys = api_keys
        self.identity = identity

    async def authenticate(self, request: Request) -> str:
        authorization = request.headers.get("authorization")
        if authorization is not None:
            token = parse_bearer_token(authorization)
            return await self.api_keys.validate(token)

        session = self.identity.get_session(request)
        if session is None:
            raise AuthenticationError(NO_CREDENTIALS_MESSAGE)
        return session.subject_id


class RoleGate:
    """Administrator check against current memberships (never cached)."""

    def __init__(self, identity: IdentityProvider):
        self.identity = identity

    async def require_admin(self, subject_id: str) -> None:
        memberships = await self.identity.get_subject_roles(subject_id)
        if not any(has_min_role(m.role, Role.ADMIN) for m in memberships):
            logger.warning(f"Subject {subject_id} denied: admin role required")
            raise AuthorizationError(ADMIN_REQUIRED_MESSAGE)
