"""
Tests for request authentication and the admin role gate.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Request

from common.errors import AuthenticationError, AuthorizationError
from common.models import OrganizationMembership, Role, Session, has_min_role, role_level
from db.postgres import add_member, create_organization
from rest.services.api_keys import ApiKeyService
from rest.services.auth import (
    ADMIN_REQUIRED_MESSAGE,
    MALFORMED_HEADER_MESSAGE,
    NO_CREDENTIALS_MESSAGE,
    HeaderIdentityProvider,
    RequestAuthenticator,
    RoleGate,
    parse_bearer_token,
)


def make_request(headers: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def fake_identity(session: Session | None = None, roles: list[Role] | None = None):
    identity = MagicMock()
    identity.get_session.return_value = session
    identity.get_subject_roles = AsyncMock(
        return_value=[
            OrganizationMembership(id=f"m{i}", org_id=f"org{i}", user_id="u", role=role)
            for i, role in enumerate(roles or [])
        ]
    )
    return identity


class TestParseBearerToken:
    def test_valid(self):
        assert parse_bearer_token("Bearer sk_analytics_abc") == "sk_analytics_abc"
        assert parse_bearer_token("bearer  sk_analytics_abc ") == "sk_analytics_abc"

    @pytest.mark.parametrize("header", ["", "Bearer", "Bearer ", "Basic abc", "sk_analytics_abc"])
    def test_malformed(self, header):
        with pytest.raises(AuthenticationError) as exc:
            parse_bearer_token(header)
        assert exc.value.message == MALFORMED_HEADER_MESSAGE


class TestRequestAuthenticator:
    """Test the bearer-or-session contract."""

    @pytest.mark.asyncio
    async def test_bearer_key_wins(self):
        api_keys = MagicMock()
        api_keys.validate = AsyncMock(return_value="user_42")
        identity = fake_identity(Session(subject_id="session_user"))

        subject = await RequestAuthenticator(api_keys, identity).authenticate(
            make_request({"Authorization": "Bearer sk_analytics_abc"})
        )

        assert subject == "user_42"
        api_keys.validate.assert_awaited_once_with("sk_analytics_abc")
        identity.get_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_key_does_not_fall_back_to_session(self):
        api_keys = MagicMock()
        api_keys.validate = AsyncMock(side_effect=AuthenticationError("Invalid or expired API key"))
        identity = fake_identity(Session(subject_id="session_user"))

        with pytest.raises(AuthenticationError):
            await RequestAuthenticator(api_keys, identity).authenticate(
                make_request({"Authorization": "Bearer sk_analytics_bad"})
            )
        identity.get_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_header_does_not_fall_back(self):
        api_keys = MagicMock()
        api_keys.validate = AsyncMock()
        identity = fake_identity(Session(subject_id="session_user"))

        with pytest.raises(AuthenticationError) as exc:
            await RequestAuthenticator(api_keys, identity).authenticate(
                make_request({"Authorization": "Token abc"})
            )
        assert exc.value.message == MALFORMED_HEADER_MESSAGE
        api_keys.validate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_used_without_header(self):
        identity = fake_identity(Session(subject_id="session_user"))
        subject = await RequestAuthenticator(MagicMock(), identity).authenticate(make_request())
        assert subject == "session_user"

    @pytest.mark.asyncio
    async def test_no_credentials(self):
        with pytest.raises(AuthenticationError) as exc:
            await RequestAuthenticator(MagicMock(), fake_identity()).authenticate(make_request())
        assert exc.value.message == NO_CREDENTIALS_MESSAGE

    @pytest.mark.asyncio
    async def test_with_real_key_store(self, db_session):
        api_keys = ApiKeyService(db_session)
        secret, record = await api_keys.create("user_42")
        authenticator = RequestAuthenticator(api_keys, HeaderIdentityProvider(db_session))
        request = make_request({"Authorization": f"Bearer {secret}"})

        assert await authenticator.authenticate(request) == "user_42"

        await api_keys.revoke("user_42", record.id)
        with pytest.raises(AuthenticationError):
            await authenticator.authenticate(request)


class TestHeaderIdentityProvider:
    def test_session_from_headers(self):
        provider = HeaderIdentityProvider(MagicMock())
        session = provider.get_session(
            make_request({"x-user-id": "user_1", "x-user-email": "a@b.c"})
        )
        assert session == Session(subject_id="user_1", email="a@b.c")

    def test_blank_subject_is_no_session(self):
        provider = HeaderIdentityProvider(MagicMock())
        assert provider.get_session(make_request({"x-user-id": "  "})) is None
        assert provider.get_session(make_request()) is None


class TestRoleGate:
    """Test administrator checks."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [Role.ADMIN, Role.OWNER])
    async def test_admin_roles_pass(self, role):
        await RoleGate(fake_identity(roles=[Role.VIEWER, role])).require_admin("u")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("roles", [[], [Role.MEMBER], [Role.VIEWER, Role.MEMBER]])
    async def test_non_admin_rejected(self, roles):
        with pytest.raises(AuthorizationError) as exc:
            await RoleGate(fake_identity(roles=roles)).require_admin("u")
        assert exc.value.message == ADMIN_REQUIRED_MESSAGE

    @pytest.mark.asyncio
    async def test_roles_refetched_every_call(self):
        identity = fake_identity(roles=[Role.ADMIN])
        gate = RoleGate(identity)

        await gate.require_admin("u")
        identity.get_subject_roles.return_value = []
        with pytest.raises(AuthorizationError):
            await gate.require_admin("u")
        assert identity.get_subject_roles.await_count == 2

    @pytest.mark.asyncio
    async def test_role_change_takes_effect_immediately(self, db_session):
        org = await create_organization(db_session, "Acme")
        await add_member(db_session, org.id, "user_1", Role.ADMIN)
        gate = RoleGate(HeaderIdentityProvider(db_session))

        await gate.require_admin("user_1")

        await add_member(db_session, org.id, "user_1", Role.MEMBER)
        with pytest.raises(AuthorizationError):
            await gate.require_admin("user_1")


class TestRoleHierarchy:
    def test_declared_order_is_rank(self):
        assert [role_level(r) for r in Role] == [4, 3, 2, 1]
        assert role_level("SUPERUSER") == 0

    def test_has_min_role(self):
        assert has_min_role(Role.OWNER, Role.ADMIN)
        assert has_min_role("ADMIN", Role.ADMIN)
        assert not has_min_role(Role.MEMBER, Role.ADMIN)
