"""Relational store: API keys, organizations and memberships."""

from db.postgres.api_key import (
    API_KEY_PREFIX,
    ApiKey,
    KeyValidation,
    delete_api_keys_by_owner,
    generate_api_key,
    hash_api_key,
    insert_api_key,
    list_api_keys_by_owner,
    revoke_api_key,
    validate_and_touch_api_key,
)
from db.postgres.engine import close_db, configure_engine, get_engine, get_session, init_db
from db.postgres.models import ApiKeyModel, Base, OrganizationMembershipModel, OrganizationModel
from db.postgres.organization import (
    add_member,
    create_organization,
    get_organization_by_id,
    list_memberships_by_user,
)

__all__ = [
    "API_KEY_PREFIX",
    "ApiKey",
    "ApiKeyModel",
    "Base",
    "KeyValidation",
    "OrganizationMembershipModel",
    "OrganizationModel",
    "add_member",
    "close_db",
    "configure_engine",
    "create_organization",
    "delete_api_keys_by_owner",
    "generate_api_key",
    "get_engine",
    "get_organization_by_id",
    "get_session",
    "hash_api_key",
    "init_db",
    "insert_api_key",
    "list_api_keys_by_owner",
    "list_memberships_by_user",
    "revoke_api_key",
    "validate_and_touch_api_key",
]
