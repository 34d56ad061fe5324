"""API key storage operations.

Keys are stored as SHA-256 digests. Validation and revocation are single
conditional UPDATE statements so the database linearizes them: a key that
has been revoked can never be touched as "used" afterwards.
"""

import hashlib
import secrets
from datetime import datetime, timezone
from typing import Any

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.postgres.models import ApiKeyModel, utcnow

cuid = cuid_wrapper()

API_KEY_PREFIX = "sk_analytics_"
_KEY_DISPLAY_LEN = len(API_KEY_PREFIX) + 6


class ApiKey(BaseModel):
    """API key record (never carries the plaintext)."""

    id: str
    owner: str
    secret_digest: str
    key_prefix: str
    label: str | None = None
    created_at: datetime
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    revoked: bool = False
    revoked_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class KeyValidation(BaseModel):
    """Result of the atomic validate-and-touch operation."""

    owner: str | None = None
    is_valid: bool = False


def _to_api_key(model: ApiKeyModel) -> ApiKey:
    """Convert SQLAlchemy model to domain model."""
    return ApiKey(
        id=model.id,
        owner=model.user_id,
        secret_digest=model.key_hash,
        key_prefix=model.key_prefix,
        label=model.key_name,
        created_at=model.created_at,
        last_used_at=model.last_used_at,
        expires_at=model.expires_at,
        revoked=model.revoked,
        revoked_at=model.revoked_at,
        metadata=dict(model.metadata_ or {}),
    )


def _as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def hash_api_key(api_key: str) -> str:
    """Return the 64-hex SHA-256 digest of a plaintext key."""
    return hashlib.sha256(api_key.encode()).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    """Generate a new API key.

    Returns:
        tuple: (full_key, key_hash, key_prefix)
    """
    # 32 random bytes, URL-safe base64 (e.g. sk_analytics_Q2x1...)
    full_key = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
    key_hash = hash_api_key(full_key)
    key_prefix = full_key[:_KEY_DISPLAY_LEN]
    return full_key, key_hash, key_prefix


async def insert_api_key(
    session: AsyncSession,
    owner: str,
    key_hash: str,
    key_prefix: str,
    label: str | None = None,
    expires_at: datetime | None = None,
    metadata: dict[str, Any] | None = None,
) -> ApiKey:
    """Persist a new, unrevoked API key record."""
    api_key = ApiKeyModel(
        id=cuid(),
        user_id=owner,
        key_hash=key_hash,
        key_prefix=key_prefix,
        key_name=label,
        created_at=utcnow(),
        expires_at=_as_naive_utc(expires_at),
        revoked=False,
        metadata_=metadata or {},
    )
    session.add(api_key)
    await session.flush()
    return _to_api_key(api_key)


async def list_api_keys_by_owner(session: AsyncSession, owner: str) -> list[ApiKey]:
    """List all API keys for an owner, newest first."""
    result = await session.execute(
        select(ApiKeyModel)
        .where(ApiKeyModel.user_id == owner)
        .order_by(ApiKeyModel.created_at.desc(), ApiKeyModel.id.desc())
        .execution_options(populate_existing=True)
    )
    keys = result.scalars().all()
    return [_to_api_key(k) for k in keys]


async def validate_and_touch_api_key(
    session: AsyncSession, key_hash: str, now: datetime | None = None
) -> KeyValidation:
    """Mark a live key as used and return its owner, in one statement.

    Matches only keys that are not revoked and not expired. No match yields
    ``KeyValidation(owner=None, is_valid=False)``.
    """
    now = now or utcnow()
    result = await session.execute(
        update(ApiKeyModel)
        .where(
            ApiKeyModel.key_hash == key_hash,
            ApiKeyModel.revoked.is_(False),
            or_(ApiKeyModel.expires_at.is_(None), ApiKeyModel.expires_at > now),
        )
        .values(last_used_at=now)
        .returning(ApiKeyModel.user_id)
        .execution_options(synchronize_session=False)
    )
    owner = result.scalar_one_or_none()
    if owner is None:
        return KeyValidation()
    return KeyValidation(owner=owner, is_valid=True)


async def revoke_api_key(
    session: AsyncSession, owner: str, key_id: str, now: datetime | None = None
) -> bool:
    """Revoke a key only if it belongs to ``owner``.

    Returns True when a row changed. Already revoked keys keep their original
    ``revoked_at``.
    """
    result = await session.execute(
        update(ApiKeyModel)
        .where(
            ApiKeyModel.id == key_id,
            ApiKeyModel.user_id == owner,
            ApiKeyModel.revoked.is_(False),
        )
        .values(revoked=True, revoked_at=now or utcnow())
        .returning(ApiKeyModel.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None


async def delete_api_keys_by_owner(session: AsyncSession, owner: str) -> int:
    """Physically delete every key of an owner (admin/test cleanup)."""
    result = await session.execute(
        delete(ApiKeyModel)
        .where(ApiKeyModel.user_id == owner)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
