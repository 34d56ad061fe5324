"""API key issuance, validation and revocation."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from common.errors import AuthenticationError
from db.postgres.api_key import (
    API_KEY_PREFIX,
    ApiKey,
    delete_api_keys_by_owner,
    generate_api_key,
    hash_api_key,
    insert_api_key,
    list_api_keys_by_owner,
    revoke_api_key,
    validate_and_touch_api_key,
)

logger = logging.getLogger(__name__)

INVALID_KEY_MESSAGE = "Invalid or expired API key"

# Enough of the key to recognize it in logs without revealing the secret part
_LOG_PREFIX_LEN = 12


class ApiKeyService:
    """Manage API keys for key owners.

    Every validation failure (bad format, unknown key, revoked, expired or a
    storage error) raises the same ``AuthenticationError``. The reason is
    only logged.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        owner: str,
        label: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[str, ApiKey]:
        """Issue a key and return the plaintext with its stored record."""
        full_key, key_hash, key_prefix = generate_api_key()
        record = await insert_api_key(
            self.session,
            owner=owner,
            key_hash=key_hash,
            key_prefix=key_prefix,
            label=label,
            expires_at=expires_at,
            metadata=metadata,
        )
        await self.session.commit()
        logger.info(f"Issued API key {record.id} ({key_prefix}...) for {owner}")
        return full_key, record

    async def issue(
        self,
        owner: str,
        label: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Issue a key. The plaintext is returned only here."""
        full_key, _ = await self.create(owner, label, expires_at, metadata)
        return full_key

    async def validate(self, secret: str | None) -> str:
        """Return the key owner and record the use, or raise AuthenticationError."""
        if not secret or not secret.startswith(API_KEY_PREFIX):
            logger.warning("API key rejected: malformed key")
            raise AuthenticationError(INVALID_KEY_MESSAGE)

        try:
            result = await validate_and_touch_api_key(self.session, hash_api_key(secret))
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"API key validation failed in storage: {e!r}")
            raise AuthenticationError(INVALID_KEY_MESSAGE) from None

        if not result.is_valid or not result.owner:
            logger.warning(
                f"API key rejected: no live key matches {secret[:_LOG_PREFIX_LEN]}..."
            )
            raise AuthenticationError(INVALID_KEY_MESSAGE)
        return result.owner

    async def revoke(self, owner: str, key_id: str) -> None:
        """Revoke ``key_id`` if ``owner`` owns it; otherwise do nothing."""
        revoked = await revoke_api_key(self.session, owner, key_id)
        await self.session.commit()
        if revoked:
            logger.info(f"Revoked API key {key_id} for {owner}")
        else:
            logger.info(f"Revoke of API key {key_id} by {owner} changed nothing")

    async def list(self, owner: str) -> list[ApiKey]:
        """All keys of ``owner``, newest first. Never includes plaintext."""
        return await list_api_keys_by_owner(self.session, owner)

    async def delete_all(self, owner: str) -> int:
        """Physically delete all keys of ``owner`` (admin cleanup)."""
        deleted = await delete_api_keys_by_owner(self.session, owner)
        await self.session.commit()
        logger.info(f"Deleted {deleted} API keys for {owner}")
        return deleted
