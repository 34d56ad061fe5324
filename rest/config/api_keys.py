"""Request and response bodies for /api/keys."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from rest.config.common import ListMeta


class ApiKeyCreate(BaseModel):
    name: str | None = Field(None, max_length=100)
    expires_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ApiKeyResponse(BaseModel):
    """Stored key record. Carries the digest and display prefix, never the secret."""

    id: str
    owner: str
    key_prefix: str
    secret_digest: str
    name: str | None
    created_at: datetime
    last_used_at: datetime | None
    expires_at: datetime | None
    revoked: bool
    revoked_at: datetime | None
    metadata: dict[str, Any]


class ApiKeyCreatedResponse(ApiKeyResponse):
    # shown to the caller exactly once
    key: str


class ApiKeyCreatedEnvelope(BaseModel):
    data: ApiKeyCreatedResponse


class ApiKeyListResponse(BaseModel):
    data: list[ApiKeyResponse]
    meta: ListMeta
