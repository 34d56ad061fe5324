"""API key management endpoints."""

from fastapi import APIRouter, Response, status

from db.postgres.api_key import ApiKey
from rest.config.api_keys import (
    ApiKeyCreate,
    ApiKeyCreatedEnvelope,
    ApiKeyCreatedResponse,
    ApiKeyListResponse,
    ApiKeyResponse,
)
from rest.config.common import ListMeta
from rest.routers.deps import ApiKeys, AuthenticatedSubject

router = APIRouter(prefix="/keys", tags=["API Keys"])


def _to_response(api_key: ApiKey) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=api_key.id,
        owner=api_key.owner,
        key_prefix=api_key.key_prefix,
        secret_digest=api_key.secret_digest,
        name=api_key.label,
        created_at=api_key.created_at,
        last_used_at=api_key.last_used_at,
        expires_at=api_key.expires_at,
        revoked=api_key.revoked,
        revoked_at=api_key.revoked_at,
        metadata=api_key.metadata,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ApiKeyCreatedEnvelope)
async def create_api_key_endpoint(
    data: ApiKeyCreate,
    subject_id: AuthenticatedSubject,
    api_keys: ApiKeys,
):
    """
    Create a new API key for the calling subject.

    The full key is only returned once at creation. Store it securely.
    """
    full_key, api_key = await api_keys.create(
        subject_id,
        label=data.name,
        expires_at=data.expires_at,
        metadata=data.metadata,
    )
    return ApiKeyCreatedEnvelope(
        data=ApiKeyCreatedResponse(**_to_response(api_key).model_dump(), key=full_key)
    )


@router.get("", response_model=ApiKeyListResponse)
async def list_api_keys_endpoint(subject_id: AuthenticatedSubject, api_keys: ApiKeys):
    """List all API keys of the calling subject (never includes the key itself)."""
    keys = await api_keys.list(subject_id)
    return ApiKeyListResponse(
        data=[_to_response(k) for k in keys],
        meta=ListMeta(total=len(keys)),
    )


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_api_key_endpoint(
    key_id: str,
    subject_id: AuthenticatedSubject,
    api_keys: ApiKeys,
):
    """Revoke an API key.

    Always answers 204, whether or not the key exists or belongs to the caller.
    """
    await api_keys.revoke(subject_id, key_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
