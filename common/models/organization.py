"""Tenancy models shared by the key store, the role gate and the admin CLI."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    """Membership role, declared from most to least privileged."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"

    @property
    def rank(self) -> int:
        members = list(type(self))
        return len(members) - members.index(self)


def role_level(role: Role | str) -> int:
    """Rank of a role; unrecognised values rank below VIEWER."""
    try:
        return Role(role).rank
    except ValueError:
        return 0


def has_min_role(role: Role | str, required: Role) -> bool:
    return role_level(role) >= required.rank


class Organization(BaseModel):
    id: str
    name: str
    created_at: datetime = Field(default_factory=_utcnow)


class OrganizationMembership(BaseModel):
    """A subject's role within one organization.

    ``user_id`` holds the opaque subject identifier, the same value API keys
    record as their owner.
    """

    id: str
    org_id: str
    user_id: str
    role: Role
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Session(BaseModel):
    """Interactive dashboard session as forwarded by the frontend."""

    subject_id: str
    email: str | None = None
