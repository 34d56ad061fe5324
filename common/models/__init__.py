from common.models.organization import (
    Organization,
    OrganizationMembership,
    Role,
    Session,
    has_min_role,
    role_level,
)

__all__ = [
    "Organization",
    "OrganizationMembership",
    "Role",
    "Session",
    "has_min_role",
    "role_level",
]
