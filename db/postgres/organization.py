"""Organizations and the memberships the admin role gate reads."""

from cuid2 import cuid_wrapper
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from common.models import Organization, OrganizationMembership, Role
from db.postgres.models import OrganizationMembershipModel, OrganizationModel, utcnow

cuid = cuid_wrapper()


def _membership_query(**criteria):
    stmt = select(OrganizationMembershipModel)
    for column, value in criteria.items():
        stmt = stmt.where(getattr(OrganizationMembershipModel, column) == value)
    # Roles can change between requests on a long-lived session.
    return stmt.execution_options(populate_existing=True)


def _membership(row: OrganizationMembershipModel) -> OrganizationMembership:
    return OrganizationMembership(
        id=row.id,
        org_id=row.org_id,
        user_id=row.user_id,
        role=Role(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def create_organization(session: AsyncSession, name: str) -> Organization:
    row = OrganizationModel(id=cuid(), name=name)
    session.add(row)
    await session.flush()
    return Organization(id=row.id, name=row.name, created_at=row.created_at)


async def get_organization_by_id(session: AsyncSession, org_id: str) -> Organization | None:
    row = await session.get(OrganizationModel, org_id)
    if row is None:
        return None
    return Organization(id=row.id, name=row.name, created_at=row.created_at)


async def add_member(
    session: AsyncSession, org_id: str, user_id: str, role: Role
) -> OrganizationMembership:
    """Grant ``role`` in ``org_id`` to a subject.

    A subject holds at most one membership per organization, so granting
    again replaces the previous role.
    """
    query = _membership_query(org_id=org_id, user_id=user_id)
    row = (await session.execute(query)).scalar()
    if row is None:
        row = OrganizationMembershipModel(
            id=cuid(), org_id=org_id, user_id=user_id, role=role.value
        )
        session.add(row)
    elif row.role != role.value:
        row.role = role.value
        row.updated_at = utcnow()
    await session.flush()
    return _membership(row)


async def list_memberships_by_user(
    session: AsyncSession, user_id: str
) -> list[OrganizationMembership]:
    """Every membership a subject holds, read fresh from the database."""
    rows = (await session.execute(_membership_query(user_id=user_id))).scalars()
    return [_membership(row) for row in rows]
