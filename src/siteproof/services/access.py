"""Project-scoped authorization.

A user's role on a project is their active membership role, falling back to
their company role. Company owners and admins see every project of their
company; subcontractor users see the projects their company works on.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof import roles
from siteproof.errors import AppError
from siteproof.models.db import (
    Lot,
    LotSubcontractorAssignment,
    Project,
    ProjectUser,
    SubcontractorCompany,
    SubcontractorUser,
    User,
)

logger = logging.getLogger(__name__)


@dataclass
class ProjectAccess:
    project: Project
    role: str
    subcontractor_company_id: uuid.UUID | None = None

    @property
    def is_subcontractor(self) -> bool:
        return roles.is_subcontractor_role(self.role)

    def has_any(self, allowed: Iterable[str]) -> bool:
        return self.role in set(allowed)

    def require(self, allowed: Iterable[str], message: str | None = None) -> None:
        if not self.has_any(allowed):
            raise AppError.forbidden(message or "You do not have permission for this action")


async def get_project_or_404(session: AsyncSession, project_id: uuid.UUID) -> Project:
    result = await session.execute(select(Project).where(Project.id == project_id))
    project = result.scalar_one_or_none()
    if not project:
        raise AppError.not_found("Project")
    return project


async def get_lot_or_404(session: AsyncSession, lot_id: uuid.UUID) -> Lot:
    result = await session.execute(select(Lot).where(Lot.id == lot_id))
    lot = result.scalar_one_or_none()
    if not lot:
        raise AppError.not_found("Lot")
    return lot


async def membership_role(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> str | None:
    result = await session.execute(
        select(ProjectUser.role).where(
            ProjectUser.project_id == project_id,
            ProjectUser.user_id == user_id,
            ProjectUser.status == "active",
        )
    )
    return result.scalar_one_or_none()


async def subcontractor_company_for(
    session: AsyncSession, user: User, project_id: uuid.UUID
) -> SubcontractorCompany | None:
    """The subcontractor company *user* works for on this project, if any."""
    result = await session.execute(
        select(SubcontractorCompany)
        .join(
            SubcontractorUser,
            SubcontractorUser.subcontractor_company_id == SubcontractorCompany.id,
        )
        .where(
            SubcontractorUser.user_id == user.id,
            SubcontractorCompany.project_id == project_id,
        )
    )
    return result.scalars().first()


async def resolve_access(
    session: AsyncSession, user: User, project: Project
) -> ProjectAccess | None:
    member_role = await membership_role(session, user.id, project.id)

    if roles.is_subcontractor_role(member_role or user.role_in_company):
        company = await subcontractor_company_for(session, user, project.id)
        if company is None:
            return None
        return ProjectAccess(project, member_role or user.role_in_company, company.id)

    if member_role:
        return ProjectAccess(project, member_role)

    if (
        project.company_id is not None
        and user.company_id == project.company_id
        and roles.is_admin_role(user.role_in_company)
    ):
        return ProjectAccess(project, user.role_in_company)
    return None


def visible_projects_clause(user: User, head_contractor_only: bool = False):
    """WHERE clause on ``Project`` matching the projects *user* can open."""
    members = select(ProjectUser.project_id).where(
        ProjectUser.user_id == user.id, ProjectUser.status == "active"
    )
    if head_contractor_only:
        members = members.where(ProjectUser.role.not_in(sorted(roles.SUBCONTRACTOR_ROLES)))
    conditions = [Project.id.in_(members)]
    if user.company_id is not None and roles.is_admin_role(user.role_in_company):
        conditions.append(Project.company_id == user.company_id)
    return or_(*conditions)


async def require_project_access(
    session: AsyncSession,
    user: User,
    project_id: uuid.UUID,
    allowed: Iterable[str] | None = None,
    message: str | None = None,
) -> ProjectAccess:
    """Load the project and check the user may act on it (optionally by role)."""
    project = await get_project_or_404(session, project_id)
    access = await resolve_access(session, user, project)
    if access is None:
        logger.warning("User %s denied access to project %s", user.id, project_id)
        raise AppError.forbidden("You do not have access to this project")
    if allowed is not None:
        access.require(allowed, message)
    return access


async def assigned_lot_ids(
    session: AsyncSession, subcontractor_company_id: uuid.UUID
) -> set[uuid.UUID]:
    """Lots assigned to a subcontractor via the legacy field or an active assignment."""
    legacy = await session.execute(
        select(Lot.id).where(Lot.assigned_subcontractor_id == subcontractor_company_id)
    )
    assigned = await session.execute(
        select(LotSubcontractorAssignment.lot_id).where(
            LotSubcontractorAssignment.subcontractor_company_id == subcontractor_company_id,
            LotSubcontractorAssignment.status == "active",
        )
    )
    return set(legacy.scalars().all()) | set(assigned.scalars().all())


async def require_lot_visible(
    session: AsyncSession, access: ProjectAccess, lot: Lot
) -> None:
    if access.is_subcontractor:
        visible = await assigned_lot_ids(session, access.subcontractor_company_id)
        if lot.id not in visible:
            raise AppError.forbidden("This lot is not assigned to your company")
