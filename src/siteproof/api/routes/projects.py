"""Project CRUD and membership API routes."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import Project, ProjectUser, User, utcnow
from siteproof.models.schemas import (
    MemberResponse,
    MemberUpsert,
    ProjectCreate,
    ProjectDelete,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdate,
)
from siteproof.security import verify_password
from siteproof.services.access import (
    get_project_or_404,
    require_project_access,
    visible_projects_clause,
)
from siteproof.services.audit import record_audit
from siteproof.services.working_hours import parse_working_days

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/projects", response_model=ProjectResponse, status_code=201)
async def create_project(
    data: ProjectCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Create a project in the user's company; the creator becomes its project manager."""
    if user.role_in_company not in roles.PROJECT_CREATORS:
        raise AppError.forbidden("Only owners, admins and project managers can create projects")

    project = Project(company_id=user.company_id, **data.model_dump())
    session.add(project)
    await session.flush()

    session.add(
        ProjectUser(
            project_id=project.id,
            user_id=user.id,
            role=roles.PROJECT_MANAGER,
            accepted_at=utcnow(),
        )
    )
    await session.flush()
    await session.refresh(project)
    logger.info("Project %s created by %s", project.name, user.email)
    return project


@router.get("/projects", response_model=ProjectListResponse)
async def list_projects(
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List projects the user is a member of (or owns through their company)."""
    result = await session.execute(
        select(Project).where(visible_projects_clause(user)).order_by(Project.created_at.desc())
    )
    projects = result.scalars().all()
    return ProjectListResponse(projects=projects, total=len(projects))


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    access = await require_project_access(session, user, project_id)
    return access.project


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: uuid.UUID,
    data: ProjectUpdate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update project settings, including lot numbering and working hours."""
    access = await require_project_access(
        session, user, project_id, roles.ROLE_GROUPS["ADMIN"],
        "Only project administrators can change project settings",
    )
    project = access.project

    update_data = data.model_dump(exclude_unset=True)
    if "working_days" in update_data and not parse_working_days(update_data["working_days"]):
        raise AppError.bad_request("At least one working day is required")
    start = update_data.get("working_hours_start", project.working_hours_start)
    end = update_data.get("working_hours_end", project.working_hours_end)
    if start >= end:
        raise AppError.bad_request("Working hours must end after they start")

    for key, value in update_data.items():
        setattr(project, key, value)

    await session.flush()
    await session.refresh(project)
    return project


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(
    project_id: uuid.UUID,
    request: Request,
    data: ProjectDelete | None = Body(None),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Delete a project after re-confirming the caller's password."""
    project = await get_project_or_404(session, project_id)
    if data is None or not data.password:
        raise AppError.bad_request("Password confirmation is required")
    if not verify_password(data.password, user.password_hash):
        raise AppError.unauthorized("Incorrect password")
    if not (project.company_id == user.company_id and roles.is_admin_role(user.role_in_company)):
        raise AppError.forbidden("Only company owners and admins can delete projects")

    await record_audit(
        session,
        entity_type="Project",
        entity_id=project.id,
        action="project_deleted",
        user_id=user.id,
        changes={"project_id": str(project.id), "name": project.name},
        request=request,
    )
    await session.delete(project)
    await session.flush()
    logger.warning("Project %s deleted by %s", project.name, user.email)


# ── Members ───────────────────────────────────────────────────────────────────


@router.get("/projects/{project_id}/members", response_model=list[MemberResponse])
async def list_members(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await require_project_access(session, user, project_id)
    result = await session.execute(
        select(ProjectUser)
        .options(selectinload(ProjectUser.user))
        .where(ProjectUser.project_id == project_id)
        .order_by(ProjectUser.invited_at)
    )
    return [_member(pu) for pu in result.scalars().all()]


@router.post("/projects/{project_id}/members", response_model=MemberResponse, status_code=201)
async def upsert_member(
    project_id: uuid.UUID,
    data: MemberUpsert,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Add a user to the project, or change the role of an existing member."""
    await require_project_access(
        session, user, project_id, roles.ROLE_GROUPS["ADMIN"],
        "Only project administrators can manage members",
    )
    if data.role not in roles.ALL_ROLES:
        raise AppError.bad_request(f"Unknown role: {data.role}")
    if data.role == roles.OWNER and user.role_in_company != roles.OWNER:
        raise AppError.forbidden("Only owners can grant the owner role")

    if data.user_id is not None:
        query = select(User).where(User.id == data.user_id)
    elif data.email:
        query = select(User).where(User.email == data.email.lower())
    else:
        raise AppError.bad_request("user_id or email is required")
    member_user = (await session.execute(query)).scalar_one_or_none()
    if member_user is None:
        raise AppError.not_found("User")

    result = await session.execute(
        select(ProjectUser)
        .options(selectinload(ProjectUser.user))
        .where(ProjectUser.project_id == project_id, ProjectUser.user_id == member_user.id)
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        membership = ProjectUser(
            project_id=project_id, user_id=member_user.id, role=data.role, accepted_at=utcnow()
        )
        session.add(membership)
    else:
        membership.role = data.role
        membership.status = "active"
    await session.flush()
    return _member(membership, member_user)


def _member(pu: ProjectUser, member_user: User | None = None) -> MemberResponse:
    u = member_user or pu.user
    return MemberResponse(
        id=pu.id,
        user_id=pu.user_id,
        email=u.email,
        full_name=u.full_name,
        role=pu.role,
        status=pu.status,
    )
