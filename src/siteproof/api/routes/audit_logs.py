"""Audit log browsing for company and project administrators."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import AuditLog, Project, User
from siteproof.models.schemas import AuditLogResponse
from siteproof.pagination import PageParams, page_meta, page_params, sort_column
from siteproof.services.access import require_project_access

router = APIRouter()

AUDIT_VIEWERS = roles.ROLE_GROUPS["ADMIN"]
AUDIT_SORT_COLUMNS = {"created_at", "action", "entity_type"}


async def _scope(session: AsyncSession, user: User, project_id: uuid.UUID | None) -> list:
    """Restrict rows to one project, or to every project of the user's company."""
    if project_id is not None:
        await require_project_access(
            session, user, project_id, AUDIT_VIEWERS, "You do not have permission to view audit logs"
        )
        return [AuditLog.project_id == project_id]

    if not roles.is_admin_role(user.role_in_company) or user.company_id is None:
        raise AppError.forbidden("You do not have permission to view audit logs")
    company_projects = select(Project.id).where(Project.company_id == user.company_id)
    return [
        or_(
            AuditLog.project_id.in_(company_projects),
            AuditLog.user_id.in_(select(User.id).where(User.company_id == user.company_id)),
        )
    ]


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


@router.get("/audit-logs")
async def list_audit_logs(
    project_id: uuid.UUID | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    user_id: uuid.UUID | None = None,
    search: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    params: PageParams = Depends(page_params),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    conditions = await _scope(session, user, project_id)
    if entity_type:
        conditions.append(AuditLog.entity_type == entity_type)
    if entity_id:
        conditions.append(AuditLog.entity_id == entity_id)
    if action:
        conditions.append(AuditLog.action == action)
    if user_id:
        conditions.append(AuditLog.user_id == user_id)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                AuditLog.action.ilike(pattern),
                AuditLog.entity_type.ilike(pattern),
                AuditLog.entity_id.ilike(pattern),
            )
        )
    if start_date:
        conditions.append(AuditLog.created_at >= _day_start(start_date))
    if end_date:
        conditions.append(AuditLog.created_at < _day_start(end_date + timedelta(days=1)))

    total = (
        await session.execute(select(func.count()).select_from(AuditLog).where(*conditions))
    ).scalar_one()
    order = sort_column(AuditLog, params, AUDIT_SORT_COLUMNS, "created_at")
    result = await session.execute(
        select(AuditLog)
        .options(selectinload(AuditLog.user))
        .where(*conditions)
        .order_by(order)
        .offset(params.offset)
        .limit(params.limit)
    )
    logs = [
        AuditLogResponse.model_validate(entry).model_copy(
            update={"user_email": entry.user.email if entry.user else None}
        )
        for entry in result.scalars().all()
    ]
    return {"logs": logs, "pagination": page_meta(params, total)}


@router.get("/audit-logs/actions")
async def list_actions(
    project_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    conditions = await _scope(session, user, project_id)
    result = await session.execute(
        select(AuditLog.action).where(*conditions).distinct().order_by(AuditLog.action)
    )
    return {"actions": list(result.scalars().all())}


@router.get("/audit-logs/entity-types")
async def list_entity_types(
    project_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    conditions = await _scope(session, user, project_id)
    result = await session.execute(
        select(AuditLog.entity_type).where(*conditions).distinct().order_by(AuditLog.entity_type)
    )
    return {"entity_types": list(result.scalars().all())}
