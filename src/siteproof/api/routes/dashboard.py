"""Dashboard summaries: what needs attention across a user's projects."""

from __future__ import annotations

import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.api.deps import get_current_user, get_db
from siteproof.config import settings
from siteproof.errors import AppError
from siteproof.models.db import NCR, DailyDocket, HoldPoint, Lot, Project, User, as_utc, utcnow
from siteproof.models.schemas import (
    AttentionItems,
    DashboardStats,
    OverdueNCRItem,
    ProjectDashboard,
    RecentActivity,
    StaleHoldPointItem,
)
from siteproof.services.access import require_project_access, visible_projects_clause
from siteproof.services.conformance import OPEN_NCR_EXCLUDED

router = APIRouter()

OPEN_HOLD_POINT_STATUSES = ("pending", "notified")
ATTENTION_LIMIT = 10
RECENT_LIMIT = 5


async def _overdue_ncrs(
    session: AsyncSession, project_ids: list[uuid.UUID], limit: int | None = ATTENTION_LIMIT
) -> list[OverdueNCRItem]:
    today = utcnow().date()
    query = (
        select(NCR, Project.name)
        .join(Project, Project.id == NCR.project_id)
        .where(
            NCR.project_id.in_(project_ids),
            NCR.status.not_in(OPEN_NCR_EXCLUDED),
            NCR.due_date.is_not(None),
            NCR.due_date < today,
        )
        .order_by(NCR.due_date, NCR.ncr_number)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return [
        OverdueNCRItem(
            id=ncr.id,
            project_id=ncr.project_id,
            project_name=project_name,
            ncr_number=ncr.ncr_number,
            description=ncr.description[:100],
            status=ncr.status,
            category=ncr.category,
            due_date=ncr.due_date,
            days_overdue=(today - ncr.due_date).days,
            link=f"/projects/{ncr.project_id}/ncr?ncr={ncr.id}",
        )
        for ncr, project_name in result.all()
    ]


async def _stale_hold_points(
    session: AsyncSession, project_ids: list[uuid.UUID], limit: int | None = ATTENTION_LIMIT
) -> list[StaleHoldPointItem]:
    """Open hold points whose release was requested (or that were opened) too long ago."""
    now = utcnow()
    cutoff = now - timedelta(days=settings.stale_hold_point_days)
    result = await session.execute(
        select(HoldPoint, Lot, Project.name)
        .join(Lot, Lot.id == HoldPoint.lot_id)
        .join(Project, Project.id == Lot.project_id)
        .where(Lot.project_id.in_(project_ids), HoldPoint.status.in_(OPEN_HOLD_POINT_STATUSES))
    )
    items = []
    for hold_point, lot, project_name in result.all():
        since = as_utc(hold_point.notification_sent_at or hold_point.created_at)
        if since is None or since > cutoff:
            continue
        items.append(
            StaleHoldPointItem(
                id=hold_point.id,
                project_id=lot.project_id,
                project_name=project_name,
                lot_id=lot.id,
                lot_number=lot.lot_number,
                description=hold_point.description,
                status=hold_point.status,
                created_at=as_utc(hold_point.created_at),
                days_stale=(now - since).days,
                link=f"/projects/{lot.project_id}/hold-points",
            )
        )
    items.sort(key=lambda item: item.days_stale, reverse=True)
    return items if limit is None else items[:limit]


async def _recent_activity(session: AsyncSession, project_ids: list[uuid.UUID]) -> list[RecentActivity]:
    ncrs = await session.execute(
        select(NCR.id, NCR.project_id, NCR.ncr_number, NCR.status, NCR.updated_at)
        .where(NCR.project_id.in_(project_ids))
        .order_by(NCR.updated_at.desc())
        .limit(RECENT_LIMIT)
    )
    lots = await session.execute(
        select(Lot.id, Lot.project_id, Lot.lot_number, Lot.status, Lot.updated_at)
        .where(Lot.project_id.in_(project_ids))
        .order_by(Lot.updated_at.desc())
        .limit(RECENT_LIMIT)
    )
    activities = [
        RecentActivity(
            id=f"ncr-{row.id}",
            type="ncr",
            description=f"{row.ncr_number} status: {row.status}",
            timestamp=as_utc(row.updated_at),
            link=f"/projects/{row.project_id}/ncr?ncr={row.id}",
        )
        for row in ncrs.all()
        if row.updated_at is not None
    ]
    activities += [
        RecentActivity(
            id=f"lot-{row.id}",
            type="lot",
            description=f"Lot {row.lot_number} status: {row.status}",
            timestamp=as_utc(row.updated_at),
            link=f"/projects/{row.project_id}/lots/{row.id}",
        )
        for row in lots.all()
        if row.updated_at is not None
    ]
    activities.sort(key=lambda a: a.timestamp, reverse=True)
    return activities[:RECENT_LIMIT]


async def _count(session: AsyncSession, query) -> int:
    return (await session.execute(query)).scalar_one()


@router.get("/dashboard/stats", response_model=DashboardStats)
async def dashboard_stats(
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Totals and attention items across every head-contractor project of the user."""
    result = await session.execute(
        select(Project.id, Project.status).where(
            visible_projects_clause(user, head_contractor_only=True)
        )
    )
    projects = result.all()
    if not projects:
        return DashboardStats()
    project_ids = [p.id for p in projects]

    overdue = await _overdue_ncrs(session, project_ids)
    stale = await _stale_hold_points(session, project_ids)
    return DashboardStats(
        total_projects=len(projects),
        active_projects=sum(1 for p in projects if p.status == "active"),
        total_lots=await _count(
            session, select(func.count()).select_from(Lot).where(Lot.project_id.in_(project_ids))
        ),
        open_hold_points=await _count(
            session,
            select(func.count())
            .select_from(HoldPoint)
            .join(Lot, Lot.id == HoldPoint.lot_id)
            .where(Lot.project_id.in_(project_ids), HoldPoint.status.in_(OPEN_HOLD_POINT_STATUSES)),
        ),
        open_ncrs=await _count(
            session,
            select(func.count())
            .select_from(NCR)
            .where(NCR.project_id.in_(project_ids), NCR.status.not_in(OPEN_NCR_EXCLUDED)),
        ),
        attention_items=AttentionItems(
            overdue_ncrs=overdue, stale_hold_points=stale, total=len(overdue) + len(stale)
        ),
        recent_activities=await _recent_activity(session, project_ids),
    )


@router.get("/dashboard/projects/{project_id}", response_model=ProjectDashboard)
async def project_dashboard(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Lot, NCR, hold point and docket figures for one project."""
    access = await require_project_access(session, user, project_id)
    if access.is_subcontractor:
        raise AppError.forbidden("Subcontractors cannot view the project dashboard")
    result = await session.execute(
        select(Lot.status, func.count()).where(Lot.project_id == project_id).group_by(Lot.status)
    )
    lots_by_status = dict(result.all())

    result = await session.execute(
        select(NCR.severity, func.count())
        .where(NCR.project_id == project_id, NCR.status.not_in(OPEN_NCR_EXCLUDED))
        .group_by(NCR.severity)
    )
    open_by_severity = dict(result.all())

    overdue = await _overdue_ncrs(session, [project_id], limit=None)
    stale = await _stale_hold_points(session, [project_id], limit=None)
    return ProjectDashboard(
        project_id=project_id,
        lots_by_status=lots_by_status,
        total_lots=sum(lots_by_status.values()),
        open_ncrs=sum(open_by_severity.values()),
        overdue_ncrs=len(overdue),
        major_ncrs_open=open_by_severity.get("major", 0),
        open_hold_points=await _count(
            session,
            select(func.count())
            .select_from(HoldPoint)
            .join(Lot, Lot.id == HoldPoint.lot_id)
            .where(Lot.project_id == project_id, HoldPoint.status.in_(OPEN_HOLD_POINT_STATUSES)),
        ),
        dockets_pending_approval=await _count(
            session,
            select(func.count())
            .select_from(DailyDocket)
            .where(DailyDocket.project_id == project_id, DailyDocket.status == "pending_approval"),
        ),
        attention_items=AttentionItems(
            overdue_ncrs=overdue[:ATTENTION_LIMIT],
            stale_hold_points=stale[:ATTENTION_LIMIT],
            total=len(overdue) + len(stale),
        ),
    )
