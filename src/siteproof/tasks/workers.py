"""Background workers using APScheduler.

Runs periodic tasks:
- Escalation of hold points left awaiting release (hourly)
- Overdue NCR reminders to the responsible party (daily)
"""

from __future__ import annotations

import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof import roles
from siteproof.config import settings
from siteproof.models.db import NCR, HoldPoint, Lot, as_utc, utcnow
from siteproof.services.notifications import notify_users, project_user_ids

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None

OPEN_NCR_STATUSES = ("open", "investigating", "rectification", "verification")


def start_scheduler() -> None:
    """Start the background task scheduler."""
    global _scheduler
    if _scheduler is not None:
        return

    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        run_hold_point_escalation,
        "interval",
        hours=1,
        id="hold_point_escalation",
        replace_existing=True,
    )

    # Overdue NCRs: daily at 7 AM UTC
    _scheduler.add_job(
        run_overdue_ncr_alerts,
        "cron",
        hour=7,
        minute=0,
        id="overdue_ncr_alerts",
        replace_existing=True,
    )

    _scheduler.start()
    logger.info("Background scheduler started")


def stop_scheduler() -> None:
    """Stop the background task scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


# ── Jobs ──────────────────────────────────────────────────────────────────────


async def escalate_stale_hold_points(session: AsyncSession, hours: int | None = None) -> int:
    """Notify project and quality managers about hold points awaiting release too long.

    Each hold point is escalated once; returns how many were escalated.
    """
    hours = hours if hours is not None else settings.hold_point_escalation_hours
    cutoff = utcnow() - timedelta(hours=hours)

    result = await session.execute(
        select(HoldPoint, Lot)
        .join(Lot, Lot.id == HoldPoint.lot_id)
        .where(HoldPoint.status == "notified", HoldPoint.escalated_at.is_(None))
    )
    escalated = 0
    for hold_point, lot in result.all():
        sent_at = as_utc(hold_point.notification_sent_at)
        if sent_at is None or sent_at > cutoff:
            continue
        recipients = await project_user_ids(
            session, lot.project_id, [roles.PROJECT_MANAGER, roles.QUALITY_MANAGER]
        )
        await notify_users(
            session,
            recipients,
            "hold_point_escalation",
            project_id=lot.project_id,
            link_url=f"/projects/{lot.project_id}/hold-points",
            item_description=hold_point.description,
            lot_number=lot.lot_number,
            hours=hours,
        )
        hold_point.escalated_at = utcnow()
        escalated += 1

    await session.flush()
    if escalated:
        logger.info("Escalated %d stale hold point(s)", escalated)
    return escalated


async def notify_overdue_ncrs(session: AsyncSession) -> int:
    """Remind responsible users of open NCRs past their due date, at most once per calendar day."""
    now = utcnow()
    result = await session.execute(
        select(NCR).where(
            NCR.status.in_(OPEN_NCR_STATUSES),
            NCR.due_date.is_not(None),
            NCR.due_date < now.date(),
            NCR.responsible_user_id.is_not(None),
        )
    )
    notified = 0
    for ncr in result.scalars().all():
        last = as_utc(ncr.overdue_notified_at)
        if last is not None and last.date() >= now.date():
            continue
        await notify_users(
            session,
            [ncr.responsible_user_id],
            "ncr_overdue",
            project_id=ncr.project_id,
            link_url=f"/projects/{ncr.project_id}/ncr?ncr={ncr.id}",
            ncr_number=ncr.ncr_number,
            due_date=ncr.due_date.isoformat(),
            status=ncr.status,
        )
        ncr.overdue_notified_at = now
        notified += 1

    await session.flush()
    if notified:
        logger.info("Sent %d overdue NCR reminder(s)", notified)
    return notified


async def run_hold_point_escalation() -> None:
    from siteproof.db.session import session_scope

    try:
        async with session_scope() as session:
            await escalate_stale_hold_points(session)
    except Exception:
        logger.exception("Hold point escalation failed")


async def run_overdue_ncr_alerts() -> None:
    from siteproof.db.session import session_scope

    try:
        async with session_scope() as session:
            await notify_overdue_ncrs(session)
    except Exception:
        logger.exception("Overdue NCR alerts failed")
