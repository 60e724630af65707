"""In-app notifications: rendered from Jinja2 templates and inserted as rows."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.models.db import Notification, ProjectUser, SubcontractorUser

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates" / "notifications"

_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)

# Notification type -> title
TITLES: dict[str, str] = {
    "hold_point_request": "Hold Point Release Requested",
    "hold_point_release": "Hold Point Released",
    "hold_point_chase": "Hold Point Release Reminder",
    "hold_point_escalation": "Hold Point Awaiting Release",
    "ncr_assigned": "NCR Assigned",
    "ncr_raised": "NCR Raised by Subcontractor",
    "ncr_redirect": "NCR Redirected to You",
    "ncr_response_accepted": "NCR Response Accepted",
    "ncr_revision_requested": "NCR Response Revision Requested",
    "ncr_rectification_rejected": "NCR Rectification Rejected",
    "ncr_overdue": "NCR Overdue",
    "claim_status": "Progress Claim Updated",
    "rate_approved": "Rate Approved",
    "docket_pending": "Docket Pending Approval",
    "docket_approved": "Docket Approved",
    "docket_rejected": "Docket Rejected",
    "docket_queried": "Docket Query",
    "docket_query_response": "Docket Query Response",
}


def render_message(notification_type: str, **context: Any) -> str:
    template = _jinja_env.get_template(f"{notification_type}.j2")
    return template.render(**context).strip()


async def notify_users(
    session: AsyncSession,
    user_ids: Iterable[uuid.UUID],
    notification_type: str,
    *,
    project_id: uuid.UUID | None = None,
    link_url: str | None = None,
    exclude_user_id: uuid.UUID | None = None,
    **context: Any,
) -> list[Notification]:
    """Insert one notification per distinct recipient and return them."""
    message = render_message(notification_type, **context)
    title = TITLES.get(notification_type, notification_type.replace("_", " ").title())

    created: list[Notification] = []
    seen: set[uuid.UUID] = set()
    for user_id in user_ids:
        if user_id is None or user_id in seen or user_id == exclude_user_id:
            continue
        seen.add(user_id)
        notification = Notification(
            user_id=user_id,
            project_id=project_id,
            type=notification_type,
            title=title,
            message=message,
            link_url=link_url,
        )
        session.add(notification)
        created.append(notification)

    if created:
        await session.flush()
        logger.info("Sent %d %s notification(s)", len(created), notification_type)
    return created


async def project_user_ids(
    session: AsyncSession,
    project_id: uuid.UUID,
    roles: Iterable[str] | None = None,
) -> list[uuid.UUID]:
    """Active project members, optionally restricted to *roles*."""
    query = select(ProjectUser.user_id).where(
        ProjectUser.project_id == project_id,
        ProjectUser.status == "active",
    )
    if roles is not None:
        query = query.where(ProjectUser.role.in_(list(roles)))
    result = await session.execute(query)
    return list(result.scalars().all())


async def subcontractor_user_ids(
    session: AsyncSession, subcontractor_company_id: uuid.UUID
) -> list[uuid.UUID]:
    result = await session.execute(
        select(SubcontractorUser.user_id).where(
            SubcontractorUser.subcontractor_company_id == subcontractor_company_id
        )
    )
    return list(result.scalars().all())
