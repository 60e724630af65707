"""In-app notification inbox for the current user."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import Notification, User
from siteproof.models.schemas import NotificationListResponse, NotificationResponse

router = APIRouter()


async def _unread_count(session: AsyncSession, user_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    )
    return result.scalar_one()


async def _own_notification(
    session: AsyncSession, notification_id: uuid.UUID, user: User
) -> Notification:
    result = await session.execute(select(Notification).where(Notification.id == notification_id))
    notification = result.scalar_one_or_none()
    if notification is None or notification.user_id != user.id:
        raise AppError.not_found("Notification")
    return notification


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await session.execute(
        query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    )
    return NotificationListResponse(
        notifications=result.scalars().all(),
        unread_count=await _unread_count(session, user.id),
    )


@router.get("/notifications/unread-count")
async def unread_count(
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"count": await _unread_count(session, user.id)}


@router.put("/notifications/read-all")
async def mark_all_read(
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return {"updated": result.rowcount}


@router.put("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notification = await _own_notification(session, notification_id, user)
    notification.is_read = True
    await session.flush()
    await session.refresh(notification)
    return notification


@router.delete("/notifications/{notification_id}")
async def delete_notification(
    notification_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notification = await _own_notification(session, notification_id, user)
    await session.delete(notification)
    await session.flush()
    return {"success": True}
