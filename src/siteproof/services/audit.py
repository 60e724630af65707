"""Audit trail writes."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.models.db import AuditLog

logger = logging.getLogger(__name__)


async def record_audit(
    session: AsyncSession,
    *,
    entity_type: str,
    entity_id: uuid.UUID | str,
    action: str,
    user_id: uuid.UUID | None = None,
    project_id: uuid.UUID | None = None,
    changes: dict[str, Any] | None = None,
    request: Request | None = None,
) -> AuditLog:
    entry = AuditLog(
        project_id=project_id,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        changes=changes,
    )
    if request is not None:
        entry.ip_address = request.client.host if request.client else None
        entry.user_agent = (request.headers.get("user-agent") or "")[:500] or None
    session.add(entry)
    await session.flush()
    logger.info("Audit %s %s %s", entity_type, entity_id, action)
    return entry
