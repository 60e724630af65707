"""Sequential identifiers for lots, NCRs and progress claims."""

from __future__ import annotations

import re
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.models.db import NCR, Lot, ProgressClaim, Project


def format_lot_number(prefix: str, number: int) -> str:
    return f"{prefix}{number:03d}"


def next_lot_number(prefix: str, starting_number: int, existing: list[str]) -> str:
    """Next free number after the highest existing ``<prefix><digits>`` lot."""
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    numbers = [int(m.group(1)) for m in (pattern.match(n) for n in existing) if m]
    candidate = max(numbers) + 1 if numbers else starting_number
    return format_lot_number(prefix, max(candidate, starting_number))


async def suggest_lot_number(session: AsyncSession, project: Project) -> str:
    prefix = project.lot_prefix or "LOT-"
    result = await session.execute(
        select(Lot.lot_number).where(
            Lot.project_id == project.id, Lot.lot_number.startswith(prefix, autoescape=True)
        )
    )
    return next_lot_number(prefix, project.lot_starting_number or 1, list(result.scalars().all()))


def format_ncr_number(sequence: int) -> str:
    return f"NCR-{sequence:04d}"


async def next_ncr_number(session: AsyncSession, project_id: uuid.UUID) -> str:
    result = await session.execute(
        select(func.count()).select_from(NCR).where(NCR.project_id == project_id)
    )
    return format_ncr_number(result.scalar_one() + 1)


async def next_claim_number(session: AsyncSession, project_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.max(ProgressClaim.claim_number)).where(ProgressClaim.project_id == project_id)
    )
    return (result.scalar_one_or_none() or 0) + 1
