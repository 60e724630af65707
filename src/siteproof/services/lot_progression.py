"""Automatic lot status progression driven by ITP checklist completions."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.models.db import ITPInstance, Lot
from siteproof.services.itp import FINISHED_STATUSES, get_completions, is_test_item, snapshot_items

logger = logging.getLogger(__name__)

# Statuses that only an explicit action (conform, claim, NCR close, release) moves
FROZEN_STATUSES = frozenset({"conformed", "claimed", "ncr_raised", "hold_point"})


def next_lot_status(
    current: str,
    items: Sequence[Mapping[str, Any]],
    completion_statuses: Mapping[str, str],
) -> str | None:
    """Return the status the lot should move to, or None to leave it alone.

    *completion_statuses* maps checklist item id to completion status.
    """
    if current in FROZEN_STATUSES or not items:
        return None

    def finished(item) -> bool:
        return completion_statuses.get(str(item["id"])) in FINISHED_STATUSES

    test_items = [i for i in items if is_test_item(i)]
    work_items = [i for i in items if not is_test_item(i)]

    any_finished = any(finished(i) for i in items)
    work_done = all(finished(i) for i in work_items)
    tests_done = all(finished(i) for i in test_items)

    if work_done and tests_done:
        target = "completed"
    elif work_done and any_finished:
        target = "awaiting_test"
    elif any_finished:
        target = "in_progress"
    else:
        target = current if current == "not_started" else "in_progress"

    return target if target != current else None


async def apply_lot_progression(
    session: AsyncSession, lot: Lot, instance: ITPInstance
) -> str | None:
    """Recompute and store the lot status after a checklist change."""
    completions = await get_completions(session, instance.id)
    statuses = {item_id: c.status for item_id, c in completions.items()}
    target = next_lot_status(lot.status, snapshot_items(instance), statuses)
    if target is None:
        return None
    logger.info("Lot %s progressed %s -> %s", lot.lot_number, lot.status, target)
    lot.status = target
    await session.flush()
    return target
