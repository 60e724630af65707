"""Lot conformance prerequisites."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.models.db import NCR, NCRLot, Lot, TestResult
from siteproof.services.itp import FINISHED_STATUSES, get_completions, get_instance_for_lot, snapshot_items

OPEN_NCR_EXCLUDED = ("closed", "closed_concession")


@dataclass
class ConformanceStatus:
    itp_assigned: bool = False
    itp_total_items: int = 0
    itp_completed_items: int = 0
    has_passing_test: bool = False
    open_ncrs: list[dict] = field(default_factory=list)

    @property
    def itp_completed(self) -> bool:
        return self.itp_assigned and self.itp_completed_items == self.itp_total_items

    @property
    def blocking_reasons(self) -> list[str]:
        reasons = []
        if not self.itp_assigned:
            reasons.append("No ITP assigned to this lot")
        elif not self.itp_completed:
            remaining = self.itp_total_items - self.itp_completed_items
            reasons.append(f"ITP checklist incomplete ({remaining} item(s) remaining)")
        if not self.has_passing_test:
            reasons.append("No passing verified test result")
        if self.open_ncrs:
            numbers = ", ".join(n["ncr_number"] for n in self.open_ncrs)
            reasons.append(f"Open NCRs must be closed: {numbers}")
        return reasons

    @property
    def can_conform(self) -> bool:
        return not self.blocking_reasons

    def to_dict(self) -> dict:
        return {
            "can_conform": self.can_conform,
            "blocking_reasons": self.blocking_reasons,
            "prerequisites": {
                "itp_assigned": self.itp_assigned,
                "itp_completed": self.itp_completed,
                "itp_completed_items": self.itp_completed_items,
                "itp_total_items": self.itp_total_items,
                "has_passing_test": self.has_passing_test,
                "no_open_ncrs": not self.open_ncrs,
                "open_ncrs": self.open_ncrs,
            },
        }


async def open_ncrs_for_lot(
    session: AsyncSession, lot_id: uuid.UUID, exclude_ncr_id: uuid.UUID | None = None
) -> list[NCR]:
    query = (
        select(NCR)
        .join(NCRLot, NCRLot.ncr_id == NCR.id)
        .where(NCRLot.lot_id == lot_id, NCR.status.not_in(OPEN_NCR_EXCLUDED))
    )
    if exclude_ncr_id is not None:
        query = query.where(NCR.id != exclude_ncr_id)
    result = await session.execute(query)
    return list(result.scalars().all())


async def check_conformance(session: AsyncSession, lot: Lot) -> ConformanceStatus:
    status = ConformanceStatus()

    instance = await get_instance_for_lot(session, lot.id)
    if instance is not None:
        items = snapshot_items(instance)
        completions = await get_completions(session, instance.id)
        status.itp_assigned = True
        status.itp_total_items = len(items)
        status.itp_completed_items = sum(
            1
            for item in items
            if item["id"] in completions and completions[item["id"]].status in FINISHED_STATUSES
        )

    result = await session.execute(
        select(TestResult.id).where(
            TestResult.lot_id == lot.id,
            TestResult.pass_fail == "pass",
            TestResult.status == "verified",
        )
    )
    status.has_passing_test = result.first() is not None

    status.open_ncrs = [
        {"id": str(n.id), "ncr_number": n.ncr_number, "status": n.status}
        for n in await open_ncrs_for_lot(session, lot.id)
    ]
    return status
