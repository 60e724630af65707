"""Progress claim routes (commercial roles only)."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import (
    NCR,
    ClaimedLot,
    HoldPoint,
    Lot,
    NCRLot,
    ProgressClaim,
    TestResult,
    User,
    utcnow,
)
from siteproof.models.schemas import (
    ClaimCreate,
    ClaimDetailResponse,
    ClaimedLotResponse,
    ClaimResponse,
    ClaimStatusUpdate,
)
from siteproof.services.access import require_project_access
from siteproof.services.audit import record_audit
from siteproof.services.itp import FINISHED_STATUSES, get_completions, get_instance_for_lot, snapshot_items
from siteproof.services.notifications import notify_users
from siteproof.services.numbering import next_claim_number

logger = logging.getLogger(__name__)

router = APIRouter()

# Allowed status transitions; paid is terminal
CLAIM_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"submitted"}),
    "submitted": frozenset({"certified", "disputed"}),
    "disputed": frozenset({"submitted", "certified"}),
    "certified": frozenset({"paid"}),
    "paid": frozenset(),
}
NOTIFY_PREPARER_ON = frozenset({"certified", "disputed", "paid"})

DENIED = "Only commercial roles can access progress claims"


async def _commercial(session: AsyncSession, user: User, project_id: uuid.UUID):
    return await require_project_access(session, user, project_id, roles.COMMERCIAL_ROLES, DENIED)


async def _claim_or_404(
    session: AsyncSession, project_id: uuid.UUID, claim_id: uuid.UUID, with_lots: bool = False
) -> ProgressClaim:
    query = select(ProgressClaim).where(
        ProgressClaim.id == claim_id, ProgressClaim.project_id == project_id
    )
    if with_lots:
        query = query.options(
            selectinload(ProgressClaim.claimed_lots).selectinload(ClaimedLot.lot)
        ).execution_options(populate_existing=True)
    claim = (await session.execute(query)).scalar_one_or_none()
    if claim is None:
        raise AppError.not_found("Claim")
    return claim


async def _lot_counts(session: AsyncSession, claim_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not claim_ids:
        return {}
    result = await session.execute(
        select(ClaimedLot.claim_id, func.count())
        .where(ClaimedLot.claim_id.in_(claim_ids))
        .group_by(ClaimedLot.claim_id)
    )
    return dict(result.all())


def _detail(claim: ProgressClaim) -> ClaimDetailResponse:
    lots = [
        ClaimedLotResponse(
            lot_id=cl.lot_id,
            lot_number=cl.lot.lot_number,
            activity_type=cl.lot.activity_type,
            amount_claimed=float(cl.amount_claimed or 0),
            percentage_complete=cl.percentage_complete,
        )
        for cl in sorted(claim.claimed_lots, key=lambda cl: cl.lot.lot_number)
    ]
    return ClaimDetailResponse.model_validate(claim).model_copy(
        update={"lots": lots, "lot_count": len(lots)}
    )


# ── Lots available for claiming ───────────────────────────────────────────────


@router.get("/projects/{project_id}/claimable-lots")
async def claimable_lots(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Conformed lots not yet included in any claim."""
    await _commercial(session, user, project_id)
    result = await session.execute(
        select(Lot)
        .where(Lot.project_id == project_id, Lot.status == "conformed", Lot.claimed_in_id.is_(None))
        .order_by(Lot.lot_number)
    )
    lots = result.scalars().all()
    return {
        "lots": [
            {
                "id": str(lot.id),
                "lot_number": lot.lot_number,
                "activity_type": lot.activity_type,
                "budget_amount": float(lot.budget_amount or 0),
            }
            for lot in lots
        ],
        "total_budget": float(sum((lot.budget_amount or Decimal(0)) for lot in lots)),
    }


# ── Claims ────────────────────────────────────────────────────────────────────


@router.get("/projects/{project_id}/claims")
async def list_claims(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await _commercial(session, user, project_id)
    result = await session.execute(
        select(ProgressClaim)
        .where(ProgressClaim.project_id == project_id)
        .order_by(ProgressClaim.claim_number.desc())
    )
    claims = result.scalars().all()
    counts = await _lot_counts(session, [c.id for c in claims])
    return {
        "claims": [
            ClaimResponse.model_validate(c).model_copy(update={"lot_count": counts.get(c.id, 0)})
            for c in claims
        ]
    }


@router.get("/projects/{project_id}/claims/{claim_id}", response_model=ClaimDetailResponse)
async def get_claim(
    project_id: uuid.UUID,
    claim_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await _commercial(session, user, project_id)
    return _detail(await _claim_or_404(session, project_id, claim_id, with_lots=True))


@router.post("/projects/{project_id}/claims", response_model=ClaimDetailResponse, status_code=201)
async def create_claim(
    project_id: uuid.UUID,
    data: ClaimCreate,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Create a draft claim from conformed, unclaimed lots; the lots become ``claimed``."""
    await _commercial(session, user, project_id)
    if data.claim_period_end < data.claim_period_start:
        raise AppError.bad_request("Claim period end must not be before its start")

    result = await session.execute(
        select(Lot).where(
            Lot.id.in_(data.lot_ids),
            Lot.project_id == project_id,
            Lot.status == "conformed",
            Lot.claimed_in_id.is_(None),
        )
    )
    lots = list(result.scalars().all())
    if not lots:
        raise AppError.bad_request("No valid conformed lots found")
    skipped = sorted({str(i) for i in data.lot_ids} - {str(lot.id) for lot in lots})

    claim = ProgressClaim(
        project_id=project_id,
        claim_number=await next_claim_number(session, project_id),
        claim_period_start=data.claim_period_start,
        claim_period_end=data.claim_period_end,
        status="draft",
        prepared_by_id=user.id,
        prepared_at=utcnow(),
        total_claimed_amount=sum((lot.budget_amount or Decimal(0)) for lot in lots),
    )
    session.add(claim)
    await session.flush()

    for lot in lots:
        session.add(
            ClaimedLot(
                claim_id=claim.id,
                lot_id=lot.id,
                amount_claimed=lot.budget_amount or Decimal(0),
                percentage_complete=100.0,
            )
        )
        lot.claimed_in_id = claim.id
        lot.status = "claimed"
    await session.flush()

    await record_audit(
        session,
        entity_type="ProgressClaim",
        entity_id=claim.id,
        action="claim_created",
        user_id=user.id,
        project_id=project_id,
        changes={"claim_number": claim.claim_number, "lots": len(lots), "skipped_lot_ids": skipped},
        request=request,
    )
    logger.info("Claim #%d created on project %s with %d lots", claim.claim_number, project_id, len(lots))
    return _detail(await _claim_or_404(session, project_id, claim.id, with_lots=True))


@router.put("/projects/{project_id}/claims/{claim_id}", response_model=ClaimResponse)
async def update_claim_status(
    project_id: uuid.UUID,
    claim_id: uuid.UUID,
    data: ClaimStatusUpdate,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Move a claim along draft → submitted → certified/disputed → paid."""
    await _commercial(session, user, project_id)
    claim = await _claim_or_404(session, project_id, claim_id)

    if claim.status == "paid":
        raise AppError.bad_request("Cannot update a paid claim")
    previous = claim.status
    if data.status not in CLAIM_TRANSITIONS[previous]:
        raise AppError(
            400,
            f"Cannot change claim status from '{previous}' to '{data.status}'",
            code="INVALID_STATUS_TRANSITION",
            details={"allowed": sorted(CLAIM_TRANSITIONS[previous])},
        )

    now = utcnow()
    claim.status = data.status
    amount = None
    if data.status == "submitted":
        claim.submitted_at = now
    elif data.status == "certified":
        claim.certified_amount = (
            Decimal(str(data.certified_amount))
            if data.certified_amount is not None
            else claim.total_claimed_amount
        )
        claim.certified_at = now
        amount = claim.certified_amount
    elif data.status == "disputed":
        claim.disputed_at = now
        claim.dispute_notes = data.dispute_notes
    elif data.status == "paid":
        claim.paid_amount = (
            Decimal(str(data.paid_amount)) if data.paid_amount is not None else claim.certified_amount
        )
        claim.paid_at = now
        claim.payment_reference = data.payment_reference
        amount = claim.paid_amount
    await session.flush()

    await record_audit(
        session,
        entity_type="ProgressClaim",
        entity_id=claim.id,
        action="claim_status_changed",
        user_id=user.id,
        project_id=project_id,
        changes={"status": {"from": previous, "to": claim.status}},
        request=request,
    )
    if data.status in NOTIFY_PREPARER_ON and claim.prepared_by_id:
        await notify_users(
            session,
            [claim.prepared_by_id],
            "claim_status",
            project_id=project_id,
            link_url=f"/projects/{project_id}/claims",
            exclude_user_id=user.id,
            claim_number=claim.claim_number,
            status=claim.status,
            amount=float(amount) if amount is not None else None,
            notes=data.dispute_notes if data.status == "disputed" else None,
        )

    await session.refresh(claim)
    count = (await _lot_counts(session, [claim.id])).get(claim.id, 0)
    return ClaimResponse.model_validate(claim).model_copy(update={"lot_count": count})


@router.delete("/projects/{project_id}/claims/{claim_id}")
async def delete_claim(
    project_id: uuid.UUID,
    claim_id: uuid.UUID,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Delete a draft claim; its lots go back to ``conformed``."""
    await _commercial(session, user, project_id)
    claim = await _claim_or_404(session, project_id, claim_id)
    if claim.status != "draft":
        raise AppError.bad_request("Can only delete draft claims")

    result = await session.execute(select(Lot).where(Lot.claimed_in_id == claim.id))
    for lot in result.scalars().all():
        lot.claimed_in_id = None
        lot.status = "conformed"
    await session.flush()

    await record_audit(
        session,
        entity_type="ProgressClaim",
        entity_id=claim.id,
        action="claim_deleted",
        user_id=user.id,
        project_id=project_id,
        changes={"claim_number": claim.claim_number},
        request=request,
    )
    await session.delete(claim)
    await session.flush()
    return {"success": True}


@router.get("/projects/{project_id}/claims/{claim_id}/evidence-package")
async def claim_evidence_package(
    project_id: uuid.UUID,
    claim_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Per-lot quality evidence backing a claim: ITP progress, tests, hold points, NCRs."""
    access = await _commercial(session, user, project_id)
    claim = await _claim_or_404(session, project_id, claim_id, with_lots=True)

    lots = []
    for cl in sorted(claim.claimed_lots, key=lambda cl: cl.lot.lot_number):
        lot = cl.lot
        instance = await get_instance_for_lot(session, lot.id)
        itp = None
        if instance is not None:
            items = snapshot_items(instance)
            completions = await get_completions(session, instance.id)
            itp = {
                "template_name": instance.template_snapshot.get("name"),
                "total_items": len(items),
                "completed_items": sum(
                    1
                    for item in items
                    if item["id"] in completions and completions[item["id"]].status in FINISHED_STATUSES
                ),
            }
        tests = (
            await session.execute(select(TestResult).where(TestResult.lot_id == lot.id))
        ).scalars().all()
        hold_points = (
            await session.execute(select(HoldPoint).where(HoldPoint.lot_id == lot.id))
        ).scalars().all()
        ncrs = (
            await session.execute(
                select(NCR).join(NCRLot, NCRLot.ncr_id == NCR.id).where(NCRLot.lot_id == lot.id)
            )
        ).scalars().all()
        lots.append(
            {
                "lot_id": str(lot.id),
                "lot_number": lot.lot_number,
                "activity_type": lot.activity_type,
                "amount_claimed": float(cl.amount_claimed or 0),
                "conformed_at": lot.conformed_at.isoformat() if lot.conformed_at else None,
                "itp": itp,
                "test_results": [
                    {
                        "id": str(t.id),
                        "test_type": t.test_type,
                        "pass_fail": t.pass_fail,
                        "status": t.status,
                    }
                    for t in tests
                ],
                "hold_points": [
                    {
                        "id": str(hp.id),
                        "description": hp.description,
                        "status": hp.status,
                        "released_at": hp.released_at.isoformat() if hp.released_at else None,
                        "released_by_name": hp.released_by_name,
                    }
                    for hp in hold_points
                ],
                "ncrs": [
                    {"id": str(n.id), "ncr_number": n.ncr_number, "status": n.status} for n in ncrs
                ],
            }
        )

    return {
        "claim": _detail(claim).model_dump(mode="json", exclude={"lots"}),
        "project": {"id": str(access.project.id), "name": access.project.name},
        "lots": lots,
        "summary": {
            "lot_count": len(lots),
            "total_claimed_amount": float(claim.total_claimed_amount or 0),
            "tests_passed": sum(
                1 for lot in lots for t in lot["test_results"] if t["pass_fail"] == "pass"
            ),
            "hold_points_released": sum(
                1 for lot in lots for hp in lot["hold_points"] if hp["status"] == "released"
            ),
            "open_ncrs": sum(
                1
                for lot in lots
                for n in lot["ncrs"]
                if n["status"] not in ("closed", "closed_concession")
            ),
        },
    }
