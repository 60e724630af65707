"""Lot API routes: CRUD, conformance, status overrides and subcontractor assignment."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import (
    Lot,
    LotSubcontractorAssignment,
    SubcontractorCompany,
    User,
    as_utc,
    utcnow,
)
from siteproof.models.schemas import (
    LOT_STATUS_PATTERN,
    BulkStatusUpdate,
    ConformRequest,
    LotAssignmentCreate,
    LotAssignmentResponse,
    LotBulkCreate,
    LotCreate,
    LotListResponse,
    LotResponse,
    LotUpdate,
    StatusOverride,
)
from siteproof.services.access import (
    ProjectAccess,
    assigned_lot_ids,
    get_lot_or_404,
    require_lot_visible,
    require_project_access,
)
from siteproof.services.audit import record_audit
from siteproof.services.conformance import check_conformance
from siteproof.services.itp import create_instance, load_template
from siteproof.services.numbering import suggest_lot_number

logger = logging.getLogger(__name__)

router = APIRouter()

LOCKED_STATUSES = ("conformed", "claimed")
# Clock skew allowed when comparing expected_updated_at
CONCURRENCY_TOLERANCE_SECONDS = 1.0


def _validate_lot_type(lot_type: str, area_zone: str | None, structure_id: str | None) -> None:
    if lot_type == "area" and not area_zone:
        raise AppError.bad_request("Area lots require an area_zone")
    if lot_type == "structure" and not structure_id:
        raise AppError.bad_request("Structure lots require a structure_id")


async def _ensure_unique_number(
    session: AsyncSession, project_id: uuid.UUID, lot_number: str, exclude_id: uuid.UUID | None = None
) -> None:
    query = select(Lot.id).where(Lot.project_id == project_id, Lot.lot_number == lot_number)
    if exclude_id is not None:
        query = query.where(Lot.id != exclude_id)
    if (await session.execute(query)).first() is not None:
        raise AppError.conflict(
            f"Lot number {lot_number} already exists in this project",
            code="DUPLICATE_LOT_NUMBER",
        )


async def _approved_subcontractor(
    session: AsyncSession, project_id: uuid.UUID, company_id: uuid.UUID
) -> SubcontractorCompany:
    result = await session.execute(
        select(SubcontractorCompany).where(
            SubcontractorCompany.id == company_id,
            SubcontractorCompany.project_id == project_id,
        )
    )
    company = result.scalar_one_or_none()
    if company is None:
        raise AppError.not_found("Subcontractor")
    if company.status != "approved":
        raise AppError.bad_request("Subcontractor is not approved for this project")
    return company


async def _lot_access(
    session: AsyncSession,
    user: User,
    lot_id: uuid.UUID,
    allowed=None,
    message: str | None = None,
) -> tuple[Lot, ProjectAccess]:
    lot = await get_lot_or_404(session, lot_id)
    access = await require_project_access(session, user, lot.project_id, allowed, message)
    await require_lot_visible(session, access, lot)
    return lot, access


# ── Listing ───────────────────────────────────────────────────────────────────


@router.get("/lots", response_model=LotListResponse)
async def list_lots(
    project_id: uuid.UUID,
    status: str | None = Query(None, pattern=LOT_STATUS_PATTERN),
    unclaimed: bool = False,
    search: str | None = Query(None, max_length=100),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List a project's lots; subcontractors only see lots assigned to them."""
    access = await require_project_access(session, user, project_id)

    query = select(Lot).where(Lot.project_id == project_id)
    if status:
        query = query.where(Lot.status == status)
    if unclaimed:
        query = query.where(Lot.claimed_in_id.is_(None), Lot.status != "claimed")
    if search:
        query = query.where(Lot.lot_number.ilike(f"%{search}%") | Lot.description.ilike(f"%{search}%"))
    if access.is_subcontractor:
        visible = await assigned_lot_ids(session, access.subcontractor_company_id)
        query = query.where(Lot.id.in_(visible))

    result = await session.execute(query.order_by(Lot.lot_number))
    lots = result.scalars().all()
    return LotListResponse(lots=lots, total=len(lots))


@router.get("/lots/suggest-number")
async def suggest_number(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    access = await require_project_access(session, user, project_id)
    return {"suggested_number": await suggest_lot_number(session, access.project)}


# ── Create ────────────────────────────────────────────────────────────────────


@router.post("/lots", response_model=LotResponse, status_code=201)
async def create_lot(
    data: LotCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Create a lot, optionally instancing an ITP and assigning a subcontractor."""
    await require_project_access(
        session, user, data.project_id, roles.LOT_CREATORS,
        "You do not have permission to create lots",
    )
    _validate_lot_type(data.lot_type, data.area_zone, data.structure_id)
    await _ensure_unique_number(session, data.project_id, data.lot_number)

    template = None
    if data.itp_template_id is not None:
        template = await load_template(session, data.itp_template_id)
        if template.project_id not in (None, data.project_id):
            raise AppError.bad_request("ITP template belongs to another project")

    company = None
    if data.assigned_subcontractor_id is not None:
        company = await _approved_subcontractor(session, data.project_id, data.assigned_subcontractor_id)

    lot = Lot(
        **data.model_dump(exclude={"itp_template_id", "can_complete_itp"}),
        created_by_id=user.id,
    )
    session.add(lot)
    await session.flush()

    if template is not None:
        await create_instance(session, lot, template)
    if company is not None:
        session.add(
            LotSubcontractorAssignment(
                lot_id=lot.id,
                subcontractor_company_id=company.id,
                project_id=lot.project_id,
                can_complete_itp=data.can_complete_itp,
                assigned_by_id=user.id,
            )
        )

    await session.flush()
    await session.refresh(lot)
    logger.info("Lot %s created in project %s", lot.lot_number, lot.project_id)
    return lot


@router.post("/lots/bulk", response_model=LotListResponse, status_code=201)
async def bulk_create_lots(
    data: LotBulkCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Create several lots at once; any duplicate number rejects the whole batch."""
    await require_project_access(
        session, user, data.project_id, roles.LOT_CREATORS,
        "You do not have permission to create lots",
    )
    numbers = [item.lot_number for item in data.lots]
    duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
    if duplicates:
        raise AppError.bad_request("Duplicate lot numbers in request", {"lot_numbers": duplicates})

    existing = await session.execute(
        select(Lot.lot_number).where(Lot.project_id == data.project_id, Lot.lot_number.in_(numbers))
    )
    taken = sorted(existing.scalars().all())
    if taken:
        raise AppError.conflict(
            "Some lot numbers already exist in this project",
            code="DUPLICATE_LOT_NUMBER",
            details={"lot_numbers": taken},
        )

    lots = []
    for item in data.lots:
        _validate_lot_type(item.lot_type, item.area_zone, item.structure_id)
        lot = Lot(project_id=data.project_id, created_by_id=user.id, **item.model_dump())
        session.add(lot)
        lots.append(lot)
    await session.flush()
    for lot in lots:
        await session.refresh(lot)
    return LotListResponse(lots=lots, total=len(lots))


@router.post("/lots/bulk-update-status")
async def bulk_update_status(
    data: BulkStatusUpdate,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Set the status of several lots in one project; conformed and claimed lots are skipped."""
    result = await session.execute(select(Lot).where(Lot.id.in_(data.lot_ids)))
    lots = result.scalars().all()
    if not lots:
        raise AppError.not_found("Lots")
    project_ids = {lot.project_id for lot in lots}
    if len(project_ids) > 1:
        raise AppError.bad_request("All lots must belong to the same project")
    await require_project_access(
        session, user, project_ids.pop(), roles.STATUS_OVERRIDERS,
        "You do not have permission to change lot status",
    )

    updated, skipped = [], []
    for lot in lots:
        if lot.status in LOCKED_STATUSES:
            skipped.append(lot.lot_number)
            continue
        previous = lot.status
        lot.status = data.status
        updated.append(lot.lot_number)
        await record_audit(
            session,
            entity_type="Lot",
            entity_id=lot.id,
            action="bulk_status_update",
            user_id=user.id,
            project_id=lot.project_id,
            changes={"status": {"from": previous, "to": data.status}},
            request=request,
        )
    await session.flush()
    return {"updated": len(updated), "skipped": skipped}


# ── Single lot ────────────────────────────────────────────────────────────────


@router.get("/lots/{lot_id}", response_model=LotResponse)
async def get_lot(
    lot_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot, _ = await _lot_access(session, user, lot_id)
    return lot


@router.patch("/lots/{lot_id}", response_model=LotResponse)
async def update_lot(
    lot_id: uuid.UUID,
    data: LotUpdate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Edit a lot, guarding against concurrent edits via ``expected_updated_at``."""
    lot, access = await _lot_access(
        session, user, lot_id, roles.LOT_EDITORS, "You do not have permission to edit lots"
    )
    if lot.status in LOCKED_STATUSES:
        raise AppError.bad_request(f"Cannot edit a {lot.status} lot")

    if data.expected_updated_at is not None:
        expected = as_utc(data.expected_updated_at)
        current = as_utc(lot.updated_at)
        if abs((current - expected).total_seconds()) > CONCURRENCY_TOLERANCE_SECONDS:
            raise AppError.conflict(
                "This lot was modified by someone else. Reload and try again.",
                code="CONCURRENT_MODIFICATION",
                details={"current_updated_at": current.isoformat()},
            )

    update_data = data.model_dump(exclude_unset=True, exclude={"expected_updated_at"})
    commercial_fields = {"budget_amount", "assigned_subcontractor_id"} & update_data.keys()
    if commercial_fields and not access.has_any(roles.COMMERCIAL_ROLES):
        raise AppError.forbidden(
            f"Only commercial roles can change {', '.join(sorted(commercial_fields))}"
        )

    if "lot_number" in update_data and update_data["lot_number"] != lot.lot_number:
        await _ensure_unique_number(session, lot.project_id, update_data["lot_number"], lot.id)
    if update_data.get("assigned_subcontractor_id") is not None:
        await _approved_subcontractor(session, lot.project_id, update_data["assigned_subcontractor_id"])

    for key, value in update_data.items():
        setattr(lot, key, value)
    _validate_lot_type(lot.lot_type, lot.area_zone, lot.structure_id)

    await session.flush()
    await session.refresh(lot)
    return lot


@router.delete("/lots/{lot_id}", status_code=204)
async def delete_lot(
    lot_id: uuid.UUID,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot, _ = await _lot_access(
        session, user, lot_id, roles.LOT_DELETERS, "You do not have permission to delete lots"
    )
    if lot.status in LOCKED_STATUSES:
        raise AppError.bad_request(f"Cannot delete a {lot.status} lot")

    await record_audit(
        session,
        entity_type="Lot",
        entity_id=lot.id,
        action="lot_deleted",
        user_id=user.id,
        project_id=lot.project_id,
        changes={"lot_number": lot.lot_number},
        request=request,
    )
    await session.delete(lot)
    await session.flush()


# ── Conformance ───────────────────────────────────────────────────────────────


@router.get("/lots/{lot_id}/conform-status")
async def conform_status(
    lot_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot, _ = await _lot_access(session, user, lot_id)
    status = await check_conformance(session, lot)
    return {"lot_id": str(lot.id), "status": lot.status, **status.to_dict()}


@router.post("/lots/{lot_id}/conform", response_model=LotResponse)
async def conform_lot(
    lot_id: uuid.UUID,
    request: Request,
    data: ConformRequest | None = None,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Mark a lot conformed once every prerequisite is met (or when forced)."""
    lot, _ = await _lot_access(
        session, user, lot_id, roles.LOT_CONFORMERS, "You do not have permission to conform lots"
    )
    if lot.status in LOCKED_STATUSES:
        raise AppError.bad_request(f"Lot is already {lot.status}")

    force = bool(data and data.force)
    status = await check_conformance(session, lot)
    if not status.can_conform and not force:
        raise AppError(
            400,
            "Lot does not meet conformance prerequisites",
            "CONFORMANCE_PREREQUISITES_NOT_MET",
            {"blocking_reasons": status.blocking_reasons},
        )

    previous = lot.status
    lot.status = "conformed"
    lot.conformed_at = utcnow()
    lot.conformed_by_id = user.id
    await record_audit(
        session,
        entity_type="Lot",
        entity_id=lot.id,
        action="lot_conformed",
        user_id=user.id,
        project_id=lot.project_id,
        changes={
            "status": {"from": previous, "to": "conformed"},
            "forced": force,
            "blocking_reasons": status.blocking_reasons if force else [],
        },
        request=request,
    )
    await session.flush()
    await session.refresh(lot)
    logger.info("Lot %s conformed by %s (forced=%s)", lot.lot_number, user.email, force)
    return lot


@router.post("/lots/{lot_id}/override-status", response_model=LotResponse)
async def override_status(
    lot_id: uuid.UUID,
    data: StatusOverride,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Manually set a lot's status, recording the reason in the audit log."""
    reason = data.reason.strip()
    if len(reason) < 5:
        raise AppError.bad_request("Reason must be at least 5 characters")

    lot = await get_lot_or_404(session, lot_id)
    if lot.status == "claimed":
        raise AppError.bad_request("Cannot override status of a claimed lot")
    await require_project_access(
        session, user, lot.project_id, roles.STATUS_OVERRIDERS,
        "You do not have permission to override lot status",
    )

    previous = lot.status
    lot.status = data.status
    await record_audit(
        session,
        entity_type="Lot",
        entity_id=lot.id,
        action="status_override",
        user_id=user.id,
        project_id=lot.project_id,
        changes={
            "status": {"from": previous, "to": data.status},
            "reason": reason,
            "overridden_by": user.email,
        },
        request=request,
    )
    await session.flush()
    await session.refresh(lot)
    return lot


# ── Subcontractor assignments ─────────────────────────────────────────────────


@router.get("/lots/{lot_id}/subcontractors", response_model=list[LotAssignmentResponse])
async def list_assignments(
    lot_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot, _ = await _lot_access(session, user, lot_id)
    result = await session.execute(
        select(LotSubcontractorAssignment)
        .where(LotSubcontractorAssignment.lot_id == lot.id, LotSubcontractorAssignment.status == "active")
        .order_by(LotSubcontractorAssignment.assigned_at)
    )
    return result.scalars().all()


@router.post(
    "/lots/{lot_id}/subcontractors", response_model=LotAssignmentResponse, status_code=201
)
async def assign_subcontractor(
    lot_id: uuid.UUID,
    data: LotAssignmentCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot, _ = await _lot_access(
        session, user, lot_id, roles.MANAGEMENT_ROLES,
        "You do not have permission to assign subcontractors",
    )
    company = await _approved_subcontractor(session, lot.project_id, data.subcontractor_company_id)

    result = await session.execute(
        select(LotSubcontractorAssignment).where(
            LotSubcontractorAssignment.lot_id == lot.id,
            LotSubcontractorAssignment.subcontractor_company_id == company.id,
        )
    )
    assignment = result.scalar_one_or_none()
    if assignment is not None and assignment.status == "active":
        raise AppError.conflict("Subcontractor is already assigned to this lot")

    if assignment is None:
        assignment = LotSubcontractorAssignment(
            lot_id=lot.id, subcontractor_company_id=company.id, project_id=lot.project_id
        )
        session.add(assignment)
    assignment.status = "active"
    assignment.can_complete_itp = data.can_complete_itp
    assignment.itp_requires_verification = data.itp_requires_verification
    assignment.assigned_by_id = user.id
    assignment.assigned_at = utcnow()
    await session.flush()
    await session.refresh(assignment)
    return assignment


@router.delete("/lots/{lot_id}/subcontractors/{assignment_id}", status_code=204)
async def remove_assignment(
    lot_id: uuid.UUID,
    assignment_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot, _ = await _lot_access(
        session, user, lot_id, roles.MANAGEMENT_ROLES,
        "You do not have permission to assign subcontractors",
    )
    result = await session.execute(
        select(LotSubcontractorAssignment).where(
            LotSubcontractorAssignment.id == assignment_id,
            LotSubcontractorAssignment.lot_id == lot.id,
        )
    )
    assignment = result.scalar_one_or_none()
    if assignment is None or assignment.status != "active":
        raise AppError.not_found("Assignment")
    assignment.status = "removed"
    if lot.assigned_subcontractor_id == assignment.subcontractor_company_id:
        lot.assigned_subcontractor_id = None
    await session.flush()
