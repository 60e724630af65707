"""Subcontractor daily dockets: labour and plant entries, submission and approval."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import (
    DailyDocket,
    DocketLabour,
    DocketLabourLot,
    DocketPlant,
    EmployeeRoster,
    Lot,
    PlantRegister,
    SubcontractorCompany,
    User,
    utcnow,
)
from siteproof.models.schemas import (
    DOCKET_STATUS_PATTERN,
    DocketApprove,
    DocketCreate,
    DocketDetailResponse,
    DocketLabourCreate,
    DocketLabourLotResponse,
    DocketLabourResponse,
    DocketPlantCreate,
    DocketPlantResponse,
    DocketQuery,
    DocketQueryResponse,
    DocketReject,
    DocketResponse,
)
from siteproof.services.access import ProjectAccess, require_project_access
from siteproof.services.audit import record_audit
from siteproof.services.dockets import (
    EDITABLE_STATUSES,
    SUBMITTABLE_STATUSES,
    cost,
    docket_number,
    plant_rate,
    shift_hours,
    total,
)
from siteproof.services.notifications import notify_users, project_user_ids, subcontractor_user_ids

logger = logging.getLogger(__name__)

router = APIRouter()

DOCKET_APPROVERS = roles.MANAGEMENT_ROLES | {roles.FOREMAN}
APPROVERS_DENIED = "You do not have permission to review dockets"


def _link(docket: DailyDocket) -> str:
    return f"/projects/{docket.project_id}/dockets"


def _context(docket: DailyDocket) -> dict:
    return {"docket_number": docket_number(docket.id), "docket_date": docket.date.isoformat()}


async def _load(
    session: AsyncSession, user: User, docket_id: uuid.UUID, with_entries: bool = False
) -> tuple[DailyDocket, ProjectAccess]:
    """Fetch a docket; subcontractor users only see their own company's dockets."""
    query = select(DailyDocket).where(DailyDocket.id == docket_id)
    if with_entries:
        query = query.options(
            selectinload(DailyDocket.subcontractor_company),
            selectinload(DailyDocket.labour_entries).selectinload(DocketLabour.employee),
            selectinload(DailyDocket.labour_entries)
            .selectinload(DocketLabour.lot_allocations)
            .selectinload(DocketLabourLot.lot),
            selectinload(DailyDocket.plant_entries).selectinload(DocketPlant.plant),
        ).execution_options(populate_existing=True)
    docket = (await session.execute(query)).scalar_one_or_none()
    if docket is None:
        raise AppError.not_found("Docket")
    access = await require_project_access(session, user, docket.project_id)
    if access.is_subcontractor and access.subcontractor_company_id != docket.subcontractor_company_id:
        raise AppError.forbidden("You can only access your own company's dockets")
    return docket, access


def _require_status(docket: DailyDocket, *allowed: str, action: str) -> None:
    if docket.status not in allowed:
        raise AppError.bad_request(
            f"Cannot {action} a docket with status '{docket.status}'",
            {"allowed_statuses": list(allowed)},
        )


def _require_editor(docket: DailyDocket, access: ProjectAccess) -> None:
    if not access.is_subcontractor:
        raise AppError.forbidden("Only the subcontractor can change its docket")
    _require_status(docket, *EDITABLE_STATUSES, action="edit")


def _summary(docket: DailyDocket, company_name: str | None) -> DocketResponse:
    return DocketResponse.model_validate(docket).model_copy(
        update={"docket_number": docket_number(docket.id), "subcontractor": company_name}
    )


def _detail(docket: DailyDocket) -> DocketDetailResponse:
    labour = [
        DocketLabourResponse.model_validate(entry).model_copy(
            update={
                "employee_name": entry.employee.name,
                "lots": [
                    DocketLabourLotResponse(
                        lot_id=a.lot_id, lot_number=a.lot.lot_number, hours=float(a.hours)
                    )
                    for a in entry.lot_allocations
                ],
            }
        )
        for entry in sorted(docket.labour_entries, key=lambda e: (e.start_time or "", e.employee.name))
    ]
    plant = [
        DocketPlantResponse.model_validate(entry).model_copy(update={"plant_type": entry.plant.type})
        for entry in sorted(docket.plant_entries, key=lambda e: e.hours_operated, reverse=True)
    ]
    return DocketDetailResponse.model_validate(docket).model_copy(
        update={
            "docket_number": docket_number(docket.id),
            "subcontractor": docket.subcontractor_company.company_name,
            "labour": labour,
            "plant": plant,
        }
    )


async def _refresh_totals(session: AsyncSession, docket: DailyDocket) -> None:
    labour = await session.execute(
        select(DocketLabour.submitted_cost).where(DocketLabour.docket_id == docket.id)
    )
    plant = await session.execute(
        select(DocketPlant.submitted_cost).where(DocketPlant.docket_id == docket.id)
    )
    docket.total_labour_submitted = total(labour.scalars().all())
    docket.total_plant_submitted = total(plant.scalars().all())
    await session.flush()


async def _reloaded(session: AsyncSession, user: User, docket: DailyDocket) -> DocketDetailResponse:
    fresh, _ = await _load(session, user, docket.id, with_entries=True)
    return _detail(fresh)


# ── Dockets ───────────────────────────────────────────────────────────────────


@router.get("/dockets")
async def list_dockets(
    project_id: uuid.UUID = Query(...),
    status: str | None = Query(None, pattern=DOCKET_STATUS_PATTERN),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    access = await require_project_access(session, user, project_id)
    query = (
        select(DailyDocket, SubcontractorCompany.company_name)
        .join(SubcontractorCompany, SubcontractorCompany.id == DailyDocket.subcontractor_company_id)
        .where(DailyDocket.project_id == project_id)
        .order_by(DailyDocket.date.desc(), DailyDocket.created_at.desc())
    )
    if status:
        query = query.where(DailyDocket.status == status)
    if access.is_subcontractor:
        query = query.where(DailyDocket.subcontractor_company_id == access.subcontractor_company_id)
    result = await session.execute(query)
    return {"dockets": [_summary(docket, name) for docket, name in result.all()]}


@router.post("/dockets", response_model=DocketDetailResponse, status_code=201)
async def create_docket(
    data: DocketCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Start a draft docket for the caller's subcontractor company."""
    access = await require_project_access(session, user, data.project_id)
    if not access.is_subcontractor:
        raise AppError.forbidden("Only subcontractors can create dockets")
    company = (
        await session.execute(
            select(SubcontractorCompany).where(SubcontractorCompany.id == access.subcontractor_company_id)
        )
    ).scalar_one()
    if company.status != "approved":
        raise AppError.forbidden("Only approved subcontractors can submit dockets")

    docket = DailyDocket(
        project_id=data.project_id,
        subcontractor_company_id=company.id,
        date=data.date or utcnow().date(),
        notes=data.notes,
    )
    session.add(docket)
    await session.flush()
    logger.info("Docket %s started by %s", docket_number(docket.id), company.company_name)
    return await _reloaded(session, user, docket)


@router.get("/dockets/{docket_id}", response_model=DocketDetailResponse)
async def get_docket(
    docket_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    docket, _ = await _load(session, user, docket_id, with_entries=True)
    return _detail(docket)


# ── Entries ───────────────────────────────────────────────────────────────────


@router.post("/dockets/{docket_id}/labour", response_model=DocketDetailResponse, status_code=201)
async def add_labour(
    docket_id: uuid.UUID,
    data: DocketLabourCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Book an employee's shift; cost is hours times the roster rate."""
    docket, access = await _load(session, user, docket_id)
    _require_editor(docket, access)

    employee = (
        await session.execute(
            select(EmployeeRoster).where(
                EmployeeRoster.id == data.employee_id,
                EmployeeRoster.subcontractor_company_id == docket.subcontractor_company_id,
                EmployeeRoster.status != "inactive",
            )
        )
    ).scalar_one_or_none()
    if employee is None:
        raise AppError.not_found("Employee")

    hours = shift_hours(data.start_time, data.finish_time)
    allocated = sum(Decimal(str(a.hours)) for a in data.lot_allocations)
    if allocated > hours:
        raise AppError.bad_request(
            "Lot allocations exceed the hours worked",
            {"hours": float(hours), "allocated": float(allocated)},
        )
    lot_ids = {a.lot_id for a in data.lot_allocations}
    if lot_ids:
        result = await session.execute(
            select(Lot.id).where(Lot.id.in_(lot_ids), Lot.project_id == docket.project_id)
        )
        if set(result.scalars().all()) != lot_ids:
            raise AppError.bad_request("One or more lots do not belong to this project")

    rate = employee.hourly_rate or Decimal(0)
    entry = DocketLabour(
        docket_id=docket.id,
        employee_id=employee.id,
        start_time=data.start_time,
        finish_time=data.finish_time,
        submitted_hours=hours,
        hourly_rate=rate,
        submitted_cost=cost(hours, rate),
    )
    session.add(entry)
    await session.flush()
    for allocation in data.lot_allocations:
        session.add(
            DocketLabourLot(
                docket_labour_id=entry.id,
                lot_id=allocation.lot_id,
                hours=Decimal(str(allocation.hours)),
            )
        )
    await _refresh_totals(session, docket)
    return await _reloaded(session, user, docket)


@router.delete("/dockets/{docket_id}/labour/{entry_id}", response_model=DocketDetailResponse)
async def remove_labour(
    docket_id: uuid.UUID,
    entry_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    docket, access = await _load(session, user, docket_id)
    _require_editor(docket, access)
    entry = (
        await session.execute(
            select(DocketLabour).where(DocketLabour.id == entry_id, DocketLabour.docket_id == docket.id)
        )
    ).scalar_one_or_none()
    if entry is None:
        raise AppError.not_found("Labour entry")
    await session.delete(entry)
    await session.flush()
    await _refresh_totals(session, docket)
    return await _reloaded(session, user, docket)


@router.post("/dockets/{docket_id}/plant", response_model=DocketDetailResponse, status_code=201)
async def add_plant(
    docket_id: uuid.UUID,
    data: DocketPlantCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Book plant hours at the registered wet or dry rate."""
    docket, access = await _load(session, user, docket_id)
    _require_editor(docket, access)

    plant = (
        await session.execute(
            select(PlantRegister).where(
                PlantRegister.id == data.plant_id,
                PlantRegister.subcontractor_company_id == docket.subcontractor_company_id,
            )
        )
    ).scalar_one_or_none()
    if plant is None:
        raise AppError.not_found("Plant")

    hours = Decimal(str(data.hours_operated))
    rate = plant_rate(plant.dry_rate, plant.wet_rate, data.wet_or_dry)
    session.add(
        DocketPlant(
            docket_id=docket.id,
            plant_id=plant.id,
            hours_operated=hours,
            wet_or_dry=data.wet_or_dry,
            hourly_rate=rate,
            submitted_cost=cost(hours, rate),
        )
    )
    await session.flush()
    await _refresh_totals(session, docket)
    return await _reloaded(session, user, docket)


@router.delete("/dockets/{docket_id}/plant/{entry_id}", response_model=DocketDetailResponse)
async def remove_plant(
    docket_id: uuid.UUID,
    entry_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    docket, access = await _load(session, user, docket_id)
    _require_editor(docket, access)
    entry = (
        await session.execute(
            select(DocketPlant).where(DocketPlant.id == entry_id, DocketPlant.docket_id == docket.id)
        )
    ).scalar_one_or_none()
    if entry is None:
        raise AppError.not_found("Plant entry")
    await session.delete(entry)
    await session.flush()
    await _refresh_totals(session, docket)
    return await _reloaded(session, user, docket)


# ── Workflow ──────────────────────────────────────────────────────────────────


@router.post("/dockets/{docket_id}/submit", response_model=DocketDetailResponse)
async def submit_docket(
    docket_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Send the docket to the head contractor; labour must be booked against a lot."""
    docket, access = await _load(session, user, docket_id, with_entries=True)
    if not access.is_subcontractor:
        raise AppError.forbidden("Only the subcontractor can submit its docket")
    _require_status(docket, *SUBMITTABLE_STATUSES, action="submit")
    if not docket.labour_entries and not docket.plant_entries:
        raise AppError.bad_request(
            "At least one labour or plant entry is required before submitting the docket",
            {"code": "ENTRY_REQUIRED"},
        )
    if docket.labour_entries and not any(e.lot_allocations for e in docket.labour_entries):
        raise AppError.bad_request(
            "At least one labour entry must be allocated to a lot before submitting the docket",
            {"code": "LOT_REQUIRED"},
        )

    docket.status = "pending_approval"
    docket.submitted_by_id = user.id
    docket.submitted_at = utcnow()
    await session.flush()

    pending = (
        await session.execute(
            select(func.count())
            .select_from(DailyDocket)
            .where(DailyDocket.project_id == docket.project_id, DailyDocket.status == "pending_approval")
        )
    ).scalar_one()
    await notify_users(
        session,
        await project_user_ids(session, docket.project_id, DOCKET_APPROVERS),
        "docket_pending",
        project_id=docket.project_id,
        link_url=_link(docket),
        exclude_user_id=user.id,
        company_name=docket.subcontractor_company.company_name,
        pending_count=pending,
        **_context(docket),
    )
    logger.info("Docket %s submitted (%d pending)", docket_number(docket.id), pending)
    return await _reloaded(session, user, docket)


@router.post("/dockets/{docket_id}/approve", response_model=DocketDetailResponse)
async def approve_docket(
    docket_id: uuid.UUID,
    data: DocketApprove,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Approve submitted totals, or adjusted ones when a reason is given."""
    docket, access = await _load(session, user, docket_id, with_entries=True)
    access.require(DOCKET_APPROVERS, APPROVERS_DENIED)
    _require_status(docket, "pending_approval", action="approve")
    adjusted = data.adjusted_labour_total is not None or data.adjusted_plant_total is not None
    if adjusted and not (data.adjustment_reason or "").strip():
        raise AppError.bad_request(
            "An adjustment reason is required when totals are adjusted",
            {"field": "adjustment_reason"},
        )

    for entry in docket.labour_entries:
        entry.approved_hours = entry.submitted_hours
        entry.approved_cost = entry.submitted_cost
    for entry in docket.plant_entries:
        entry.approved_cost = entry.submitted_cost

    docket.status = "approved"
    docket.approved_by_id = user.id
    docket.approved_at = utcnow()
    docket.foreman_notes = data.foreman_notes
    docket.adjustment_reason = data.adjustment_reason
    docket.total_labour_approved = (
        Decimal(str(data.adjusted_labour_total))
        if data.adjusted_labour_total is not None
        else docket.total_labour_submitted
    )
    docket.total_plant_approved = (
        Decimal(str(data.adjusted_plant_total))
        if data.adjusted_plant_total is not None
        else docket.total_plant_submitted
    )
    await session.flush()

    await record_audit(
        session,
        entity_type="DailyDocket",
        entity_id=docket.id,
        action="docket_approved",
        user_id=user.id,
        project_id=docket.project_id,
        changes={
            "labour": {
                "submitted": float(docket.total_labour_submitted),
                "approved": float(docket.total_labour_approved),
            },
            "plant": {
                "submitted": float(docket.total_plant_submitted),
                "approved": float(docket.total_plant_approved),
            },
            "adjustment_reason": data.adjustment_reason,
        },
        request=request,
    )
    await notify_users(
        session,
        await subcontractor_user_ids(session, docket.subcontractor_company_id),
        "docket_approved",
        project_id=docket.project_id,
        link_url=_link(docket),
        approved_by=user.display_name,
        adjusted=adjusted,
        adjustment_reason=data.adjustment_reason,
        notes=data.foreman_notes,
        **_context(docket),
    )
    return await _reloaded(session, user, docket)


@router.post("/dockets/{docket_id}/reject", response_model=DocketDetailResponse)
async def reject_docket(
    docket_id: uuid.UUID,
    data: DocketReject,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Return the docket to the subcontractor, who may amend and resubmit it."""
    docket, access = await _load(session, user, docket_id)
    access.require(DOCKET_APPROVERS, APPROVERS_DENIED)
    _require_status(docket, "pending_approval", action="reject")
    reason = (data.reason or "").strip() or None

    docket.status = "rejected"
    docket.foreman_notes = reason
    await session.flush()

    await record_audit(
        session,
        entity_type="DailyDocket",
        entity_id=docket.id,
        action="docket_rejected",
        user_id=user.id,
        project_id=docket.project_id,
        changes={"reason": reason},
        request=request,
    )
    await notify_users(
        session,
        await subcontractor_user_ids(session, docket.subcontractor_company_id),
        "docket_rejected",
        project_id=docket.project_id,
        link_url=_link(docket),
        rejected_by=user.display_name,
        reason=reason,
        **_context(docket),
    )
    return await _reloaded(session, user, docket)


@router.post("/dockets/{docket_id}/query", response_model=DocketDetailResponse)
async def query_docket(
    docket_id: uuid.UUID,
    data: DocketQuery,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Put questions to the subcontractor without rejecting the docket."""
    docket, access = await _load(session, user, docket_id)
    access.require(DOCKET_APPROVERS, APPROVERS_DENIED)
    _require_status(docket, "pending_approval", action="query")
    questions = data.questions.strip()
    if not questions:
        raise AppError.bad_request("Questions are required", {"field": "questions"})

    docket.status = "queried"
    docket.foreman_notes = questions
    await session.flush()

    await notify_users(
        session,
        await subcontractor_user_ids(session, docket.subcontractor_company_id),
        "docket_queried",
        project_id=docket.project_id,
        link_url=_link(docket),
        queried_by=user.display_name,
        questions=questions,
        **_context(docket),
    )
    return await _reloaded(session, user, docket)


@router.post("/dockets/{docket_id}/respond", response_model=DocketDetailResponse)
async def respond_to_query(
    docket_id: uuid.UUID,
    data: DocketQueryResponse,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Answer a query; the docket goes back to the approvers."""
    docket, access = await _load(session, user, docket_id)
    if not access.is_subcontractor:
        raise AppError.forbidden("Only the subcontractor can respond to a docket query")
    _require_status(docket, "queried", action="respond to")
    response = data.response.strip()
    if not response:
        raise AppError.bad_request("A response is required", {"field": "response"})

    note = f"--- Response to Query ---\n{response}"
    docket.notes = f"{docket.notes}\n\n{note}" if docket.notes else note
    docket.status = "pending_approval"
    await session.flush()

    await notify_users(
        session,
        await project_user_ids(session, docket.project_id, DOCKET_APPROVERS),
        "docket_query_response",
        project_id=docket.project_id,
        link_url=_link(docket),
        exclude_user_id=user.id,
        responded_by=user.display_name,
        response=response,
        **_context(docket),
    )
    return await _reloaded(session, user, docket)
