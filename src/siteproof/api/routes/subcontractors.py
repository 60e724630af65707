"""Subcontractor companies, their users, employee roster and plant register."""

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
    EmployeeRoster,
    PlantRegister,
    ProjectUser,
    SubcontractorCompany,
    SubcontractorUser,
    User,
    utcnow,
)
from siteproof.models.schemas import (
    ABNValidateRequest,
    EmployeeCreate,
    EmployeeResponse,
    PlantCreate,
    PlantResponse,
    SubcontractorCreate,
    SubcontractorDetailResponse,
    SubcontractorResponse,
    SubcontractorStatusUpdate,
    SubcontractorUserLink,
)
from siteproof.services.abn import format_abn, normalise_abn, validate_abn
from siteproof.services.access import ProjectAccess, require_project_access
from siteproof.services.audit import record_audit
from siteproof.services.notifications import notify_users, subcontractor_user_ids

logger = logging.getLogger(__name__)

router = APIRouter()

SUBCONTRACTOR_MANAGERS = roles.MANAGEMENT_ROLES
RATE_APPROVERS = roles.COMMERCIAL_ROLES
ROSTER_OPEN_STATUSES = ("pending_approval", "approved")


async def _company_or_404(
    session: AsyncSession, company_id: uuid.UUID, with_roster: bool = False
) -> SubcontractorCompany:
    query = select(SubcontractorCompany).where(SubcontractorCompany.id == company_id)
    if with_roster:
        query = query.options(
            selectinload(SubcontractorCompany.employees),
            selectinload(SubcontractorCompany.plant),
        ).execution_options(populate_existing=True)
    company = (await session.execute(query)).scalar_one_or_none()
    if company is None:
        raise AppError.not_found("Subcontractor")
    return company


async def _roster_access(
    session: AsyncSession, user: User, company: SubcontractorCompany
) -> ProjectAccess:
    """Head-contractor managers, or the subcontractor's own admins, may edit its roster."""
    access = await require_project_access(session, user, company.project_id)
    if access.is_subcontractor:
        if access.subcontractor_company_id != company.id:
            raise AppError.forbidden("You can only manage your own company")
        link_role = await session.scalar(
            select(SubcontractorUser.role).where(
                SubcontractorUser.subcontractor_company_id == company.id,
                SubcontractorUser.user_id == user.id,
            )
        )
        _require_roster_admin(link_role)
    else:
        access.require(SUBCONTRACTOR_MANAGERS, "You do not have permission to manage subcontractors")
    _require_roster_open(company)
    return access


def _require_roster_admin(link_role: str | None) -> None:
    if link_role != "admin":
        raise AppError.forbidden("Only company admins can change the roster")


def _require_roster_open(company: SubcontractorCompany) -> None:
    if company.status not in ROSTER_OPEN_STATUSES:
        raise AppError.forbidden(
            f"The roster of a {company.status.replace('_', ' ')} company cannot be changed"
        )


async def _my_company(session: AsyncSession, user: User, editing: bool = False) -> SubcontractorCompany:
    result = await session.execute(
        select(SubcontractorCompany.id, SubcontractorUser.role)
        .join(SubcontractorUser, SubcontractorUser.subcontractor_company_id == SubcontractorCompany.id)
        .where(SubcontractorUser.user_id == user.id)
        .order_by(SubcontractorCompany.created_at)
    )
    link = result.first()
    if link is None:
        raise AppError.not_found("Subcontractor company")
    if editing:
        _require_roster_admin(link.role)
    company = await _company_or_404(session, link.id, with_roster=True)
    if editing:
        _require_roster_open(company)
    return company


def _detail(company: SubcontractorCompany) -> SubcontractorDetailResponse:
    return SubcontractorDetailResponse.model_validate(company).model_copy(
        update={
            "employees": [EmployeeResponse.model_validate(e) for e in company.employees],
            "plant": [PlantResponse.model_validate(p) for p in company.plant],
        }
    )


async def _add_employee(session: AsyncSession, company: SubcontractorCompany, data: EmployeeCreate) -> EmployeeRoster:
    employee = EmployeeRoster(
        subcontractor_company_id=company.id,
        name=data.name,
        phone=data.phone,
        role=data.role,
        hourly_rate=Decimal(str(data.hourly_rate)) if data.hourly_rate is not None else None,
    )
    session.add(employee)
    await session.flush()
    await session.refresh(employee)
    return employee


async def _add_plant(session: AsyncSession, company: SubcontractorCompany, data: PlantCreate) -> PlantRegister:
    plant = PlantRegister(
        subcontractor_company_id=company.id,
        type=data.type,
        description=data.description,
        id_rego=data.id_rego,
        dry_rate=Decimal(str(data.dry_rate)) if data.dry_rate is not None else None,
        wet_rate=Decimal(str(data.wet_rate)) if data.wet_rate is not None else None,
    )
    session.add(plant)
    await session.flush()
    await session.refresh(plant)
    return plant


async def _roster_entry(session: AsyncSession, model, entry_id: uuid.UUID, company_id: uuid.UUID, label: str):
    result = await session.execute(
        select(model).where(model.id == entry_id, model.subcontractor_company_id == company_id)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise AppError.not_found(label)
    return entry


# ── ABN ───────────────────────────────────────────────────────────────────────


@router.post("/subcontractors/validate-abn")
async def validate_abn_route(
    data: ABNValidateRequest,
    user: User = Depends(get_current_user),
):
    valid, error = validate_abn(data.abn or "")
    return {
        "valid": valid,
        "error": error,
        "formatted": format_abn(data.abn) if valid else None,
    }


# ── My company (subcontractor users) ──────────────────────────────────────────


@router.get("/subcontractors/my-company", response_model=SubcontractorDetailResponse)
async def get_my_company(
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _detail(await _my_company(session, user))


@router.post("/subcontractors/my-company/employees", response_model=EmployeeResponse, status_code=201)
async def add_my_employee(
    data: EmployeeCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await _add_employee(session, await _my_company(session, user, editing=True), data)


@router.delete("/subcontractors/my-company/employees/{employee_id}")
async def remove_my_employee(
    employee_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _my_company(session, user, editing=True)
    employee = await _roster_entry(session, EmployeeRoster, employee_id, company.id, "Employee")
    await session.delete(employee)
    await session.flush()
    return {"success": True}


@router.post("/subcontractors/my-company/plant", response_model=PlantResponse, status_code=201)
async def add_my_plant(
    data: PlantCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await _add_plant(session, await _my_company(session, user, editing=True), data)


@router.delete("/subcontractors/my-company/plant/{plant_id}")
async def remove_my_plant(
    plant_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _my_company(session, user, editing=True)
    plant = await _roster_entry(session, PlantRegister, plant_id, company.id, "Plant")
    await session.delete(plant)
    await session.flush()
    return {"success": True}


# ── Head-contractor management ────────────────────────────────────────────────


@router.get("/subcontractors/project/{project_id}")
async def list_for_project(
    project_id: uuid.UUID,
    include_removed: bool = False,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    access = await require_project_access(session, user, project_id)
    if access.is_subcontractor:
        raise AppError.forbidden("Subcontractors cannot list other subcontractors")

    query = select(SubcontractorCompany).where(SubcontractorCompany.project_id == project_id)
    if not include_removed:
        query = query.where(SubcontractorCompany.status != "removed")
    result = await session.execute(query.order_by(SubcontractorCompany.company_name))
    companies = result.scalars().all()

    counts: dict[uuid.UUID, int] = {}
    if companies:
        rows = await session.execute(
            select(EmployeeRoster.subcontractor_company_id, func.count())
            .where(EmployeeRoster.subcontractor_company_id.in_([c.id for c in companies]))
            .group_by(EmployeeRoster.subcontractor_company_id)
        )
        counts = dict(rows.all())
    return {
        "subcontractors": [
            {
                **SubcontractorResponse.model_validate(c).model_dump(mode="json"),
                "employee_count": counts.get(c.id, 0),
            }
            for c in companies
        ]
    }


@router.post("/subcontractors", response_model=SubcontractorResponse, status_code=201)
async def create_subcontractor(
    data: SubcontractorCreate,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await require_project_access(
        session, user, data.project_id, SUBCONTRACTOR_MANAGERS,
        "You do not have permission to add subcontractors",
    )
    abn = None
    if data.abn:
        valid, error = validate_abn(data.abn)
        if not valid:
            raise AppError.bad_request(error, {"field": "abn"})
        abn = normalise_abn(data.abn)

    existing = await session.execute(
        select(SubcontractorCompany).where(
            SubcontractorCompany.project_id == data.project_id,
            func.lower(SubcontractorCompany.company_name) == data.company_name.lower(),
        )
    )
    if existing.scalars().first():
        raise AppError.conflict("A subcontractor with this name already exists on the project")

    company = SubcontractorCompany(
        project_id=data.project_id,
        company_name=data.company_name,
        abn=abn,
        primary_contact_name=data.primary_contact_name,
        primary_contact_email=data.primary_contact_email,
        primary_contact_phone=data.primary_contact_phone,
        status="pending_approval",
    )
    session.add(company)
    await session.flush()
    await record_audit(
        session,
        entity_type="SubcontractorCompany",
        entity_id=company.id,
        action="subcontractor_created",
        user_id=user.id,
        project_id=data.project_id,
        changes={"company_name": company.company_name},
        request=request,
    )
    await session.refresh(company)
    return company


@router.get("/subcontractors/{company_id}", response_model=SubcontractorDetailResponse)
async def get_subcontractor(
    company_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _company_or_404(session, company_id, with_roster=True)
    access = await require_project_access(session, user, company.project_id)
    if access.is_subcontractor and access.subcontractor_company_id != company.id:
        raise AppError.forbidden("You can only view your own company")
    return _detail(company)


@router.patch("/subcontractors/{company_id}/status", response_model=SubcontractorResponse)
async def update_status(
    company_id: uuid.UUID,
    data: SubcontractorStatusUpdate,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Approve, suspend or remove a subcontractor."""
    company = await _company_or_404(session, company_id)
    await require_project_access(
        session, user, company.project_id, SUBCONTRACTOR_MANAGERS,
        "You do not have permission to manage subcontractors",
    )
    previous = company.status
    company.status = data.status
    if data.status == "approved":
        company.approved_by_id = user.id
        company.approved_at = utcnow()
    await session.flush()
    await record_audit(
        session,
        entity_type="SubcontractorCompany",
        entity_id=company.id,
        action="subcontractor_status_changed",
        user_id=user.id,
        project_id=company.project_id,
        changes={"status": {"from": previous, "to": data.status}},
        request=request,
    )
    await session.refresh(company)
    return company


@router.post("/subcontractors/{company_id}/users", status_code=201)
async def link_user(
    company_id: uuid.UUID,
    data: SubcontractorUserLink,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Link a login to a subcontractor company and give it project membership."""
    company = await _company_or_404(session, company_id)
    await require_project_access(
        session, user, company.project_id, SUBCONTRACTOR_MANAGERS,
        "You do not have permission to manage subcontractors",
    )
    target = (await session.execute(select(User).where(User.id == data.user_id))).scalar_one_or_none()
    if target is None:
        raise AppError.not_found("User")

    existing = await session.execute(
        select(SubcontractorUser).where(
            SubcontractorUser.subcontractor_company_id == company.id,
            SubcontractorUser.user_id == target.id,
        )
    )
    if existing.scalar_one_or_none():
        raise AppError.conflict("User is already linked to this company")
    session.add(SubcontractorUser(subcontractor_company_id=company.id, user_id=target.id, role=data.role))

    project_role = roles.SUBCONTRACTOR_ADMIN if data.role == "admin" else roles.SUBCONTRACTOR
    membership = (
        await session.execute(
            select(ProjectUser).where(
                ProjectUser.project_id == company.project_id, ProjectUser.user_id == target.id
            )
        )
    ).scalar_one_or_none()
    if membership is None:
        session.add(ProjectUser(project_id=company.project_id, user_id=target.id, role=project_role))
    else:
        membership.role = project_role
        membership.status = "active"
    await session.flush()
    logger.info("Linked user %s to subcontractor %s", target.id, company.id)
    return {"subcontractor_company_id": str(company.id), "user_id": str(target.id), "role": data.role}


# ── Roster ────────────────────────────────────────────────────────────────────


@router.post("/subcontractors/{company_id}/employees", response_model=EmployeeResponse, status_code=201)
async def add_employee(
    company_id: uuid.UUID,
    data: EmployeeCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _company_or_404(session, company_id)
    await _roster_access(session, user, company)
    return await _add_employee(session, company, data)


@router.delete("/subcontractors/{company_id}/employees/{employee_id}")
async def remove_employee(
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _company_or_404(session, company_id)
    await _roster_access(session, user, company)
    employee = await _roster_entry(session, EmployeeRoster, employee_id, company.id, "Employee")
    await session.delete(employee)
    await session.flush()
    return {"success": True}


@router.post("/subcontractors/{company_id}/plant", response_model=PlantResponse, status_code=201)
async def add_plant(
    company_id: uuid.UUID,
    data: PlantCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _company_or_404(session, company_id)
    await _roster_access(session, user, company)
    return await _add_plant(session, company, data)


@router.delete("/subcontractors/{company_id}/plant/{plant_id}")
async def remove_plant(
    company_id: uuid.UUID,
    plant_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _company_or_404(session, company_id)
    await _roster_access(session, user, company)
    plant = await _roster_entry(session, PlantRegister, plant_id, company.id, "Plant")
    await session.delete(plant)
    await session.flush()
    return {"success": True}


@router.post(
    "/subcontractors/{company_id}/employees/{employee_id}/approve-rate",
    response_model=EmployeeResponse,
)
async def approve_employee_rate(
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Approve an employee's hourly rate and tell the subcontractor's users."""
    company = await _company_or_404(session, company_id)
    await require_project_access(
        session, user, company.project_id, RATE_APPROVERS, "Only commercial roles can approve rates"
    )
    employee = await _roster_entry(session, EmployeeRoster, employee_id, company.id, "Employee")
    if employee.status == "approved":
        raise AppError.bad_request("Rate has already been approved")

    employee.status = "approved"
    employee.approved_by_id = user.id
    employee.approved_at = utcnow()
    await session.flush()

    await notify_users(
        session,
        await subcontractor_user_ids(session, company.id),
        "rate_approved",
        project_id=company.project_id,
        link_url="/my-company",
        exclude_user_id=user.id,
        employee_name=employee.name,
        hourly_rate=float(employee.hourly_rate) if employee.hourly_rate is not None else None,
    )
    await session.refresh(employee)
    return employee


@router.post("/subcontractors/{company_id}/plant/{plant_id}/approve", response_model=PlantResponse)
async def approve_plant(
    company_id: uuid.UUID,
    plant_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await _company_or_404(session, company_id)
    await require_project_access(
        session, user, company.project_id, RATE_APPROVERS, "Only commercial roles can approve rates"
    )
    plant = await _roster_entry(session, PlantRegister, plant_id, company.id, "Plant")
    plant.status = "approved"
    await session.flush()
    await session.refresh(plant)
    return plant
