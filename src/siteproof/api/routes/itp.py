"""ITP templates, per-lot instances and checklist completions."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import (
    HoldPoint,
    ITPChecklistItem,
    ITPCompletion,
    ITPInstance,
    ITPTemplate,
    LotSubcontractorAssignment,
    User,
    utcnow,
)
from siteproof.models.schemas import (
    ChecklistItemIn,
    CompletionResponse,
    CompletionUpsert,
    ITPInstanceCreate,
    ITPTemplateClone,
    ITPTemplateCreate,
    ITPTemplateResponse,
    ITPTemplateUpdate,
)
from siteproof.services.access import (
    ProjectAccess,
    get_lot_or_404,
    require_lot_visible,
    require_project_access,
)
from siteproof.services.itp import (
    FINISHED_STATUSES,
    create_instance,
    find_item,
    get_completions,
    get_instance_for_lot,
    is_hold_point,
    load_template,
    snapshot_items,
)
from siteproof.services.lot_progression import apply_lot_progression

logger = logging.getLogger(__name__)

router = APIRouter()

ITP_MANAGERS = roles.MANAGEMENT_ROLES | roles.QUALITY_ROLES


def _build_items(items: list[ChecklistItemIn]) -> list[ITPChecklistItem]:
    return [
        ITPChecklistItem(sequence_number=index + 1, **item.model_dump())
        for index, item in enumerate(items)
    ]


async def _template_for_edit(
    session: AsyncSession, user: User, template_id: uuid.UUID
) -> ITPTemplate:
    template = await load_template(session, template_id)
    if template.project_id is None:
        raise AppError.forbidden("Global ITP templates are read-only; clone it into a project")
    await require_project_access(
        session, user, template.project_id, ITP_MANAGERS,
        "You do not have permission to manage ITP templates",
    )
    return template


async def _instance_in_use(session: AsyncSession, template_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count()).select_from(ITPInstance).where(ITPInstance.template_id == template_id)
    )
    return result.scalar_one()


# ── Templates ─────────────────────────────────────────────────────────────────


@router.get("/itp/templates", response_model=list[ITPTemplateResponse])
async def list_templates(
    project_id: uuid.UUID,
    include_archived: bool = False,
    include_global: bool = True,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List a project's templates plus global ones; archived templates are hidden by default."""
    await require_project_access(session, user, project_id)
    scope = ITPTemplate.project_id == project_id
    if include_global:
        scope = scope | ITPTemplate.project_id.is_(None)
    query = select(ITPTemplate).options(selectinload(ITPTemplate.checklist_items)).where(scope)
    if not include_archived:
        query = query.where(ITPTemplate.is_active.is_(True))
    result = await session.execute(query.order_by(ITPTemplate.name))
    return result.scalars().all()


@router.get("/itp/templates/{template_id}", response_model=ITPTemplateResponse)
async def get_template(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    template = await load_template(session, template_id)
    if template.project_id is not None:
        await require_project_access(session, user, template.project_id)
    return template


@router.post("/itp/templates", response_model=ITPTemplateResponse, status_code=201)
async def create_template(
    data: ITPTemplateCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await require_project_access(
        session, user, data.project_id, ITP_MANAGERS,
        "You do not have permission to manage ITP templates",
    )
    template = ITPTemplate(
        project_id=data.project_id,
        name=data.name,
        description=data.description,
        activity_type=data.activity_type,
        checklist_items=_build_items(data.checklist_items),
    )
    session.add(template)
    await session.flush()
    logger.info("ITP template %s created with %d items", template.name, len(data.checklist_items))
    return await load_template(session, template.id)


@router.patch("/itp/templates/{template_id}", response_model=ITPTemplateResponse)
async def update_template(
    template_id: uuid.UUID,
    data: ITPTemplateUpdate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update a template; a supplied item list replaces the existing items.

    Lots already using the template keep their snapshot.
    """
    template = await _template_for_edit(session, user, template_id)
    update_data = data.model_dump(exclude_unset=True, exclude={"checklist_items"})
    for key, value in update_data.items():
        setattr(template, key, value)
    if data.checklist_items is not None:
        template.checklist_items = _build_items(data.checklist_items)
    await session.flush()
    return await load_template(session, template.id)


@router.post(
    "/itp/templates/{template_id}/clone", response_model=ITPTemplateResponse, status_code=201
)
async def clone_template(
    template_id: uuid.UUID,
    data: ITPTemplateClone | None = None,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Copy a template (global or project) into a project."""
    source = await load_template(session, template_id)
    target_project_id = (data and data.project_id) or source.project_id
    if target_project_id is None:
        raise AppError.bad_request("project_id is required to clone a global template")
    if source.project_id is not None:
        await require_project_access(session, user, source.project_id)
    await require_project_access(
        session, user, target_project_id, ITP_MANAGERS,
        "You do not have permission to manage ITP templates",
    )

    clone = ITPTemplate(
        project_id=target_project_id,
        name=(data and data.name) or f"{source.name} (Copy)",
        description=source.description,
        activity_type=source.activity_type,
        checklist_items=[
            ITPChecklistItem(
                sequence_number=item.sequence_number,
                description=item.description,
                acceptance_criteria=item.acceptance_criteria,
                point_type=item.point_type,
                responsible_party=item.responsible_party,
                evidence_required=item.evidence_required,
                test_type=item.test_type,
            )
            for item in source.checklist_items
        ],
    )
    session.add(clone)
    await session.flush()
    return await load_template(session, clone.id)


async def _set_active(
    session: AsyncSession, user: User, template_id: uuid.UUID, active: bool
) -> ITPTemplate:
    template = await _template_for_edit(session, user, template_id)
    template.is_active = active
    await session.flush()
    logger.info("ITP template %s %s", template.name, "restored" if active else "archived")
    return template


@router.post("/itp/templates/{template_id}/archive", response_model=ITPTemplateResponse)
async def archive_template(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await _set_active(session, user, template_id, False)


@router.post("/itp/templates/{template_id}/restore", response_model=ITPTemplateResponse)
async def restore_template(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await _set_active(session, user, template_id, True)


@router.delete("/itp/templates/{template_id}", status_code=204)
async def delete_template(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    template = await _template_for_edit(session, user, template_id)
    in_use = await _instance_in_use(session, template.id)
    if in_use:
        raise AppError.bad_request(
            f"Template is used by {in_use} lot(s); archive it instead",
        )
    await session.delete(template)
    await session.flush()


# ── Instances ─────────────────────────────────────────────────────────────────


def _instance_view(
    instance: ITPInstance,
    completions: dict[str, ITPCompletion],
    subcontractor_view: bool = False,
) -> dict:
    items = snapshot_items(instance)
    if subcontractor_view:
        items = [i for i in items if i.get("responsible_party") == "subcontractor"]

    rendered = []
    for item in items:
        completion = completions.get(item["id"])
        rendered.append(
            {
                **item,
                "completion": (
                    CompletionResponse.model_validate(completion).model_dump(mode="json")
                    if completion is not None
                    else None
                ),
            }
        )
    finished = sum(
        1 for i in items if i["id"] in completions and completions[i["id"]].status in FINISHED_STATUSES
    )
    snapshot = instance.template_snapshot or {}
    return {
        "id": str(instance.id),
        "lot_id": str(instance.lot_id),
        "template_id": str(instance.template_id) if instance.template_id else None,
        "template_name": snapshot.get("name"),
        "status": instance.status,
        "checklist_items": rendered,
        "progress": {"completed": finished, "total": len(items)},
    }


@router.post("/itp/instances", status_code=201)
async def assign_itp(
    data: ITPInstanceCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Assign a template to a lot, freezing a snapshot of its checklist."""
    lot = await get_lot_or_404(session, data.lot_id)
    await require_project_access(
        session, user, lot.project_id, roles.LOT_CREATORS | ITP_MANAGERS,
        "You do not have permission to assign ITPs",
    )
    template = await load_template(session, data.template_id)
    if template.project_id not in (None, lot.project_id):
        raise AppError.bad_request("ITP template belongs to another project")
    instance = await create_instance(session, lot, template)
    return _instance_view(instance, {})


@router.get("/itp/instances/lot/{lot_id}")
async def get_lot_itp(
    lot_id: uuid.UUID,
    subcontractor_view: bool = Query(False),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot = await get_lot_or_404(session, lot_id)
    access = await require_project_access(session, user, lot.project_id)
    await require_lot_visible(session, access, lot)
    instance = await get_instance_for_lot(session, lot.id)
    if instance is None:
        raise AppError.not_found("ITP instance")
    completions = await get_completions(session, instance.id)
    return _instance_view(instance, completions, subcontractor_view or access.is_subcontractor)


# ── Completions ───────────────────────────────────────────────────────────────


async def _subcontractor_assignment(
    session: AsyncSession, access: ProjectAccess, lot_id: uuid.UUID
) -> LotSubcontractorAssignment | None:
    result = await session.execute(
        select(LotSubcontractorAssignment).where(
            LotSubcontractorAssignment.lot_id == lot_id,
            LotSubcontractorAssignment.subcontractor_company_id == access.subcontractor_company_id,
            LotSubcontractorAssignment.status == "active",
        )
    )
    return result.scalar_one_or_none()


@router.post("/itp/completions", response_model=CompletionResponse)
async def upsert_completion(
    data: CompletionUpsert,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Record progress on a checklist item and advance the lot status."""
    result = await session.execute(select(ITPInstance).where(ITPInstance.id == data.itp_instance_id))
    instance = result.scalar_one_or_none()
    if instance is None:
        raise AppError.not_found("ITP instance")
    lot = await get_lot_or_404(session, instance.lot_id)
    access = await require_project_access(session, user, lot.project_id)

    needs_verification = False
    if access.is_subcontractor:
        assignment = await _subcontractor_assignment(session, access, lot.id)
        if assignment is None or not assignment.can_complete_itp:
            raise AppError.forbidden("Your company is not permitted to complete ITP items on this lot")
        needs_verification = assignment.itp_requires_verification
    elif not access.has_any(roles.FIELD_ROLES | roles.QUALITY_ROLES):
        raise AppError.forbidden("You do not have permission to complete ITP items")

    if lot.status in ("conformed", "claimed"):
        raise AppError.bad_request(f"Cannot change the checklist of a {lot.status} lot")

    item = find_item(instance, data.checklist_item_id)
    if item is None:
        raise AppError.not_found("Checklist item")

    if is_hold_point(item) and data.status == "completed":
        hp = await session.execute(
            select(HoldPoint).where(
                HoldPoint.lot_id == lot.id,
                HoldPoint.itp_checklist_item_id == data.checklist_item_id,
            )
        )
        hold_point = hp.scalar_one_or_none()
        if hold_point is None or hold_point.status != "released":
            raise AppError.bad_request("Hold point must be released before it can be completed")

    completions = await get_completions(session, instance.id)
    completion = completions.get(str(data.checklist_item_id))
    if completion is None:
        completion = ITPCompletion(
            itp_instance_id=instance.id, checklist_item_id=data.checklist_item_id
        )
        session.add(completion)

    completion.status = data.status
    completion.notes = data.notes
    if data.status in FINISHED_STATUSES or data.status == "failed":
        completion.completed_by_id = user.id
        completion.completed_at = utcnow()
        completion.verification_status = "pending_verification" if needs_verification else "none"
    else:
        completion.completed_by_id = None
        completion.completed_at = None
        completion.verification_status = "none"
    await session.flush()

    await apply_lot_progression(session, lot, instance)
    await session.refresh(completion)
    return completion


async def _load_completion_for_quality(
    session: AsyncSession, user: User, completion_id: uuid.UUID
) -> ITPCompletion:
    result = await session.execute(select(ITPCompletion).where(ITPCompletion.id == completion_id))
    completion = result.scalar_one_or_none()
    if completion is None:
        raise AppError.not_found("Completion")
    instance = (
        await session.execute(select(ITPInstance).where(ITPInstance.id == completion.itp_instance_id))
    ).scalar_one()
    lot = await get_lot_or_404(session, instance.lot_id)
    await require_project_access(
        session, user, lot.project_id, roles.QUALITY_ROLES,
        "Only quality managers and above can verify ITP items",
    )
    return completion


@router.post("/itp/completions/{completion_id}/verify", response_model=CompletionResponse)
async def verify_completion(
    completion_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    completion = await _load_completion_for_quality(session, user, completion_id)
    if completion.status not in FINISHED_STATUSES:
        raise AppError.bad_request("Only completed items can be verified")
    completion.verification_status = "verified"
    completion.verified_by_id = user.id
    completion.verified_at = utcnow()
    await session.flush()
    await session.refresh(completion)
    return completion


@router.post("/itp/completions/{completion_id}/reject", response_model=CompletionResponse)
async def reject_completion(
    completion_id: uuid.UUID,
    notes: str | None = Query(None, max_length=2000),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Send an item back: it returns to pending and the lot is re-evaluated."""
    completion = await _load_completion_for_quality(session, user, completion_id)
    completion.verification_status = "rejected"
    completion.status = "pending"
    completion.verified_by_id = user.id
    completion.verified_at = utcnow()
    if notes:
        completion.notes = notes
    await session.flush()

    instance = (
        await session.execute(select(ITPInstance).where(ITPInstance.id == completion.itp_instance_id))
    ).scalar_one()
    lot = await get_lot_or_404(session, instance.lot_id)
    await apply_lot_progression(session, lot, instance)
    await session.refresh(completion)
    return completion
