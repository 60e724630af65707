"""Hold point register, release workflow and working-hours scheduling."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import (
    HoldPoint,
    ITPCompletion,
    ITPInstance,
    Lot,
    Project,
    TestResult,
    User,
    utcnow,
)
from siteproof.models.schemas import (
    HoldPointRelease,
    HoldPointResponse,
    NotificationTimeRequest,
    ReleaseRequest,
    TestResultResponse,
)
from siteproof.services.access import (
    assigned_lot_ids,
    get_lot_or_404,
    require_lot_visible,
    require_project_access,
)
from siteproof.services.itp import (
    FINISHED_STATUSES,
    find_item,
    get_completions,
    get_instance_for_lot,
    is_hold_point,
    preceding_items,
    snapshot_items,
)
from siteproof.services.lot_progression import apply_lot_progression
from siteproof.services.notifications import notify_users, project_user_ids
from siteproof.services.working_hours import calculate_notification_time

logger = logging.getLogger(__name__)

router = APIRouter()

REQUESTERS = roles.FIELD_ROLES | roles.QUALITY_ROLES


def _hold_point_link(lot: Lot) -> str:
    return f"/projects/{lot.project_id}/lots/{lot.id}?tab=holdpoints"


def _hp_dict(hp: HoldPoint | None, lot: Lot, item: dict) -> dict:
    """Register row: a stored record, or a virtual pending row when none exists yet."""
    base = {
        "lot_id": str(lot.id),
        "lot_number": lot.lot_number,
        "itp_checklist_item_id": item["id"],
        "sequence_number": item.get("sequence_number"),
        "description": item.get("description"),
    }
    if hp is None:
        return {**base, "id": None, "status": "pending", "is_virtual": True}
    return {
        **base,
        **HoldPointResponse.model_validate(hp).model_dump(mode="json"),
        "is_virtual": False,
    }


def _prerequisites(instance: ITPInstance, item: dict, completions: dict[str, ITPCompletion]) -> list[dict]:
    rows = []
    for prior in preceding_items(instance, item):
        completion = completions.get(prior["id"])
        rows.append(
            {
                "id": prior["id"],
                "sequence_number": prior.get("sequence_number"),
                "description": prior.get("description"),
                "point_type": prior.get("point_type"),
                "is_completed": completion is not None and completion.status in FINISHED_STATUSES,
                "is_verified": completion is not None and completion.verification_status == "verified",
            }
        )
    return rows


async def _lot_item(
    session: AsyncSession, lot: Lot, item_id: uuid.UUID
) -> tuple[ITPInstance, dict]:
    instance = await get_instance_for_lot(session, lot.id)
    if instance is None:
        raise AppError.not_found("ITP instance")
    item = find_item(instance, item_id)
    if item is None or not is_hold_point(item):
        raise AppError.not_found("Hold point item")
    return instance, item


async def _get_record(
    session: AsyncSession, lot_id: uuid.UUID, item_id: uuid.UUID | str
) -> HoldPoint | None:
    result = await session.execute(
        select(HoldPoint).where(
            HoldPoint.lot_id == lot_id,
            HoldPoint.itp_checklist_item_id == uuid.UUID(str(item_id)),
        )
    )
    return result.scalar_one_or_none()


async def _hold_point_or_404(session: AsyncSession, hp_id: uuid.UUID) -> tuple[HoldPoint, Lot]:
    result = await session.execute(select(HoldPoint).where(HoldPoint.id == hp_id))
    hp = result.scalar_one_or_none()
    if hp is None:
        raise AppError.not_found("Hold point")
    return hp, await get_lot_or_404(session, hp.lot_id)


# ── Register ──────────────────────────────────────────────────────────────────


@router.get("/holdpoints/project/{project_id}")
async def list_project_hold_points(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Every hold-point item on every lot of the project, with its release state."""
    access = await require_project_access(session, user, project_id)

    query = (
        select(Lot, ITPInstance)
        .join(ITPInstance, ITPInstance.lot_id == Lot.id)
        .where(Lot.project_id == project_id)
        .order_by(Lot.lot_number)
    )
    if access.is_subcontractor:
        query = query.where(Lot.id.in_(await assigned_lot_ids(session, access.subcontractor_company_id)))
    rows = (await session.execute(query)).all()

    records = await session.execute(
        select(HoldPoint).where(HoldPoint.lot_id.in_([lot.id for lot, _ in rows]))
    )
    by_key = {(hp.lot_id, str(hp.itp_checklist_item_id)): hp for hp in records.scalars().all()}

    hold_points = []
    for lot, instance in rows:
        for item in snapshot_items(instance):
            if is_hold_point(item):
                hold_points.append(_hp_dict(by_key.get((lot.id, item["id"])), lot, item))
    return {"hold_points": hold_points, "total": len(hold_points)}


@router.get("/holdpoints/lot/{lot_id}/item/{item_id}")
async def get_hold_point_detail(
    lot_id: uuid.UUID,
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lot = await get_lot_or_404(session, lot_id)
    access = await require_project_access(session, user, lot.project_id)
    await require_lot_visible(session, access, lot)
    instance, item = await _lot_item(session, lot, item_id)
    completions = await get_completions(session, instance.id)
    prerequisites = _prerequisites(instance, item, completions)
    incomplete = [p for p in prerequisites if not p["is_completed"]]
    project = access.project
    return {
        "hold_point": _hp_dict(await _get_record(session, lot.id, item_id), lot, item),
        "prerequisites": prerequisites,
        "incomplete_prerequisites": incomplete,
        "can_request_release": not incomplete,
        "working_hours": {
            "start": project.working_hours_start,
            "end": project.working_hours_end,
            "days": project.working_days,
        },
    }


# ── Release workflow ──────────────────────────────────────────────────────────


@router.post("/holdpoints/lot/{lot_id}/item/{item_id}/request-release")
async def request_release(
    lot_id: uuid.UUID,
    item_id: uuid.UUID,
    data: ReleaseRequest | None = None,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Ask approvers to release a hold point once all preceding items are finished."""
    data = data or ReleaseRequest()
    lot = await get_lot_or_404(session, lot_id)
    await require_project_access(
        session, user, lot.project_id, REQUESTERS,
        "You do not have permission to request hold point releases",
    )
    instance, item = await _lot_item(session, lot, item_id)

    completions = await get_completions(session, instance.id)
    incomplete = [p for p in _prerequisites(instance, item, completions) if not p["is_completed"]]
    if incomplete:
        raise AppError(
            400,
            "All preceding checklist items must be completed before requesting release",
            "PREREQUISITES_INCOMPLETE",
            {"incomplete_items": incomplete},
        )

    hp = await _get_record(session, lot.id, item_id)
    if hp is not None and hp.status == "released":
        raise AppError.bad_request("Hold point has already been released")
    if hp is None:
        hp = HoldPoint(
            lot_id=lot.id,
            itp_checklist_item_id=item_id,
            description=item.get("description"),
        )
        session.add(hp)

    now = utcnow()
    hp.status = "notified"
    hp.requested_by_id = user.id
    hp.notification_sent_at = now
    hp.notification_sent_to = data.notification_sent_to
    hp.scheduled_date = data.scheduled_date
    if lot.status not in ("ncr_raised", "conformed", "claimed"):
        lot.status = "hold_point"
    await session.flush()

    approvers = await project_user_ids(session, lot.project_id, roles.HOLD_POINT_APPROVERS)
    await notify_users(
        session,
        approvers,
        "hold_point_request",
        project_id=lot.project_id,
        link_url=_hold_point_link(lot),
        exclude_user_id=user.id,
        requested_by=user.display_name,
        item_description=item.get("description"),
        lot_number=lot.lot_number,
        scheduled_date=data.scheduled_date.strftime("%d %b %Y %H:%M") if data.scheduled_date else None,
    )
    await session.refresh(hp)
    logger.info("Hold point release requested on lot %s by %s", lot.lot_number, user.email)
    return _hp_dict(hp, lot, item)


@router.post("/holdpoints/{hold_point_id}/release")
async def release_hold_point(
    hold_point_id: uuid.UUID,
    data: HoldPointRelease,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Record the release, complete the hold-point item and let work continue."""
    hp, lot = await _hold_point_or_404(session, hold_point_id)
    await require_project_access(
        session, user, lot.project_id, roles.HOLD_POINT_APPROVERS,
        "Only quality managers and above can release hold points",
    )
    if hp.status != "notified":
        raise AppError.bad_request(
            "Hold point must have a pending release request before it can be released"
        )
    instance, item = await _lot_item(session, lot, hp.itp_checklist_item_id)

    now = utcnow()
    hp.status = "released"
    hp.released_at = now
    hp.released_by_id = user.id
    hp.released_by_name = data.released_by_name
    hp.released_by_org = data.released_by_org
    hp.release_method = data.release_method
    hp.release_notes = data.release_notes

    completions = await get_completions(session, instance.id)
    completion = completions.get(item["id"])
    if completion is None:
        completion = ITPCompletion(
            itp_instance_id=instance.id, checklist_item_id=hp.itp_checklist_item_id
        )
        session.add(completion)
    completion.status = "completed"
    completion.completed_by_id = user.id
    completion.completed_at = now
    completion.verification_status = "verified"
    completion.verified_by_id = user.id
    completion.verified_at = now
    completion.notes = data.release_notes or completion.notes

    if lot.status == "hold_point":
        lot.status = "in_progress"
    await session.flush()
    await apply_lot_progression(session, lot, instance)

    members = await project_user_ids(session, lot.project_id)
    await notify_users(
        session,
        members,
        "hold_point_release",
        project_id=lot.project_id,
        link_url=_hold_point_link(lot),
        item_description=item.get("description"),
        lot_number=lot.lot_number,
        released_by_name=data.released_by_name,
        released_by_org=data.released_by_org,
    )
    await session.refresh(hp)
    logger.info("Hold point on lot %s released by %s", lot.lot_number, data.released_by_name)
    return _hp_dict(hp, lot, item)


@router.post("/holdpoints/{hold_point_id}/chase")
async def chase_hold_point(
    hold_point_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Remind approvers about an outstanding release request."""
    hp, lot = await _hold_point_or_404(session, hold_point_id)
    await require_project_access(
        session, user, lot.project_id, REQUESTERS,
        "You do not have permission to chase hold point releases",
    )
    if hp.status != "notified":
        raise AppError.bad_request("Only hold points awaiting release can be chased")

    hp.chase_count = (hp.chase_count or 0) + 1
    hp.last_chased_at = utcnow()
    await session.flush()

    approvers = await project_user_ids(session, lot.project_id, roles.HOLD_POINT_APPROVERS)
    await notify_users(
        session,
        approvers,
        "hold_point_chase",
        project_id=lot.project_id,
        link_url=_hold_point_link(lot),
        exclude_user_id=user.id,
        chase_count=hp.chase_count,
        item_description=hp.description,
        lot_number=lot.lot_number,
    )
    await session.refresh(hp)
    return HoldPointResponse.model_validate(hp)


@router.get("/holdpoints/{hold_point_id}/evidence-package")
async def evidence_package(
    hold_point_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Everything an inspector needs to release the hold point."""
    hp, lot = await _hold_point_or_404(session, hold_point_id)
    access = await require_project_access(session, user, lot.project_id)
    await require_lot_visible(session, access, lot)
    instance, item = await _lot_item(session, lot, hp.itp_checklist_item_id)
    completions = await get_completions(session, instance.id)

    checklist = []
    for entry in preceding_items(instance, item) + [item]:
        completion = completions.get(entry["id"])
        checklist.append(
            {
                **entry,
                "status": completion.status if completion else "pending",
                "verification_status": completion.verification_status if completion else "none",
                "completed_at": completion.completed_at.isoformat() if completion and completion.completed_at else None,
                "notes": completion.notes if completion else None,
            }
        )

    tests = await session.execute(
        select(TestResult).where(TestResult.lot_id == lot.id).order_by(TestResult.created_at)
    )
    test_results = [
        TestResultResponse.model_validate(t).model_dump(mode="json") for t in tests.scalars().all()
    ]
    project: Project = access.project
    return {
        "project": {"id": str(project.id), "name": project.name, "project_number": project.project_number},
        "lot": {
            "id": str(lot.id),
            "lot_number": lot.lot_number,
            "description": lot.description,
            "activity_type": lot.activity_type,
            "chainage_start": lot.chainage_start,
            "chainage_end": lot.chainage_end,
        },
        "hold_point": _hp_dict(hp, lot, item),
        "checklist": checklist,
        "test_results": test_results,
        "summary": {
            "total_items": len(checklist),
            "completed_items": sum(1 for c in checklist if c["status"] in FINISHED_STATUSES),
            "verified_items": sum(1 for c in checklist if c["verification_status"] == "verified"),
            "total_tests": len(test_results),
            "passing_tests": sum(1 for t in test_results if t["pass_fail"] == "pass"),
        },
        "generated_at": utcnow().isoformat(),
    }


# ── Working hours ─────────────────────────────────────────────────────────────


@router.post("/holdpoints/calculate-notification-time")
async def calculate_time(
    data: NotificationTimeRequest,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Adjust a requested inspection time into the working window.

    Explicit hours in the request win over the project's configured hours.
    """
    start, end, days = "07:00", "17:00", "1,2,3,4,5"
    if data.project_id is not None:
        project = (await require_project_access(session, user, data.project_id)).project
        start, end, days = project.working_hours_start, project.working_hours_end, project.working_days

    result = calculate_notification_time(
        data.requested_date,
        data.working_hours_start or start,
        data.working_hours_end or end,
        data.working_days or days,
    )
    return result.to_dict()


@router.get("/holdpoints/project/{project_id}/working-hours")
async def working_hours(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = (await require_project_access(session, user, project_id)).project
    return {
        "working_hours_start": project.working_hours_start,
        "working_hours_end": project.working_hours_end,
        "working_days": project.working_days,
    }
