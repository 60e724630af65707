"""Non-conformance reports: raising, response, rectification and closure."""

from __future__ import annotations

import logging
import uuid
from collections import Counter, defaultdict

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof import roles
from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import (
    NCR,
    NCREvidence,
    NCRLot,
    Lot,
    Project,
    SubcontractorCompany,
    User,
    as_utc,
    utcnow,
)
from siteproof.models.schemas import (
    NCR_CATEGORY_PATTERN,
    SEVERITY_PATTERN,
    NCRClose,
    NCRCreate,
    NCREvidenceCreate,
    NCREvidenceResponse,
    NCRQMReview,
    NCRRectify,
    NCRRejectRectification,
    NCRReopen,
    NCRResponse,
    NCRRespond,
    NCRUpdate,
)
from siteproof.pagination import PageParams, page_meta, page_params, sort_column
from siteproof.services.access import (
    ProjectAccess,
    assigned_lot_ids,
    require_project_access,
    resolve_access,
)
from siteproof.services.audit import record_audit
from siteproof.services.conformance import OPEN_NCR_EXCLUDED, open_ncrs_for_lot
from siteproof.services.notifications import notify_users, project_user_ids, subcontractor_user_ids
from siteproof.services.numbering import next_ncr_number

logger = logging.getLogger(__name__)

router = APIRouter()

NCR_RAISERS = roles.FIELD_ROLES | roles.QUALITY_ROLES | roles.SUBCONTRACTOR_ROLES
NCR_MANAGERS = roles.MANAGEMENT_ROLES | roles.QUALITY_ROLES
# QM review and approval: quality manager, project manager, admin, owner
QM_REVIEWERS = roles.QUALITY_ROLES
CLIENT_NOTIFIERS = roles.QUALITY_ROLES
CLOSED_STATUSES = frozenset(OPEN_NCR_EXCLUDED)
NCR_STATUS_PATTERN = "^(open|investigating|rectification|verification|closed|closed_concession)$"


def _link(ncr: NCR) -> str:
    return f"/projects/{ncr.project_id}/ncr?ncr={ncr.id}"


async def _lot_ids_by_ncr(session: AsyncSession, ncr_ids: list[uuid.UUID]) -> dict[uuid.UUID, list[uuid.UUID]]:
    mapping: dict[uuid.UUID, list[uuid.UUID]] = defaultdict(list)
    if ncr_ids:
        result = await session.execute(select(NCRLot).where(NCRLot.ncr_id.in_(ncr_ids)))
        for link in result.scalars().all():
            mapping[link.ncr_id].append(link.lot_id)
    return mapping


async def _out(session: AsyncSession, ncr: NCR) -> NCRResponse:
    lot_ids = (await _lot_ids_by_ncr(session, [ncr.id]))[ncr.id]
    return NCRResponse.model_validate(ncr).model_copy(update={"lot_ids": lot_ids})


def _subcontractor_filter(access: ProjectAccess, user: User, lot_ids: set[uuid.UUID]):
    linked = select(NCRLot.ncr_id).where(NCRLot.lot_id.in_(lot_ids))
    return or_(
        NCR.responsible_user_id == user.id,
        NCR.responsible_subcontractor_id == access.subcontractor_company_id,
        NCR.id.in_(linked),
    )


async def _load(
    session: AsyncSession, user: User, ncr_id: uuid.UUID, allowed=None, message: str | None = None
) -> tuple[NCR, ProjectAccess]:
    result = await session.execute(select(NCR).where(NCR.id == ncr_id))
    ncr = result.scalar_one_or_none()
    if ncr is None:
        raise AppError.not_found("NCR")
    access = await require_project_access(session, user, ncr.project_id, allowed, message)
    if access.is_subcontractor:
        lot_ids = await assigned_lot_ids(session, access.subcontractor_company_id)
        visible = await session.execute(
            select(NCR.id).where(NCR.id == ncr.id, _subcontractor_filter(access, user, lot_ids))
        )
        if visible.first() is None:
            raise AppError.forbidden("You do not have access to this NCR")
    return ncr, access


def _is_responsible(ncr: NCR, user: User, access: ProjectAccess) -> bool:
    if ncr.responsible_user_id == user.id:
        return True
    return (
        access.subcontractor_company_id is not None
        and ncr.responsible_subcontractor_id == access.subcontractor_company_id
    )


async def _responsible_recipients(session: AsyncSession, ncr: NCR) -> list[uuid.UUID]:
    recipients: list[uuid.UUID] = []
    if ncr.responsible_user_id:
        recipients.append(ncr.responsible_user_id)
    if ncr.responsible_subcontractor_id:
        recipients.extend(await subcontractor_user_ids(session, ncr.responsible_subcontractor_id))
    return recipients


async def _linked_lots(session: AsyncSession, ncr: NCR) -> list[Lot]:
    result = await session.execute(
        select(Lot).join(NCRLot, NCRLot.lot_id == Lot.id).where(NCRLot.ncr_id == ncr.id)
    )
    return list(result.scalars().all())


async def _check_responsible(
    session: AsyncSession,
    project: Project,
    user_id: uuid.UUID | None = None,
    subcontractor_id: uuid.UUID | None = None,
) -> None:
    """Responsible parties must belong to the NCR's project."""
    if user_id is not None:
        target = (await session.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
        if target is None or await resolve_access(session, target, project) is None:
            raise AppError.bad_request(
                "Responsible user is not a member of this project", {"field": "responsible_user_id"}
            )
    if subcontractor_id is not None:
        company = await session.execute(
            select(SubcontractorCompany.id).where(
                SubcontractorCompany.id == subcontractor_id,
                SubcontractorCompany.project_id == project.id,
            )
        )
        if company.first() is None:
            raise AppError.bad_request(
                "Responsible subcontractor does not work on this project",
                {"field": "responsible_subcontractor_id"},
            )


def _require_status(ncr: NCR, *allowed: str, action: str) -> None:
    if ncr.status not in allowed:
        raise AppError.bad_request(
            f"Cannot {action} an NCR with status '{ncr.status}'",
            {"allowed_statuses": list(allowed)},
        )


# ── List / analytics ──────────────────────────────────────────────────────────


@router.get("/ncrs")
async def list_ncrs(
    project_id: uuid.UUID,
    status: str | None = Query(None, pattern=NCR_STATUS_PATTERN),
    severity: str | None = Query(None, pattern=SEVERITY_PATTERN),
    category: str | None = Query(None, pattern=NCR_CATEGORY_PATTERN),
    lot_id: uuid.UUID | None = None,
    params: PageParams = Depends(page_params),
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Paginated NCR register; subcontractors see only NCRs that concern them."""
    access = await require_project_access(session, user, project_id)

    conditions = [NCR.project_id == project_id]
    if status:
        conditions.append(NCR.status == status)
    if severity:
        conditions.append(NCR.severity == severity)
    if category:
        conditions.append(NCR.category == category)
    if lot_id:
        conditions.append(NCR.id.in_(select(NCRLot.ncr_id).where(NCRLot.lot_id == lot_id)))
    if access.is_subcontractor:
        lot_ids = await assigned_lot_ids(session, access.subcontractor_company_id)
        conditions.append(_subcontractor_filter(access, user, lot_ids))

    total = (
        await session.execute(select(func.count()).select_from(NCR).where(*conditions))
    ).scalar_one()
    order = sort_column(NCR, params, {"created_at", "ncr_number", "due_date", "severity", "status"}, "created_at")
    result = await session.execute(
        select(NCR).where(*conditions).order_by(order).offset(params.offset).limit(params.limit)
    )
    ncrs = result.scalars().all()
    lots = await _lot_ids_by_ncr(session, [n.id for n in ncrs])
    return {
        "ncrs": [
            NCRResponse.model_validate(n).model_copy(update={"lot_ids": lots[n.id]}) for n in ncrs
        ],
        "pagination": page_meta(params, total),
    }


@router.get("/ncrs/analytics")
async def ncr_analytics(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await require_project_access(session, user, project_id, NCR_MANAGERS)
    result = await session.execute(select(NCR).where(NCR.project_id == project_id))
    ncrs = result.scalars().all()

    closure_days = [
        (as_utc(n.closed_at) - as_utc(n.raised_at)).total_seconds() / 86400
        for n in ncrs
        if n.closed_at and n.raised_at
    ]
    today = utcnow().date()
    return {
        "total": len(ncrs),
        "open": sum(1 for n in ncrs if n.status not in CLOSED_STATUSES),
        "overdue": sum(
            1 for n in ncrs if n.status not in CLOSED_STATUSES and n.due_date and n.due_date < today
        ),
        "by_status": dict(Counter(n.status for n in ncrs)),
        "by_severity": dict(Counter(n.severity for n in ncrs)),
        "by_category": dict(Counter(n.category for n in ncrs)),
        "average_closure_days": round(sum(closure_days) / len(closure_days), 1) if closure_days else None,
    }


# ── Create / read / update ────────────────────────────────────────────────────


@router.post("/ncrs", response_model=NCRResponse, status_code=201)
async def create_ncr(
    data: NCRCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Raise an NCR; linked lots move to ``ncr_raised``."""
    access = await require_project_access(
        session, user, data.project_id, NCR_RAISERS, "You do not have permission to raise NCRs"
    )

    lots: list[Lot] = []
    if data.lot_ids:
        result = await session.execute(
            select(Lot).where(Lot.id.in_(data.lot_ids), Lot.project_id == data.project_id)
        )
        lots = list(result.scalars().all())
        if len(lots) != len(set(data.lot_ids)):
            raise AppError.bad_request("One or more lots do not belong to this project")
        if access.is_subcontractor:
            visible = await assigned_lot_ids(session, access.subcontractor_company_id)
            if any(lot.id not in visible for lot in lots):
                raise AppError.forbidden("You can only raise NCRs on lots assigned to your company")

    await _check_responsible(
        session,
        access.project,
        user_id=data.responsible_user_id,
        subcontractor_id=data.responsible_subcontractor_id,
    )

    major = data.severity == "major"
    ncr = NCR(
        project_id=data.project_id,
        ncr_number=await next_ncr_number(session, data.project_id),
        description=data.description,
        specification_reference=data.specification_reference,
        category=data.category,
        severity=data.severity,
        raised_by_id=user.id,
        raised_at=utcnow(),
        responsible_user_id=data.responsible_user_id,
        responsible_subcontractor_id=data.responsible_subcontractor_id,
        due_date=data.due_date,
        qm_approval_required=major,
        client_notification_required=major,
    )
    session.add(ncr)
    await session.flush()

    for lot in lots:
        session.add(NCRLot(ncr_id=ncr.id, lot_id=lot.id))
        if lot.status != "claimed":
            lot.status = "ncr_raised"
    await session.flush()

    context = dict(
        ncr_number=ncr.ncr_number,
        severity=ncr.severity,
        description=ncr.description,
        raised_by=user.display_name,
    )
    if ncr.responsible_user_id:
        await notify_users(
            session, [ncr.responsible_user_id], "ncr_assigned",
            project_id=ncr.project_id, link_url=_link(ncr), exclude_user_id=user.id, **context,
        )
    if access.is_subcontractor:
        managers = await project_user_ids(session, ncr.project_id, roles.HEAD_CONTRACTOR_ROLES)
        await notify_users(
            session, managers, "ncr_raised",
            project_id=ncr.project_id, link_url=_link(ncr), exclude_user_id=user.id, **context,
        )

    logger.info("%s raised on project %s (%s)", ncr.ncr_number, ncr.project_id, ncr.severity)
    return await _out(session, ncr)


@router.get("/ncrs/{ncr_id}", response_model=NCRResponse)
async def get_ncr(
    ncr_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ncr, _ = await _load(session, user, ncr_id)
    return await _out(session, ncr)


@router.patch("/ncrs/{ncr_id}", response_model=NCRResponse)
async def update_ncr(
    ncr_id: uuid.UUID,
    data: NCRUpdate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Redirect the NCR to another responsible user, move its due date or add QM comments."""
    ncr, access = await _load(
        session, user, ncr_id, NCR_MANAGERS, "You do not have permission to update NCRs"
    )
    update_data = data.model_dump(exclude_unset=True)
    if not update_data:
        raise AppError.bad_request("No valid fields to update")
    if ncr.status in CLOSED_STATUSES:
        raise AppError.bad_request("Closed NCRs cannot be updated")

    redirected_to = None
    if "responsible_user_id" in update_data and update_data["responsible_user_id"] != ncr.responsible_user_id:
        redirected_to = update_data["responsible_user_id"]
        await _check_responsible(session, access.project, user_id=redirected_to)
        ncr.responsible_user_id = redirected_to
    if "due_date" in update_data:
        ncr.due_date = update_data["due_date"]
    if update_data.get("comments"):
        ncr.qm_comments = update_data["comments"]
    await session.flush()

    if redirected_to is not None:
        await notify_users(
            session, [redirected_to], "ncr_redirect",
            project_id=ncr.project_id, link_url=_link(ncr), exclude_user_id=user.id,
            ncr_number=ncr.ncr_number, redirected_by=user.display_name,
        )
    await session.refresh(ncr)
    return await _out(session, ncr)


# ── Workflow ──────────────────────────────────────────────────────────────────


@router.post("/ncrs/{ncr_id}/respond", response_model=NCRResponse)
async def respond(
    ncr_id: uuid.UUID,
    data: NCRRespond,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """The responsible party records root cause and proposed corrective action."""
    ncr, access = await _load(session, user, ncr_id)
    if not (_is_responsible(ncr, user, access) or access.has_any(NCR_MANAGERS)):
        raise AppError.forbidden("Only the responsible party can respond to this NCR")
    _require_status(ncr, "open", action="respond to")

    ncr.root_cause_category = data.root_cause_category
    ncr.root_cause_description = data.root_cause_description
    ncr.proposed_corrective_action = data.proposed_corrective_action
    ncr.response_submitted_at = utcnow()
    ncr.status = "investigating"
    await session.flush()
    await session.refresh(ncr)
    return await _out(session, ncr)


@router.post("/ncrs/{ncr_id}/qm-review", response_model=NCRResponse)
async def qm_review(
    ncr_id: uuid.UUID,
    data: NCRQMReview,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Accept the response (to rectification) or send it back for revision."""
    ncr, _ = await _load(
        session, user, ncr_id, QM_REVIEWERS, "Only quality managers can review NCR responses"
    )
    _require_status(ncr, "investigating", action="review")

    recipients = await _responsible_recipients(session, ncr)
    if data.action == "accept":
        ncr.status = "rectification"
        if data.comments:
            ncr.qm_comments = data.comments
        notification_type = "ncr_response_accepted"
    else:
        ncr.status = "open"
        ncr.root_cause_category = None
        ncr.root_cause_description = None
        ncr.proposed_corrective_action = None
        ncr.response_submitted_at = None
        ncr.revision_requested_at = utcnow()
        ncr.revision_count = (ncr.revision_count or 0) + 1
        ncr.qm_comments = data.comments
        notification_type = "ncr_revision_requested"
    await session.flush()

    await notify_users(
        session, recipients, notification_type,
        project_id=ncr.project_id, link_url=_link(ncr), exclude_user_id=user.id,
        ncr_number=ncr.ncr_number, comments=data.comments, revision_count=ncr.revision_count,
    )
    await session.refresh(ncr)
    return await _out(session, ncr)


@router.post("/ncrs/{ncr_id}/rectify", response_model=NCRResponse)
async def rectify(
    ncr_id: uuid.UUID,
    data: NCRRectify,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ncr, access = await _load(session, user, ncr_id)
    if not (_is_responsible(ncr, user, access) or access.has_any(NCR_MANAGERS)):
        raise AppError.forbidden("Only the responsible party can submit rectification")
    _require_status(ncr, "investigating", "rectification", action="rectify")

    ncr.rectification_notes = data.rectification_notes
    ncr.rectification_submitted_at = utcnow()
    ncr.status = "verification"
    await session.flush()
    await session.refresh(ncr)
    return await _out(session, ncr)


@router.post("/ncrs/{ncr_id}/evidence", response_model=NCREvidenceResponse, status_code=201)
async def add_evidence(
    ncr_id: uuid.UUID,
    data: NCREvidenceCreate,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ncr, access = await _load(session, user, ncr_id)
    if not (_is_responsible(ncr, user, access) or access.has_any(NCR_RAISERS)):
        raise AppError.forbidden("You do not have permission to add evidence")
    if ncr.status in CLOSED_STATUSES:
        raise AppError.bad_request("Cannot add evidence to a closed NCR")
    if not (data.file_url or data.filename or data.description):
        raise AppError.bad_request("Evidence requires a file or a description")

    evidence = NCREvidence(ncr_id=ncr.id, uploaded_by_id=user.id, **data.model_dump())
    session.add(evidence)
    await session.flush()
    await session.refresh(evidence)
    return evidence


@router.get("/ncrs/{ncr_id}/evidence", response_model=list[NCREvidenceResponse])
async def list_evidence(
    ncr_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ncr, _ = await _load(session, user, ncr_id)
    result = await session.execute(
        select(NCREvidence).where(NCREvidence.ncr_id == ncr.id).order_by(NCREvidence.created_at)
    )
    return result.scalars().all()


@router.post("/ncrs/{ncr_id}/submit-for-verification", response_model=NCRResponse)
async def submit_for_verification(
    ncr_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Move a rectified NCR to verification; at least one evidence record is required."""
    ncr, access = await _load(session, user, ncr_id)
    if not (_is_responsible(ncr, user, access) or access.has_any(NCR_MANAGERS)):
        raise AppError.forbidden("Only the responsible party can submit for verification")
    _require_status(ncr, "rectification", action="submit for verification")

    count = (
        await session.execute(
            select(func.count()).select_from(NCREvidence).where(NCREvidence.ncr_id == ncr.id)
        )
    ).scalar_one()
    if count == 0:
        raise AppError.bad_request("Upload at least one piece of evidence before submitting")

    ncr.status = "verification"
    ncr.rectification_submitted_at = utcnow()
    await session.flush()
    await session.refresh(ncr)
    return await _out(session, ncr)


@router.post("/ncrs/{ncr_id}/reject-rectification", response_model=NCRResponse)
async def reject_rectification(
    ncr_id: uuid.UUID,
    data: NCRRejectRectification,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ncr, _ = await _load(
        session, user, ncr_id, QM_REVIEWERS, "Only quality managers can reject rectification"
    )
    _require_status(ncr, "verification", action="reject rectification of")
    feedback = data.feedback.strip()
    if not feedback:
        raise AppError.bad_request("Feedback is required")

    ncr.status = "rectification"
    ncr.verification_notes = feedback
    await session.flush()

    await notify_users(
        session, await _responsible_recipients(session, ncr), "ncr_rectification_rejected",
        project_id=ncr.project_id, link_url=_link(ncr), exclude_user_id=user.id,
        ncr_number=ncr.ncr_number, feedback=feedback,
    )
    await session.refresh(ncr)
    return await _out(session, ncr)


@router.post("/ncrs/{ncr_id}/qm-approve", response_model=NCRResponse)
async def qm_approve(
    ncr_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ncr, _ = await _load(session, user, ncr_id, QM_REVIEWERS, "Only quality managers can approve NCRs")
    if not ncr.qm_approval_required:
        raise AppError.bad_request("QM approval is not required for this NCR")
    if ncr.qm_approved_at is not None:
        raise AppError.bad_request("NCR has already been approved")

    ncr.qm_approved_by_id = user.id
    ncr.qm_approved_at = utcnow()
    await session.flush()
    await session.refresh(ncr)
    return await _out(session, ncr)


@router.post("/ncrs/{ncr_id}/close", response_model=NCRResponse)
async def close_ncr(
    ncr_id: uuid.UUID,
    data: NCRClose,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Close after verification; lots with no other open NCR return to in progress."""
    ncr, _ = await _load(session, user, ncr_id, NCR_MANAGERS, "You do not have permission to close NCRs")
    _require_status(ncr, "verification", "rectification", action="close")
    if ncr.severity == "major" and ncr.qm_approval_required and ncr.qm_approved_at is None:
        raise AppError.forbidden("Major NCRs require QM approval before closure")
    if data.with_concession and not data.concession_justification:
        raise AppError.bad_request("A justification is required to close with concession")

    now = utcnow()
    ncr.status = "closed_concession" if data.with_concession else "closed"
    ncr.verified_by_id = user.id
    ncr.verified_at = now
    ncr.verification_notes = data.verification_notes or ncr.verification_notes
    ncr.closed_by_id = user.id
    ncr.closed_at = now
    if data.lessons_learned:
        ncr.lessons_learned = data.lessons_learned
    if data.with_concession:
        ncr.concession_justification = data.concession_justification
        ncr.concession_risk_assessment = data.concession_risk_assessment
    await session.flush()

    restored = []
    for lot in await _linked_lots(session, ncr):
        if lot.status == "ncr_raised" and not await open_ncrs_for_lot(session, lot.id, exclude_ncr_id=ncr.id):
            lot.status = "in_progress"
            restored.append(lot.lot_number)

    await record_audit(
        session,
        entity_type="NCR",
        entity_id=ncr.id,
        action="ncr_closed",
        user_id=user.id,
        project_id=ncr.project_id,
        changes={"status": ncr.status, "lots_restored": restored},
        request=request,
    )
    await session.refresh(ncr)
    logger.info("%s closed as %s", ncr.ncr_number, ncr.status)
    return await _out(session, ncr)


@router.post("/ncrs/{ncr_id}/notify-client")
async def notify_client(
    ncr_id: uuid.UUID,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Record that the client was told about a major NCR and return the notification package."""
    ncr, access = await _load(
        session, user, ncr_id, CLIENT_NOTIFIERS, "You do not have permission to notify the client"
    )
    if not ncr.client_notification_required:
        raise AppError.bad_request("Client notification is not required for this NCR")
    if ncr.client_notified_at is not None:
        raise AppError.bad_request("Client has already been notified")

    ncr.client_notified_at = utcnow()
    await session.flush()
    await record_audit(
        session,
        entity_type="NCR",
        entity_id=ncr.id,
        action="NCR_CLIENT_NOTIFIED",
        user_id=user.id,
        project_id=ncr.project_id,
        changes={"ncr_number": ncr.ncr_number, "client": access.project.client_name},
        request=request,
    )

    evidence = await session.execute(select(NCREvidence).where(NCREvidence.ncr_id == ncr.id))
    lots = await _linked_lots(session, ncr)
    await session.refresh(ncr)
    return {
        "ncr": (await _out(session, ncr)).model_dump(mode="json"),
        "project": {
            "id": str(access.project.id),
            "name": access.project.name,
            "client_name": access.project.client_name,
        },
        "lots": [{"id": str(lot.id), "lot_number": lot.lot_number} for lot in lots],
        "evidence": [
            NCREvidenceResponse.model_validate(e).model_dump(mode="json")
            for e in evidence.scalars().all()
        ],
        "notified_at": ncr.client_notified_at.isoformat(),
        "notified_by": user.display_name,
    }


@router.post("/ncrs/{ncr_id}/reopen", response_model=NCRResponse)
async def reopen(
    ncr_id: uuid.UUID,
    data: NCRReopen,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Reopen a closed NCR back into rectification."""
    ncr, _ = await _load(session, user, ncr_id, QM_REVIEWERS, "Only quality managers can reopen NCRs")
    _require_status(ncr, "closed", "closed_concession", action="reopen")
    reason = data.reason.strip()
    if not reason:
        raise AppError.bad_request("A reason is required to reopen an NCR", {"field": "reason"})

    previous = ncr.status
    ncr.status = "rectification"
    ncr.verified_by_id = None
    ncr.verified_at = None
    ncr.verification_notes = None
    ncr.closed_by_id = None
    ncr.closed_at = None
    ncr.qm_approved_by_id = None
    ncr.qm_approved_at = None
    note = f"[Reopened {utcnow():%Y-%m-%d}: {reason}]"
    ncr.lessons_learned = f"{note}\n{ncr.lessons_learned}" if ncr.lessons_learned else note

    for lot in await _linked_lots(session, ncr):
        if lot.status != "claimed":
            lot.status = "ncr_raised"

    await record_audit(
        session,
        entity_type="NCR",
        entity_id=ncr.id,
        action="ncr_reopened",
        user_id=user.id,
        project_id=ncr.project_id,
        changes={"status": {"from": previous, "to": "rectification"}, "reason": reason},
        request=request,
    )
    await session.refresh(ncr)
    return await _out(session, ncr)
