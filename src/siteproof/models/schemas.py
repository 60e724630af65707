"""Pydantic schemas for API request/response validation."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field

# ── Enumerated string values ─────────────────────────────────────────────────

OVERRIDE_STATUS_PATTERN = "^(not_started|in_progress|awaiting_test|hold_point|ncr_raised|completed)$"
LOT_STATUS_PATTERN = (
    "^(not_started|in_progress|awaiting_test|hold_point|ncr_raised|completed|conformed|claimed)$"
)
LOT_TYPE_PATTERN = "^(chainage|area|structure)$"
POINT_TYPE_PATTERN = "^(standard|witness_point|hold_point)$"
RESPONSIBLE_PARTY_PATTERN = "^(contractor|subcontractor|superintendent|general)$"
EVIDENCE_PATTERN = "^(none|photo|test|document)$"
COMPLETION_STATUS_PATTERN = "^(pending|completed|not_applicable|failed)$"
SEVERITY_PATTERN = "^(minor|major)$"
NCR_CATEGORY_PATTERN = "^(materials|workmanship|design|documentation|process|safety|other)$"
CLAIM_STATUS_PATTERN = "^(draft|submitted|certified|disputed|paid)$"
PASS_FAIL_PATTERN = "^(pass|fail|pending)$"
DOCKET_STATUS_PATTERN = "^(draft|pending_approval|queried|approved|rejected)$"
WET_OR_DRY_PATTERN = "^(wet|dry)$"
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
WORKING_DAYS_PATTERN = r"^[0-6](,[0-6])*$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ── Auth ──────────────────────────────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str | None = Field(None, max_length=255)
    company_name: str | None = Field(None, max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str | None
    phone: str | None = None
    role: str = Field(validation_alias="role_in_company")
    company_id: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class AuthResponse(BaseModel):
    user: UserResponse
    token: str


# ── Projects ──────────────────────────────────────────────────────────────────


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    project_number: str | None = Field(None, max_length=100)
    description: str = ""
    client_name: str | None = None
    state: str | None = Field(None, max_length=20)
    start_date: date | None = None
    target_completion: date | None = None
    contract_value: float | None = Field(None, ge=0)
    lot_prefix: str = Field("LOT-", max_length=20)
    lot_starting_number: int = Field(1, ge=0)


class ProjectUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    project_number: str | None = None
    description: str | None = None
    client_name: str | None = None
    state: str | None = None
    status: str | None = Field(None, pattern="^(active|on_hold|completed|archived)$")
    start_date: date | None = None
    target_completion: date | None = None
    contract_value: float | None = Field(None, ge=0)
    lot_prefix: str | None = Field(None, max_length=20)
    lot_starting_number: int | None = Field(None, ge=0)
    working_hours_start: str | None = Field(None, pattern=TIME_PATTERN)
    working_hours_end: str | None = Field(None, pattern=TIME_PATTERN)
    working_days: str | None = Field(None, pattern=WORKING_DAYS_PATTERN)


class ProjectResponse(BaseModel):
    id: uuid.UUID
    company_id: uuid.UUID | None
    name: str
    project_number: str | None
    description: str | None
    client_name: str | None
    state: str | None
    status: str
    start_date: date | None
    target_completion: date | None
    contract_value: float | None
    lot_prefix: str
    lot_starting_number: int
    working_hours_start: str
    working_hours_end: str
    working_days: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProjectListResponse(BaseModel):
    projects: list[ProjectResponse]
    total: int


class ProjectDelete(BaseModel):
    password: str | None = None


class MemberUpsert(BaseModel):
    user_id: uuid.UUID | None = None
    email: str | None = Field(None, pattern=EMAIL_PATTERN)
    role: str = Field(..., min_length=1, max_length=50)


class MemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    email: str
    full_name: str | None
    role: str
    status: str


# ── Lots ──────────────────────────────────────────────────────────────────────


class LotCreate(BaseModel):
    project_id: uuid.UUID
    lot_number: str = Field(..., min_length=1, max_length=50)
    description: str | None = None
    activity_type: str | None = None
    lot_type: str = Field("chainage", pattern=LOT_TYPE_PATTERN)
    chainage_start: float | None = None
    chainage_end: float | None = None
    offset: str | None = None
    layer: str | None = None
    area_zone: str | None = None
    structure_id: str | None = None
    structure_element: str | None = None
    budget_amount: float | None = Field(None, ge=0)
    itp_template_id: uuid.UUID | None = None
    assigned_subcontractor_id: uuid.UUID | None = None
    can_complete_itp: bool = False


class LotBulkItem(BaseModel):
    lot_number: str = Field(..., min_length=1, max_length=50)
    description: str | None = None
    activity_type: str | None = None
    lot_type: str = Field("chainage", pattern=LOT_TYPE_PATTERN)
    chainage_start: float | None = None
    chainage_end: float | None = None
    area_zone: str | None = None
    structure_id: str | None = None


class LotBulkCreate(BaseModel):
    project_id: uuid.UUID
    lots: list[LotBulkItem] = Field(..., min_length=1, max_length=100)


class LotUpdate(BaseModel):
    lot_number: str | None = Field(None, min_length=1, max_length=50)
    description: str | None = None
    activity_type: str | None = None
    chainage_start: float | None = None
    chainage_end: float | None = None
    offset: str | None = None
    layer: str | None = None
    area_zone: str | None = None
    structure_id: str | None = None
    structure_element: str | None = None
    budget_amount: float | None = Field(None, ge=0)
    assigned_subcontractor_id: uuid.UUID | None = None
    expected_updated_at: datetime | None = None


class LotResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    lot_number: str
    description: str | None
    status: str
    activity_type: str | None
    lot_type: str
    chainage_start: float | None
    chainage_end: float | None
    offset: str | None
    layer: str | None
    area_zone: str | None
    structure_id: str | None
    structure_element: str | None
    budget_amount: float | None
    assigned_subcontractor_id: uuid.UUID | None
    conformed_at: datetime | None
    claimed_in_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class LotListResponse(BaseModel):
    lots: list[LotResponse]
    total: int


class ConformRequest(BaseModel):
    force: bool = False


class StatusOverride(BaseModel):
    status: str = Field(..., pattern=OVERRIDE_STATUS_PATTERN)
    reason: str = Field(..., min_length=5)


class BulkStatusUpdate(BaseModel):
    lot_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=200)
    status: str = Field(..., pattern=OVERRIDE_STATUS_PATTERN)


class LotAssignmentCreate(BaseModel):
    subcontractor_company_id: uuid.UUID
    can_complete_itp: bool = False
    itp_requires_verification: bool = True


class LotAssignmentResponse(BaseModel):
    id: uuid.UUID
    lot_id: uuid.UUID
    subcontractor_company_id: uuid.UUID
    status: str
    can_complete_itp: bool
    itp_requires_verification: bool
    assigned_at: datetime

    model_config = {"from_attributes": True}


# ── ITP ───────────────────────────────────────────────────────────────────────


class ChecklistItemIn(BaseModel):
    description: str = Field(..., min_length=1)
    acceptance_criteria: str | None = None
    point_type: str = Field("standard", pattern=POINT_TYPE_PATTERN)
    responsible_party: str = Field("contractor", pattern=RESPONSIBLE_PARTY_PATTERN)
    evidence_required: str = Field("none", pattern=EVIDENCE_PATTERN)
    test_type: str | None = None


class ChecklistItemResponse(ChecklistItemIn):
    id: uuid.UUID
    sequence_number: int

    model_config = {"from_attributes": True}


class ITPTemplateCreate(BaseModel):
    project_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    activity_type: str | None = None
    checklist_items: list[ChecklistItemIn] = Field(default_factory=list)


class ITPTemplateUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    activity_type: str | None = None
    checklist_items: list[ChecklistItemIn] | None = None


class ITPTemplateClone(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    project_id: uuid.UUID | None = None


class ITPTemplateResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID | None
    name: str
    description: str | None
    activity_type: str | None
    is_active: bool
    checklist_items: list[ChecklistItemResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class ITPInstanceCreate(BaseModel):
    lot_id: uuid.UUID
    template_id: uuid.UUID


class CompletionUpsert(BaseModel):
    itp_instance_id: uuid.UUID
    checklist_item_id: uuid.UUID
    status: str = Field("completed", pattern=COMPLETION_STATUS_PATTERN)
    notes: str | None = None


class CompletionResponse(BaseModel):
    id: uuid.UUID
    itp_instance_id: uuid.UUID
    checklist_item_id: uuid.UUID
    status: str
    notes: str | None
    completed_by_id: uuid.UUID | None
    completed_at: datetime | None
    verification_status: str
    verified_by_id: uuid.UUID | None
    verified_at: datetime | None

    model_config = {"from_attributes": True}


# ── Test results ──────────────────────────────────────────────────────────────


class TestResultCreate(BaseModel):
    __test__ = False

    project_id: uuid.UUID
    lot_id: uuid.UUID | None = None
    test_type: str = Field(..., min_length=1, max_length=100)
    test_request_number: str | None = None
    laboratory_name: str | None = None
    sample_date: date | None = None
    result_value: float | None = None
    result_unit: str | None = None
    specification_min: float | None = None
    specification_max: float | None = None
    pass_fail: str = Field("pending", pattern=PASS_FAIL_PATTERN)


class TestResultResponse(BaseModel):
    __test__ = False

    id: uuid.UUID
    project_id: uuid.UUID
    lot_id: uuid.UUID | None
    test_type: str
    test_request_number: str | None
    laboratory_name: str | None
    result_value: float | None
    result_unit: str | None
    pass_fail: str
    status: str
    verified_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Hold points ───────────────────────────────────────────────────────────────


class ReleaseRequest(BaseModel):
    scheduled_date: datetime | None = None
    notification_sent_to: str | None = Field(None, max_length=255)


class HoldPointRelease(BaseModel):
    released_by_name: str = Field(..., min_length=1, max_length=255)
    released_by_org: str | None = Field(None, max_length=255)
    release_method: str = Field("digital", pattern="^(digital|email|paper|verbal)$")
    release_notes: str | None = None


class NotificationTimeRequest(BaseModel):
    requested_date: datetime
    project_id: uuid.UUID | None = None
    working_hours_start: str | None = Field(None, pattern=TIME_PATTERN)
    working_hours_end: str | None = Field(None, pattern=TIME_PATTERN)
    working_days: str | None = Field(None, pattern=WORKING_DAYS_PATTERN)


class HoldPointResponse(BaseModel):
    id: uuid.UUID
    lot_id: uuid.UUID
    itp_checklist_item_id: uuid.UUID
    description: str | None
    status: str
    notification_sent_at: datetime | None
    scheduled_date: datetime | None
    released_at: datetime | None
    released_by_name: str | None
    released_by_org: str | None
    release_method: str | None
    release_notes: str | None
    chase_count: int
    last_chased_at: datetime | None

    model_config = {"from_attributes": True}


# ── NCRs ──────────────────────────────────────────────────────────────────────


class NCRCreate(BaseModel):
    project_id: uuid.UUID
    description: str = Field(..., min_length=1)
    specification_reference: str | None = None
    category: str = Field("workmanship", pattern=NCR_CATEGORY_PATTERN)
    severity: str = Field("minor", pattern=SEVERITY_PATTERN)
    responsible_user_id: uuid.UUID | None = None
    responsible_subcontractor_id: uuid.UUID | None = None
    due_date: date | None = None
    lot_ids: list[uuid.UUID] = Field(default_factory=list)


class NCRUpdate(BaseModel):
    responsible_user_id: uuid.UUID | None = None
    due_date: date | None = None
    comments: str | None = None


class NCRRespond(BaseModel):
    root_cause_category: str = Field(..., min_length=1, max_length=50)
    root_cause_description: str = Field(..., min_length=1)
    proposed_corrective_action: str = Field(..., min_length=1)


class NCRQMReview(BaseModel):
    action: str = Field(..., pattern="^(accept|request_revision)$")
    comments: str | None = None


class NCRRectify(BaseModel):
    rectification_notes: str = Field(..., min_length=1)


class NCRRejectRectification(BaseModel):
    feedback: str = Field(..., min_length=1)


class NCRClose(BaseModel):
    verification_notes: str | None = None
    lessons_learned: str | None = None
    with_concession: bool = False
    concession_justification: str | None = None
    concession_risk_assessment: str | None = None


class NCRReopen(BaseModel):
    reason: str = Field(..., min_length=1)


class NCREvidenceCreate(BaseModel):
    evidence_type: str = Field("photo", pattern="^(photo|document|test_result|other)$")
    filename: str | None = None
    file_url: str | None = None
    description: str | None = None


class NCREvidenceResponse(BaseModel):
    id: uuid.UUID
    ncr_id: uuid.UUID
    evidence_type: str
    filename: str | None
    file_url: str | None
    description: str | None
    uploaded_by_id: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class NCRResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    ncr_number: str
    description: str
    specification_reference: str | None
    category: str
    severity: str
    status: str
    raised_by_id: uuid.UUID | None
    raised_at: datetime | None
    responsible_user_id: uuid.UUID | None
    responsible_subcontractor_id: uuid.UUID | None
    due_date: date | None
    root_cause_category: str | None
    root_cause_description: str | None
    proposed_corrective_action: str | None
    response_submitted_at: datetime | None
    revision_count: int
    rectification_notes: str | None
    verified_at: datetime | None
    verification_notes: str | None
    qm_approval_required: bool
    qm_approved_by_id: uuid.UUID | None
    qm_approved_at: datetime | None
    qm_comments: str | None
    client_notification_required: bool
    client_notified_at: datetime | None
    closed_at: datetime | None
    lessons_learned: str | None
    lot_ids: list[uuid.UUID] = Field(default_factory=list)

    model_config = {"from_attributes": True}


# ── Claims ────────────────────────────────────────────────────────────────────


class ClaimCreate(BaseModel):
    claim_period_start: date
    claim_period_end: date
    lot_ids: list[uuid.UUID] = Field(..., min_length=1)


class ClaimStatusUpdate(BaseModel):
    status: str = Field(..., pattern=CLAIM_STATUS_PATTERN)
    certified_amount: float | None = Field(None, ge=0)
    paid_amount: float | None = Field(None, ge=0)
    payment_reference: str | None = None
    dispute_notes: str | None = None


class ClaimedLotResponse(BaseModel):
    lot_id: uuid.UUID
    lot_number: str
    activity_type: str | None
    amount_claimed: float
    percentage_complete: float


class ClaimResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    claim_number: int
    claim_period_start: date
    claim_period_end: date
    status: str
    total_claimed_amount: float
    certified_amount: float | None
    paid_amount: float | None
    submitted_at: datetime | None
    certified_at: datetime | None
    paid_at: datetime | None
    payment_reference: str | None
    disputed_at: datetime | None
    dispute_notes: str | None
    prepared_by_id: uuid.UUID | None
    prepared_at: datetime | None
    lot_count: int = 0

    model_config = {"from_attributes": True}


class ClaimDetailResponse(ClaimResponse):
    lots: list[ClaimedLotResponse] = Field(default_factory=list)


# ── Subcontractors ────────────────────────────────────────────────────────────


class ABNValidateRequest(BaseModel):
    abn: str | None = None


class SubcontractorCreate(BaseModel):
    project_id: uuid.UUID
    company_name: str = Field(..., min_length=1, max_length=255)
    abn: str | None = None
    primary_contact_name: str | None = None
    primary_contact_email: str | None = Field(None, pattern=EMAIL_PATTERN)
    primary_contact_phone: str | None = None


class SubcontractorStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(pending_approval|approved|suspended|removed)$")


class SubcontractorUserLink(BaseModel):
    user_id: uuid.UUID
    role: str = Field("user", pattern="^(admin|user)$")


class EmployeeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str | None = None
    role: str | None = None
    hourly_rate: float | None = Field(None, ge=0)


class EmployeeResponse(BaseModel):
    id: uuid.UUID
    name: str
    phone: str | None
    role: str | None
    hourly_rate: float | None
    status: str
    approved_at: datetime | None

    model_config = {"from_attributes": True}


class PlantCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    id_rego: str | None = None
    dry_rate: float | None = Field(None, ge=0)
    wet_rate: float | None = Field(None, ge=0)


class PlantResponse(BaseModel):
    id: uuid.UUID
    type: str
    description: str | None
    id_rego: str | None
    dry_rate: float | None
    wet_rate: float | None
    status: str

    model_config = {"from_attributes": True}


class SubcontractorResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    company_name: str
    abn: str | None
    primary_contact_name: str | None
    primary_contact_email: str | None
    primary_contact_phone: str | None
    status: str
    approved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class SubcontractorDetailResponse(SubcontractorResponse):
    employees: list[EmployeeResponse] = Field(default_factory=list)
    plant: list[PlantResponse] = Field(default_factory=list)


# ── Dockets ───────────────────────────────────────────────────────────────────


class DocketCreate(BaseModel):
    project_id: uuid.UUID
    date: dt.date | None = None
    notes: str | None = None


class LotAllocation(BaseModel):
    lot_id: uuid.UUID
    hours: float = Field(..., ge=0, le=24)


class DocketLabourCreate(BaseModel):
    employee_id: uuid.UUID
    start_time: str | None = Field(None, pattern=TIME_PATTERN)
    finish_time: str | None = Field(None, pattern=TIME_PATTERN)
    lot_allocations: list[LotAllocation] = Field(default_factory=list)


class DocketPlantCreate(BaseModel):
    plant_id: uuid.UUID
    hours_operated: float = Field(..., ge=0, le=24)
    wet_or_dry: str = Field("dry", pattern=WET_OR_DRY_PATTERN)


class DocketApprove(BaseModel):
    foreman_notes: str | None = None
    adjustment_reason: str | None = None
    adjusted_labour_total: float | None = Field(None, ge=0)
    adjusted_plant_total: float | None = Field(None, ge=0)


class DocketReject(BaseModel):
    reason: str | None = None


class DocketQuery(BaseModel):
    questions: str = Field(..., min_length=1)


class DocketQueryResponse(BaseModel):
    response: str = Field(..., min_length=1)


class DocketLabourLotResponse(BaseModel):
    lot_id: uuid.UUID
    lot_number: str
    hours: float


class DocketLabourResponse(BaseModel):
    id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str | None = None
    start_time: str | None
    finish_time: str | None
    submitted_hours: float
    approved_hours: float | None
    hourly_rate: float
    submitted_cost: float
    approved_cost: float | None
    lots: list[DocketLabourLotResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DocketPlantResponse(BaseModel):
    id: uuid.UUID
    plant_id: uuid.UUID
    plant_type: str | None = None
    hours_operated: float
    wet_or_dry: str
    hourly_rate: float
    submitted_cost: float
    approved_cost: float | None

    model_config = {"from_attributes": True}


class DocketResponse(BaseModel):
    id: uuid.UUID
    docket_number: str = ""
    project_id: uuid.UUID
    subcontractor_company_id: uuid.UUID
    subcontractor: str | None = None
    date: dt.date
    status: str
    notes: str | None
    foreman_notes: str | None
    adjustment_reason: str | None
    total_labour_submitted: float
    total_labour_approved: float
    total_plant_submitted: float
    total_plant_approved: float
    submitted_by_id: uuid.UUID | None
    submitted_at: datetime | None
    approved_by_id: uuid.UUID | None
    approved_at: datetime | None
    created_at: datetime | None

    model_config = {"from_attributes": True}


class DocketDetailResponse(DocketResponse):
    labour: list[DocketLabourResponse] = Field(default_factory=list)
    plant: list[DocketPlantResponse] = Field(default_factory=list)


# ── Dashboard ─────────────────────────────────────────────────────────────────


class OverdueNCRItem(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    project_name: str
    ncr_number: str
    description: str
    status: str
    category: str | None
    due_date: date
    days_overdue: int
    link: str


class StaleHoldPointItem(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    project_name: str
    lot_id: uuid.UUID
    lot_number: str
    description: str | None
    status: str
    created_at: datetime
    days_stale: int
    link: str


class AttentionItems(BaseModel):
    overdue_ncrs: list[OverdueNCRItem] = Field(default_factory=list)
    stale_hold_points: list[StaleHoldPointItem] = Field(default_factory=list)
    total: int = 0


class RecentActivity(BaseModel):
    id: str
    type: str
    description: str
    timestamp: datetime
    link: str


class DashboardStats(BaseModel):
    total_projects: int = 0
    active_projects: int = 0
    total_lots: int = 0
    open_hold_points: int = 0
    open_ncrs: int = 0
    attention_items: AttentionItems = Field(default_factory=AttentionItems)
    recent_activities: list[RecentActivity] = Field(default_factory=list)


class ProjectDashboard(BaseModel):
    project_id: uuid.UUID
    lots_by_status: dict[str, int]
    total_lots: int
    open_ncrs: int
    overdue_ncrs: int
    major_ncrs_open: int
    open_hold_points: int
    dockets_pending_approval: int
    attention_items: AttentionItems


# ── Notifications & audit ─────────────────────────────────────────────────────


class NotificationResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID | None
    type: str
    title: str
    message: str
    link_url: str | None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID | None
    user_id: uuid.UUID | None
    user_email: str | None = None
    entity_type: str
    entity_id: str
    action: str
    changes: dict | list | None
    created_at: datetime

    model_config = {"from_attributes": True}
