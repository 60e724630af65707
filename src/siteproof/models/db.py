"""SQLAlchemy ORM models for the SiteProof platform."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _fk(target: str, nullable: bool = False, ondelete: str = "CASCADE") -> Column:
    return Column(Uuid, ForeignKey(target, ondelete=ondelete), nullable=nullable, index=True)


# ── Companies, users, projects ────────────────────────────────────────────────


class Company(Base):
    """A head-contractor organisation owning projects."""

    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    abn = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    subscription_tier = Column(String(50), default="basic")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    role_in_company = Column(String(50), nullable=False, default="member")
    company_id = _fk("companies.id", nullable=True, ondelete="SET NULL")
    token_invalidated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


class Project(Base):
    """A construction project and its working-hours settings."""

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = _fk("companies.id", nullable=True, ondelete="SET NULL")
    name = Column(String(255), nullable=False, index=True)
    project_number = Column(String(100), nullable=True)
    description = Column(Text, default="")
    client_name = Column(String(255), nullable=True)
    state = Column(String(20), nullable=True)
    status = Column(String(30), nullable=False, default="active")
    start_date = Column(Date, nullable=True)
    target_completion = Column(Date, nullable=True)
    contract_value = Column(Numeric(14, 2), nullable=True)
    lot_prefix = Column(String(20), nullable=False, default="LOT-")
    lot_starting_number = Column(Integer, nullable=False, default=1)
    working_hours_start = Column(String(5), nullable=False, default="07:00")
    working_hours_end = Column(String(5), nullable=False, default="17:00")
    working_days = Column(String(20), nullable=False, default="1,2,3,4,5")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProjectUser(Base):
    """Project membership with a project-specific role."""

    __tablename__ = "project_users"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_user"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id")
    user_id = _fk("users.id")
    role = Column(String(50), nullable=False, default="member")
    status = Column(String(20), nullable=False, default="active")
    invited_at = Column(DateTime(timezone=True), default=utcnow)
    accepted_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", lazy="raise")


# ── Subcontractors ────────────────────────────────────────────────────────────


class SubcontractorCompany(Base):
    __tablename__ = "subcontractor_companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id")
    company_name = Column(String(255), nullable=False)
    abn = Column(String(20), nullable=True)
    primary_contact_name = Column(String(255), nullable=True)
    primary_contact_email = Column(String(255), nullable=True)
    primary_contact_phone = Column(String(50), nullable=True)
    # pending_approval | approved | suspended | removed
    status = Column(String(30), nullable=False, default="pending_approval")
    approved_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    employees = relationship(
        "EmployeeRoster",
        back_populates="company",
        order_by="EmployeeRoster.name",
        passive_deletes=True,
        lazy="raise",
    )
    plant = relationship(
        "PlantRegister",
        back_populates="company",
        order_by="PlantRegister.type",
        passive_deletes=True,
        lazy="raise",
    )


class SubcontractorUser(Base):
    """Links a login to the subcontractor company it works for."""

    __tablename__ = "subcontractor_users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subcontractor_company_id = _fk("subcontractor_companies.id")
    user_id = _fk("users.id")
    role = Column(String(20), nullable=False, default="user")  # admin | user
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("subcontractor_company_id", "user_id", name="uq_subcontractor_user"),
    )


class EmployeeRoster(Base):
    __tablename__ = "employee_roster"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subcontractor_company_id = _fk("subcontractor_companies.id")
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(100), nullable=True)
    hourly_rate = Column(Numeric(10, 2), nullable=True)
    # pending | approved | inactive
    status = Column(String(20), nullable=False, default="pending")
    approved_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    company = relationship("SubcontractorCompany", back_populates="employees")


class PlantRegister(Base):
    __tablename__ = "plant_register"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subcontractor_company_id = _fk("subcontractor_companies.id")
    type = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    id_rego = Column(String(100), nullable=True)
    dry_rate = Column(Numeric(10, 2), nullable=True)
    wet_rate = Column(Numeric(10, 2), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    company = relationship("SubcontractorCompany", back_populates="plant")


# ── Lots ──────────────────────────────────────────────────────────────────────


class Lot(Base):
    """A discrete unit of construction work tracked through a status lifecycle."""

    __tablename__ = "lots"
    __table_args__ = (UniqueConstraint("project_id", "lot_number", name="uq_lot_number"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id")
    lot_number = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(30), nullable=False, default="not_started", index=True)
    activity_type = Column(String(100), nullable=True)
    lot_type = Column(String(20), nullable=False, default="chainage")
    chainage_start = Column(Float, nullable=True)
    chainage_end = Column(Float, nullable=True)
    offset = Column(String(50), nullable=True)
    layer = Column(String(50), nullable=True)
    area_zone = Column(String(100), nullable=True)
    structure_id = Column(String(100), nullable=True)
    structure_element = Column(String(100), nullable=True)
    budget_amount = Column(Numeric(14, 2), nullable=True)
    assigned_subcontractor_id = _fk(
        "subcontractor_companies.id", nullable=True, ondelete="SET NULL"
    )
    conformed_at = Column(DateTime(timezone=True), nullable=True)
    conformed_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    claimed_in_id = _fk("progress_claims.id", nullable=True, ondelete="SET NULL")
    created_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class LotSubcontractorAssignment(Base):
    __tablename__ = "lot_subcontractor_assignments"
    __table_args__ = (
        UniqueConstraint("lot_id", "subcontractor_company_id", name="uq_lot_subcontractor"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lot_id = _fk("lots.id")
    subcontractor_company_id = _fk("subcontractor_companies.id")
    project_id = _fk("projects.id")
    status = Column(String(20), nullable=False, default="active")  # active | removed
    can_complete_itp = Column(Boolean, nullable=False, default=False)
    itp_requires_verification = Column(Boolean, nullable=False, default=True)
    assigned_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    assigned_at = Column(DateTime(timezone=True), default=utcnow)

    subcontractor_company = relationship("SubcontractorCompany", lazy="raise")


# ── ITPs ──────────────────────────────────────────────────────────────────────


class ITPTemplate(Base):
    """An inspection & test plan template with ordered checklist items."""

    __tablename__ = "itp_templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id", nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    activity_type = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    checklist_items = relationship(
        "ITPChecklistItem",
        back_populates="template",
        order_by="ITPChecklistItem.sequence_number",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )


class ITPChecklistItem(Base):
    __tablename__ = "itp_checklist_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id = _fk("itp_templates.id")
    sequence_number = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    acceptance_criteria = Column(Text, nullable=True)
    # standard | witness_point | hold_point
    point_type = Column(String(20), nullable=False, default="standard")
    # contractor | subcontractor | superintendent | general
    responsible_party = Column(String(30), nullable=False, default="contractor")
    # none | photo | test | document
    evidence_required = Column(String(20), nullable=False, default="none")
    test_type = Column(String(100), nullable=True)

    template = relationship("ITPTemplate", back_populates="checklist_items")


class ITPInstance(Base):
    """An ITP template assigned to a lot, frozen as a snapshot."""

    __tablename__ = "itp_instances"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lot_id = Column(Uuid, ForeignKey("lots.id", ondelete="CASCADE"), nullable=False, unique=True)
    template_id = _fk("itp_templates.id", nullable=True, ondelete="SET NULL")
    template_snapshot = Column(JSONType, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="in_progress")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    completions = relationship(
        "ITPCompletion",
        back_populates="instance",
        passive_deletes=True,
        lazy="raise",
    )


class ITPCompletion(Base):
    __tablename__ = "itp_completions"
    __table_args__ = (
        UniqueConstraint("itp_instance_id", "checklist_item_id", name="uq_itp_completion"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    itp_instance_id = _fk("itp_instances.id")
    # Refers to an item in the instance snapshot, not the live template
    checklist_item_id = Column(Uuid, nullable=False, index=True)
    # pending | completed | not_applicable | failed
    status = Column(String(20), nullable=False, default="pending")
    notes = Column(Text, nullable=True)
    completed_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # none | pending_verification | verified | rejected
    verification_status = Column(String(30), nullable=False, default="none")
    verified_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    verified_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    instance = relationship("ITPInstance", back_populates="completions")


# ── Test results ──────────────────────────────────────────────────────────────


class TestResult(Base):
    __tablename__ = "test_results"
    __test__ = False  # not a pytest test class

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id")
    lot_id = _fk("lots.id", nullable=True, ondelete="SET NULL")
    test_type = Column(String(100), nullable=False)
    test_request_number = Column(String(100), nullable=True)
    laboratory_name = Column(String(255), nullable=True)
    sample_date = Column(Date, nullable=True)
    result_value = Column(Float, nullable=True)
    result_unit = Column(String(50), nullable=True)
    specification_min = Column(Float, nullable=True)
    specification_max = Column(Float, nullable=True)
    pass_fail = Column(String(10), nullable=False, default="pending")  # pass | fail | pending
    status = Column(String(20), nullable=False, default="requested")  # requested | completed | verified
    verified_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ── Hold points ───────────────────────────────────────────────────────────────


class HoldPoint(Base):
    """Release record for a hold-point checklist item on a lot."""

    __tablename__ = "hold_points"
    __table_args__ = (
        UniqueConstraint("lot_id", "itp_checklist_item_id", name="uq_hold_point_item"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lot_id = _fk("lots.id")
    itp_checklist_item_id = Column(Uuid, nullable=False)
    point_type = Column(String(20), nullable=False, default="hold_point")
    description = Column(Text, nullable=True)
    # pending | notified | released
    status = Column(String(20), nullable=False, default="pending")
    requested_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    notification_sent_at = Column(DateTime(timezone=True), nullable=True)
    notification_sent_to = Column(String(255), nullable=True)
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    released_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    released_by_name = Column(String(255), nullable=True)
    released_by_org = Column(String(255), nullable=True)
    release_method = Column(String(50), nullable=True)
    release_notes = Column(Text, nullable=True)
    chase_count = Column(Integer, nullable=False, default=0)
    last_chased_at = Column(DateTime(timezone=True), nullable=True)
    escalated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ── NCRs ──────────────────────────────────────────────────────────────────────


class NCR(Base):
    """A non-conformance report tracked from raising to closure."""

    __tablename__ = "ncrs"
    __table_args__ = (UniqueConstraint("project_id", "ncr_number", name="uq_ncr_number"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id")
    ncr_number = Column(String(20), nullable=False)
    description = Column(Text, nullable=False)
    specification_reference = Column(String(255), nullable=True)
    category = Column(String(50), nullable=False, default="workmanship")
    severity = Column(String(10), nullable=False, default="minor")  # minor | major
    # open | investigating | rectification | verification | closed | closed_concession
    status = Column(String(30), nullable=False, default="open", index=True)
    raised_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    raised_at = Column(DateTime(timezone=True), default=utcnow)
    responsible_user_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    responsible_subcontractor_id = _fk(
        "subcontractor_companies.id", nullable=True, ondelete="SET NULL"
    )
    due_date = Column(Date, nullable=True)

    # Response
    root_cause_category = Column(String(50), nullable=True)
    root_cause_description = Column(Text, nullable=True)
    proposed_corrective_action = Column(Text, nullable=True)
    response_submitted_at = Column(DateTime(timezone=True), nullable=True)
    revision_requested_at = Column(DateTime(timezone=True), nullable=True)
    revision_count = Column(Integer, nullable=False, default=0)

    # Rectification / verification
    rectification_notes = Column(Text, nullable=True)
    rectification_submitted_at = Column(DateTime(timezone=True), nullable=True)
    verified_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verification_notes = Column(Text, nullable=True)

    # QM approval
    qm_approval_required = Column(Boolean, nullable=False, default=False)
    qm_approved_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    qm_approved_at = Column(DateTime(timezone=True), nullable=True)
    qm_comments = Column(Text, nullable=True)

    # Client notification
    client_notification_required = Column(Boolean, nullable=False, default=False)
    client_notified_at = Column(DateTime(timezone=True), nullable=True)

    # Closure
    closed_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    closed_at = Column(DateTime(timezone=True), nullable=True)
    lessons_learned = Column(Text, nullable=True)
    concession_justification = Column(Text, nullable=True)
    concession_risk_assessment = Column(Text, nullable=True)

    overdue_notified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    ncr_lots = relationship("NCRLot", passive_deletes=True, lazy="raise")


class NCRLot(Base):
    __tablename__ = "ncr_lots"

    ncr_id = Column(Uuid, ForeignKey("ncrs.id", ondelete="CASCADE"), primary_key=True)
    lot_id = Column(Uuid, ForeignKey("lots.id", ondelete="CASCADE"), primary_key=True)


class NCREvidence(Base):
    __tablename__ = "ncr_evidence"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ncr_id = _fk("ncrs.id")
    # photo | document | test_result | other
    evidence_type = Column(String(20), nullable=False, default="photo")
    filename = Column(String(255), nullable=True)
    file_url = Column(String(1000), nullable=True)
    description = Column(Text, nullable=True)
    uploaded_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ── Progress claims ───────────────────────────────────────────────────────────


class ProgressClaim(Base):
    __tablename__ = "progress_claims"
    __table_args__ = (UniqueConstraint("project_id", "claim_number", name="uq_claim_number"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id")
    claim_number = Column(Integer, nullable=False)
    claim_period_start = Column(Date, nullable=False)
    claim_period_end = Column(Date, nullable=False)
    # draft | submitted | certified | disputed | paid
    status = Column(String(20), nullable=False, default="draft")
    total_claimed_amount = Column(Numeric(14, 2), nullable=False, default=0)
    certified_amount = Column(Numeric(14, 2), nullable=True)
    paid_amount = Column(Numeric(14, 2), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    certified_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    disputed_at = Column(DateTime(timezone=True), nullable=True)
    dispute_notes = Column(Text, nullable=True)
    prepared_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    prepared_at = Column(DateTime(timezone=True), default=utcnow)

    claimed_lots = relationship("ClaimedLot", passive_deletes=True, lazy="raise")


class ClaimedLot(Base):
    __tablename__ = "claimed_lots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id = _fk("progress_claims.id")
    lot_id = _fk("lots.id")
    amount_claimed = Column(Numeric(14, 2), nullable=False, default=0)
    percentage_complete = Column(Float, nullable=False, default=100.0)

    lot = relationship("Lot", lazy="raise")


# ── Dockets ───────────────────────────────────────────────────────────────────


class DailyDocket(Base):
    """A subcontractor's daily labour and plant record, approved by the head contractor."""

    __tablename__ = "daily_dockets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id")
    subcontractor_company_id = _fk("subcontractor_companies.id")
    date = Column(Date, nullable=False, index=True)
    # draft | pending_approval | queried | approved | rejected
    status = Column(String(20), nullable=False, default="draft")
    notes = Column(Text, nullable=True)
    foreman_notes = Column(Text, nullable=True)
    adjustment_reason = Column(Text, nullable=True)
    total_labour_submitted = Column(Numeric(12, 2), nullable=False, default=0)
    total_labour_approved = Column(Numeric(12, 2), nullable=False, default=0)
    total_plant_submitted = Column(Numeric(12, 2), nullable=False, default=0)
    total_plant_approved = Column(Numeric(12, 2), nullable=False, default=0)
    submitted_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_by_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    subcontractor_company = relationship("SubcontractorCompany", lazy="raise")
    labour_entries = relationship("DocketLabour", passive_deletes=True, lazy="raise")
    plant_entries = relationship("DocketPlant", passive_deletes=True, lazy="raise")


class DocketLabour(Base):
    __tablename__ = "docket_labour"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    docket_id = _fk("daily_dockets.id")
    employee_id = _fk("employee_roster.id")
    start_time = Column(String(5), nullable=True)
    finish_time = Column(String(5), nullable=True)
    submitted_hours = Column(Numeric(6, 2), nullable=False, default=0)
    approved_hours = Column(Numeric(6, 2), nullable=True)
    hourly_rate = Column(Numeric(10, 2), nullable=False, default=0)
    submitted_cost = Column(Numeric(12, 2), nullable=False, default=0)
    approved_cost = Column(Numeric(12, 2), nullable=True)

    employee = relationship("EmployeeRoster", lazy="raise")
    lot_allocations = relationship("DocketLabourLot", passive_deletes=True, lazy="raise")


class DocketLabourLot(Base):
    """Hours of one labour entry booked against a lot."""

    __tablename__ = "docket_labour_lots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    docket_labour_id = _fk("docket_labour.id")
    lot_id = _fk("lots.id")
    hours = Column(Numeric(6, 2), nullable=False, default=0)

    lot = relationship("Lot", lazy="raise")


class DocketPlant(Base):
    __tablename__ = "docket_plant"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    docket_id = _fk("daily_dockets.id")
    plant_id = _fk("plant_register.id")
    hours_operated = Column(Numeric(6, 2), nullable=False, default=0)
    wet_or_dry = Column(String(3), nullable=False, default="dry")
    hourly_rate = Column(Numeric(10, 2), nullable=False, default=0)
    submitted_cost = Column(Numeric(12, 2), nullable=False, default=0)
    approved_cost = Column(Numeric(12, 2), nullable=True)

    plant = relationship("PlantRegister", lazy="raise")


# ── Notifications & audit ─────────────────────────────────────────────────────


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = _fk("users.id")
    project_id = _fk("projects.id", nullable=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    link_url = Column(String(500), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = _fk("projects.id", nullable=True)
    user_id = _fk("users.id", nullable=True, ondelete="SET NULL")
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(100), nullable=False)
    action = Column(String(100), nullable=False, index=True)
    changes = Column(JSONType, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", lazy="raise")
