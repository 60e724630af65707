"""Data models - SQLAlchemy ORM and Pydantic schemas."""

from siteproof.models.db import (
    Base,
    AuditLog,
    ClaimedLot,
    Company,
    EmployeeRoster,
    HoldPoint,
    ITPChecklistItem,
    ITPCompletion,
    ITPInstance,
    ITPTemplate,
    Lot,
    LotSubcontractorAssignment,
    NCR,
    NCREvidence,
    NCRLot,
    Notification,
    PlantRegister,
    ProgressClaim,
    Project,
    ProjectUser,
    SubcontractorCompany,
    SubcontractorUser,
    TestResult,
    User,
)

__all__ = [
    "Base",
    "AuditLog",
    "ClaimedLot",
    "Company",
    "EmployeeRoster",
    "HoldPoint",
    "ITPChecklistItem",
    "ITPCompletion",
    "ITPInstance",
    "ITPTemplate",
    "Lot",
    "LotSubcontractorAssignment",
    "NCR",
    "NCREvidence",
    "NCRLot",
    "Notification",
    "PlantRegister",
    "ProgressClaim",
    "Project",
    "ProjectUser",
    "SubcontractorCompany",
    "SubcontractorUser",
    "TestResult",
    "User",
]
