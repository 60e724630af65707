"""Role hierarchy and role groups used for authorization checks."""

from __future__ import annotations

OWNER = "owner"
ADMIN = "admin"
PROJECT_MANAGER = "project_manager"
QUALITY_MANAGER = "quality_manager"
SITE_MANAGER = "site_manager"
FOREMAN = "foreman"
SITE_ENGINEER = "site_engineer"
SUBCONTRACTOR_ADMIN = "subcontractor_admin"
SUBCONTRACTOR = "subcontractor"
VIEWER = "viewer"
MEMBER = "member"

# Higher level = more permissions
ROLE_HIERARCHY: dict[str, int] = {
    OWNER: 100,
    ADMIN: 90,
    PROJECT_MANAGER: 80,
    QUALITY_MANAGER: 75,
    SITE_MANAGER: 70,
    FOREMAN: 60,
    SITE_ENGINEER: 50,
    SUBCONTRACTOR_ADMIN: 40,
    SUBCONTRACTOR: 30,
    VIEWER: 20,
    MEMBER: 10,
}

ALL_ROLES = tuple(ROLE_HIERARCHY)

_DISPLAY_NAMES = {
    OWNER: "Owner",
    ADMIN: "Administrator",
    PROJECT_MANAGER: "Project Manager",
    QUALITY_MANAGER: "Quality Manager",
    SITE_MANAGER: "Site Manager",
    FOREMAN: "Foreman",
    SITE_ENGINEER: "Site Engineer",
    SUBCONTRACTOR_ADMIN: "Subcontractor Admin",
    SUBCONTRACTOR: "Subcontractor",
    VIEWER: "Viewer",
    MEMBER: "Member",
}


# ── Role groups ───────────────────────────────────────────────────────────────

ROLE_GROUPS: dict[str, frozenset[str]] = {
    "COMMERCIAL": frozenset({OWNER, ADMIN, PROJECT_MANAGER}),
    "ADMIN": frozenset({OWNER, ADMIN, PROJECT_MANAGER}),
    "MANAGEMENT": frozenset({OWNER, ADMIN, PROJECT_MANAGER, SITE_MANAGER}),
    "QUALITY": frozenset({OWNER, ADMIN, PROJECT_MANAGER, QUALITY_MANAGER}),
    "SUBCONTRACTOR": frozenset({SUBCONTRACTOR, SUBCONTRACTOR_ADMIN}),
    "FIELD": frozenset({OWNER, ADMIN, PROJECT_MANAGER, SITE_MANAGER, SITE_ENGINEER, FOREMAN}),
    "VIEWER": frozenset({VIEWER}),
}

COMMERCIAL_ROLES = ROLE_GROUPS["COMMERCIAL"]
MANAGEMENT_ROLES = ROLE_GROUPS["MANAGEMENT"]
QUALITY_ROLES = ROLE_GROUPS["QUALITY"]
SUBCONTRACTOR_ROLES = ROLE_GROUPS["SUBCONTRACTOR"]
FIELD_ROLES = ROLE_GROUPS["FIELD"]

# Company roles that see every project in their company
COMPANY_ADMIN_ROLES = frozenset({OWNER, ADMIN})

# Lot permissions
LOT_CREATORS = frozenset({OWNER, ADMIN, PROJECT_MANAGER, SITE_MANAGER, FOREMAN})
LOT_EDITORS = LOT_CREATORS | {QUALITY_MANAGER, SITE_ENGINEER}
LOT_DELETERS = frozenset({OWNER, ADMIN, PROJECT_MANAGER})
LOT_CONFORMERS = frozenset({OWNER, ADMIN, PROJECT_MANAGER, QUALITY_MANAGER})
STATUS_OVERRIDERS = LOT_CONFORMERS

# Roles notified about head-contractor events raised by subcontractors
HEAD_CONTRACTOR_ROLES = frozenset({OWNER, ADMIN, PROJECT_MANAGER, QUALITY_MANAGER, SITE_MANAGER})

# Roles that may release hold points
HOLD_POINT_APPROVERS = QUALITY_ROLES

PROJECT_CREATORS = frozenset({OWNER, ADMIN, PROJECT_MANAGER})


def role_level(role: str | None) -> int:
    return ROLE_HIERARCHY.get(role or "", 0)


def has_minimum_role(role: str | None, minimum: str) -> bool:
    """Whether *role* sits at or above *minimum* in the hierarchy."""
    return role_level(role) >= role_level(minimum)


def is_admin_role(role: str | None) -> bool:
    return role in COMPANY_ADMIN_ROLES


def can_manage_projects(role: str | None) -> bool:
    return has_minimum_role(role, PROJECT_MANAGER)


def can_approve_items(role: str | None) -> bool:
    return has_minimum_role(role, QUALITY_MANAGER)


def has_role_in_group(role: str | None, group: str) -> bool:
    return role in ROLE_GROUPS.get(group, frozenset())


def is_subcontractor_role(role: str | None) -> bool:
    return role in SUBCONTRACTOR_ROLES


def role_display_name(role: str) -> str:
    return _DISPLAY_NAMES.get(role, role)
