"""Shared test fixtures for the SiteProof test suite.

API tests run the FastAPI app in-process over an in-memory SQLite database.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field

# Configure the app for tests before anything imports siteproof.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from siteproof import roles
from siteproof.models.db import (
    Base,
    Company,
    Project,
    ProjectUser,
    SubcontractorCompany,
    SubcontractorUser,
    User,
)
from siteproof.security import create_access_token, hash_password

TEST_PASSWORD = "password123"


@pytest_asyncio.fixture
async def engine():
    """A fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging test data directly."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the DB dependency pointed at the test engine."""
    from siteproof.api.deps import get_db
    from siteproof.main import app

    async def get_db_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = get_db_override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ── Data builders ─────────────────────────────────────────────────────────────


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(str(user.id), user.email, user.role_in_company)
    return {"Authorization": f"Bearer {token}"}


async def make_user(
    db: AsyncSession,
    email: str,
    role: str = roles.MEMBER,
    company: Company | None = None,
    full_name: str | None = None,
) -> User:
    user = User(
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        password_hash=hash_password(TEST_PASSWORD),
        role_in_company=role,
        company_id=company.id if company else None,
    )
    db.add(user)
    await db.commit()
    return user


async def add_member(db: AsyncSession, project: Project, user: User, role: str) -> ProjectUser:
    membership = ProjectUser(project_id=project.id, user_id=user.id, role=role)
    db.add(membership)
    await db.commit()
    return membership


@dataclass
class ProjectWorld:
    """A company, a project and one member per head-contractor role."""

    company: Company
    project: Project
    users: dict[str, User] = field(default_factory=dict)

    def headers(self, role: str) -> dict[str, str]:
        return auth_headers(self.users[role])


@dataclass
class SubcontractorWorld:
    company: SubcontractorCompany
    user: User

    @property
    def headers(self) -> dict[str, str]:
        return auth_headers(self.user)


PROJECT_ROLES = (
    roles.OWNER,
    roles.ADMIN,
    roles.PROJECT_MANAGER,
    roles.QUALITY_MANAGER,
    roles.SITE_MANAGER,
    roles.FOREMAN,
    roles.SITE_ENGINEER,
    roles.VIEWER,
)


@pytest_asyncio.fixture
async def world(db) -> ProjectWorld:
    company = Company(name="Acme Civil")
    db.add(company)
    await db.flush()
    project = Project(company_id=company.id, name="Highway Upgrade", client_name="Roads Authority")
    db.add(project)
    await db.commit()

    world = ProjectWorld(company=company, project=project)
    for role in PROJECT_ROLES:
        user = await make_user(db, f"{role}@acme.test", role, company)
        await add_member(db, project, user, role)
        world.users[role] = user
    return world


async def make_subcontractor(
    db: AsyncSession,
    project: Project,
    name: str = "Dig It Pty Ltd",
    email: str = "sub@digit.test",
    status: str = "approved",
    role: str = roles.SUBCONTRACTOR,
) -> SubcontractorWorld:
    company = SubcontractorCompany(project_id=project.id, company_name=name, status=status)
    db.add(company)
    await db.flush()
    user = await add_subcontractor_user(db, company, email, role)
    return SubcontractorWorld(company=company, user=user)


async def add_subcontractor_user(
    db: AsyncSession, company: SubcontractorCompany, email: str, role: str = roles.SUBCONTRACTOR
) -> User:
    """Link a new login to ``company``; ``subcontractor_admin`` logins are company admins."""
    user = User(
        email=email,
        full_name="Sub User",
        password_hash=hash_password(TEST_PASSWORD),
        role_in_company=role,
    )
    db.add(user)
    await db.flush()
    link_role = "admin" if role == roles.SUBCONTRACTOR_ADMIN else "user"
    db.add(SubcontractorUser(subcontractor_company_id=company.id, user_id=user.id, role=link_role))
    db.add(ProjectUser(project_id=company.project_id, user_id=user.id, role=role))
    await db.commit()
    return user


@pytest_asyncio.fixture
async def subcontractor(db, world) -> SubcontractorWorld:
    return await make_subcontractor(db, world.project)


@pytest_asyncio.fixture
async def subcontractor_admin(db, subcontractor) -> SubcontractorWorld:
    """An admin login for the same company as the ``subcontractor`` fixture."""
    user = await add_subcontractor_user(
        db, subcontractor.company, "admin@digit.test", roles.SUBCONTRACTOR_ADMIN
    )
    return SubcontractorWorld(company=subcontractor.company, user=user)


# ── API shortcuts ─────────────────────────────────────────────────────────────

HOLD_POINT_CHECKLIST = [
    {"description": "Set out checked", "evidence_required": "document"},
    {"description": "Compaction test", "evidence_required": "test", "test_type": "compaction"},
    {"description": "Proof roll inspection", "point_type": "hold_point"},
]


async def create_template(client: AsyncClient, world: ProjectWorld, items=None, name="Earthworks") -> dict:
    response = await client.post(
        "/api/itp/templates",
        json={
            "project_id": str(world.project.id),
            "name": name,
            "activity_type": "earthworks",
            "checklist_items": items if items is not None else HOLD_POINT_CHECKLIST,
        },
        headers=world.headers(roles.QUALITY_MANAGER),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def create_lot(client: AsyncClient, world: ProjectWorld, lot_number="LOT-001", **extra) -> dict:
    payload = {"project_id": str(world.project.id), "lot_number": lot_number, **extra}
    response = await client.post(
        "/api/lots", json=payload, headers=world.headers(roles.PROJECT_MANAGER)
    )
    assert response.status_code == 201, response.text
    return response.json()


async def lot_itp(client: AsyncClient, world: ProjectWorld, lot_id: str) -> dict:
    response = await client.get(
        f"/api/itp/instances/lot/{lot_id}", headers=world.headers(roles.PROJECT_MANAGER)
    )
    assert response.status_code == 200, response.text
    return response.json()


async def complete_item(
    client: AsyncClient, world: ProjectWorld, instance_id: str, item_id: str, status="completed", role=roles.SITE_ENGINEER
):
    return await client.post(
        "/api/itp/completions",
        json={"itp_instance_id": instance_id, "checklist_item_id": item_id, "status": status},
        headers=world.headers(role),
    )
