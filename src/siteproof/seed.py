"""Seed database with sample data for demo purposes.

Usage: siteproof seed
"""

import asyncio
from decimal import Decimal
from pathlib import Path

import yaml
from sqlalchemy import select

from siteproof import roles
from siteproof.db.session import async_session_factory, init_db
from siteproof.models.db import (
    Company,
    ITPChecklistItem,
    ITPTemplate,
    Lot,
    Project,
    ProjectUser,
    User,
)
from siteproof.security import hash_password

SEED_DIR = Path(__file__).parent.parent.parent / "seed"

DEMO_COMPANY = "Demo Civil Pty Ltd"
DEMO_PROJECT = "Northern Highway Upgrade"
DEMO_PASSWORD = "password123"

# Company-level role -> project role for each demo login
DEMO_USERS = [
    ("owner@demo.siteproof.dev", "Olivia Owner", roles.OWNER),
    ("admin@demo.siteproof.dev", "Adam Admin", roles.ADMIN),
    ("pm@demo.siteproof.dev", "Priya Manager", roles.PROJECT_MANAGER),
    ("qm@demo.siteproof.dev", "Quinn Quality", roles.QUALITY_MANAGER),
    ("site@demo.siteproof.dev", "Sam Site", roles.SITE_MANAGER),
    ("foreman@demo.siteproof.dev", "Frankie Foreman", roles.FOREMAN),
    ("engineer@demo.siteproof.dev", "Eli Engineer", roles.SITE_ENGINEER),
    ("viewer@demo.siteproof.dev", "Vic Viewer", roles.VIEWER),
]


def load_template_definitions(path: Path | None = None) -> list[dict]:
    """Read ITP template definitions from the seed YAML file."""
    path = path or SEED_DIR / "itp_templates.yaml"
    if not path.exists():
        print(f"  Seed file not found: {path}")
        return []
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return data.get("templates", [])


async def seed_company_and_users() -> tuple[Company, list[User]]:
    async with async_session_factory() as session:
        result = await session.execute(select(Company).where(Company.name == DEMO_COMPANY))
        company = result.scalar_one_or_none()
        if company is None:
            company = Company(name=DEMO_COMPANY, abn="51824753556")
            session.add(company)
            await session.flush()
            print(f"  Created company: {company.name}")
        else:
            print("  Demo company already exists, skipping.")

        users = []
        for email, full_name, role in DEMO_USERS:
            existing = await session.execute(select(User).where(User.email == email))
            user = existing.scalar_one_or_none()
            if user is None:
                user = User(
                    email=email,
                    full_name=full_name,
                    password_hash=hash_password(DEMO_PASSWORD),
                    role_in_company=role,
                    company_id=company.id,
                )
                session.add(user)
                print(f"  Created user: {email} ({role})")
            users.append(user)

        await session.commit()
        return company, users


async def seed_project(company: Company, users: list[User]) -> Project:
    async with async_session_factory() as session:
        result = await session.execute(select(Project).where(Project.name == DEMO_PROJECT))
        project = result.scalar_one_or_none()
        if project is not None:
            print("  Demo project already exists, skipping.")
            return project

        project = Project(
            company_id=company.id,
            name=DEMO_PROJECT,
            project_number="NHU-2026",
            client_name="Department of Transport",
            state="NSW",
            contract_value=Decimal("12500000.00"),
        )
        session.add(project)
        await session.flush()

        for user in users:
            session.add(ProjectUser(project_id=project.id, user_id=user.id, role=user.role_in_company))

        for n, (activity, chainage, budget) in enumerate(
            [("earthworks", 0, "45000"), ("earthworks", 100, "45000"), ("drainage", 200, "28000")],
            start=1,
        ):
            session.add(
                Lot(
                    project_id=project.id,
                    lot_number=f"{project.lot_prefix or 'LOT-'}{n:03d}",
                    description=f"{activity.title()} CH {chainage}-{chainage + 100}",
                    activity_type=activity,
                    lot_type="chainage",
                    chainage_start=chainage,
                    chainage_end=chainage + 100,
                    budget_amount=Decimal(budget),
                )
            )

        await session.commit()
        print(f"  Created project: {project.name} (ID: {project.id})")
        return project


async def seed_itp_templates() -> int:
    """Create global ITP templates that do not already exist (matched by name)."""
    definitions = load_template_definitions()
    count = 0
    async with async_session_factory() as session:
        for definition in definitions:
            existing = await session.execute(
                select(ITPTemplate).where(
                    ITPTemplate.name == definition["name"], ITPTemplate.project_id.is_(None)
                )
            )
            if existing.scalars().first():
                continue
            template = ITPTemplate(
                name=definition["name"],
                description=definition.get("description"),
                activity_type=definition.get("activity_type"),
                is_active=True,
            )
            session.add(template)
            await session.flush()
            for seq, item in enumerate(definition.get("items", []), start=1):
                session.add(
                    ITPChecklistItem(
                        template_id=template.id,
                        sequence_number=seq,
                        description=item["description"],
                        acceptance_criteria=item.get("acceptance_criteria"),
                        point_type=item.get("point_type", "standard"),
                        responsible_party=item.get("responsible_party", "contractor"),
                        evidence_required=item.get("evidence_required", "none"),
                        test_type=item.get("test_type"),
                    )
                )
            count += 1
        await session.commit()
    return count


async def main():
    """Run all seed operations."""
    print("Initializing database connection...")
    await init_db()

    print("Seeding company and users...")
    company, users = await seed_company_and_users()

    print("Seeding demo project...")
    project = await seed_project(company, users)
    print(f"  Demo project ID: {project.id}")

    print("Seeding ITP templates...")
    count = await seed_itp_templates()
    print(f"  Loaded {count} ITP templates.")

    print(f"Done! Demo logins use password '{DEMO_PASSWORD}'.")


if __name__ == "__main__":
    asyncio.run(main())
