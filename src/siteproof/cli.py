"""SiteProof CLI: administrative commands.

Usage::

    # Create a login (prompts for the password)
    siteproof create-user --email pm@example.com --role project_manager

    # Load demo data and ITP templates
    siteproof seed

    # Run the hold-point escalation and overdue-NCR jobs once
    siteproof run-alerts

    # Check an ABN
    siteproof validate-abn "51 824 753 556"
"""

from __future__ import annotations

import asyncio
import sys

import click

from siteproof import roles
from siteproof.config import settings


@click.group()
def cli():
    """SiteProof: construction quality and commercial management."""
    pass


# ── create-user ───────────────────────────────────────────────────────


@cli.command("create-user")
@click.option("--email", required=True, help="Login email address.")
@click.option("--full-name", default=None, help="Display name.")
@click.option(
    "--role",
    type=click.Choice(roles.ALL_ROLES),
    default=roles.MEMBER,
    show_default=True,
    help="Company role.",
)
@click.option("--company", "company_name", default=None, help="Create and join this company.")
@click.password_option(help="Password (prompted when omitted).")
def create_user(email: str, full_name: str | None, role: str, company_name: str | None, password: str):
    """Create a user account."""
    asyncio.run(_create_user(email, full_name, role, company_name, password))


async def _create_user(
    email: str, full_name: str | None, role: str, company_name: str | None, password: str
) -> None:
    from sqlalchemy import select

    from siteproof.db.session import async_session_factory
    from siteproof.models.db import Company, User
    from siteproof.security import hash_password

    async with async_session_factory() as session:
        existing = await session.execute(select(User).where(User.email == email.lower()))
        if existing.scalar_one_or_none():
            click.secho(f"Error: a user with email {email} already exists", fg="red", err=True)
            sys.exit(1)

        company = None
        if company_name:
            company = Company(name=company_name)
            session.add(company)
            await session.flush()

        user = User(
            email=email.lower(),
            full_name=full_name,
            password_hash=hash_password(password),
            role_in_company=role,
            company_id=company.id if company else None,
        )
        session.add(user)
        await session.commit()
        click.echo(f"Created user {user.email} ({roles.role_display_name(role)}) id={user.id}")


# ── seed ──────────────────────────────────────────────────────────────


@cli.command()
def seed():
    """Load demo company, users, project, lots and ITP templates."""
    from siteproof.seed import main as seed_main

    asyncio.run(seed_main())


# ── run-alerts ────────────────────────────────────────────────────────


@cli.command("run-alerts")
@click.option(
    "--hours",
    type=int,
    default=None,
    help=f"Hold point escalation threshold (default: {settings.hold_point_escalation_hours}).",
)
def run_alerts(hours: int | None):
    """Run the scheduled alert jobs once and report what was sent."""
    asyncio.run(_run_alerts(hours))


async def _run_alerts(hours: int | None) -> None:
    from siteproof.db.session import session_scope
    from siteproof.tasks.workers import escalate_stale_hold_points, notify_overdue_ncrs

    try:
        async with session_scope() as session:
            escalated = await escalate_stale_hold_points(session, hours)
            overdue = await notify_overdue_ncrs(session)
    except Exception as exc:
        click.secho(f"Error: {exc}", fg="red", err=True)
        sys.exit(1)

    click.echo(f"Escalated hold points: {escalated}")
    click.echo(f"Overdue NCR reminders: {overdue}")


# ── validate-abn ──────────────────────────────────────────────────────


@cli.command("validate-abn")
@click.argument("abn")
def validate_abn_cmd(abn: str):
    """Check an Australian Business Number."""
    from siteproof.services.abn import format_abn, validate_abn

    valid, error = validate_abn(abn)
    if not valid:
        click.secho(f"Invalid: {error}", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Valid ABN: {format_abn(abn)}", fg="green")


# ── Entry point ───────────────────────────────────────────────────────


def main():
    cli()


if __name__ == "__main__":
    main()
