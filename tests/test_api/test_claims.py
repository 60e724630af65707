"""Tests for progress claims."""

from __future__ import annotations

import uuid

import pytest_asyncio
from sqlalchemy import select, update

from siteproof import roles
from siteproof.models.db import AuditLog, Lot, Notification
from tests.conftest import create_lot


async def _conformed_lot(client, world, db, lot_number, budget):
    lot = await create_lot(client, world, lot_number=lot_number, budget_amount=budget)
    await db.execute(update(Lot).where(Lot.id == uuid.UUID(lot["id"])).values(status="conformed"))
    await db.commit()
    return lot


@pytest_asyncio.fixture
async def conformed(client, world, db):
    return [
        await _conformed_lot(client, world, db, "LOT-001", 1000),
        await _conformed_lot(client, world, db, "LOT-002", 2500.5),
    ]


def _claims_url(world, suffix=""):
    return f"/api/projects/{world.project.id}/claims{suffix}"


async def _create_claim(client, world, lot_ids, role=roles.PROJECT_MANAGER):
    return await client.post(
        _claims_url(world),
        json={
            "claim_period_start": "2026-09-01",
            "claim_period_end": "2026-09-30",
            "lot_ids": lot_ids,
        },
        headers=world.headers(role),
    )


async def _set_status(client, world, claim_id, role=roles.OWNER, **body):
    return await client.put(
        _claims_url(world, f"/{claim_id}"), json=body, headers=world.headers(role)
    )


class TestClaimableLots:
    async def test_lists_conformed_unclaimed(self, client, world, conformed):
        await create_lot(client, world, lot_number="LOT-003")
        response = await client.get(
            f"/api/projects/{world.project.id}/claimable-lots",
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        data = response.json()
        assert [lot["lot_number"] for lot in data["lots"]] == ["LOT-001", "LOT-002"]
        assert data["total_budget"] == 3500.5

    async def test_commercial_roles_only(self, client, world):
        for role in (roles.QUALITY_MANAGER, roles.SITE_MANAGER, roles.VIEWER):
            response = await client.get(
                f"/api/projects/{world.project.id}/claimable-lots", headers=world.headers(role)
            )
            assert response.status_code == 403


class TestCreateClaim:
    async def test_create_claims_lots(self, client, world, conformed, db):
        response = await _create_claim(client, world, [lot["id"] for lot in conformed])
        assert response.status_code == 201, response.text
        claim = response.json()
        assert claim["claim_number"] == 1
        assert claim["status"] == "draft"
        assert claim["total_claimed_amount"] == 3500.5
        assert claim["lot_count"] == 2
        assert [lot["lot_number"] for lot in claim["lots"]] == ["LOT-001", "LOT-002"]

        lot = await client.get(
            f"/api/lots/{conformed[0]['id']}", headers=world.headers(roles.VIEWER)
        )
        assert lot.json()["status"] == "claimed"

        again = await _create_claim(client, world, [conformed[0]["id"]])
        assert again.status_code == 400

    async def test_skips_unconformed_lots(self, client, world, conformed, db):
        pending = await create_lot(client, world, lot_number="LOT-009")
        response = await _create_claim(client, world, [conformed[0]["id"], pending["id"]])
        assert response.json()["lot_count"] == 1

        audit = (
            await db.execute(select(AuditLog).where(AuditLog.action == "claim_created"))
        ).scalar_one()
        assert audit.changes["skipped_lot_ids"] == [pending["id"]]

    async def test_period_order(self, client, world, conformed):
        response = await client.post(
            _claims_url(world),
            json={
                "claim_period_start": "2026-09-30",
                "claim_period_end": "2026-09-01",
                "lot_ids": [conformed[0]["id"]],
            },
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.status_code == 400

    async def test_claim_numbers_increment(self, client, world, conformed):
        await _create_claim(client, world, [conformed[0]["id"]])
        second = await _create_claim(client, world, [conformed[1]["id"]])
        assert second.json()["claim_number"] == 2

        listing = await client.get(_claims_url(world), headers=world.headers(roles.ADMIN))
        assert [c["claim_number"] for c in listing.json()["claims"]] == [2, 1]


class TestClaimStatus:
    async def test_full_lifecycle(self, client, world, conformed, db):
        claim = (await _create_claim(client, world, [lot["id"] for lot in conformed])).json()

        submitted = await _set_status(client, world, claim["id"], status="submitted")
        assert submitted.json()["submitted_at"] is not None

        certified = await _set_status(client, world, claim["id"], status="certified", certified_amount=3000)
        assert certified.json()["certified_amount"] == 3000

        paid = await _set_status(
            client, world, claim["id"], status="paid", payment_reference="EFT-7781"
        )
        data = paid.json()
        assert data["paid_amount"] == 3000
        assert data["payment_reference"] == "EFT-7781"
        assert data["lot_count"] == 2

        locked = await _set_status(client, world, claim["id"], status="submitted")
        assert locked.status_code == 400
        assert locked.json()["error"]["message"] == "Cannot update a paid claim"

        notices = (
            await db.execute(
                select(Notification)
                .where(Notification.type == "claim_status")
                .order_by(Notification.created_at)
            )
        ).scalars().all()
        assert {n.user_id for n in notices} == {world.users[roles.PROJECT_MANAGER].id}
        assert len(notices) == 2
        assert any("$3,000.00" in n.message for n in notices)

    async def test_certified_defaults_to_claimed_total(self, client, world, conformed):
        claim = (await _create_claim(client, world, [conformed[1]["id"]])).json()
        await _set_status(client, world, claim["id"], status="submitted")
        response = await _set_status(client, world, claim["id"], status="certified")
        assert response.json()["certified_amount"] == 2500.5

    async def test_invalid_transition(self, client, world, conformed):
        claim = (await _create_claim(client, world, [conformed[0]["id"]])).json()
        response = await _set_status(client, world, claim["id"], status="paid")
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_STATUS_TRANSITION"
        assert error["details"] == {"allowed": ["submitted"]}

    async def test_dispute_and_resubmit(self, client, world, conformed, db):
        claim = (await _create_claim(client, world, [conformed[0]["id"]])).json()
        await _set_status(client, world, claim["id"], status="submitted")
        disputed = await _set_status(
            client, world, claim["id"], status="disputed", dispute_notes="Rates not agreed"
        )
        assert disputed.json()["dispute_notes"] == "Rates not agreed"

        resubmitted = await _set_status(client, world, claim["id"], status="submitted")
        assert resubmitted.json()["status"] == "submitted"

        notice = (
            await db.execute(select(Notification).where(Notification.type == "claim_status"))
        ).scalar_one()
        assert "Rates not agreed" in notice.message


class TestDeleteClaim:
    async def test_delete_draft_releases_lots(self, client, world, conformed):
        claim = (await _create_claim(client, world, [conformed[0]["id"]])).json()
        response = await client.delete(
            _claims_url(world, f"/{claim['id']}"), headers=world.headers(roles.PROJECT_MANAGER)
        )
        assert response.json() == {"success": True}

        lot = await client.get(f"/api/lots/{conformed[0]['id']}", headers=world.headers(roles.VIEWER))
        assert lot.json()["status"] == "conformed"
        missing = await client.get(
            _claims_url(world, f"/{claim['id']}"), headers=world.headers(roles.PROJECT_MANAGER)
        )
        assert missing.status_code == 404

    async def test_only_drafts(self, client, world, conformed):
        claim = (await _create_claim(client, world, [conformed[0]["id"]])).json()
        await _set_status(client, world, claim["id"], status="submitted")
        response = await client.delete(
            _claims_url(world, f"/{claim['id']}"), headers=world.headers(roles.PROJECT_MANAGER)
        )
        assert response.status_code == 400


class TestEvidencePackage:
    async def test_package_summarises_lots(self, client, world, conformed):
        claim = (await _create_claim(client, world, [lot["id"] for lot in conformed])).json()
        response = await client.get(
            _claims_url(world, f"/{claim['id']}/evidence-package"),
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["project"]["name"] == "Highway Upgrade"
        assert [lot["lot_number"] for lot in data["lots"]] == ["LOT-001", "LOT-002"]
        assert data["lots"][0]["itp"] is None
        assert data["summary"] == {
            "lot_count": 2,
            "total_claimed_amount": 3500.5,
            "tests_passed": 0,
            "hold_points_released": 0,
            "open_ncrs": 0,
        }
        assert "lots" not in data["claim"]
