"""Tests for recording and verifying test results."""

from __future__ import annotations

import pytest

from siteproof import roles
from siteproof.api.routes.test_results import evaluate_pass_fail
from siteproof.models.db import Company, Lot, Project
from tests.conftest import create_lot


@pytest.mark.parametrize(
    "value,minimum,maximum,expected",
    [
        (98.5, 98.0, None, "pass"),
        (97.9, 98.0, None, "fail"),
        (80, 65, 95, "pass"),
        (96, 65, 95, "fail"),
        (95, 65, 95, "pass"),
        (None, 98.0, None, "pending"),
        (98.5, None, None, "pending"),
    ],
)
def test_evaluate_pass_fail(value, minimum, maximum, expected):
    assert evaluate_pass_fail(value, minimum, maximum) == expected


async def _record(client, world, role=roles.SITE_ENGINEER, headers=None, **extra):
    payload = {"project_id": str(world.project.id), "test_type": "compaction", **extra}
    return await client.post(
        "/api/test-results", json=payload, headers=headers or world.headers(role)
    )


class TestRecording:
    async def test_outcome_derived_from_limits(self, client, world):
        lot = await create_lot(client, world)
        response = await _record(
            client, world, lot_id=lot["id"], result_value=96.2, result_unit="% SDD", specification_min=98
        )
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["pass_fail"] == "fail"
        assert data["status"] == "completed"

    async def test_without_result_is_requested(self, client, world):
        response = await _record(client, world, laboratory_name="Civil Labs")
        data = response.json()
        assert data["pass_fail"] == "pending"
        assert data["status"] == "requested"

    async def test_explicit_outcome_is_kept(self, client, world):
        response = await _record(
            client, world, result_value=50, specification_min=98, pass_fail="pass"
        )
        assert response.json()["pass_fail"] == "pass"

    async def test_viewer_cannot_record(self, client, world):
        response = await _record(client, world, role=roles.VIEWER)
        assert response.status_code == 403

    async def test_lot_must_belong_to_project(self, client, world, db):
        other_company = Company(name="Rival Builders")
        db.add(other_company)
        await db.flush()
        other_project = Project(company_id=other_company.id, name="Elsewhere")
        db.add(other_project)
        await db.flush()
        foreign = Lot(project_id=other_project.id, lot_number="X-001")
        db.add(foreign)
        await db.commit()

        response = await _record(client, world, lot_id=str(foreign.id))
        assert response.status_code == 400


class TestListing:
    async def test_filter_by_lot(self, client, world):
        first = await create_lot(client, world)
        second = await create_lot(client, world, lot_number="LOT-002")
        await _record(client, world, lot_id=first["id"])
        await _record(client, world, lot_id=second["id"], test_type="concrete_strength")

        response = await client.get(
            "/api/test-results",
            params={"project_id": str(world.project.id), "lot_id": second["id"]},
            headers=world.headers(roles.VIEWER),
        )
        assert [t["test_type"] for t in response.json()] == ["concrete_strength"]

    async def test_subcontractor_sees_assigned_lots_only(self, client, world, subcontractor):
        mine = await create_lot(client, world, assigned_subcontractor_id=str(subcontractor.company.id))
        other = await create_lot(client, world, lot_number="LOT-002")
        await _record(client, world, lot_id=mine["id"])
        await _record(client, world, lot_id=other["id"])

        response = await client.get(
            "/api/test-results",
            params={"project_id": str(world.project.id)},
            headers=subcontractor.headers,
        )
        assert [t["lot_id"] for t in response.json()] == [mine["id"]]


class TestVerification:
    async def test_quality_manager_verifies(self, client, world, db):
        recorded = (
            await _record(client, world, result_value=99, specification_min=98)
        ).json()
        url = f"/api/test-results/{recorded['id']}/verify"

        denied = await client.post(url, headers=world.headers(roles.SITE_ENGINEER))
        assert denied.status_code == 403

        response = await client.post(url, headers=world.headers(roles.QUALITY_MANAGER))
        data = response.json()
        assert data["status"] == "verified"
        assert data["verified_at"] is not None

        again = await client.post(url, headers=world.headers(roles.QUALITY_MANAGER))
        assert again.status_code == 400

    async def test_pending_cannot_be_verified(self, client, world):
        recorded = (await _record(client, world)).json()
        response = await client.post(
            f"/api/test-results/{recorded['id']}/verify", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert response.status_code == 400

    async def test_unknown_result(self, client, world):
        response = await client.post(
            "/api/test-results/00000000-0000-0000-0000-000000000000/verify",
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 404
