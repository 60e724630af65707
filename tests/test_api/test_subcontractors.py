"""Tests for subcontractor companies and their rosters."""

from __future__ import annotations

from sqlalchemy import select

from siteproof import roles
from siteproof.models.db import Notification, ProjectUser
from tests.conftest import auth_headers, make_user


async def _create(client, world, name="Pipe Layers Co", role=roles.PROJECT_MANAGER, **extra):
    return await client.post(
        "/api/subcontractors",
        json={"project_id": str(world.project.id), "company_name": name, **extra},
        headers=world.headers(role),
    )


class TestValidateABN:
    async def test_valid(self, client, world):
        response = await client.post(
            "/api/subcontractors/validate-abn",
            json={"abn": "51824753556"},
            headers=world.headers(roles.VIEWER),
        )
        assert response.json() == {"valid": True, "error": None, "formatted": "51 824 753 556"}

    async def test_bad_checksum(self, client, world):
        response = await client.post(
            "/api/subcontractors/validate-abn",
            json={"abn": "51824753557"},
            headers=world.headers(roles.VIEWER),
        )
        data = response.json()
        assert data["valid"] is False
        assert data["error"] == "Invalid ABN checksum"

    async def test_non_ascii_digits(self, client, world):
        for abn in ("5182475355²", "٥١٨٢٤٧٥٣٥٥٦"):
            response = await client.post(
                "/api/subcontractors/validate-abn",
                json={"abn": abn},
                headers=world.headers(roles.VIEWER),
            )
            assert response.status_code == 200
            assert response.json() == {"valid": False, "error": "ABN must be 11 digits", "formatted": None}

            created = await _create(client, world, name=f"Co {abn}", abn=abn)
            assert created.status_code == 400


class TestCompanies:
    async def test_create_pending(self, client, world):
        response = await _create(client, world, abn="51 824 753 556")
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["status"] == "pending_approval"
        assert data["abn"] == "51824753556"

    async def test_invalid_abn_rejected(self, client, world):
        response = await _create(client, world, abn="123")
        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "abn"}

    async def test_duplicate_name(self, client, world):
        await _create(client, world)
        response = await _create(client, world, name="pipe layers co")
        assert response.status_code == 409

    async def test_field_roles_cannot_create(self, client, world):
        response = await _create(client, world, role=roles.FOREMAN)
        assert response.status_code == 403

    async def test_list_hides_removed(self, client, world, subcontractor):
        created = (await _create(client, world)).json()
        await client.patch(
            f"/api/subcontractors/{created['id']}/status",
            json={"status": "removed"},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        url = f"/api/subcontractors/project/{world.project.id}"
        response = await client.get(url, headers=world.headers(roles.VIEWER))
        assert [s["company_name"] for s in response.json()["subcontractors"]] == ["Dig It Pty Ltd"]

        response = await client.get(
            url, params={"include_removed": True}, headers=world.headers(roles.VIEWER)
        )
        assert len(response.json()["subcontractors"]) == 2

    async def test_subcontractor_cannot_list(self, client, world, subcontractor):
        response = await client.get(
            f"/api/subcontractors/project/{world.project.id}", headers=subcontractor.headers
        )
        assert response.status_code == 403

    async def test_approve(self, client, world):
        created = (await _create(client, world)).json()
        response = await client.patch(
            f"/api/subcontractors/{created['id']}/status",
            json={"status": "approved"},
            headers=world.headers(roles.SITE_MANAGER),
        )
        data = response.json()
        assert data["status"] == "approved"
        assert data["approved_at"] is not None

    async def test_only_own_company_visible(self, client, world, subcontractor):
        other = (await _create(client, world)).json()
        response = await client.get(f"/api/subcontractors/{other['id']}", headers=subcontractor.headers)
        assert response.status_code == 403

        mine = await client.get(
            f"/api/subcontractors/{subcontractor.company.id}", headers=subcontractor.headers
        )
        assert mine.json()["company_name"] == "Dig It Pty Ltd"


class TestLinkUser:
    async def test_link_creates_membership(self, client, world, db):
        company = (await _create(client, world)).json()
        login = await make_user(db, "boss@pipes.test")
        response = await client.post(
            f"/api/subcontractors/{company['id']}/users",
            json={"user_id": str(login.id), "role": "admin"},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.status_code == 201

        membership = (
            await db.execute(select(ProjectUser).where(ProjectUser.user_id == login.id))
        ).scalar_one()
        assert membership.role == roles.SUBCONTRACTOR_ADMIN

        my_company = await client.get("/api/subcontractors/my-company", headers=auth_headers(login))
        assert my_company.json()["id"] == company["id"]

        again = await client.post(
            f"/api/subcontractors/{company['id']}/users",
            json={"user_id": str(login.id)},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert again.status_code == 409

    async def test_existing_member_is_converted(self, client, world, db):
        company = (await _create(client, world)).json()
        viewer = world.users[roles.VIEWER]
        await client.post(
            f"/api/subcontractors/{company['id']}/users",
            json={"user_id": str(viewer.id)},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        memberships = (
            await db.execute(select(ProjectUser).where(ProjectUser.user_id == viewer.id))
        ).scalars().all()
        assert [m.role for m in memberships] == [roles.SUBCONTRACTOR]

    async def test_my_company_requires_link(self, client, world):
        response = await client.get(
            "/api/subcontractors/my-company", headers=world.headers(roles.VIEWER)
        )
        assert response.status_code == 404


class TestRoster:
    async def test_company_admin_manages_own_roster(self, client, world, subcontractor_admin):
        employee = await client.post(
            "/api/subcontractors/my-company/employees",
            json={"name": "Jo Operator", "role": "Operator", "hourly_rate": 95.5},
            headers=subcontractor_admin.headers,
        )
        assert employee.status_code == 201
        assert employee.json()["status"] == "pending"

        plant = await client.post(
            "/api/subcontractors/my-company/plant",
            json={"type": "Excavator", "id_rego": "EX-20T", "dry_rate": 150, "wet_rate": 210},
            headers=subcontractor_admin.headers,
        )
        assert plant.status_code == 201

        company = await client.get(
            "/api/subcontractors/my-company", headers=subcontractor_admin.headers
        )
        data = company.json()
        assert [e["name"] for e in data["employees"]] == ["Jo Operator"]
        assert [p["type"] for p in data["plant"]] == ["Excavator"]

        removed = await client.delete(
            f"/api/subcontractors/my-company/plant/{plant.json()['id']}",
            headers=subcontractor_admin.headers,
        )
        assert removed.json() == {"success": True}

    async def test_company_user_cannot_edit_roster(self, client, world, subcontractor):
        for url in (
            "/api/subcontractors/my-company/employees",
            f"/api/subcontractors/{subcontractor.company.id}/employees",
        ):
            response = await client.post(url, json={"name": "Jo Operator"}, headers=subcontractor.headers)
            assert response.status_code == 403
            assert response.json()["error"]["message"] == "Only company admins can change the roster"

        company = await client.get("/api/subcontractors/my-company", headers=subcontractor.headers)
        assert company.status_code == 200

    async def test_suspended_company_roster_is_frozen(self, client, world, subcontractor_admin, db):
        subcontractor_admin.company.status = "suspended"
        db.add(subcontractor_admin.company)
        await db.commit()

        mine = await client.post(
            "/api/subcontractors/my-company/plant",
            json={"type": "Roller"},
            headers=subcontractor_admin.headers,
        )
        assert mine.status_code == 403

        managed = await client.post(
            f"/api/subcontractors/{subcontractor_admin.company.id}/employees",
            json={"name": "Lee Labourer"},
            headers=world.headers(roles.SITE_MANAGER),
        )
        assert managed.status_code == 403
        assert "suspended company" in managed.json()["error"]["message"]

    async def test_cannot_edit_another_company(self, client, world, subcontractor):
        other = (await _create(client, world)).json()
        response = await client.post(
            f"/api/subcontractors/{other['id']}/employees",
            json={"name": "Someone"},
            headers=subcontractor.headers,
        )
        assert response.status_code == 403

    async def test_head_contractor_adds_employee(self, client, world, subcontractor):
        response = await client.post(
            f"/api/subcontractors/{subcontractor.company.id}/employees",
            json={"name": "Lee Labourer", "hourly_rate": 70},
            headers=world.headers(roles.SITE_MANAGER),
        )
        assert response.status_code == 201

        denied = await client.post(
            f"/api/subcontractors/{subcontractor.company.id}/employees",
            json={"name": "Lee Labourer"},
            headers=world.headers(roles.SITE_ENGINEER),
        )
        assert denied.status_code == 403

    async def test_rate_approval_notifies_subcontractor(
        self, client, world, subcontractor, subcontractor_admin, db
    ):
        employee = (
            await client.post(
                "/api/subcontractors/my-company/employees",
                json={"name": "Jo Operator", "hourly_rate": 95.5},
                headers=subcontractor_admin.headers,
            )
        ).json()
        company_id = subcontractor_admin.company.id
        url = f"/api/subcontractors/{company_id}/employees/{employee['id']}/approve-rate"

        denied = await client.post(url, headers=world.headers(roles.SITE_MANAGER))
        assert denied.status_code == 403

        response = await client.post(url, headers=world.headers(roles.PROJECT_MANAGER))
        assert response.json()["status"] == "approved"

        notices = (
            await db.execute(select(Notification).where(Notification.type == "rate_approved"))
        ).scalars().all()
        assert {n.user_id for n in notices} == {subcontractor.user.id, subcontractor_admin.user.id}
        notice = notices[0]
        assert "$95.50/hr" in notice.message

        again = await client.post(url, headers=world.headers(roles.PROJECT_MANAGER))
        assert again.status_code == 400

    async def test_plant_approval(self, client, world, subcontractor_admin):
        plant = (
            await client.post(
                "/api/subcontractors/my-company/plant",
                json={"type": "Roller"},
                headers=subcontractor_admin.headers,
            )
        ).json()
        response = await client.post(
            f"/api/subcontractors/{subcontractor_admin.company.id}/plant/{plant['id']}/approve",
            headers=world.headers(roles.OWNER),
        )
        assert response.json()["status"] == "approved"
