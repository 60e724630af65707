"""Tests for ITP templates, instances and completions."""

from __future__ import annotations

from siteproof import roles
from siteproof.models.db import ITPChecklistItem, ITPTemplate
from tests.conftest import complete_item, create_lot, create_template, lot_itp


async def _global_template(db) -> ITPTemplate:
    template = ITPTemplate(
        name="Global Earthworks",
        activity_type="earthworks",
        checklist_items=[
            ITPChecklistItem(sequence_number=1, description="Set out"),
            ITPChecklistItem(sequence_number=2, description="Proof roll", point_type="hold_point"),
        ],
    )
    db.add(template)
    await db.commit()
    return template


class TestTemplates:
    async def test_create_numbers_items(self, client, world):
        template = await create_template(client, world)
        assert template["project_id"] == str(world.project.id)
        assert [i["sequence_number"] for i in template["checklist_items"]] == [1, 2, 3]
        assert template["checklist_items"][2]["point_type"] == "hold_point"

    async def test_foreman_cannot_create(self, client, world):
        response = await client.post(
            "/api/itp/templates",
            json={"project_id": str(world.project.id), "name": "X"},
            headers=world.headers(roles.FOREMAN),
        )
        assert response.status_code == 403

    async def test_invalid_point_type(self, client, world):
        response = await client.post(
            "/api/itp/templates",
            json={
                "project_id": str(world.project.id),
                "name": "X",
                "checklist_items": [{"description": "a", "point_type": "maybe"}],
            },
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 400

    async def test_list_includes_global(self, client, world, db):
        await _global_template(db)
        await create_template(client, world)
        response = await client.get(
            "/api/itp/templates",
            params={"project_id": str(world.project.id)},
            headers=world.headers(roles.VIEWER),
        )
        names = [t["name"] for t in response.json()]
        assert names == ["Earthworks", "Global Earthworks"]

    async def test_update_replaces_items(self, client, world):
        template = await create_template(client, world)
        response = await client.patch(
            f"/api/itp/templates/{template['id']}",
            json={"name": "Earthworks v2", "checklist_items": [{"description": "Only step"}]},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Earthworks v2"
        assert [i["description"] for i in data["checklist_items"]] == ["Only step"]

    async def test_global_template_is_read_only(self, client, world, db):
        template = await _global_template(db)
        response = await client.patch(
            f"/api/itp/templates/{template.id}",
            json={"name": "Mine now"},
            headers=world.headers(roles.OWNER),
        )
        assert response.status_code == 403

    async def test_clone_global_into_project(self, client, world, db):
        template = await _global_template(db)
        response = await client.post(
            f"/api/itp/templates/{template.id}/clone",
            json={"project_id": str(world.project.id)},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 201
        clone = response.json()
        assert clone["name"] == "Global Earthworks (Copy)"
        assert clone["project_id"] == str(world.project.id)
        assert len(clone["checklist_items"]) == 2

    async def test_clone_global_needs_project(self, client, world, db):
        template = await _global_template(db)
        response = await client.post(
            f"/api/itp/templates/{template.id}/clone", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert response.status_code == 400

    async def test_archive_hides_and_blocks_assignment(self, client, world):
        template = await create_template(client, world)
        response = await client.post(
            f"/api/itp/templates/{template['id']}/archive",
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.json()["is_active"] is False

        listing = await client.get(
            "/api/itp/templates",
            params={"project_id": str(world.project.id)},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert listing.json() == []

        lot = await create_lot(client, world)
        assign = await client.post(
            "/api/itp/instances",
            json={"lot_id": lot["id"], "template_id": template["id"]},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert assign.status_code == 400

    async def test_delete_in_use_template(self, client, world):
        template = await create_template(client, world)
        await create_lot(client, world, itp_template_id=template["id"])
        response = await client.delete(
            f"/api/itp/templates/{template['id']}", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert response.status_code == 400

    async def test_delete_unused_template(self, client, world):
        template = await create_template(client, world)
        response = await client.delete(
            f"/api/itp/templates/{template['id']}", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert response.status_code == 204


class TestInstances:
    async def test_assign_snapshots_template(self, client, world):
        template = await create_template(client, world)
        lot = await create_lot(client, world)
        response = await client.post(
            "/api/itp/instances",
            json={"lot_id": lot["id"], "template_id": template["id"]},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.status_code == 201
        instance = response.json()
        assert instance["template_name"] == "Earthworks"
        assert instance["progress"] == {"completed": 0, "total": 3}

        # Later template edits do not reach the lot
        await client.patch(
            f"/api/itp/templates/{template['id']}",
            json={"checklist_items": [{"description": "Replaced"}]},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        itp = await lot_itp(client, world, lot["id"])
        assert len(itp["checklist_items"]) == 3

    async def test_one_itp_per_lot(self, client, world):
        template = await create_template(client, world)
        lot = await create_lot(client, world, itp_template_id=template["id"])
        response = await client.post(
            "/api/itp/instances",
            json={"lot_id": lot["id"], "template_id": template["id"]},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.status_code == 400

    async def test_lot_without_itp(self, client, world):
        lot = await create_lot(client, world)
        response = await client.get(
            f"/api/itp/instances/lot/{lot['id']}", headers=world.headers(roles.VIEWER)
        )
        assert response.status_code == 404


class TestCompletions:
    async def _setup(self, client, world):
        template = await create_template(client, world)
        lot = await create_lot(client, world, itp_template_id=template["id"])
        itp = await lot_itp(client, world, lot["id"])
        return lot, itp

    async def _lot_status(self, client, world, lot_id):
        response = await client.get(f"/api/lots/{lot_id}", headers=world.headers(roles.VIEWER))
        return response.json()["status"]

    async def test_completion_moves_lot_in_progress(self, client, world):
        lot, itp = await self._setup(client, world)
        response = await complete_item(client, world, itp["id"], itp["checklist_items"][0]["id"])
        assert response.status_code == 200
        completion = response.json()
        assert completion["status"] == "completed"
        assert completion["completed_at"] is not None
        assert await self._lot_status(client, world, lot["id"]) == "in_progress"

        itp = await lot_itp(client, world, lot["id"])
        assert itp["progress"] == {"completed": 1, "total": 3}
        assert itp["checklist_items"][0]["completion"]["status"] == "completed"

    async def test_completion_is_upserted(self, client, world):
        lot, itp = await self._setup(client, world)
        item_id = itp["checklist_items"][0]["id"]
        first = (await complete_item(client, world, itp["id"], item_id)).json()
        second = (await complete_item(client, world, itp["id"], item_id, status="pending")).json()
        assert first["id"] == second["id"]
        assert second["completed_at"] is None

    async def test_hold_point_needs_release(self, client, world):
        lot, itp = await self._setup(client, world)
        response = await complete_item(client, world, itp["id"], itp["checklist_items"][2]["id"])
        assert response.status_code == 400
        assert "released" in response.json()["error"]["message"]

    async def test_unknown_item(self, client, world):
        lot, itp = await self._setup(client, world)
        response = await complete_item(
            client, world, itp["id"], "00000000-0000-0000-0000-000000000000"
        )
        assert response.status_code == 404

    async def test_viewer_cannot_complete(self, client, world):
        lot, itp = await self._setup(client, world)
        response = await complete_item(
            client, world, itp["id"], itp["checklist_items"][0]["id"], role=roles.VIEWER
        )
        assert response.status_code == 403

    async def test_conformed_lot_is_locked(self, client, world):
        lot, itp = await self._setup(client, world)
        await client.post(
            f"/api/lots/{lot['id']}/conform",
            json={"force": True},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        response = await complete_item(client, world, itp["id"], itp["checklist_items"][0]["id"])
        assert response.status_code == 400

    async def test_subcontractor_needs_permission(self, client, world, subcontractor):
        lot, itp = await self._setup(client, world)
        await client.post(
            f"/api/lots/{lot['id']}/subcontractors",
            json={"subcontractor_company_id": str(subcontractor.company.id)},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        response = await client.post(
            "/api/itp/completions",
            json={"itp_instance_id": itp["id"], "checklist_item_id": itp["checklist_items"][0]["id"]},
            headers=subcontractor.headers,
        )
        assert response.status_code == 403

    async def test_subcontractor_completion_awaits_verification(self, client, world, subcontractor):
        lot, itp = await self._setup(client, world)
        await client.post(
            f"/api/lots/{lot['id']}/subcontractors",
            json={"subcontractor_company_id": str(subcontractor.company.id), "can_complete_itp": True},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        response = await client.post(
            "/api/itp/completions",
            json={"itp_instance_id": itp["id"], "checklist_item_id": itp["checklist_items"][0]["id"]},
            headers=subcontractor.headers,
        )
        assert response.status_code == 200
        completion = response.json()
        assert completion["verification_status"] == "pending_verification"

        verified = await client.post(
            f"/api/itp/completions/{completion['id']}/verify",
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert verified.json()["verification_status"] == "verified"

    async def test_reject_returns_item_to_pending(self, client, world):
        lot, itp = await self._setup(client, world)
        completion = (
            await complete_item(client, world, itp["id"], itp["checklist_items"][0]["id"])
        ).json()

        forbidden = await client.post(
            f"/api/itp/completions/{completion['id']}/reject", headers=world.headers(roles.FOREMAN)
        )
        assert forbidden.status_code == 403

        response = await client.post(
            f"/api/itp/completions/{completion['id']}/reject",
            params={"notes": "Photo missing"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        data = response.json()
        assert data["status"] == "pending"
        assert data["verification_status"] == "rejected"
        assert data["notes"] == "Photo missing"
        assert await self._lot_status(client, world, lot["id"]) == "in_progress"

    async def test_verify_requires_finished_item(self, client, world):
        lot, itp = await self._setup(client, world)
        completion = (
            await complete_item(
                client, world, itp["id"], itp["checklist_items"][0]["id"], status="pending"
            )
        ).json()
        response = await client.post(
            f"/api/itp/completions/{completion['id']}/verify",
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 400
