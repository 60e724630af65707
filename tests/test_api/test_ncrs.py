"""Tests for the NCR lifecycle."""

from __future__ import annotations

from sqlalchemy import select

from siteproof import roles
from siteproof.models.db import AuditLog, Lot, Notification, Project
from tests.conftest import create_lot, make_subcontractor, make_user


async def _raise_ncr(client, world, role=roles.SITE_ENGINEER, headers=None, **extra):
    payload = {
        "project_id": str(world.project.id),
        "description": "Honeycombing on footing F3",
        "category": "workmanship",
        **extra,
    }
    response = await client.post("/api/ncrs", json=payload, headers=headers or world.headers(role))
    assert response.status_code == 201, response.text
    return response.json()


async def _lot_status(client, world, lot_id):
    response = await client.get(f"/api/lots/{lot_id}", headers=world.headers(roles.VIEWER))
    return response.json()["status"]


async def _to_verification(client, world, ncr):
    responder = world.headers(roles.FOREMAN)
    response = await client.post(
        f"/api/ncrs/{ncr['id']}/respond",
        json={
            "root_cause_category": "workmanship",
            "root_cause_description": "Poor vibration",
            "proposed_corrective_action": "Break out and re-pour",
        },
        headers=responder,
    )
    assert response.status_code == 200, response.text
    response = await client.post(
        f"/api/ncrs/{ncr['id']}/qm-review",
        json={"action": "accept"},
        headers=world.headers(roles.QUALITY_MANAGER),
    )
    assert response.json()["status"] == "rectification"
    response = await client.post(
        f"/api/ncrs/{ncr['id']}/rectify",
        json={"rectification_notes": "Re-poured 12 Oct"},
        headers=responder,
    )
    assert response.json()["status"] == "verification"
    return response.json()


class TestRaise:
    async def test_raise_links_lots(self, client, world, db):
        lot = await create_lot(client, world)
        ncr = await _raise_ncr(
            client, world, lot_ids=[lot["id"]], responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        assert ncr["ncr_number"] == "NCR-0001"
        assert ncr["status"] == "open"
        assert ncr["lot_ids"] == [lot["id"]]
        assert ncr["qm_approval_required"] is False
        assert await _lot_status(client, world, lot["id"]) == "ncr_raised"

        assigned = (
            await db.execute(select(Notification).where(Notification.type == "ncr_assigned"))
        ).scalar_one()
        assert assigned.user_id == world.users[roles.FOREMAN].id
        assert "NCR-0001" in assigned.message

    async def test_numbers_are_sequential(self, client, world):
        await _raise_ncr(client, world)
        second = await _raise_ncr(client, world)
        assert second["ncr_number"] == "NCR-0002"

    async def test_major_needs_approval_and_client_notice(self, client, world):
        ncr = await _raise_ncr(client, world, severity="major")
        assert ncr["qm_approval_required"] is True
        assert ncr["client_notification_required"] is True

    async def test_viewer_cannot_raise(self, client, world):
        response = await client.post(
            "/api/ncrs",
            json={"project_id": str(world.project.id), "description": "x"},
            headers=world.headers(roles.VIEWER),
        )
        assert response.status_code == 403

    async def test_lot_from_other_project(self, client, world):
        response = await client.post(
            "/api/ncrs",
            json={
                "project_id": str(world.project.id),
                "description": "x",
                "lot_ids": ["00000000-0000-0000-0000-000000000000"],
            },
            headers=world.headers(roles.SITE_ENGINEER),
        )
        assert response.status_code == 400

    async def test_subcontractor_raise_alerts_head_contractor(self, client, world, subcontractor, db):
        lot = await create_lot(client, world, assigned_subcontractor_id=str(subcontractor.company.id))
        await _raise_ncr(client, world, headers=subcontractor.headers, lot_ids=[lot["id"]])

        result = await db.execute(
            select(Notification.user_id).where(Notification.type == "ncr_raised")
        )
        recipients = set(result.scalars().all())
        assert world.users[roles.PROJECT_MANAGER].id in recipients
        assert world.users[roles.FOREMAN].id not in recipients

    async def test_subcontractor_limited_to_assigned_lots(self, client, world, subcontractor):
        lot = await create_lot(client, world)
        response = await client.post(
            "/api/ncrs",
            json={"project_id": str(world.project.id), "description": "x", "lot_ids": [lot["id"]]},
            headers=subcontractor.headers,
        )
        assert response.status_code == 403

    async def test_responsible_user_must_be_on_project(self, client, world, db):
        outsider = await make_user(db, "stranger@elsewhere.test")
        for user_id in (str(outsider.id), "00000000-0000-0000-0000-000000000000"):
            response = await client.post(
                "/api/ncrs",
                json={
                    "project_id": str(world.project.id),
                    "description": "x",
                    "responsible_user_id": user_id,
                },
                headers=world.headers(roles.SITE_ENGINEER),
            )
            assert response.status_code == 400
            assert response.json()["error"]["details"] == {"field": "responsible_user_id"}

    async def test_responsible_subcontractor_must_be_on_project(self, client, world, db):
        other_project = Project(company_id=world.company.id, name="Bridge Renewal")
        db.add(other_project)
        await db.commit()
        elsewhere = await make_subcontractor(db, other_project, name="Far Away Co", email="far@away.test")

        response = await client.post(
            "/api/ncrs",
            json={
                "project_id": str(world.project.id),
                "description": "x",
                "responsible_subcontractor_id": str(elsewhere.company.id),
            },
            headers=world.headers(roles.SITE_ENGINEER),
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "responsible_subcontractor_id"}

    async def test_responsible_subcontractor_on_project(self, client, world, subcontractor):
        ncr = await _raise_ncr(
            client, world, responsible_subcontractor_id=str(subcontractor.company.id)
        )
        assert ncr["responsible_subcontractor_id"] == str(subcontractor.company.id)


class TestListing:
    async def test_filters_and_pagination(self, client, world):
        await _raise_ncr(client, world, severity="major")
        await _raise_ncr(client, world, category="materials")
        await _raise_ncr(client, world, category="materials")

        response = await client.get(
            "/api/ncrs",
            params={"project_id": str(world.project.id), "category": "materials", "limit": 1},
            headers=world.headers(roles.VIEWER),
        )
        data = response.json()
        assert len(data["ncrs"]) == 1
        assert data["pagination"]["total"] == 2
        assert data["pagination"]["has_next_page"] is True

    async def test_subcontractor_sees_only_their_ncrs(self, client, world, subcontractor):
        await _raise_ncr(client, world)
        mine = await _raise_ncr(
            client, world, responsible_subcontractor_id=str(subcontractor.company.id)
        )
        response = await client.get(
            "/api/ncrs", params={"project_id": str(world.project.id)}, headers=subcontractor.headers
        )
        assert [n["id"] for n in response.json()["ncrs"]] == [mine["id"]]

    async def test_analytics(self, client, world):
        await _raise_ncr(client, world, severity="major", due_date="2020-01-01")
        await _raise_ncr(client, world)
        response = await client.get(
            "/api/ncrs/analytics",
            params={"project_id": str(world.project.id)},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        data = response.json()
        assert data["total"] == 2
        assert data["open"] == 2
        assert data["overdue"] == 1
        assert data["by_severity"] == {"major": 1, "minor": 1}
        assert data["average_closure_days"] is None

    async def test_analytics_needs_manager(self, client, world):
        response = await client.get(
            "/api/ncrs/analytics",
            params={"project_id": str(world.project.id)},
            headers=world.headers(roles.FOREMAN),
        )
        assert response.status_code == 403


class TestUpdate:
    async def test_redirect_notifies_new_owner(self, client, world, db):
        ncr = await _raise_ncr(client, world)
        engineer = world.users[roles.SITE_ENGINEER]
        response = await client.patch(
            f"/api/ncrs/{ncr['id']}",
            json={"responsible_user_id": str(engineer.id), "comments": "Please action"},
            headers=world.headers(roles.SITE_MANAGER),
        )
        assert response.status_code == 200
        assert response.json()["qm_comments"] == "Please action"
        redirect = (
            await db.execute(select(Notification).where(Notification.type == "ncr_redirect"))
        ).scalar_one()
        assert redirect.user_id == engineer.id

    async def test_empty_update(self, client, world):
        ncr = await _raise_ncr(client, world)
        response = await client.patch(
            f"/api/ncrs/{ncr['id']}", json={}, headers=world.headers(roles.SITE_MANAGER)
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "No valid fields to update"

    async def test_redirect_to_non_member(self, client, world, db):
        ncr = await _raise_ncr(client, world)
        outsider = await make_user(db, "stranger@elsewhere.test")
        response = await client.patch(
            f"/api/ncrs/{ncr['id']}",
            json={"responsible_user_id": str(outsider.id)},
            headers=world.headers(roles.SITE_MANAGER),
        )
        assert response.status_code == 400
        redirects = (
            await db.execute(select(Notification).where(Notification.type == "ncr_redirect"))
        ).scalars().all()
        assert redirects == []


class TestWorkflow:
    async def test_only_responsible_party_responds(self, client, world):
        ncr = await _raise_ncr(
            client, world, responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/respond",
            json={
                "root_cause_category": "x",
                "root_cause_description": "y",
                "proposed_corrective_action": "z",
            },
            headers=world.headers(roles.SITE_ENGINEER),
        )
        assert response.status_code == 403

    async def test_revision_request_reopens(self, client, world, db):
        ncr = await _raise_ncr(
            client, world, responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await client.post(
            f"/api/ncrs/{ncr['id']}/respond",
            json={
                "root_cause_category": "x",
                "root_cause_description": "y",
                "proposed_corrective_action": "z",
            },
            headers=world.headers(roles.FOREMAN),
        )
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/qm-review",
            json={"action": "request_revision", "comments": "Need more detail"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        data = response.json()
        assert data["status"] == "open"
        assert data["revision_count"] == 1
        assert data["proposed_corrective_action"] is None

        notice = (
            await db.execute(
                select(Notification).where(Notification.type == "ncr_revision_requested")
            )
        ).scalar_one()
        assert notice.user_id == world.users[roles.FOREMAN].id

    async def test_review_requires_investigating(self, client, world):
        ncr = await _raise_ncr(client, world)
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/qm-review",
            json={"action": "accept"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"allowed_statuses": ["investigating"]}

    async def test_evidence_gates_verification(self, client, world):
        ncr = await _raise_ncr(
            client, world, responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await client.post(
            f"/api/ncrs/{ncr['id']}/respond",
            json={
                "root_cause_category": "x",
                "root_cause_description": "y",
                "proposed_corrective_action": "z",
            },
            headers=world.headers(roles.FOREMAN),
        )
        await client.post(
            f"/api/ncrs/{ncr['id']}/qm-review",
            json={"action": "accept"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )

        blocked = await client.post(
            f"/api/ncrs/{ncr['id']}/submit-for-verification", headers=world.headers(roles.FOREMAN)
        )
        assert blocked.status_code == 400

        empty = await client.post(
            f"/api/ncrs/{ncr['id']}/evidence", json={}, headers=world.headers(roles.FOREMAN)
        )
        assert empty.status_code == 400

        evidence = await client.post(
            f"/api/ncrs/{ncr['id']}/evidence",
            json={"evidence_type": "photo", "filename": "repour.jpg", "file_url": "https://files.test/repour.jpg"},
            headers=world.headers(roles.FOREMAN),
        )
        assert evidence.status_code == 201

        listing = await client.get(
            f"/api/ncrs/{ncr['id']}/evidence", headers=world.headers(roles.VIEWER)
        )
        assert [e["filename"] for e in listing.json()] == ["repour.jpg"]

        submitted = await client.post(
            f"/api/ncrs/{ncr['id']}/submit-for-verification", headers=world.headers(roles.FOREMAN)
        )
        assert submitted.json()["status"] == "verification"

    async def test_reject_rectification(self, client, world, db):
        ncr = await _raise_ncr(
            client, world, responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _to_verification(client, world, ncr)
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/reject-rectification",
            json={"feedback": "Surface finish still poor"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        data = response.json()
        assert data["status"] == "rectification"
        assert data["verification_notes"] == "Surface finish still poor"
        notice = (
            await db.execute(
                select(Notification).where(Notification.type == "ncr_rectification_rejected")
            )
        ).scalar_one()
        assert notice.user_id == world.users[roles.FOREMAN].id


class TestClosure:
    async def test_close_restores_lot(self, client, world, db):
        lot = await create_lot(client, world)
        ncr = await _raise_ncr(
            client, world, lot_ids=[lot["id"]], responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _to_verification(client, world, ncr)

        response = await client.post(
            f"/api/ncrs/{ncr['id']}/close",
            json={"verification_notes": "Checked", "lessons_learned": "Vibrate properly"},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "closed"
        assert data["closed_at"] is not None
        assert await _lot_status(client, world, lot["id"]) == "in_progress"

        audit = (
            await db.execute(select(AuditLog).where(AuditLog.action == "ncr_closed"))
        ).scalar_one()
        assert audit.changes["lots_restored"] == ["LOT-001"]

    async def test_lot_stays_blocked_by_other_open_ncr(self, client, world):
        lot = await create_lot(client, world)
        first = await _raise_ncr(
            client, world, lot_ids=[lot["id"]], responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _raise_ncr(client, world, lot_ids=[lot["id"]])
        await _to_verification(client, world, first)
        await client.post(
            f"/api/ncrs/{first['id']}/close", json={}, headers=world.headers(roles.PROJECT_MANAGER)
        )
        assert await _lot_status(client, world, lot["id"]) == "ncr_raised"

    async def test_major_needs_qm_approval(self, client, world):
        ncr = await _raise_ncr(
            client, world, severity="major", responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _to_verification(client, world, ncr)

        response = await client.post(
            f"/api/ncrs/{ncr['id']}/close", json={}, headers=world.headers(roles.PROJECT_MANAGER)
        )
        assert response.status_code == 403

        approved = await client.post(
            f"/api/ncrs/{ncr['id']}/qm-approve", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert approved.json()["qm_approved_at"] is not None
        twice = await client.post(
            f"/api/ncrs/{ncr['id']}/qm-approve", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert twice.status_code == 400

        response = await client.post(
            f"/api/ncrs/{ncr['id']}/close", json={}, headers=world.headers(roles.PROJECT_MANAGER)
        )
        assert response.json()["status"] == "closed"

    async def test_qm_approval_not_needed_for_minor(self, client, world):
        ncr = await _raise_ncr(client, world)
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/qm-approve", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert response.status_code == 400

    async def test_concession_needs_justification(self, client, world):
        ncr = await _raise_ncr(
            client, world, responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _to_verification(client, world, ncr)
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/close",
            json={"with_concession": True},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.status_code == 400

        response = await client.post(
            f"/api/ncrs/{ncr['id']}/close",
            json={"with_concession": True, "concession_justification": "Within tolerance per RFI 12"},
            headers=world.headers(roles.PROJECT_MANAGER),
        )
        assert response.json()["status"] == "closed_concession"

    async def test_reopen(self, client, world, db):
        lot = await create_lot(client, world)
        ncr = await _raise_ncr(
            client, world, lot_ids=[lot["id"]], responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _to_verification(client, world, ncr)
        await client.post(
            f"/api/ncrs/{ncr['id']}/close", json={}, headers=world.headers(roles.PROJECT_MANAGER)
        )

        response = await client.post(
            f"/api/ncrs/{ncr['id']}/reopen",
            json={"reason": "Cracking reappeared"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "rectification"
        assert data["closed_at"] is None
        assert "Cracking reappeared" in data["lessons_learned"]
        assert await _lot_status(client, world, lot["id"]) == "ncr_raised"

        actions = set((await db.execute(select(AuditLog.action))).scalars().all())
        assert {"ncr_closed", "ncr_reopened"} <= actions

    async def test_reopen_requires_closed(self, client, world):
        ncr = await _raise_ncr(client, world)
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/reopen",
            json={"reason": "why"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 400

    async def test_reopen_needs_a_reason(self, client, world):
        ncr = await _raise_ncr(
            client, world, responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _to_verification(client, world, ncr)
        await client.post(
            f"/api/ncrs/{ncr['id']}/close", json={}, headers=world.headers(roles.PROJECT_MANAGER)
        )
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/reopen",
            json={"reason": "   "},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "reason"}

    async def test_conformed_lots_follow_the_same_rule_on_raise_and_reopen(self, client, world, db):
        lot = await create_lot(client, world)
        ncr = await _raise_ncr(
            client, world, lot_ids=[lot["id"]], responsible_user_id=str(world.users[roles.FOREMAN].id)
        )
        await _to_verification(client, world, ncr)
        await client.post(
            f"/api/ncrs/{ncr['id']}/close", json={}, headers=world.headers(roles.PROJECT_MANAGER)
        )
        conformed = Lot(project_id=world.project.id, lot_number="LOT-002", status="conformed")
        claimed = Lot(project_id=world.project.id, lot_number="LOT-003", status="claimed")
        db.add_all([conformed, claimed])
        await db.commit()
        row = (await db.execute(select(Lot).where(Lot.lot_number == "LOT-001"))).scalar_one()
        row.status = "conformed"
        await db.commit()

        await client.post(
            f"/api/ncrs/{ncr['id']}/reopen",
            json={"reason": "Cracking reappeared"},
            headers=world.headers(roles.QUALITY_MANAGER),
        )
        # conformed lots go back to ncr_raised; claimed lots are left alone
        assert await _lot_status(client, world, lot["id"]) == "ncr_raised"

        await _raise_ncr(client, world, lot_ids=[str(conformed.id), str(claimed.id)])
        assert await _lot_status(client, world, str(conformed.id)) == "ncr_raised"
        assert await _lot_status(client, world, str(claimed.id)) == "claimed"


class TestClientNotification:
    async def test_notify_client_package(self, client, world, db):
        lot = await create_lot(client, world)
        ncr = await _raise_ncr(client, world, severity="major", lot_ids=[lot["id"]])
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/notify-client", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert response.status_code == 200
        package = response.json()
        assert package["project"]["client_name"] == "Roads Authority"
        assert package["lots"] == [{"id": lot["id"], "lot_number": "LOT-001"}]
        assert package["ncr"]["client_notified_at"] is not None

        again = await client.post(
            f"/api/ncrs/{ncr['id']}/notify-client", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert again.status_code == 400

        audit = (
            await db.execute(select(AuditLog).where(AuditLog.action == "NCR_CLIENT_NOTIFIED"))
        ).scalar_one()
        assert audit.entity_id == ncr["id"]

    async def test_minor_ncr_has_no_client_notice(self, client, world):
        ncr = await _raise_ncr(client, world)
        response = await client.post(
            f"/api/ncrs/{ncr['id']}/notify-client", headers=world.headers(roles.QUALITY_MANAGER)
        )
        assert response.status_code == 400
