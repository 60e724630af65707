"""Tests for the dashboard summaries."""

from __future__ import annotations

import uuid
from datetime import timedelta

from siteproof import roles
from siteproof.models.db import DailyDocket, HoldPoint, utcnow
from tests.conftest import auth_headers, create_lot, make_user


async def _overdue_ncr(client, world, **extra) -> dict:
    response = await client.post(
        "/api/ncrs",
        json={
            "project_id": str(world.project.id),
            "description": "Cracked kerb",
            "due_date": (utcnow().date() - timedelta(days=3)).isoformat(),
            **extra,
        },
        headers=world.headers(roles.SITE_ENGINEER),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _hold_point(db, lot, days_since_request, status="notified") -> HoldPoint:
    now = utcnow()
    hold_point = HoldPoint(
        lot_id=uuid.UUID(lot["id"]),
        itp_checklist_item_id=uuid.uuid4(),
        description="Proof roll inspection",
        status=status,
        notification_sent_at=now - timedelta(days=days_since_request),
        created_at=now - timedelta(days=days_since_request + 1),
    )
    db.add(hold_point)
    await db.commit()
    return hold_point


class TestStats:
    async def test_attention_items(self, client, world, db):
        lot = await create_lot(client, world)
        ncr = await _overdue_ncr(client, world)
        await _hold_point(db, lot, days_since_request=9)
        await _hold_point(db, lot, days_since_request=1)

        response = await client.get("/api/dashboard/stats", headers=world.headers(roles.OWNER))
        assert response.status_code == 200
        data = response.json()
        assert data["total_projects"] == 1
        assert data["active_projects"] == 1
        assert data["total_lots"] == 1
        assert data["open_hold_points"] == 2
        assert data["open_ncrs"] == 1

        attention = data["attention_items"]
        assert attention["total"] == 2
        [overdue] = attention["overdue_ncrs"]
        assert overdue["ncr_number"] == ncr["ncr_number"]
        assert overdue["days_overdue"] == 3
        assert overdue["project_name"] == "Highway Upgrade"
        [stale] = attention["stale_hold_points"]
        assert stale["lot_number"] == "LOT-001"
        assert stale["days_stale"] == 9

        kinds = {a["type"] for a in data["recent_activities"]}
        assert kinds == {"ncr", "lot"}

    async def test_released_hold_points_drop_out(self, client, world, db):
        lot = await create_lot(client, world)
        await _hold_point(db, lot, days_since_request=20, status="released")
        response = await client.get("/api/dashboard/stats", headers=world.headers(roles.PROJECT_MANAGER))
        data = response.json()
        assert data["open_hold_points"] == 0
        assert data["attention_items"]["stale_hold_points"] == []

    async def test_user_without_projects(self, client, db):
        user = await make_user(db, "nobody@elsewhere.test")
        response = await client.get("/api/dashboard/stats", headers=auth_headers(user))
        data = response.json()
        assert data["total_projects"] == 0
        assert data["attention_items"] == {"overdue_ncrs": [], "stale_hold_points": [], "total": 0}

    async def test_subcontractor_projects_are_excluded(self, client, world, subcontractor):
        await _overdue_ncr(client, world)
        response = await client.get("/api/dashboard/stats", headers=subcontractor.headers)
        assert response.json()["total_projects"] == 0


class TestProjectDashboard:
    async def test_project_figures(self, client, world, db, subcontractor):
        lot = await create_lot(client, world)
        await _overdue_ncr(client, world, severity="major")
        await _hold_point(db, lot, days_since_request=2)
        db.add(
            DailyDocket(
                project_id=world.project.id,
                subcontractor_company_id=subcontractor.company.id,
                date=utcnow().date(),
                status="pending_approval",
            )
        )
        await db.commit()

        response = await client.get(
            f"/api/dashboard/projects/{world.project.id}", headers=world.headers(roles.VIEWER)
        )
        assert response.status_code == 200
        data = response.json()
        assert data["total_lots"] == 1
        assert sum(data["lots_by_status"].values()) == 1
        assert data["open_ncrs"] == 1
        assert data["major_ncrs_open"] == 1
        assert data["overdue_ncrs"] == 1
        assert data["open_hold_points"] == 1
        assert data["dockets_pending_approval"] == 1
        assert data["attention_items"]["stale_hold_points"] == []
        assert data["attention_items"]["total"] == 1

    async def test_subcontractor_forbidden(self, client, world, subcontractor):
        response = await client.get(
            f"/api/dashboard/projects/{world.project.id}", headers=subcontractor.headers
        )
        assert response.status_code == 403

    async def test_non_member(self, client, world, db):
        outsider = await make_user(db, "outsider@elsewhere.test")
        response = await client.get(
            f"/api/dashboard/projects/{world.project.id}", headers=auth_headers(outsider)
        )
        assert response.status_code == 403
