"""ITP template snapshots and checklist lookups."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from siteproof.errors import AppError
from siteproof.models.db import ITPCompletion, ITPInstance, ITPTemplate, Lot

FINISHED_STATUSES = frozenset({"completed", "not_applicable"})


def build_snapshot(template: ITPTemplate) -> dict[str, Any]:
    """Freeze a template (with loaded items) for assignment to a lot."""
    return {
        "template_id": str(template.id),
        "name": template.name,
        "description": template.description,
        "activity_type": template.activity_type,
        "checklist_items": [
            {
                "id": str(item.id),
                "sequence_number": item.sequence_number,
                "description": item.description,
                "acceptance_criteria": item.acceptance_criteria,
                "point_type": item.point_type,
                "responsible_party": item.responsible_party,
                "evidence_required": item.evidence_required,
                "test_type": item.test_type,
            }
            for item in sorted(template.checklist_items, key=lambda i: i.sequence_number)
        ],
    }


def snapshot_items(instance: ITPInstance) -> list[dict[str, Any]]:
    items = (instance.template_snapshot or {}).get("checklist_items", [])
    return sorted(items, key=lambda i: i.get("sequence_number", 0))


def find_item(instance: ITPInstance, item_id: uuid.UUID | str) -> dict[str, Any] | None:
    wanted = str(item_id)
    for item in snapshot_items(instance):
        if item["id"] == wanted:
            return item
    return None


def is_test_item(item: dict[str, Any]) -> bool:
    return item.get("evidence_required") == "test" or bool(item.get("test_type"))


def is_hold_point(item: dict[str, Any]) -> bool:
    return item.get("point_type") == "hold_point"


def preceding_items(instance: ITPInstance, item: dict[str, Any]) -> list[dict[str, Any]]:
    seq = item.get("sequence_number", 0)
    return [i for i in snapshot_items(instance) if i.get("sequence_number", 0) < seq]


async def get_instance_for_lot(session: AsyncSession, lot_id: uuid.UUID) -> ITPInstance | None:
    result = await session.execute(select(ITPInstance).where(ITPInstance.lot_id == lot_id))
    return result.scalar_one_or_none()


async def get_completions(
    session: AsyncSession, instance_id: uuid.UUID
) -> dict[str, ITPCompletion]:
    """Completions keyed by checklist item id (as str)."""
    result = await session.execute(
        select(ITPCompletion).where(ITPCompletion.itp_instance_id == instance_id)
    )
    return {str(c.checklist_item_id): c for c in result.scalars().all()}


async def create_instance(
    session: AsyncSession, lot: Lot, template: ITPTemplate
) -> ITPInstance:
    """Assign *template* (items loaded) to *lot*; a lot holds at most one ITP."""
    existing = await get_instance_for_lot(session, lot.id)
    if existing is not None:
        raise AppError.bad_request("Lot already has an ITP assigned")
    if not template.is_active:
        raise AppError.bad_request("Cannot assign an archived ITP template")
    instance = ITPInstance(
        lot_id=lot.id,
        template_id=template.id,
        template_snapshot=build_snapshot(template),
    )
    session.add(instance)
    await session.flush()
    return instance


async def load_template(session: AsyncSession, template_id: uuid.UUID) -> ITPTemplate:
    result = await session.execute(
        select(ITPTemplate)
        .options(selectinload(ITPTemplate.checklist_items))
        .where(ITPTemplate.id == template_id)
        .execution_options(populate_existing=True)
    )
    template = result.scalar_one_or_none()
    if template is None:
        raise AppError.not_found("ITP template")
    return template
