"""Docket arithmetic: shift hours, plant rates and running totals."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")

# Entries may only change while the subcontractor still holds the docket
EDITABLE_STATUSES = ("draft", "rejected")
SUBMITTABLE_STATUSES = ("draft", "rejected")


def docket_number(docket_id: uuid.UUID) -> str:
    return f"DKT-{docket_id.hex[:6].upper()}"


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def shift_hours(start_time: str | None, finish_time: str | None) -> Decimal:
    """Hours between two ``HH:MM`` times; a finish before the start runs overnight."""
    if not start_time or not finish_time:
        return Decimal(0)
    minutes = _minutes(finish_time) - _minutes(start_time)
    if minutes < 0:
        minutes += 24 * 60
    return (Decimal(minutes) / 60).quantize(CENTS, rounding=ROUND_HALF_UP)


def plant_rate(dry_rate: Decimal | None, wet_rate: Decimal | None, wet_or_dry: str) -> Decimal:
    """Wet hire falls back to the dry rate when no wet rate is registered."""
    if wet_or_dry == "wet":
        return wet_rate or dry_rate or Decimal(0)
    return dry_rate or Decimal(0)


def cost(hours: Decimal, rate: Decimal) -> Decimal:
    return (Decimal(hours) * Decimal(rate)).quantize(CENTS, rounding=ROUND_HALF_UP)


def total(amounts: Iterable[Decimal | None]) -> Decimal:
    return sum((Decimal(a) for a in amounts if a is not None), Decimal(0))
