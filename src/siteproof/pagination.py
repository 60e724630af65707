"""Offset/limit pagination helpers shared by list endpoints."""

from __future__ import annotations

import math
from dataclasses import dataclass

from fastapi import Query

MAX_LIMIT = 100


@dataclass
class PageParams:
    page: int = 1
    limit: int = 20
    sort_by: str | None = None
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    sort_by: str | None = Query(None, max_length=50),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
) -> PageParams:
    """FastAPI dependency collecting the standard pagination query params."""
    return PageParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)


def page_meta(params: PageParams, total: int) -> dict:
    total_pages = math.ceil(total / params.limit) if total else 0
    return {
        "page": params.page,
        "limit": params.limit,
        "total": total,
        "total_pages": total_pages,
        "has_next_page": params.page < total_pages,
        "has_prev_page": params.page > 1,
    }


def sort_column(model, params: PageParams, allowed: set[str], default: str):
    """Resolve ``sort_by`` against a whitelist and return an ORDER BY clause."""
    name = params.sort_by if params.sort_by in allowed else default
    column = getattr(model, name)
    return column.asc() if params.sort_order == "asc" else column.desc()
