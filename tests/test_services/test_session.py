"""Tests for engine options and the unit-of-work session."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from siteproof.db.session import engine_options, session_scope
from siteproof.models.db import Company


class TestEngineOptions:
    def test_sqlite_has_no_pool_sizing(self):
        assert engine_options("sqlite+aiosqlite:///:memory:", 10, 20) == {}

    def test_postgres_pool(self):
        options = engine_options("postgresql+asyncpg://u:p@db/siteproof", 5, 2)
        assert options == {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 2}


class TestSessionScope:
    async def test_commits_on_success(self, session_factory):
        async with session_scope(session_factory) as session:
            session.add(Company(name="Committed Civil"))

        async with session_factory() as session:
            names = (await session.execute(select(Company.name))).scalars().all()
        assert names == ["Committed Civil"]

    async def test_rolls_back_and_reraises(self, session_factory):
        with pytest.raises(ValueError):
            async with session_scope(session_factory) as session:
                session.add(Company(name="Half Done Civil"))
                await session.flush()
                raise ValueError("boom")

        async with session_factory() as session:
            names = (await session.execute(select(Company.name))).scalars().all()
        assert names == []
