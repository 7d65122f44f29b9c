"""Shared fixtures."""
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from sentinel.core.policy import MonitoringPolicy
from sentinel.core.site import MonitoredSite
from sentinel.database import build_engine, create_tables
from sentinel.services.registry import SiteRegistry

T0 = datetime(2026, 3, 2, 9, 0, 0)


@asynccontextmanager
async def _memory_registry(history_cap: int = 100):
    engine = build_engine("sqlite+aiosqlite://")
    try:
        await create_tables(engine)
        yield SiteRegistry(async_sessionmaker(engine, expire_on_commit=False), history_cap=history_cap)
    finally:
        await engine.dispose()


@pytest.fixture
def memory_registry():
    """Async context manager yielding a SiteRegistry on a fresh in-memory database."""
    return _memory_registry


@pytest.fixture
def policy() -> MonitoringPolicy:
    return MonitoringPolicy()


@pytest.fixture
def make_site():
    def _make(url="https://example.com", name="Example", now=T0, history_cap=100, **overrides):
        site = MonitoredSite.register(url, name, "ops@example.com", now, history_cap)
        if overrides:
            site = replace(site, **overrides)
        return site
    return _make
