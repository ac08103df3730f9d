"""Pytest configuration and shared fixtures."""
import os

# models.base builds its engine from settings at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEMO_MODE", "false")

from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.connections import InMemoryConnectionManager
from core.live_cache import InMemoryLiveValueCache
from core.node_map import NodeMap
from models import AlarmRule, Base, MetricSample, Site, SiteUser, User

LEVEL_NODE = "ns=4;s=|var|Inovance-ARM-Linux.Application.GVL_HMI.GHr_actLevel"
DOPPLER_NODE = "ns=4;s=|var|Inovance-ARM-Linux.Application.GVL_HMI.GHr_actLevelDoppler"
FLOW_NODE = "ns=4;s=|var|Inovance-ARM-Linux.Application.GVL_HMI.GHr_actFlow"


class FakeClock:
    """Settable replacement for datetime.now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


async def add_all(session_factory, *objects):
    async with session_factory() as session:
        session.add_all(objects)
        await session.commit()
    return objects


async def count_samples(session_factory, **filters) -> int:
    async with session_factory() as session:
        stmt = select(func.count()).select_from(MetricSample).filter_by(**filters)
        return (await session.execute(stmt)).scalar_one()


@pytest.fixture
async def site(session_factory):
    site = Site(code="PS01", name="North Pump Room", is_enabled=True)
    await add_all(session_factory, site)
    return site


@pytest.fixture
async def second_site(session_factory):
    site = Site(code="PS02", name="South Pump Room", is_enabled=True)
    await add_all(session_factory, site)
    return site


@pytest.fixture
async def responsibles(session_factory, site):
    """Three users linked to the site: duplicate e-mail, blank phone, inactive user."""
    alice = User(username="alice", email=" alice@example.com ", phone="13800000001")
    bob = User(username="bob", email="alice@example.com", phone="  ")
    carol = User(username="carol", email="carol@example.com", phone="13800000003", is_active=False)
    await add_all(session_factory, alice, bob, carol)
    await add_all(
        session_factory,
        SiteUser(site_id=site.id, user_id=alice.id),
        SiteUser(site_id=site.id, user_id=bob.id),
        SiteUser(site_id=site.id, user_id=carol.id),
    )
    return alice, bob, carol


@pytest.fixture
async def level_rule(session_factory):
    rule = AlarmRule(
        site_id=None,
        code="LVL_HI",
        name="High water level",
        message="Upstream level above limit",
        severity="error",
        trigger_variable="level",
        auto_clear=True,
    )
    await add_all(session_factory, rule)
    return rule


@pytest.fixture
def cache():
    return InMemoryLiveValueCache()


@pytest.fixture
def connections():
    return InMemoryConnectionManager()


@pytest.fixture
def node_map():
    return NodeMap({
        "actLevel": LEVEL_NODE,
        "actLevelDoppler": DOPPLER_NODE,
        "actFlow": FLOW_NODE,
    })
