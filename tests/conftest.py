import os
import tempfile

# Must be set before any timelinter imports that use settings.data_dir
os.environ["DATA_DIR"] = tempfile.mkdtemp()

from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import timelinter.models  # noqa: F401  (registers tables)
from timelinter.budget.models import BudgetConfig
from timelinter.clock import ManualClock
from timelinter.database import Base

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory
    await engine.dispose()


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def scenario_config():
    """The bucket used throughout the worked examples."""
    return BudgetConfig.from_minutes(
        max_threshold=5,
        replenish_interval=5,
        replenish_amount=1,
        max_overfill=30,
        overfill_decay_per_hour=10,
        good_app_reward_interval=5,
        good_app_reward_amount=10,
    )


@pytest.fixture
def data_dir():
    """Return a temporary data directory."""
    return os.environ["DATA_DIR"]
