import asyncio
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from pydantic import ValidationError

from timelinter.budget.tracker import BudgetTracker
from timelinter.clock import ManualClock
from timelinter.config import Settings
from timelinter.models import BudgetStateRecord

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


@pytest.mark.asyncio
class TestBudgetTracker:
    @pytest_asyncio.fixture
    async def tracker(self, session_factory, clock):
        tracker = BudgetTracker(session_factory, clock=clock, config_defaults=Settings())
        await tracker.ensure_config()
        return tracker

    async def test_initial_bucket_is_full(self, tracker):
        status = await tracker.get_status()
        assert status["remaining_seconds"] == 300.0
        assert status["max_threshold_seconds"] == 300.0
        assert status["capacity_seconds"] == 35 * 60.0
        assert status["overfill_seconds"] == 0.0
        assert status["percent_remaining"] == 100.0
        assert status["last_update"] == T0.isoformat()

    async def test_ensure_config_is_idempotent(self, tracker, clock):
        clock.advance(timedelta(minutes=2))
        await tracker.update(is_wasteful=True)
        await tracker.ensure_config()
        assert await tracker.get_remaining() == timedelta(minutes=3)

    async def test_seeds_from_settings(self, session_factory, clock):
        tracker = BudgetTracker(
            session_factory,
            clock=clock,
            config_defaults=Settings(max_threshold_minutes=10, response_timer_minutes=3),
        )
        await tracker.ensure_config()
        config = await tracker.get_config()
        assert config.max_threshold == timedelta(minutes=10)
        assert await tracker.get_remaining() == timedelta(minutes=10)
        assert await tracker.get_response_timeout() == timedelta(minutes=3)

    async def test_uninitialised_raises(self, session_factory, clock):
        tracker = BudgetTracker(session_factory, clock=clock, config_defaults=Settings())
        with pytest.raises(LookupError):
            await tracker.update(is_wasteful=True)
        with pytest.raises(LookupError):
            await tracker.load_state()

    async def test_update_persists(self, tracker, session_factory, clock):
        clock.advance(timedelta(minutes=5))
        state = await tracker.update(is_wasteful=False, is_good_app=True)
        assert state.remaining == timedelta(minutes=15)

        async with session_factory() as session:
            record = await session.get(BudgetStateRecord, 1)
            assert record.remaining_ms == 15 * 60 * 1000
            assert record.accumulated_good_ms == 0

        reloaded = BudgetTracker(session_factory, clock=clock, config_defaults=Settings())
        assert (await reloaded.load_state()) == state

    async def test_carry_survives_reload(self, tracker, session_factory, clock):
        clock.advance(timedelta(minutes=3))
        await tracker.update(is_wasteful=False, is_good_app=True)
        state = await tracker.load_state()
        assert state.accumulated_good_app == timedelta(minutes=3)
        assert state.accumulated_idle == timedelta(minutes=3)

    async def test_scenario_sequence(self, tracker, clock):
        clock.advance(timedelta(minutes=5))
        await tracker.update(is_wasteful=False, is_good_app=True)
        clock.advance(timedelta(hours=1))
        state = await tracker.update(is_wasteful=False)
        assert state.remaining == timedelta(minutes=5)
        clock.advance(timedelta(minutes=3))
        state = await tracker.update(is_wasteful=True)
        assert state.remaining == timedelta(minutes=2)

    async def test_update_config(self, tracker):
        config = await tracker.update_config(max_threshold=10, response_timer=2)
        assert config.max_threshold == timedelta(minutes=10)
        assert config.replenish_interval == timedelta(minutes=5)
        assert (await tracker.get_config()).max_threshold == timedelta(minutes=10)
        assert await tracker.get_response_timeout() == timedelta(minutes=2)

    async def test_update_config_rejects_unknown(self, tracker):
        with pytest.raises(KeyError):
            await tracker.update_config(monthly_cap=100)

    async def test_update_config_rejects_negative(self, tracker):
        with pytest.raises(ValidationError):
            await tracker.update_config(max_overfill=-1)
        assert (await tracker.get_config()).max_overfill == timedelta(minutes=30)

    async def test_shrinking_capacity_clamps_on_next_update(self, tracker, clock):
        clock.advance(timedelta(minutes=10))
        await tracker.update(is_wasteful=False, is_good_app=True)
        assert await tracker.get_remaining() == timedelta(minutes=25)

        await tracker.update_config(max_overfill=0)
        state = await tracker.update(is_wasteful=False)
        assert state.remaining == timedelta(minutes=5)

    async def test_refill(self, tracker, clock):
        clock.advance(timedelta(minutes=4))
        await tracker.update(is_wasteful=True)
        state = await tracker.refill()
        assert state.remaining == timedelta(minutes=5)
        assert state.accumulated_idle == timedelta(0)
        assert state.last_update == clock.now()

    async def test_status_reports_overfill(self, tracker, clock):
        clock.advance(timedelta(minutes=5))
        await tracker.update(is_wasteful=False, is_good_app=True)
        status = await tracker.get_status()
        assert status["overfill_seconds"] == 600.0
        assert status["percent_remaining"] == 300.0

    async def test_reads_are_clamped_after_capacity_shrinks(self, tracker, clock):
        clock.advance(timedelta(minutes=10))
        await tracker.update(is_wasteful=False, is_good_app=True)
        await tracker.update_config(max_overfill=0)

        assert await tracker.get_remaining() == timedelta(minutes=5)
        status = await tracker.get_status()
        assert status["remaining_seconds"] == 300.0
        assert status["overfill_seconds"] == 0.0


class SteppingClock(ManualClock):
    """Moves forward one minute every time it is read."""

    def now(self):
        current = super().now()
        self.advance(timedelta(minutes=1))
        return current


@pytest.mark.asyncio
class TestConcurrentUpdates:
    async def test_concurrent_updates_are_serialised(self, session_factory):
        clock = SteppingClock(T0)
        tracker = BudgetTracker(session_factory, clock=clock, config_defaults=Settings())
        await tracker.ensure_config()

        results = await asyncio.gather(*(tracker.update(is_wasteful=True) for _ in range(4)))

        # Each update drains the minute since the previous one; none is lost
        assert sorted(r.remaining for r in results) == [timedelta(minutes=m) for m in (1, 2, 3, 4)]
        state = await tracker.load_state()
        assert state.remaining == timedelta(minutes=1)
        assert state.last_update == T0 + timedelta(minutes=4)
