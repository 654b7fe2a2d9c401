import asyncio
from datetime import timedelta

from timelinter.budget import engine
from timelinter.budget.models import BudgetConfig, BudgetState, BudgetSummary
from timelinter.clock import (
    Clock,
    SystemClock,
    duration_from_millis,
    duration_to_millis,
    from_millis,
    to_millis,
)
from timelinter.config import Settings, settings as default_settings
from timelinter.models import BudgetSettingsRecord, BudgetStateRecord
from timelinter.observability.logger import get_logger

log = get_logger("budget")

CONFIG_FIELDS = (
    "max_threshold",
    "replenish_interval",
    "replenish_amount",
    "max_overfill",
    "overfill_decay_per_hour",
    "good_app_reward_interval",
    "good_app_reward_amount",
)


def _config_from_record(record: BudgetSettingsRecord) -> BudgetConfig:
    return BudgetConfig.from_minutes(
        **{name: getattr(record, f"{name}_minutes") for name in CONFIG_FIELDS}
    )


def _state_from_record(record: BudgetStateRecord) -> BudgetState:
    return BudgetState(
        remaining=duration_from_millis(record.remaining_ms),
        accumulated_idle=duration_from_millis(record.accumulated_idle_ms),
        accumulated_good_app=duration_from_millis(record.accumulated_good_ms),
        last_update=from_millis(record.last_update_ms),
    )


def _write_state(record: BudgetStateRecord, state: BudgetState):
    record.remaining_ms = duration_to_millis(state.remaining)
    record.accumulated_idle_ms = duration_to_millis(state.accumulated_idle)
    record.accumulated_good_ms = duration_to_millis(state.accumulated_good_app)
    record.last_update_ms = to_millis(state.last_update)


class BudgetTracker:
    """Loads, advances and persists the budget bucket.

    One tracker owns one bucket; `update` is serialised with a lock so the
    poller and the reply path never interleave a read-modify-write.
    """

    def __init__(self, session_factory, clock: Clock | None = None, config_defaults: Settings | None = None):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.defaults = config_defaults or default_settings
        self._lock = asyncio.Lock()

    async def ensure_config(self):
        """Ensure budget settings and bucket state rows exist."""
        async with self.session_factory() as session:
            record = await session.get(BudgetSettingsRecord, 1)
            if not record:
                record = BudgetSettingsRecord(
                    id=1,
                    max_threshold_minutes=self.defaults.max_threshold_minutes,
                    replenish_interval_minutes=self.defaults.replenish_interval_minutes,
                    replenish_amount_minutes=self.defaults.replenish_amount_minutes,
                    max_overfill_minutes=self.defaults.max_overfill_minutes,
                    overfill_decay_per_hour_minutes=self.defaults.overfill_decay_per_hour_minutes,
                    good_app_reward_interval_minutes=self.defaults.good_app_reward_interval_minutes,
                    good_app_reward_amount_minutes=self.defaults.good_app_reward_amount_minutes,
                    response_timer_minutes=self.defaults.response_timer_minutes,
                )
                session.add(record)
                log.info("budget_settings_seeded", max_threshold_minutes=record.max_threshold_minutes)

            config = _config_from_record(record)
            state_record = await session.get(BudgetStateRecord, 1)
            if not state_record:
                state = BudgetState.initial(config, self.clock.now())
                state_record = BudgetStateRecord(id=1)
                _write_state(state_record, state)
                session.add(state_record)
                log.info("budget_state_created", remaining_ms=state_record.remaining_ms)

            await session.commit()

    async def get_config(self) -> BudgetConfig:
        async with self.session_factory() as session:
            record = await session.get(BudgetSettingsRecord, 1)
            if not record:
                raise LookupError("budget settings missing; call ensure_config() first")
            return _config_from_record(record)

    async def get_response_timeout(self) -> timedelta:
        async with self.session_factory() as session:
            record = await session.get(BudgetSettingsRecord, 1)
            minutes = record.response_timer_minutes if record else self.defaults.response_timer_minutes
            return timedelta(minutes=minutes)

    async def update_config(self, **minutes: int) -> BudgetConfig:
        """Change one or more settings, e.g. `update_config(max_threshold=10)`.

        Values are whole minutes. Unknown names raise KeyError; negative
        values are rejected by BudgetConfig validation before anything is
        written.
        """
        allowed = set(CONFIG_FIELDS) | {"response_timer"}
        unknown = set(minutes) - allowed
        if unknown:
            raise KeyError(f"unknown budget settings: {sorted(unknown)}")

        async with self._lock:
            async with self.session_factory() as session:
                record = await session.get(BudgetSettingsRecord, 1)
                if not record:
                    raise LookupError("budget settings missing; call ensure_config() first")
                current = {name: getattr(record, f"{name}_minutes") for name in CONFIG_FIELDS}
                current.update({k: v for k, v in minutes.items() if k in CONFIG_FIELDS})
                config = BudgetConfig.from_minutes(**current)

                for name, value in minutes.items():
                    if name == "response_timer" and value < 0:
                        raise ValueError("response_timer must be >= 0")
                    setattr(record, f"{name}_minutes", value)
                await session.commit()

        log.info("budget_settings_updated", **minutes)
        return config

    async def load_state(self) -> BudgetState:
        """Stored state, with `remaining` clamped to the current capacity."""
        async with self.session_factory() as session:
            settings_record = await session.get(BudgetSettingsRecord, 1)
            record = await session.get(BudgetStateRecord, 1)
            if not settings_record or not record:
                raise LookupError("budget state missing; call ensure_config() first")
            state = _state_from_record(record)
            remaining = engine.clamp(state.remaining, _config_from_record(settings_record))
            return state.model_copy(update={"remaining": remaining})

    async def get_remaining(self) -> timedelta:
        return (await self.load_state()).remaining

    async def update(self, is_wasteful: bool, is_good_app: bool = False) -> BudgetState:
        """Advance the bucket to now and persist the new state atomically."""
        async with self._lock:
            async with self.session_factory() as session:
                settings_record = await session.get(BudgetSettingsRecord, 1)
                record = await session.get(BudgetStateRecord, 1)
                if not settings_record or not record:
                    raise LookupError("budget not initialised; call ensure_config() first")

                config = _config_from_record(settings_record)
                previous = _state_from_record(record)
                state = engine.update(previous, is_wasteful, is_good_app, self.clock.now(), config)
                engine.check_invariants(state, config)

                _write_state(record, state)
                await session.commit()

        if state.remaining != previous.remaining:
            log.debug(
                "budget_updated",
                wasteful=is_wasteful,
                good_app=is_good_app,
                remaining_ms=duration_to_millis(state.remaining),
                delta_ms=duration_to_millis(state.remaining - previous.remaining),
            )
        return state

    async def refill(self) -> BudgetState:
        """Reset the bucket to a full threshold, dropping any overfill and carries."""
        async with self._lock:
            async with self.session_factory() as session:
                settings_record = await session.get(BudgetSettingsRecord, 1)
                record = await session.get(BudgetStateRecord, 1)
                if not settings_record or not record:
                    raise LookupError("budget not initialised; call ensure_config() first")
                state = BudgetState.initial(_config_from_record(settings_record), self.clock.now())
                _write_state(record, state)
                await session.commit()
        log.info("budget_refilled", remaining_ms=duration_to_millis(state.remaining))
        return state

    async def get_status(self) -> dict:
        config = await self.get_config()
        state = await self.load_state()
        capacity = config.capacity.total_seconds()
        threshold = config.max_threshold.total_seconds()
        remaining = state.remaining.total_seconds()
        summary = BudgetSummary(
            remaining_seconds=remaining,
            max_threshold_seconds=threshold,
            capacity_seconds=capacity,
            overfill_seconds=engine.overfill(state, config).total_seconds(),
            percent_remaining=round((remaining / threshold) * 100, 1) if threshold > 0 else 0.0,
            last_update=state.last_update.isoformat(),
        )
        return summary.model_dump()
