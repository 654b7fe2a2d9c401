from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from timelinter.budget.tracker import BudgetTracker
from timelinter.clock import Clock, SystemClock
from timelinter.config import Settings, settings as default_settings
from timelinter.core.allow_store import AllowStore
from timelinter.core.monitor import UsageMonitor
from timelinter.core.state import InteractionStateManager
from timelinter.database import create_engine, create_session_factory, init_db
from timelinter.memory.store import MemoryStore
from timelinter.observability.events import EventLog, EventType
from timelinter.observability.logger import get_logger, setup_logging

log = get_logger("main")


@dataclass
class Runtime:
    engine: AsyncEngine
    monitor: UsageMonitor
    events: EventLog

    async def close(self):
        await self.engine.dispose()
        log.info("timelinter_stopped")


async def create_runtime(
    config: Settings | None = None,
    clock: Clock | None = None,
    database_url: str | None = None,
    persist_events: bool = True,
) -> Runtime:
    """Wire database, bucket, conversation state, memory and event log for one session."""
    config = config or default_settings
    clock = clock or SystemClock()
    setup_logging(config.log_level)
    log.info("timelinter_starting")

    # 1. Database tables
    engine = create_engine(database_url or config.resolved_database_url)
    await init_db(engine)
    session_factory = create_session_factory(engine)

    # 2. Event log
    events = EventLog(
        data_dir=config.data_dir if persist_events else None,
        clock=clock,
        retention_days=config.event_log_retention_days,
    )
    events.prune()

    # 3. Budget bucket
    tracker = BudgetTracker(session_factory, clock=clock, config_defaults=config)
    await tracker.ensure_config()

    # 4. Conversation state + memory
    state = InteractionStateManager(
        clock=clock,
        response_timeout=await tracker.get_response_timeout(),
        event_sink=events,
    )
    allows = AllowStore(session_factory, clock=clock)
    await allows.restore(state)
    memory = MemoryStore(session_factory, clock=clock, timezone=config.memory_timezone)

    monitor = UsageMonitor(
        tracker,
        state,
        memory,
        events=events,
        clock=clock,
        infer_allow_from_text=config.infer_allow_from_text,
        allows=allows,
    )
    events.log(EventType.SYSTEM, "started", f"remaining={await tracker.get_remaining()}")
    log.info("timelinter_ready", state=state.state_name)
    return Runtime(engine=engine, monitor=monitor, events=events)
