import uuid
from collections import defaultdict
from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select

from timelinter.clock import Clock, SystemClock, from_millis, to_millis
from timelinter.config import settings
from timelinter.memory.models import MemoryItem, TemporaryGroup
from timelinter.models import MemoryRulesRecord, PermanentMemoryRecord, TemporaryMemoryRecord
from timelinter.observability.logger import get_logger

log = get_logger("memory")

DEFAULT_MEMORY_RULES = (
    "Remember only what will help in a later conversation: the user's goals, "
    "recurring excuses, agreed exceptions and schedules.\n"
    "Use REMEMBER FOREVER for stable facts and a duration in minutes for anything "
    "that only matters today.\n"
    "Never store secrets or anything the user asked you to forget."
)


def _zone(name: str) -> tzinfo:
    return UTC if name.upper() == "UTC" else ZoneInfo(name)


class MemoryStore:
    """Permanent and expiring facts given to the coach as context.

    The permanent memory is a single text blob. Temporary memories are
    independent rows, each with its own expiry; expired rows are deleted
    by whichever read first notices them.
    """

    def __init__(self, session_factory, clock: Clock | None = None, timezone: str | None = None):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.timezone = _zone(timezone or settings.memory_timezone)

    # ── Permanent ────────────────────────────────────────────────────────

    async def get_permanent_memory(self) -> str:
        async with self.session_factory() as session:
            record = await session.get(PermanentMemoryRecord, 1)
            return record.content if record else ""

    async def add_permanent_memory(self, content: str):
        async with self.session_factory() as session:
            record = await session.get(PermanentMemoryRecord, 1)
            if not record:
                record = PermanentMemoryRecord(id=1, content="")
                session.add(record)
            record.content = f"{record.content}\n{content}" if record.content else content
            await session.commit()
        log.info("permanent_memory_added", content=content[:64])

    async def set_permanent_memory(self, content: str):
        async with self.session_factory() as session:
            record = await session.get(PermanentMemoryRecord, 1)
            if not record:
                session.add(PermanentMemoryRecord(id=1, content=content))
            else:
                record.content = content
            await session.commit()
        log.info("permanent_memory_replaced", content=content[:64])

    # ── Temporary ────────────────────────────────────────────────────────

    async def add_temporary_memory(self, content: str, duration: timedelta, now: datetime | None = None) -> str:
        """Store `content` until `now + duration`. Returns the new item's key."""
        now = now or self.clock.now()
        key = uuid.uuid4().hex
        async with self.session_factory() as session:
            session.add(
                TemporaryMemoryRecord(
                    key=key,
                    content=content,
                    created_at_ms=to_millis(now),
                    expires_at_ms=to_millis(now + duration),
                )
            )
            await session.commit()
        log.info("temporary_memory_added", key=key, minutes=duration.total_seconds() / 60, content=content[:64])
        return key

    async def _active_temporary(self, session, now: datetime) -> list[MemoryItem]:
        """Unexpired temporary items in storage order. Deletes expired and corrupt rows."""
        result = await session.execute(select(TemporaryMemoryRecord).order_by(TemporaryMemoryRecord.seq))
        active = []
        stale = []
        for record in result.scalars().all():
            if record.expires_at_ms is None:
                log.warning("corrupt_temporary_memory_removed", key=record.key)
                stale.append(record.seq)
                continue
            item = MemoryItem(
                key=record.key,
                content=record.content,
                created_at=from_millis(record.created_at_ms),
                expires_at=from_millis(record.expires_at_ms),
            )
            if item.is_expired_at(now):
                log.debug("temporary_memory_expired", key=record.key, content=record.content[:64])
                stale.append(record.seq)
            else:
                active.append(item)

        if stale:
            await session.execute(delete(TemporaryMemoryRecord).where(TemporaryMemoryRecord.seq.in_(stale)))
            await session.commit()
        return active

    async def get_temporary_memories(self, now: datetime | None = None) -> list[MemoryItem]:
        now = now or self.clock.now()
        async with self.session_factory() as session:
            return await self._active_temporary(session, now)

    async def get_all_memories(self, now: datetime | None = None) -> str:
        """Permanent blob first, then every unexpired temporary item, newline-joined."""
        now = now or self.clock.now()
        async with self.session_factory() as session:
            record = await session.get(PermanentMemoryRecord, 1)
            memories = [record.content] if record and record.content else []
            memories.extend(item.content for item in await self._active_temporary(session, now))
        return "\n".join(memories)

    async def get_active_groups_by_expiry_date(self, now: datetime | None = None) -> list[TemporaryGroup]:
        now = now or self.clock.now()
        async with self.session_factory() as session:
            items = await self._active_temporary(session, now)

        groups: dict = defaultdict(list)
        for item in items:
            groups[item.expires_at.astimezone(self.timezone).date()].append(item.content)
        return [TemporaryGroup(expiry_date=day, items=groups[day]) for day in sorted(groups)]

    async def clear_all(self):
        """Drop the permanent blob and every temporary item. Memory rules are kept."""
        async with self.session_factory() as session:
            await session.execute(delete(TemporaryMemoryRecord))
            await session.execute(delete(PermanentMemoryRecord))
            await session.commit()
        log.info("memories_cleared")

    # ── Rules ────────────────────────────────────────────────────────────

    async def get_memory_rules(self) -> str:
        async with self.session_factory() as session:
            record = await session.get(MemoryRulesRecord, 1)
            return record.content if record else DEFAULT_MEMORY_RULES

    async def set_memory_rules(self, rules: str):
        async with self.session_factory() as session:
            record = await session.get(MemoryRulesRecord, 1)
            if not record:
                session.add(MemoryRulesRecord(id=1, content=rules))
            else:
                record.content = rules
            await session.commit()
        log.info("memory_rules_updated", length=len(rules))
