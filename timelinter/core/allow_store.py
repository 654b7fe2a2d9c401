from sqlalchemy import delete, select

from timelinter.clock import Clock, SystemClock, from_millis, to_millis
from timelinter.core.state import InteractionStateManager
from timelinter.models import AllowGrantRecord
from timelinter.observability.logger import get_logger

log = get_logger("allow_store")

GLOBAL_ALLOW_KEY = "_GLOBAL_ALLOW"


class AllowStore:
    """Keeps the allow-list across restarts, one row per app plus one for the global grant."""

    def __init__(self, session_factory, clock: Clock | None = None):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()

    async def save(self, state: InteractionStateManager):
        """Replace the stored grants with the manager's unexpired ones."""
        allows = state.active_allows()
        async with self.session_factory() as session:
            await session.execute(delete(AllowGrantRecord))
            for allow in allows:
                session.add(
                    AllowGrantRecord(
                        key=allow.app or GLOBAL_ALLOW_KEY,
                        app=allow.app,
                        expires_at_ms=to_millis(allow.expires_at),
                    )
                )
            await session.commit()
        log.debug("allows_saved", count=len(allows))

    async def restore(self, state: InteractionStateManager) -> int:
        """Load unexpired grants into `state`, dropping expired rows. Returns grants restored."""
        now_ms = to_millis(self.clock.now())
        restored = 0
        async with self.session_factory() as session:
            result = await session.execute(select(AllowGrantRecord))
            expired = []
            for record in result.scalars().all():
                if record.expires_at_ms <= now_ms:
                    expired.append(record.key)
                    continue
                until = from_millis(record.expires_at_ms)
                if record.key == GLOBAL_ALLOW_KEY:
                    state.global_allowed_until = until
                else:
                    state.per_app_allowed_until[record.app or record.key] = until
                restored += 1

            if expired:
                await session.execute(delete(AllowGrantRecord).where(AllowGrantRecord.key.in_(expired)))
                await session.commit()

        if restored or expired:
            log.info("allows_restored", restored=restored, expired=len(expired))
        return restored
