from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, assert_never

from timelinter.clock import Clock, SystemClock
from timelinter.observability.logger import get_logger
from timelinter.tools.types import Allow

log = get_logger("state")

DEFAULT_RESPONSE_TIMEOUT = timedelta(minutes=1)

EventSink = Callable[..., object]


@dataclass(frozen=True)
class Observing:
    pass


@dataclass(frozen=True)
class ConversationActive:
    pass


@dataclass(frozen=True)
class WaitingForResponse:
    timeout: datetime


InteractionState = Observing | ConversationActive | WaitingForResponse


def state_name(state: InteractionState) -> str:
    match state:
        case Observing():
            return "Observing"
        case ConversationActive():
            return "ConversationActive"
        case WaitingForResponse():
            return "WaitingForResponse"
        case _:
            assert_never(state)


@dataclass(frozen=True)
class ActiveAllow:
    app: str | None  # None = every wasteful app
    expires_at: datetime

    def remaining(self, now: datetime) -> timedelta:
        return max(timedelta(0), self.expires_at - now)


class InteractionStateManager:
    """Conversation state for one monitoring session, plus the allow-list.

    The conversation state is not persisted; a new process starts in
    Observing. Grants survive restarts through AllowStore.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        response_timeout: timedelta = DEFAULT_RESPONSE_TIMEOUT,
        event_sink: EventSink | None = None,
    ):
        self.clock = clock or SystemClock()
        self.response_timeout = response_timeout
        self.event_sink = event_sink
        self._state: InteractionState = Observing()
        self._last_state_change = self.clock.now()
        self.global_allowed_until: datetime | None = None
        self.per_app_allowed_until: dict[str, datetime] = {}

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def state(self) -> InteractionState:
        return self._state

    @property
    def state_name(self) -> str:
        return state_name(self._state)

    def is_observing(self) -> bool:
        return isinstance(self._state, Observing)

    def is_conversing(self) -> bool:
        return isinstance(self._state, ConversationActive)

    def is_waiting_for_response(self) -> bool:
        return isinstance(self._state, WaitingForResponse)

    def is_response_timed_out(self) -> bool:
        match self._state:
            case WaitingForResponse(timeout=timeout):
                return self.clock.now() >= timeout
            case Observing() | ConversationActive():
                return False
            case _:
                assert_never(self._state)

    def time_until_response_timeout(self) -> timedelta:
        match self._state:
            case WaitingForResponse(timeout=timeout):
                return max(timedelta(0), timeout - self.clock.now())
            case Observing() | ConversationActive():
                return timedelta(0)
            case _:
                assert_never(self._state)

    def time_since_last_state_change(self) -> timedelta:
        return self.clock.now() - self._last_state_change

    # ── Transitions ──────────────────────────────────────────────────────

    def _transition(self, new_state: InteractionState, reason: str):
        previous = self._state
        self._state = new_state
        self._last_state_change = self.clock.now()
        log.info("state_changed", previous=state_name(previous), state=self.state_name, reason=reason)
        if self.event_sink:
            self.event_sink("STATE", self.state_name, reason)

    def start_conversation(self):
        self._transition(ConversationActive(), "threshold exceeded")

    def start_waiting_for_response(self):
        if not self.is_conversing():
            log.warning("wait_without_conversation", state=self.state_name)
        timeout = self.clock.now() + self.response_timeout
        self._transition(WaitingForResponse(timeout=timeout), f"response due {timeout.isoformat()}")

    def continue_conversation(self):
        if not self.is_waiting_for_response():
            log.warning("continue_without_wait", state=self.state_name)
        self._transition(ConversationActive(), "continuing")

    def reset_to_observing(self, reason: str = "reset"):
        self._transition(Observing(), reason)

    # ── Allow-list ───────────────────────────────────────────────────────

    def apply_allow_command(self, command: Allow):
        now = self.clock.now()
        app = command.app.strip() if command.app and command.app.strip() else None

        if command.duration <= timedelta(0):
            # Zero or negative grant withdraws the existing one
            if app is None:
                self.global_allowed_until = None
            else:
                self.per_app_allowed_until.pop(app, None)
            log.info("allow_removed", app=app)
        else:
            until = now + command.duration
            if app is None:
                self.global_allowed_until = until
            else:
                self.per_app_allowed_until[app] = until
            log.info("allow_applied", app=app or "all wasteful apps", until=until.isoformat())
            if self.event_sink:
                self.event_sink("TOOL", f"ALLOW {app or 'all apps'}", f"until {until.isoformat()}")

        self.reset_to_observing("allow granted")

    def is_allowed(self, app: str | None = None) -> bool:
        now = self.clock.now()
        if self.global_allowed_until is not None and now < self.global_allowed_until:
            log.debug("global_allow_active", until=self.global_allowed_until.isoformat())
            return True
        if app is not None:
            until = self.per_app_allowed_until.get(app)
            if until is not None and now < until:
                log.debug("app_allow_active", app=app, until=until.isoformat())
                return True
        return False

    def active_allows(self) -> list[ActiveAllow]:
        now = self.clock.now()
        allows = [ActiveAllow(app, until) for app, until in self.per_app_allowed_until.items() if now < until]
        if self.global_allowed_until is not None and now < self.global_allowed_until:
            allows.append(ActiveAllow(None, self.global_allowed_until))
        return sorted(allows, key=lambda a: a.expires_at)

    def cleanup_expired_allows(self) -> int:
        now = self.clock.now()
        expired = [app for app, until in self.per_app_allowed_until.items() if now >= until]
        for app in expired:
            del self.per_app_allowed_until[app]
            log.debug("allow_expired", app=app)
        if self.global_allowed_until is not None and now >= self.global_allowed_until:
            self.global_allowed_until = None
            expired.append("*")
        return len(expired)
