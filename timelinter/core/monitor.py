import asyncio
import dataclasses
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import assert_never

from timelinter.budget.tracker import BudgetTracker
from timelinter.budget.trigger import should_trigger
from timelinter.clock import Clock, SystemClock
from timelinter.core.allow_store import AllowStore
from timelinter.core.state import ConversationActive, InteractionStateManager, Observing, WaitingForResponse
from timelinter.memory.store import MemoryStore
from timelinter.observability.events import EventLog, EventType
from timelinter.observability.logger import get_logger
from timelinter.tools.function_calls import parse_function_calls
from timelinter.tools.intent import infer_allow
from timelinter.tools.parser import parse
from timelinter.tools.types import Allow, ParsedResponse, Remember, ToolCommand

log = get_logger("monitor")


class TickAction(StrEnum):
    NONE = "none"
    INTERVENE = "intervene"  # send the first coaching message
    FOLLOW_UP = "follow_up"  # user did not answer in time, nudge again
    RESET = "reset"  # user left wasteful apps mid-conversation


@dataclass(frozen=True)
class TickResult:
    action: TickAction
    remaining: timedelta
    state: str
    allowed: bool


class UsageMonitor:
    """Drives one monitoring session: poller ticks on one side, coach replies on the other.

    Both entry points take the same lock so they never interleave writes
    to the bucket, the conversation state or the allow-list.
    """

    def __init__(
        self,
        tracker: BudgetTracker,
        state: InteractionStateManager,
        memory: MemoryStore,
        events: EventLog | None = None,
        clock: Clock | None = None,
        infer_allow_from_text: bool = False,
        allows: AllowStore | None = None,
    ):
        self.tracker = tracker
        self.state = state
        self.memory = memory
        self.events = events or EventLog(clock=clock)
        self.clock = clock or SystemClock()
        self.infer_allow_from_text = infer_allow_from_text
        self.allows = allows
        self._lock = asyncio.Lock()
        self._current_app: str | None = None
        self._bucket_empty = False

    async def tick(self, app: str | None, is_wasteful: bool, is_good_app: bool = False) -> TickResult:
        """One poll of the foreground app."""
        async with self._lock:
            if app != self._current_app:
                self.events.log(EventType.APP, app or "(none)", f"wasteful={is_wasteful} good={is_good_app}")
                self._current_app = app

            budget = await self.tracker.update(is_wasteful, is_good_app)
            empty = budget.remaining <= timedelta(0)
            if empty != self._bucket_empty:
                self.events.log(EventType.BUCKET, "empty" if empty else "refilling", f"remaining={budget.remaining}")
                self._bucket_empty = empty

            self.state.cleanup_expired_allows()
            allowed = self.state.is_allowed(app)
            action = TickAction.NONE

            match self.state.state:
                case Observing():
                    if should_trigger(is_wasteful, allowed, budget.remaining):
                        log.info("threshold_exceeded", app=app)
                        self.state.start_conversation()
                        action = TickAction.INTERVENE
                case ConversationActive():
                    if not is_wasteful:
                        self.state.reset_to_observing("left wasteful app")
                        action = TickAction.RESET
                case WaitingForResponse():
                    if not is_wasteful:
                        self.state.reset_to_observing("left wasteful app")
                        action = TickAction.RESET
                    elif self.state.is_response_timed_out():
                        log.info("response_timed_out", app=app)
                        self.state.continue_conversation()
                        action = TickAction.FOLLOW_UP
                case _:
                    assert_never(self.state.state)

            return TickResult(
                action=action,
                remaining=budget.remaining,
                state=self.state.state_name,
                allowed=allowed,
            )

    async def handle_ai_response(self, response: str | list | dict, app: str | None = None) -> ParsedResponse:
        """Apply the commands in a coach reply and move the conversation along.

        Plain text is parsed for command markers; lists and dicts are
        treated as structured function-call parts.
        """
        parsed = parse(response) if isinstance(response, str) else parse_function_calls(response)

        async with self._lock:
            for issue in parsed.tool_errors:
                self.events.log(EventType.TOOL_ERROR, issue.reason.value, issue.raw_text)

            allow_applied = await self._apply_tools(parsed.tools)

            if not allow_applied and self.infer_allow_from_text and parsed.user_message:
                inferred = infer_allow(parsed.user_message, app)
                if inferred:
                    log.info("allow_inferred", minutes=inferred.duration.total_seconds() / 60, app=inferred.app)
                    await self._apply_tools([inferred])
                    parsed = dataclasses.replace(parsed, tools=[*parsed.tools, inferred])
                    allow_applied = True

            if parsed.user_message:
                self.events.log(EventType.MESSAGE, "coach", parsed.user_message)

            if allow_applied or not parsed.user_message:
                if not self.state.is_observing():
                    self.state.reset_to_observing("conversation closed")
            else:
                self.state.response_timeout = await self.tracker.get_response_timeout()
                self.state.start_waiting_for_response()

        return parsed

    async def apply_tools(self, tools: list[ToolCommand]) -> bool:
        async with self._lock:
            return await self._apply_tools(tools)

    async def _apply_tools(self, tools: list[ToolCommand]) -> bool:
        """Returns True when at least one Allow was applied."""
        allow_applied = False
        for tool in tools:
            match tool:
                case Allow():
                    self.state.apply_allow_command(tool)
                    allow_applied = True
                case Remember(content=content, duration=None):
                    await self.memory.add_permanent_memory(content)
                    self.events.log(EventType.TOOL, "REMEMBER FOREVER", content)
                case Remember(content=content, duration=duration):
                    await self.memory.add_temporary_memory(content, duration, self.clock.now())
                    self.events.log(EventType.TOOL, f"REMEMBER {int(duration.total_seconds() // 60)}m", content)
                case _:
                    assert_never(tool)
        if allow_applied and self.allows:
            await self.allows.save(self.state)
        return allow_applied

    async def handle_user_reply(self, text: str):
        """The user answered; the caller forwards `text` to the coach next."""
        async with self._lock:
            self.events.log(EventType.MESSAGE, "user", text)
            self.state.continue_conversation()

    async def memory_context(self) -> str:
        return await self.memory.get_all_memories(self.clock.now())

    async def status(self) -> dict:
        budget = await self.tracker.get_status()
        now = self.clock.now()
        return {
            "state": self.state.state_name,
            "budget": budget,
            "current_app": self._current_app,
            "allows": [
                {"app": a.app, "expires_at": a.expires_at.isoformat(), "remaining_seconds": a.remaining(now).total_seconds()}
                for a in self.state.active_allows()
            ],
        }
