from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum


@dataclass(frozen=True)
class Allow:
    """Grant time; app-scoped when `app` is set, otherwise for every wasteful app."""

    duration: timedelta
    app: str | None = None


@dataclass(frozen=True)
class Remember:
    """Store a fact for later turns. `duration=None` means permanent."""

    content: str
    duration: timedelta | None = None


ToolCommand = Allow | Remember

# Largest minute count a command may carry (signed 32-bit range)
MAX_COMMAND_MINUTES = 2**31 - 1


class ToolCallIssueReason(StrEnum):
    TEXT_TOOL_FORMAT = "TEXT_TOOL_FORMAT"
    INVALID_ARGS = "INVALID_ARGS"
    UNSUPPORTED_TOOL = "UNSUPPORTED_TOOL"


@dataclass(frozen=True)
class ToolCallIssue:
    reason: ToolCallIssueReason
    raw_text: str


@dataclass(frozen=True)
class ParsedResponse:
    user_message: str
    tools: list[ToolCommand] = field(default_factory=list)
    tool_errors: list[ToolCallIssue] = field(default_factory=list)
