"""Line-oriented command markers inside the coach's reply.

    ALLOW 15 YouTube
    # REMEMBER 60: Be extra strict today
    REMEMBER FOREVER: Wednesdays 1h of Instagram is for work

Marker lines never reach the user, whether or not they parse.
"""

import re
from datetime import timedelta

from timelinter.observability.logger import get_logger
from timelinter.tools.types import (
    MAX_COMMAND_MINUTES,
    Allow,
    ParsedResponse,
    Remember,
    ToolCallIssue,
    ToolCallIssueReason,
    ToolCommand,
)

log = get_logger("tool_parser")

_ALLOW_LINE = re.compile(r"^#?\s*ALLOW\b(?P<rest>.*)$")
_REMEMBER_LINE = re.compile(r"^#?\s*REMEMBER\b(?P<rest>.*)$")
# Function-call syntax written out as plain text, e.g. `allow(minutes=10)`
_TEXT_CALL_LINE = re.compile(r"^#?\s*(allow|remember)\s*\(.*\)\s*$", re.IGNORECASE)

FOREVER = "FOREVER"


def _positive_int(text: str) -> int | None:
    if not text.isdecimal():
        return None
    value = int(text)
    return value if 0 < value <= MAX_COMMAND_MINUTES else None


def parse_allow(rest: str) -> Allow | None:
    parts = rest.strip().split(maxsplit=1)
    if not parts:
        return None
    minutes = _positive_int(parts[0])
    if minutes is None:
        return None
    app = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None
    return Allow(duration=timedelta(minutes=minutes), app=app)


def parse_remember(rest: str) -> Remember | None:
    if ":" not in rest:
        return None
    duration_part, content = (s.strip() for s in rest.split(":", 1))
    if not content:
        return None
    if duration_part.upper() == FOREVER:
        return Remember(content=content, duration=None)
    minutes = _positive_int(duration_part)
    if minutes is None:
        return None
    return Remember(content=content, duration=timedelta(minutes=minutes))


def parse_command_line(line: str) -> tuple[bool, ToolCommand | None, ToolCallIssue | None]:
    """Classify one line: (is_command_line, parsed command, issue)."""
    stripped = line.strip()

    match = _ALLOW_LINE.match(stripped)
    if match:
        command = parse_allow(match.group("rest"))
        if command is None:
            log.warning("invalid_allow_command", line=stripped)
            return True, None, ToolCallIssue(ToolCallIssueReason.INVALID_ARGS, stripped)
        return True, command, None

    match = _REMEMBER_LINE.match(stripped)
    if match:
        command = parse_remember(match.group("rest"))
        if command is None:
            log.warning("invalid_remember_command", line=stripped)
            return True, None, ToolCallIssue(ToolCallIssueReason.INVALID_ARGS, stripped)
        return True, command, None

    if _TEXT_CALL_LINE.match(stripped):
        log.warning("text_tool_call", line=stripped)
        return True, None, ToolCallIssue(ToolCallIssueReason.TEXT_TOOL_FORMAT, stripped)

    return False, None, None


def strip_command_lines(text: str) -> str:
    kept = [line for line in text.splitlines() if not parse_command_line(line)[0]]
    return "\n".join(kept).strip()


def parse(raw_text: str) -> ParsedResponse:
    """Split a reply into the user-visible message and the commands it carries."""
    tools: list[ToolCommand] = []
    issues: list[ToolCallIssue] = []
    message_lines: list[str] = []

    for line in raw_text.splitlines():
        is_command, command, issue = parse_command_line(line)
        if not is_command:
            message_lines.append(line)
            continue
        if command is not None:
            tools.append(command)
        if issue is not None:
            issues.append(issue)

    user_message = "\n".join(message_lines).strip()
    log.debug("response_parsed", tools=len(tools), issues=len(issues), message=user_message[:50])
    return ParsedResponse(user_message=user_message, tools=tools, tool_errors=issues)
