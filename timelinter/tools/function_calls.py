import json
from datetime import timedelta
from typing import Any

from timelinter.observability.logger import get_logger
from timelinter.tools.parser import strip_command_lines
from timelinter.tools.types import (
    MAX_COMMAND_MINUTES,
    Allow,
    ParsedResponse,
    Remember,
    ToolCallIssue,
    ToolCallIssueReason,
    ToolCommand,
)

log = get_logger("function_calls")


def function_declarations() -> list[dict]:
    """Tool schemas offered to the model for native function calling."""
    return [
        {
            "name": "allow",
            "description": (
                "Grants additional time to the user. Use this when the user requests a break, "
                "acknowledges they need time, or when you want to give them extra time. If the user "
                "mentions a duration, use that duration; otherwise pick a reasonable default."
            ),
            "parameters": {
                "minutes": {"type": "integer", "description": "Minutes to grant. Must be a positive integer."},
                "app": {
                    "type": "string",
                    "description": "Optional app to allow. If omitted the allowance covers all apps.",
                },
            },
            "required": ["minutes"],
        },
        {
            "name": "remember",
            "description": (
                "Stores information so it can be recalled in future conversations. "
                "If minutes is given the memory expires after that long; otherwise it is permanent."
            ),
            "parameters": {
                "content": {"type": "string", "description": "A clear, concise fact to remember."},
                "minutes": {"type": "integer", "description": "Optional lifetime in minutes."},
            },
            "required": ["content"],
        },
    ]


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdecimal():
        return int(value.strip())
    return None


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def tool_from_call(name: str, args: dict | None) -> ToolCommand | None:
    """Build a command from a function call, or None when the arguments are unusable."""
    args = args or {}
    match name.lower():
        case "allow":
            minutes = _as_int(args.get("minutes"))
            if minutes is None or not 0 < minutes <= MAX_COMMAND_MINUTES:
                return None
            return Allow(duration=timedelta(minutes=minutes), app=_clean_str(args.get("app")))
        case "remember":
            content = _clean_str(args.get("content"))
            if content is None:
                return None
            raw_minutes = args.get("minutes")
            if raw_minutes is None:
                return Remember(content=content, duration=None)
            minutes = _as_int(raw_minutes)
            if minutes is None or not 0 < minutes <= MAX_COMMAND_MINUTES:
                return None
            return Remember(content=content, duration=timedelta(minutes=minutes))
    raise LookupError(name)


def _load_parts(payload: str | list | dict) -> list:
    if isinstance(payload, str):
        cleaned = payload.strip()
        if cleaned.startswith("```"):
            first_newline = cleaned.find("\n")
            if first_newline > 0:
                cleaned = cleaned[first_newline + 1 :]
            if cleaned.rstrip().endswith("```"):
                cleaned = cleaned.rstrip()[:-3].rstrip()
        try:
            payload = json.loads(cleaned)
        except (json.JSONDecodeError, ValueError):
            # Not structured after all: treat as a plain text part
            return [{"text": payload}]

    if isinstance(payload, dict):
        # A single part, or a wrapper such as {"parts": [...]}
        return payload.get("parts", [payload])
    if isinstance(payload, list):
        return payload
    return []


def parse_function_calls(payload: str | list | dict) -> ParsedResponse:
    """Parse a structured response made of text parts and function-call parts.

    Accepts a list of parts or a JSON document of one. Parts look like
    `{"text": "..."}`, `{"function_call": {"name": ..., "args": {...}}}`
    or `{"name": ..., "args": {...}}`.
    """
    tools: list[ToolCommand] = []
    issues: list[ToolCallIssue] = []
    text_parts: list[str] = []

    for part in _load_parts(payload):
        if not isinstance(part, dict):
            continue

        if "text" in part and isinstance(part["text"], str):
            cleaned = strip_command_lines(part["text"])
            if cleaned:
                text_parts.append(cleaned)
            continue

        call = part.get("function_call") or part.get("functionCall") or part
        name = call.get("name") if isinstance(call, dict) else None
        if not isinstance(name, str):
            continue
        args = call.get("args")
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except (json.JSONDecodeError, ValueError):
                args = None
        if args is not None and not isinstance(args, dict):
            args = None

        raw = json.dumps({"name": name, "args": args}, default=str)
        try:
            command = tool_from_call(name, args)
        except LookupError:
            log.warning("unsupported_function_call", name=name)
            issues.append(ToolCallIssue(ToolCallIssueReason.UNSUPPORTED_TOOL, raw))
            continue
        if command is None:
            log.warning("invalid_function_call_args", name=name, args=args)
            issues.append(ToolCallIssue(ToolCallIssueReason.INVALID_ARGS, raw))
            continue
        tools.append(command)

    return ParsedResponse(user_message="\n".join(text_parts).strip(), tools=tools, tool_errors=issues)
