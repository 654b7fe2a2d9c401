import re
from datetime import timedelta

from timelinter.tools.types import Allow

MIN_MINUTES = 1
MAX_MINUTES = 240
DEFAULT_MINUTES = 10

_MINUTES = re.compile(r"(\d{1,3})\s*(?:min|mins|minute|minutes)\b", re.IGNORECASE)

# Phrases where the coach is clearly letting the user go
INTENT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\btake (?:the )?time you need\b",
        r"\btake your time\b",
        r"\bno rush\b",
        r"\bwhenever you're ready\b",
        r"\bI'll be here\b",
        r"\bI'?ll wait\b",
        r"\benjoy your (?:break|shower|meal|lunch|dinner|walk|nap)\b",
        r"\btake a break\b",
        r"\bgo ahead\b",
    )
]

HEURISTIC_MINUTES = [
    (re.compile(r"shower", re.IGNORECASE), 20),
    (re.compile(r"lunch|dinner|meal|eat", re.IGNORECASE), 30),
    (re.compile(r"nap", re.IGNORECASE), 30),
    (re.compile(r"walk", re.IGNORECASE), 20),
    (re.compile(r"break", re.IGNORECASE), 15),
]


def infer_allow(message: str, app: str | None = None) -> Allow | None:
    """Infer an ALLOW when the coach grants time in words but forgot the command."""
    if not message.strip():
        return None
    if not any(p.search(message) for p in INTENT_PATTERNS):
        return None

    explicit = _MINUTES.search(message)
    if explicit:
        minutes = int(explicit.group(1))
    else:
        minutes = next((m for pattern, m in HEURISTIC_MINUTES if pattern.search(message)), DEFAULT_MINUTES)

    minutes = max(MIN_MINUTES, min(MAX_MINUTES, minutes))
    app = app.strip() if app and app.strip() else None
    return Allow(duration=timedelta(minutes=minutes), app=app)
