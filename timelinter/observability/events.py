import os
import json
from datetime import date, timedelta
from enum import StrEnum

from pydantic import BaseModel

from timelinter.clock import Clock, SystemClock
from timelinter.observability.logger import get_logger

log = get_logger("events")

MAX_RECENT_EVENTS = 500


class EventType(StrEnum):
    MESSAGE = "MESSAGE"
    TOOL = "TOOL"
    TOOL_ERROR = "TOOL_ERROR"
    STATE = "STATE"
    APP = "APP"
    BUCKET = "BUCKET"
    SYSTEM = "SYSTEM"


class EventLogEntry(BaseModel):
    id: int
    timestamp: str
    type: EventType
    title: str
    details: str | None = None


class EventLog:
    """Append-only JSON-lines event log under <data_dir>/events/, one file per day.

    Keeps the most recent entries in memory for search. When `data_dir` is
    None nothing is written to disk.
    """

    def __init__(self, data_dir: str | None = None, clock: Clock | None = None,
                 retention_days: int | None = None):
        self.clock = clock or SystemClock()
        self.retention_days = retention_days
        self.log_dir = os.path.join(data_dir, "events") if data_dir else None
        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
        self._entries: list[EventLogEntry] = []
        self._next_id = 1

    def __call__(self, type: EventType | str, title: str, details: str | None = None) -> EventLogEntry:
        return self.log(type, title, details)

    def log(self, type: EventType | str, title: str, details: str | None = None) -> EventLogEntry:
        now = self.clock.now()
        entry = EventLogEntry(
            id=self._next_id,
            timestamp=now.isoformat(),
            type=EventType(type),
            title=title,
            details=details,
        )
        self._next_id += 1
        self._entries.append(entry)
        if len(self._entries) > MAX_RECENT_EVENTS:
            self._entries = self._entries[-MAX_RECENT_EVENTS:]

        if self.log_dir:
            filepath = os.path.join(self.log_dir, now.strftime("%Y-%m-%d.jsonl"))
            with open(filepath, "a") as f:
                f.write(entry.model_dump_json() + "\n")
        return entry

    def recent(self, limit: int = 50) -> list[EventLogEntry]:
        """Most recent entries first."""
        return list(reversed(self._entries[-limit:]))

    def search(self, query: str) -> list[EventLogEntry]:
        if not query.strip():
            return list(self._entries)
        q = query.strip().lower()
        return [
            e for e in self._entries
            if q in e.title.lower()
            or (e.details and q in e.details.lower())
            or q in e.type.value.lower()
        ]

    def load_day(self, day: date) -> list[EventLogEntry]:
        if not self.log_dir:
            return []
        filepath = os.path.join(self.log_dir, day.strftime("%Y-%m-%d.jsonl"))
        if not os.path.exists(filepath):
            return []
        entries = []
        with open(filepath, "r") as f:
            for line in f:
                try:
                    entries.append(EventLogEntry(**json.loads(line.strip())))
                except (json.JSONDecodeError, ValueError):
                    continue
        return entries

    def list_days(self) -> list[date]:
        if not self.log_dir:
            return []
        days = []
        for fname in os.listdir(self.log_dir):
            if not fname.endswith(".jsonl"):
                continue
            try:
                days.append(date.fromisoformat(fname.removesuffix(".jsonl")))
            except ValueError:
                continue
        return sorted(days)

    def prune(self, today: date | None = None) -> int:
        """Delete day files older than the retention window. Returns files removed."""
        if not self.log_dir or self.retention_days is None:
            return 0
        today = today or self.clock.now().date()
        cutoff = today - timedelta(days=self.retention_days - 1)
        removed = 0
        for day in self.list_days():
            if day < cutoff:
                os.remove(os.path.join(self.log_dir, day.strftime("%Y-%m-%d.jsonl")))
                removed += 1
        if removed:
            log.info("event_log_pruned", removed=removed, cutoff=cutoff.isoformat())
        return removed
