from datetime import date, datetime

from pydantic import BaseModel


class MemoryItem(BaseModel):
    key: str | None = None
    content: str
    created_at: datetime
    expires_at: datetime | None = None  # None means permanent

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class TemporaryGroup(BaseModel):
    """Unexpired temporary memories that expire on the same calendar date."""

    expiry_date: date
    items: list[str]
