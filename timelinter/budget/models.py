from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, field_validator

ZERO = timedelta(0)


class BudgetConfig(BaseModel):
    """Bucket dimensions. An interval or amount of zero disables its mechanism."""

    model_config = ConfigDict(frozen=True)

    max_threshold: timedelta
    replenish_interval: timedelta = ZERO
    replenish_amount: timedelta = ZERO
    max_overfill: timedelta = ZERO
    overfill_decay_per_hour: timedelta = ZERO
    good_app_reward_interval: timedelta = ZERO
    good_app_reward_amount: timedelta = ZERO

    @field_validator("*")
    @classmethod
    def _non_negative(cls, value: timedelta) -> timedelta:
        if value < ZERO:
            raise ValueError("durations must be >= 0")
        return value

    @property
    def capacity(self) -> timedelta:
        return self.max_threshold + self.max_overfill

    @property
    def replenish_enabled(self) -> bool:
        return self.replenish_interval > ZERO and self.replenish_amount > ZERO

    @property
    def good_app_reward_enabled(self) -> bool:
        return self.good_app_reward_interval > ZERO and self.good_app_reward_amount > ZERO

    @classmethod
    def from_minutes(
        cls,
        max_threshold: int,
        replenish_interval: int = 0,
        replenish_amount: int = 0,
        max_overfill: int = 0,
        overfill_decay_per_hour: int = 0,
        good_app_reward_interval: int = 0,
        good_app_reward_amount: int = 0,
    ) -> "BudgetConfig":
        return cls(
            max_threshold=timedelta(minutes=max_threshold),
            replenish_interval=timedelta(minutes=replenish_interval),
            replenish_amount=timedelta(minutes=replenish_amount),
            max_overfill=timedelta(minutes=max_overfill),
            overfill_decay_per_hour=timedelta(minutes=overfill_decay_per_hour),
            good_app_reward_interval=timedelta(minutes=good_app_reward_interval),
            good_app_reward_amount=timedelta(minutes=good_app_reward_amount),
        )


class BudgetState(BaseModel):
    model_config = ConfigDict(frozen=True)

    remaining: timedelta
    accumulated_idle: timedelta = ZERO
    accumulated_good_app: timedelta = ZERO
    last_update: datetime

    @classmethod
    def initial(cls, config: BudgetConfig, now: datetime) -> "BudgetState":
        """A full bucket with nothing carried over."""
        return cls(remaining=config.max_threshold, last_update=now)


class BudgetSummary(BaseModel):
    remaining_seconds: float
    max_threshold_seconds: float
    capacity_seconds: float
    overfill_seconds: float
    percent_remaining: float
    last_update: str
