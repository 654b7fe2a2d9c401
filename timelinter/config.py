from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Data
    data_dir: str = "/data"
    database_url: str | None = None  # Falls back to sqlite+aiosqlite under data_dir

    # Logging
    log_level: str = "INFO"
    event_log_retention_days: int | None = 14  # None keeps every day file

    # Budget defaults (minutes), seeded into budget_settings on first run
    max_threshold_minutes: int = 5
    replenish_interval_minutes: int = 5
    replenish_amount_minutes: int = 1
    max_overfill_minutes: int = 30
    overfill_decay_per_hour_minutes: int = 10
    good_app_reward_interval_minutes: int = 5
    good_app_reward_amount_minutes: int = 10

    # Conversation
    response_timer_minutes: int = 1
    infer_allow_from_text: bool = False  # Infer ALLOW when the coach grants time in plain words

    # Memory
    memory_timezone: str = "UTC"  # Reference zone for grouping temporary memories by expiry date

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_dir}/timelinter.db"


settings = Settings()
