from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text, func

from timelinter.database import Base


class BudgetStateRecord(Base):
    __tablename__ = "budget_state"

    id = Column(Integer, primary_key=True, default=1)
    remaining_ms = Column(BigInteger, nullable=False, default=0)
    accumulated_idle_ms = Column(BigInteger, nullable=False, default=0)
    accumulated_good_ms = Column(BigInteger, nullable=False, default=0)
    last_update_ms = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class BudgetSettingsRecord(Base):
    __tablename__ = "budget_settings"

    id = Column(Integer, primary_key=True, default=1)
    max_threshold_minutes = Column(Integer, nullable=False)
    replenish_interval_minutes = Column(Integer, nullable=False)
    replenish_amount_minutes = Column(Integer, nullable=False)
    max_overfill_minutes = Column(Integer, nullable=False, default=0)
    overfill_decay_per_hour_minutes = Column(Integer, nullable=False, default=0)
    good_app_reward_interval_minutes = Column(Integer, nullable=False, default=0)
    good_app_reward_amount_minutes = Column(Integer, nullable=False, default=0)
    response_timer_minutes = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PermanentMemoryRecord(Base):
    __tablename__ = "memory_permanent"

    id = Column(Integer, primary_key=True, default=1)
    content = Column(Text, nullable=False, default="")


class MemoryRulesRecord(Base):
    __tablename__ = "memory_rules"

    id = Column(Integer, primary_key=True, default=1)
    content = Column(Text, nullable=False)


class TemporaryMemoryRecord(Base):
    __tablename__ = "memory_temporary"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # storage order
    key = Column(String(64), unique=True, nullable=False)
    content = Column(Text, nullable=False)
    created_at_ms = Column(BigInteger, nullable=False)
    expires_at_ms = Column(BigInteger, nullable=True)

    def to_record(self) -> str:
        """Flat `content|expires_at_ms` form."""
        return f"{self.content}|{self.expires_at_ms}"


class AllowGrantRecord(Base):
    __tablename__ = "allow_grants"

    key = Column(String(255), primary_key=True)  # app name, or GLOBAL_ALLOW_KEY
    app = Column(String(255), nullable=True)
    expires_at_ms = Column(BigInteger, nullable=False)
