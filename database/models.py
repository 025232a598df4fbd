"""Database models - module catalog, channel configurations and the dispatch job queue."""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, BigInteger
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NotificationModule(Base):
    """Catalog of notification-worthy event categories (category -> sub-module)."""

    __tablename__ = "notification_modules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    module_key = Column(String(100), nullable=False, unique=True)  # e.g. "order_completed"
    module_name = Column(String(100), nullable=False)
    category = Column(String(50), nullable=True)
    parent_module_id = Column(Integer, ForeignKey("notification_modules.id", ondelete="SET NULL"), nullable=True)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_notification_modules_parent", "parent_module_id"),
        Index("idx_notification_modules_active", "is_active"),
    )

    def __repr__(self):
        return f"<NotificationModule(module_key={self.module_key}, parent_module_id={self.parent_module_id})>"


class ChannelConfig(Base):
    """A delivery destination bound to a module. Several per module enable fan-out."""

    __tablename__ = "channel_configs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    module_key = Column(String(100), nullable=False)
    endpoint_token = Column(String(255), nullable=False)  # opaque channel credential (bot token)
    target_chat_id = Column(String(64), nullable=True)  # default destination inside the channel
    display_name = Column(String(100), nullable=True)
    contact_name = Column(String(100), nullable=True)
    contact_phone = Column(String(32), nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_channel_configs_module_active", "module_key", "is_active"),
    )

    def __repr__(self):
        return f"<ChannelConfig(id={self.id}, module_key={self.module_key}, is_active={self.is_active})>"


class DispatchJob(Base):
    """
    Durable queue entry: "notify module X with message Y".

    state: waiting|delayed|active|completed|failed
    """

    __tablename__ = "dispatch_jobs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    module_key = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    explicit_chat_id = Column(String(64), nullable=True)
    parse_mode = Column(String(16), nullable=True)
    priority = Column(Integer, nullable=False, default=1)
    delay_ms = Column(BigInteger, nullable=False, default=0)
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    state = Column(String(16), nullable=False, default="waiting")
    run_at = Column(DateTime, nullable=False, default=_utcnow)
    locked_at = Column(DateTime, nullable=True)
    locked_by = Column(String(128), nullable=True)  # lease token of the current owner
    last_error = Column(Text, nullable=True)
    result = Column(Text, nullable=True)  # JSON delivery summary of the last attempt
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_dispatch_jobs_due", "state", "run_at"),
        Index("idx_dispatch_jobs_order", "state", "priority", "id"),
        Index("idx_dispatch_jobs_finished", "state", "finished_at"),
    )

    def __repr__(self):
        return f"<DispatchJob(id={self.id}, module_key={self.module_key}, state={self.state}, attempts={self.attempt_count})>"
