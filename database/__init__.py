"""Database package - models and connection management."""
from database.db import Database
from database.models import (
    Base,
    NotificationModule,
    ChannelConfig,
    DispatchJob,
)

__all__ = [
    "Database",
    "Base",
    "NotificationModule",
    "ChannelConfig",
    "DispatchJob",
]
