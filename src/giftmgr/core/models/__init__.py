"""Database models (SQLModel)."""

from giftmgr.core.models.instance import (
    Instance,
    InstanceLog,
    InstanceStatus,
    LogLevel,
    generate_ulid,
    utc_now,
)

__all__ = [
    "Instance",
    "InstanceLog",
    "InstanceStatus",
    "LogLevel",
    "generate_ulid",
    "utc_now",
]
