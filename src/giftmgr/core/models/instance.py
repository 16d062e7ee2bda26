"""Instance and audit log tables.

Tables:
- instances: One row per gift tracker workload
- instance_logs: Append-only audit trail of lifecycle attempts
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlmodel import Field, SQLModel
from ulid import ULID


def generate_ulid() -> str:
    return str(ULID())


def utc_now() -> datetime:
    return datetime.now(UTC)


class InstanceStatus(str, Enum):
    """Last-known runtime status of an instance.

    Only the reconciler may change it without an explicit lifecycle call.
    """

    STOPPED = "stopped"
    RUNNING = "running"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Instance(SQLModel, table=True):
    """Gift tracker workload record."""

    __tablename__ = "instances"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    name: str = Field(unique=True, index=True, max_length=255)
    # Set only after a successful create, cleared when the container is gone
    container_id: str | None = Field(default=None, unique=True)
    status: InstanceStatus = Field(default=InstanceStatus.STOPPED.value, sa_type=String)

    api_key: str
    account_id: str
    tiktok_username: str
    port: int = Field(unique=True, index=True)
    backend_api_url: str | None = None
    dash_password: str = Field(default="changeme")
    debug_mode: bool = Field(default=False)
    docker_image: str | None = Field(default=None, max_length=512)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    last_started_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    last_stopped_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    @property
    def is_running(self) -> bool:
        return self.status == InstanceStatus.RUNNING


class InstanceLog(SQLModel, table=True):
    """Audit entry for one lifecycle attempt. Never drives a decision."""

    __tablename__ = "instance_logs"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    instance_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("instances.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    level: LogLevel = Field(default=LogLevel.INFO.value, sa_type=String)
    message: str = Field(sa_column=Column(Text, nullable=False))
    details: str | None = Field(default=None, sa_column=Column(Text))  # JSON
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
