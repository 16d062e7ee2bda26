"""Instance audit log (instance_logs table)."""

import json
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from giftmgr.core.models import InstanceLog, LogLevel, utc_now

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only record of lifecycle attempts, for operators only."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(
        self,
        instance_id: str,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> InstanceLog:
        entry = InstanceLog(
            instance_id=instance_id,
            level=LogLevel(level).value,
            message=message,
            details=json.dumps(details, default=str) if details is not None else None,
            created_at=utc_now(),
        )
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
        return entry

    async def list_for_instance(self, instance_id: str, limit: int = 100) -> list[InstanceLog]:
        """Newest entries first."""
        async with self._session_factory() as session:
            stmt = (
                select(InstanceLog)
                .where(InstanceLog.instance_id == instance_id)
                .order_by(InstanceLog.created_at.desc(), InstanceLog.id.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def purge_older_than(self, days: int) -> int:
        """Delete entries older than `days`. Returns the number removed."""
        cutoff = utc_now() - timedelta(days=days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(InstanceLog).where(InstanceLog.created_at < cutoff)
            )
            await session.commit()

        if result.rowcount:
            logger.info("Purged %d audit entries older than %d days", result.rowcount, days)
        return result.rowcount


def parse_details(entry: InstanceLog) -> dict | None:
    if entry.details is None:
        return None
    return json.loads(entry.details)
