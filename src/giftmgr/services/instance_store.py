"""Instance store: persisted instance records with uniqueness guarantees.

Every call opens its own session, so concurrent lifecycle operations
never share one. Name and port uniqueness is checked up front and
backed by the UNIQUE constraints; the loser of a concurrent insert gets
the same ConflictError as a sequential caller would.
"""

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from giftmgr.core.errors import ConflictError, InstanceNotFoundError
from giftmgr.core.logging_schema import LogEvent
from giftmgr.core.models import Instance, InstanceStatus, utc_now

logger = logging.getLogger(__name__)

# Fields a caller may change through update()
_MUTABLE_FIELDS = frozenset({
    "name",
    "container_id",
    "status",
    "api_key",
    "account_id",
    "tiktok_username",
    "port",
    "backend_api_url",
    "dash_password",
    "debug_mode",
    "docker_image",
    "last_started_at",
    "last_stopped_at",
})


class InstanceStore:
    """CRUD over the instances table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, instance_id: str) -> Instance:
        """Get instance by ID.

        Raises:
            InstanceNotFoundError: If no instance has this ID
        """
        instance = await self.find_by_id(instance_id)
        if instance is None:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")
        return instance

    async def find_by_id(self, instance_id: str) -> Instance | None:
        async with self._session_factory() as session:
            return await session.get(Instance, instance_id)

    async def find_by_name(self, name: str) -> Instance | None:
        return await self._find_one(Instance.name == name)

    async def find_by_port(self, port: int) -> Instance | None:
        return await self._find_one(Instance.port == port)

    async def find_by_container_id(self, container_id: str) -> Instance | None:
        return await self._find_one(Instance.container_id == container_id)

    async def list_all(self) -> list[Instance]:
        """All instances, newest first."""
        async with self._session_factory() as session:
            stmt = select(Instance).order_by(
                Instance.created_at.desc(), Instance.id.desc()
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def used_ports(self) -> list[int]:
        async with self._session_factory() as session:
            result = await session.execute(select(Instance.port))
            return sorted(result.scalars().all())

    async def _find_one(self, *criteria: Any) -> Instance | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Instance).where(*criteria))
            return result.scalars().first()

    # =========================================================================
    # Writes
    # =========================================================================

    async def create(self, fields: dict[str, Any]) -> Instance:
        """Insert a new instance (status stopped, no container).

        Raises:
            ConflictError: If name or port belongs to another instance
        """
        values = {k: v for k, v in fields.items() if k in _MUTABLE_FIELDS}
        values["status"] = InstanceStatus.STOPPED.value
        values["container_id"] = None
        now = utc_now()
        instance = Instance(**values, created_at=now, updated_at=now)

        async with self._session_factory() as session:
            await self._check_unique(session, name=instance.name, port=instance.port)
            session.add(instance)
            await self._commit(session, name=instance.name, port=instance.port)
            await session.refresh(instance)

        logger.info(
            "Instance created",
            extra={
                "event": LogEvent.INSTANCE_CREATED,
                "instance_id": instance.id,
                "instance_name": instance.name,
                "port": instance.port,
            },
        )
        return instance

    async def update(self, instance_id: str, fields: dict[str, Any]) -> Instance:
        """Partial update. Unknown keys (including id) are ignored.

        Raises:
            InstanceNotFoundError: If no instance has this ID
            ConflictError: If the new name or port belongs to another instance
        """
        changes = {k: v for k, v in fields.items() if k in _MUTABLE_FIELDS}
        if "status" in changes:
            changes["status"] = InstanceStatus(changes["status"]).value

        async with self._session_factory() as session:
            instance = await session.get(Instance, instance_id)
            if instance is None:
                raise InstanceNotFoundError(f"Instance {instance_id} not found")

            await self._check_unique(
                session,
                name=changes.get("name"),
                port=changes.get("port"),
                exclude_id=instance_id,
            )
            for key, value in changes.items():
                setattr(instance, key, value)
            instance.updated_at = utc_now()

            await self._commit(
                session,
                name=changes.get("name"),
                port=changes.get("port"),
                exclude_id=instance_id,
            )
            await session.refresh(instance)

        logger.debug(
            "Instance updated",
            extra={
                "event": LogEvent.INSTANCE_UPDATED,
                "instance_id": instance_id,
                "fields": sorted(changes),
            },
        )
        return instance

    async def update_status(self, instance_id: str, status: InstanceStatus) -> Instance:
        return await self.update(instance_id, {"status": status})

    async def update_container_id(
        self, instance_id: str, container_id: str | None
    ) -> Instance:
        return await self.update(instance_id, {"container_id": container_id})

    async def mark_started(self, instance_id: str) -> Instance:
        return await self.update(
            instance_id,
            {"status": InstanceStatus.RUNNING, "last_started_at": utc_now()},
        )

    async def mark_stopped(self, instance_id: str) -> Instance:
        return await self.update(
            instance_id,
            {"status": InstanceStatus.STOPPED, "last_stopped_at": utc_now()},
        )

    async def delete(self, instance_id: str) -> None:
        """Delete an instance and (by cascade) its audit entries.

        Raises:
            InstanceNotFoundError: If nothing was deleted
        """
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Instance).where(Instance.id == instance_id)
            )
            await session.commit()

        if result.rowcount == 0:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")

        logger.info(
            "Instance deleted",
            extra={"event": LogEvent.INSTANCE_DELETED, "instance_id": instance_id},
        )

    # =========================================================================
    # Uniqueness
    # =========================================================================

    async def _check_unique(
        self,
        session: AsyncSession,
        name: str | None = None,
        port: int | None = None,
        exclude_id: str | None = None,
    ) -> None:
        if name is not None:
            stmt = select(Instance).where(Instance.name == name)
            if exclude_id is not None:
                stmt = stmt.where(Instance.id != exclude_id)
            existing = (await session.execute(stmt)).scalars().first()
            if existing is not None:
                raise self._conflict(
                    f"Instance with this name already exists: {existing.name}", existing
                )

        if port is not None:
            stmt = select(Instance).where(Instance.port == port)
            if exclude_id is not None:
                stmt = stmt.where(Instance.id != exclude_id)
            existing = (await session.execute(stmt)).scalars().first()
            if existing is not None:
                raise self._conflict(
                    f"Port {port} is already in use by instance: {existing.name}", existing
                )

    async def _commit(
        self,
        session: AsyncSession,
        name: str | None = None,
        port: int | None = None,
        exclude_id: str | None = None,
    ) -> None:
        """Commit, turning a lost uniqueness race into ConflictError."""
        try:
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            # The winner is committed by now; name it
            await self._check_unique(session, name=name, port=port, exclude_id=exclude_id)
            raise ConflictError("Instance conflicts with an existing instance") from e

    @staticmethod
    def _conflict(message: str, existing: Instance) -> ConflictError:
        logger.info(
            message,
            extra={
                "event": LogEvent.INSTANCE_CONFLICT,
                "conflicting_instance_id": existing.id,
            },
        )
        return ConflictError(message, instance_name=existing.name, instance_id=existing.id)
