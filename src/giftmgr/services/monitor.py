"""Read side: instances enriched with live runtime state, logs and stats."""

import asyncio
import logging
from dataclasses import asdict

from giftmgr.core.errors import (
    ContainerNotFoundError,
    ContainerRuntimeError,
    GiftMgrError,
)
from giftmgr.core.interfaces import ContainerDriver
from giftmgr.core.models import Instance
from giftmgr.core.result import OperationResult
from giftmgr.services.audit import AuditLog, parse_details
from giftmgr.services.instance_store import InstanceStore
from giftmgr.services.notifier import serialize_instance

logger = logging.getLogger(__name__)

DOCKER_STATUS_NO_CONTAINER = "no-container"
DOCKER_STATUS_NOT_FOUND = "not-found"
DOCKER_STATUS_ERROR = "error"


class InstanceMonitor:
    """Queries that never change state."""

    def __init__(
        self,
        store: InstanceStore,
        driver: ContainerDriver,
        audit: AuditLog,
    ) -> None:
        self._store = store
        self._driver = driver
        self._audit = audit

    async def _runtime_view(self, instance: Instance) -> dict:
        data = serialize_instance(instance)
        if not instance.container_id:
            data["docker_status"] = DOCKER_STATUS_NO_CONTAINER
            data["is_running"] = False
            return data

        try:
            state = await self._driver.inspect_status(instance.container_id)
        except ContainerNotFoundError:
            data["docker_status"] = DOCKER_STATUS_NOT_FOUND
            data["is_running"] = False
        except ContainerRuntimeError as e:
            logger.debug("Inspect failed for %s: %s", instance.id, e.message)
            data["docker_status"] = DOCKER_STATUS_ERROR
            data["is_running"] = False
        else:
            data["docker_status"] = state.status
            data["is_running"] = state.running
        return data

    async def list_instances(self) -> OperationResult:
        instances = await self._store.list_all()
        views = await asyncio.gather(*(self._runtime_view(i) for i in instances))
        return OperationResult.ok(data=list(views))

    async def get_instance(self, instance_id: str) -> OperationResult:
        try:
            instance = await self._store.get(instance_id)
        except GiftMgrError as e:
            return OperationResult.from_error(e)
        return OperationResult.ok(data=await self._runtime_view(instance))

    async def fetch_logs(self, instance_id: str, tail: int = 100) -> OperationResult:
        try:
            instance = await self._store.get(instance_id)
            if not instance.container_id:
                raise ContainerNotFoundError("Instance has no container")
            lines = await self._driver.fetch_logs(instance.container_id, tail=tail)
        except GiftMgrError as e:
            return OperationResult.from_error(e)
        return OperationResult.ok(data={"logs": lines, "tail": tail})

    async def fetch_stats(self, instance_id: str) -> OperationResult:
        try:
            instance = await self._store.get(instance_id)
            if not instance.container_id:
                raise ContainerNotFoundError("Instance has no container")
            stats = await self._driver.fetch_stats(instance.container_id)
        except GiftMgrError as e:
            return OperationResult.from_error(e)
        return OperationResult.ok(data=asdict(stats))

    async def instance_events(self, instance_id: str, limit: int = 100) -> OperationResult:
        """Audit entries for one instance, newest first."""
        try:
            await self._store.get(instance_id)
        except GiftMgrError as e:
            return OperationResult.from_error(e)

        entries = await self._audit.list_for_instance(instance_id, limit=limit)
        return OperationResult.ok(
            data=[
                {
                    "id": entry.id,
                    "level": entry.level,
                    "message": entry.message,
                    "details": parse_details(entry),
                    "created_at": entry.created_at.isoformat(),
                }
                for entry in entries
            ]
        )

    async def available_images(self) -> OperationResult:
        """Tracker images that can be set as an instance's docker_image."""
        try:
            images = await self._driver.list_images()
        except GiftMgrError as e:
            return OperationResult.from_error(e)
        return OperationResult.ok(data=images)

    async def docker_info(self) -> OperationResult:
        try:
            info = await self._driver.info()
        except GiftMgrError as e:
            return OperationResult.from_error(e)
        return OperationResult.ok(data=info)

    async def docker_ping(self) -> OperationResult:
        if await self._driver.ping():
            return OperationResult.ok("Docker connection successful", data={"connected": True})
        return OperationResult(
            success=False,
            message="Docker connection failed",
            data={"connected": False},
        )
