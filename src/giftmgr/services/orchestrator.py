"""Lifecycle orchestrator: instance transitions as driver calls plus store updates.

Containers are created lazily on the first start and are thrown away on
every configuration change, so a live container is never reconfigured
in place. Stored status is a cache; whether something is really running
is always asked of the driver.

Every public operation returns an OperationResult and never raises.
Every attempt on an existing instance leaves an audit entry.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from giftmgr.app.config import TrackerConfig
from giftmgr.app.logging import operation_context
from giftmgr.app.metrics.collector import LIFECYCLE_OPERATIONS_TOTAL
from giftmgr.core.errors import (
    ContainerNotFoundError,
    ErrorCode,
    GiftMgrError,
    InstanceNotFoundError,
    PreconditionFailedError,
    ValidationFailedError,
)
from giftmgr.core.interfaces import ContainerDriver, ContainerSpec
from giftmgr.core.logging_schema import LogEvent
from giftmgr.core.models import Instance, InstanceStatus, LogLevel
from giftmgr.core.result import BulkResult, OperationResult
from giftmgr.core.schemas import InstanceCreate, InstanceUpdate
from giftmgr.services.audit import AuditLog
from giftmgr.services.instance_store import InstanceStore
from giftmgr.services.ports import PortAllocator

logger = logging.getLogger(__name__)

STOP_GRACE_SECONDS = 10
DELETE_GRACE_SECONDS = 5

MANAGED_BY = "gift-instance-manager"


def build_container_spec(instance: Instance, tracker: TrackerConfig) -> ContainerSpec:
    """Container template for one instance."""
    env = {
        "API_KEY": instance.api_key,
        "ACCOUNT_ID": instance.account_id,
        "TIKTOK_USERNAME": instance.tiktok_username,
        "PORT": str(tracker.container_port),
        "BACKEND_API_URL": instance.backend_api_url or tracker.backend_api_url,
        "DASH_PASSWORD": instance.dash_password or tracker.default_dash_password,
        "DEBUG_MODE": "true" if instance.debug_mode else "false",
        "NODE_ENV": "production",
    }
    labels = {
        "app": "gift-tracker",
        "instance.id": instance.id,
        "instance.name": instance.name,
        "managed-by": MANAGED_BY,
    }
    return ContainerSpec(
        instance_id=instance.id,
        instance_name=instance.name,
        image=instance.docker_image or tracker.image,
        host_port=instance.port,
        env=env,
        labels=labels,
    )


def _validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        field = ".".join(str(loc) for loc in err["loc"]) or "body"
        if err["type"] == "missing":
            parts.append(f"{field} is required")
        else:
            parts.append(f"{field}: {err['msg']}")
    return "; ".join(parts)


class LifecycleOrchestrator:
    """Translates requested transitions into driver calls and store updates."""

    def __init__(
        self,
        store: InstanceStore,
        driver: ContainerDriver,
        audit: AuditLog,
        ports: PortAllocator,
        tracker: TrackerConfig,
    ) -> None:
        self._store = store
        self._driver = driver
        self._audit = audit
        self._ports = ports
        self._tracker = tracker

    # =========================================================================
    # Public operations
    # =========================================================================

    async def create(self, data: InstanceCreate | dict[str, Any]) -> OperationResult:
        return await self._execute("create", None, self._create, data)

    async def update(
        self, instance_id: str, patch: InstanceUpdate | dict[str, Any]
    ) -> OperationResult:
        return await self._execute("update", instance_id, self._update, instance_id, patch)

    async def delete(self, instance_id: str) -> OperationResult:
        return await self._execute("delete", instance_id, self._delete, instance_id)

    async def start(self, instance_id: str) -> OperationResult:
        return await self._execute("start", instance_id, self._start, instance_id)

    async def stop(self, instance_id: str) -> OperationResult:
        return await self._execute("stop", instance_id, self._stop, instance_id)

    async def restart(self, instance_id: str) -> OperationResult:
        return await self._execute("restart", instance_id, self._restart, instance_id)

    async def start_all(self) -> BulkResult:
        """Start every instance whose stored status is not running."""
        try:
            instances = await self._store.list_all()
        except SQLAlchemyError:
            logger.exception("Failed to list instances for bulk start")
            return BulkResult(
                success=False, message="Failed to load instances", succeeded=0, attempted=0
            )
        targets = [i for i in instances if i.status != InstanceStatus.RUNNING]
        results = await asyncio.gather(*(self.start(i.id) for i in targets))
        succeeded = sum(1 for r in results if r.success)
        return BulkResult(
            message=f"Started {succeeded}/{len(targets)} instances",
            succeeded=succeeded,
            attempted=len(targets),
            results=list(results),
        )

    async def stop_all(self) -> BulkResult:
        """Stop every instance whose stored status is running."""
        try:
            instances = await self._store.list_all()
        except SQLAlchemyError:
            logger.exception("Failed to list instances for bulk stop")
            return BulkResult(
                success=False, message="Failed to load instances", succeeded=0, attempted=0
            )
        targets = [i for i in instances if i.status == InstanceStatus.RUNNING]
        results = await asyncio.gather(*(self.stop(i.id) for i in targets))
        succeeded = sum(1 for r in results if r.success)
        return BulkResult(
            message=f"Stopped {succeeded}/{len(targets)} instances",
            succeeded=succeeded,
            attempted=len(targets),
            results=list(results),
        )

    # =========================================================================
    # Operation bodies (raise GiftMgrError on failure)
    # =========================================================================

    async def _create(self, data: InstanceCreate | dict[str, Any]) -> OperationResult:
        if not isinstance(data, InstanceCreate):
            try:
                data = InstanceCreate.model_validate(data)
            except ValidationError as e:
                raise ValidationFailedError(_validation_message(e)) from e
        self._check_port_range(data.port)

        fields = data.model_dump()
        fields["backend_api_url"] = data.backend_api_url or self._tracker.backend_api_url
        fields["dash_password"] = data.dash_password or self._tracker.default_dash_password

        instance = await self._store.create(fields)
        await self._record(instance.id, LogLevel.INFO, "Instance created", {"port": instance.port})
        return OperationResult.ok("Instance created successfully", data=instance)

    async def _update(
        self, instance_id: str, patch: InstanceUpdate | dict[str, Any]
    ) -> OperationResult:
        if not isinstance(patch, InstanceUpdate):
            try:
                patch = InstanceUpdate.model_validate(patch)
            except ValidationError as e:
                raise ValidationFailedError(_validation_message(e)) from e

        instance = await self._store.get(instance_id)
        if await self._observed_running(instance):
            raise PreconditionFailedError(
                "Cannot update a running instance. Please stop it first."
            )

        changes = patch.model_dump(exclude_unset=True)
        if changes.get("port") is not None:
            self._check_port_range(changes["port"])
        # Required fields cannot be cleared
        changes = {
            k: v for k, v in changes.items()
            if v is not None or k in ("backend_api_url", "docker_image")
        }

        instance = await self._store.update(instance_id, changes)

        if instance.container_id and await self._discard_container(instance):
            instance = await self._store.update_container_id(instance_id, None)

        await self._record(
            instance_id, LogLevel.INFO, "Instance updated", {"fields": sorted(changes)}
        )
        return OperationResult.ok("Instance updated successfully", data=instance)

    async def _delete(self, instance_id: str) -> OperationResult:
        instance = await self._store.get(instance_id)

        if instance.container_id:
            container_id = instance.container_id
            try:
                await self._driver.stop(container_id, DELETE_GRACE_SECONDS)
            except GiftMgrError as e:
                logger.debug("Stop before delete failed for %s: %s", container_id, e.message)
            try:
                await self._driver.remove(container_id, force=True)
            except ContainerNotFoundError:
                pass
            except GiftMgrError as e:
                logger.warning(
                    "Container removal failed, deleting instance anyway: %s",
                    e.message,
                    extra={
                        "event": LogEvent.CONTAINER_CLEANUP_FAILED,
                        "instance_id": instance_id,
                        "container_id": container_id,
                    },
                )
            await self._store.update(
                instance_id,
                {"container_id": None, "status": InstanceStatus.STOPPED},
            )

        await self._record(instance_id, LogLevel.INFO, "Instance deleted")
        await self._store.delete(instance_id)
        return OperationResult.ok("Instance deleted successfully")

    async def _start(self, instance_id: str) -> OperationResult:
        instance = await self._store.get(instance_id)

        if not instance.container_id:
            instance = await self._create_container(instance)

        container_id = instance.container_id
        try:
            state = await self._driver.inspect_status(container_id)
            if state.running:
                if instance.status != InstanceStatus.RUNNING:
                    instance = await self._store.mark_started(instance_id)
                await self._record(instance_id, LogLevel.INFO, "Instance already running")
                return OperationResult.ok("Instance is already running", data=instance)

            await self._driver.start(container_id)
        except ContainerNotFoundError:
            await self._heal_stale_reference(instance)
            raise

        instance = await self._store.mark_started(instance_id)
        await self._record(instance_id, LogLevel.INFO, "Instance started")
        return OperationResult.ok("Instance started successfully", data=instance)

    async def _stop(self, instance_id: str) -> OperationResult:
        instance = await self._store.get(instance_id)
        if not instance.container_id:
            raise ContainerNotFoundError("Instance has no container")

        container_id = instance.container_id
        try:
            state = await self._driver.inspect_status(container_id)
            if not state.running:
                if instance.status != InstanceStatus.STOPPED:
                    instance = await self._store.update_status(
                        instance_id, InstanceStatus.STOPPED
                    )
                await self._record(instance_id, LogLevel.INFO, "Instance already stopped")
                return OperationResult.ok("Instance is already stopped", data=instance)

            await self._driver.stop(container_id, STOP_GRACE_SECONDS)
        except ContainerNotFoundError:
            await self._heal_stale_reference(instance)
            raise

        instance = await self._store.mark_stopped(instance_id)
        await self._record(instance_id, LogLevel.INFO, "Instance stopped")
        return OperationResult.ok("Instance stopped successfully", data=instance)

    async def _restart(self, instance_id: str) -> OperationResult:
        instance = await self._store.get(instance_id)
        if not instance.container_id:
            return await self._start(instance_id)

        try:
            await self._driver.restart(instance.container_id, STOP_GRACE_SECONDS)
        except ContainerNotFoundError:
            await self._heal_stale_reference(instance)
            raise

        instance = await self._store.mark_started(instance_id)
        await self._record(instance_id, LogLevel.INFO, "Instance restarted")
        return OperationResult.ok("Instance restarted successfully", data=instance)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _create_container(self, instance: Instance) -> Instance:
        spec = build_container_spec(instance, self._tracker)
        container_id = await self._driver.create_container(spec)
        instance = await self._store.update_container_id(instance.id, container_id)

        logger.info(
            "Container created",
            extra={
                "event": LogEvent.CONTAINER_CREATED,
                "instance_id": instance.id,
                "container_id": container_id,
                "image": spec.image,
            },
        )
        await self._record(
            instance.id, LogLevel.INFO, "Container created", {"container_id": container_id}
        )
        return instance

    async def _discard_container(self, instance: Instance) -> bool:
        """Remove the container so the next start picks up new configuration.

        Returns False when the runtime still holds it; the reference is
        then kept so a later update or delete can retry the removal.
        """
        try:
            await self._driver.remove(instance.container_id, force=True)
        except ContainerNotFoundError:
            return True
        except GiftMgrError as e:
            logger.warning(
                "Failed to remove outdated container: %s",
                e.message,
                extra={
                    "event": LogEvent.CONTAINER_CLEANUP_FAILED,
                    "instance_id": instance.id,
                    "container_id": instance.container_id,
                },
            )
            await self._record(
                instance.id,
                LogLevel.WARNING,
                f"Failed to remove outdated container: {e.message}",
                {"container_id": instance.container_id},
            )
            return False
        return True

    async def _heal_stale_reference(self, instance: Instance) -> None:
        """The runtime no longer knows the container: forget it."""
        logger.warning(
            "Container missing, clearing reference",
            extra={
                "event": LogEvent.CONTAINER_MISSING,
                "instance_id": instance.id,
                "container_id": instance.container_id,
            },
        )
        await self._store.update(
            instance.id,
            {"container_id": None, "status": InstanceStatus.STOPPED},
        )

    async def _observed_running(self, instance: Instance) -> bool:
        if not instance.container_id:
            return False
        try:
            state = await self._driver.inspect_status(instance.container_id)
        except ContainerNotFoundError:
            await self._heal_stale_reference(instance)
            return False
        return state.running

    def _check_port_range(self, port: int) -> None:
        if not self._ports.in_range(port):
            raise ValidationFailedError(
                f"Port {port} is outside the allowed range "
                f"{self._ports.start}-{self._ports.end}"
            )

    async def _record(
        self,
        instance_id: str,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._audit.add(instance_id, level, message, details)
        except SQLAlchemyError as e:
            logger.warning(
                "Failed to write audit entry: %s",
                e,
                extra={"instance_id": instance_id, "audit_message": message},
            )

    async def _execute(
        self,
        operation: str,
        instance_id: str | None,
        action: Callable[..., Awaitable[OperationResult]],
        *args: Any,
    ) -> OperationResult:
        """Run one operation body, turning every failure into a tagged result."""
        try:
            with operation_context(operation, instance_id):
                result = await action(*args)
        except GiftMgrError as e:
            LIFECYCLE_OPERATIONS_TOTAL.labels(operation=operation, result="failure").inc()
            logger.warning(
                "Instance %s failed: %s",
                operation,
                e.message,
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "operation": operation,
                    "instance_id": instance_id,
                    "error_code": e.code.value,
                },
            )
            if instance_id is not None and not isinstance(e, InstanceNotFoundError):
                await self._record(
                    instance_id,
                    LogLevel.ERROR,
                    f"Failed to {operation} instance: {e.message}",
                    {"error_code": e.code.value},
                )
            return OperationResult.from_error(e)
        except Exception:
            LIFECYCLE_OPERATIONS_TOTAL.labels(operation=operation, result="failure").inc()
            logger.exception(
                "Instance %s failed unexpectedly",
                operation,
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "operation": operation,
                    "instance_id": instance_id,
                },
            )
            return OperationResult.fail(
                f"Failed to {operation} instance", ErrorCode.INTERNAL_ERROR
            )

        LIFECYCLE_OPERATIONS_TOTAL.labels(operation=operation, result="success").inc()
        logger.info(
            "Instance %s succeeded",
            operation,
            extra={
                "event": LogEvent.OPERATION_SUCCESS,
                "operation": operation,
                "instance_id": instance_id,
            },
        )
        return result
