"""Reconciler - corrects stored status drift against the container runtime.

Runs on a fixed interval and on demand (POST /system/sync). A pass keeps
no state across runs, and every correction is idempotent, so overlapping
passes are harmless (last write wins).

Correction matrix (per instance):

| runtime              | stored  | action                        |
|----------------------|---------|-------------------------------|
| running              | stopped | status -> running             |
| not running          | running | status -> stopped             |
| container not found  | any     | clear container_id (+stopped) |
| no container_id      | running | status -> stopped             |
| runtime error        | any     | skip this pass                |
| record deleted       | any     | skip this pass                |
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from giftmgr.app.logging import operation_context
from giftmgr.app.metrics.collector import (
    INSTANCES_TOTAL,
    RECONCILE_CORRECTIONS_TOTAL,
    RECONCILE_DURATION,
)
from giftmgr.core.errors import (
    ContainerNotFoundError,
    ContainerRuntimeError,
    InstanceNotFoundError,
)
from giftmgr.core.interfaces import ContainerDriver
from giftmgr.core.logging_schema import LogEvent
from giftmgr.core.models import Instance, InstanceStatus
from giftmgr.services.instance_store import InstanceStore
from giftmgr.services.notifier import StatusNotifier

logger = logging.getLogger(__name__)


@dataclass
class ReconcileUpdate:
    """One corrected instance."""

    instance_id: str
    name: str
    status: str
    container_cleared: bool = False


@dataclass
class ReconcileReport:
    checked: int = 0
    skipped: int = 0
    updates: list[ReconcileUpdate] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def changed(self) -> bool:
        return bool(self.updates)


class Reconciler:
    """Periodic and on-demand status reconciliation."""

    def __init__(
        self,
        store: InstanceStore,
        driver: ContainerDriver,
        notifier: StatusNotifier | None = None,
        interval: float = 30.0,
    ) -> None:
        self._store = store
        self._driver = driver
        self._notifier = notifier
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Single pass
    # =========================================================================

    async def reconcile(self) -> ReconcileReport:
        """Compare every instance with the runtime and fix stored state."""
        start = time.monotonic()
        report = ReconcileReport()

        for instance in await self._store.list_all():
            report.checked += 1
            try:
                with operation_context("reconcile", instance.id):
                    update = await self._reconcile_one(instance)
            except ContainerRuntimeError as e:
                report.skipped += 1
                logger.warning(
                    "Skipping instance, runtime unavailable: %s",
                    e.message,
                    extra={
                        "event": LogEvent.RECONCILE_SKIPPED,
                        "instance_id": instance.id,
                        "container_id": instance.container_id,
                    },
                )
                continue
            except InstanceNotFoundError:
                report.skipped += 1
                logger.info(
                    "Skipping instance deleted during the pass",
                    extra={"event": LogEvent.RECONCILE_SKIPPED, "instance_id": instance.id},
                )
                continue
            if update is not None:
                report.updates.append(update)

        duration = time.monotonic() - start
        report.duration_ms = duration * 1000
        RECONCILE_DURATION.observe(duration)

        logger.info(
            "Reconcile complete",
            extra={
                "event": LogEvent.RECONCILE_COMPLETE,
                "checked": report.checked,
                "skipped": report.skipped,
                "updated": len(report.updates),
                "duration_ms": report.duration_ms,
            },
        )
        return report

    async def _reconcile_one(self, instance: Instance) -> ReconcileUpdate | None:
        container_missing = False
        if not instance.container_id:
            running = False
        else:
            try:
                state = await self._driver.inspect_status(instance.container_id)
                running = state.running
            except ContainerNotFoundError:
                running = False
                container_missing = True

        changes: dict = {}
        if running and instance.status != InstanceStatus.RUNNING:
            changes["status"] = InstanceStatus.RUNNING
        elif not running and instance.status == InstanceStatus.RUNNING:
            changes["status"] = InstanceStatus.STOPPED
        if container_missing:
            changes["container_id"] = None

        if not changes:
            return None

        await self._store.update(instance.id, changes)

        if "status" in changes:
            RECONCILE_CORRECTIONS_TOTAL.labels(kind="status").inc()
        if container_missing:
            RECONCILE_CORRECTIONS_TOTAL.labels(kind="container_cleared").inc()

        new_status = changes.get("status", instance.status)
        logger.info(
            "Corrected instance state",
            extra={
                "event": LogEvent.STATE_CHANGED,
                "instance_id": instance.id,
                "from_status": str(instance.status),
                "to_status": str(new_status),
                "container_cleared": container_missing,
            },
        )
        return ReconcileUpdate(
            instance_id=instance.id,
            name=instance.name,
            status=InstanceStatus(new_status).value,
            container_cleared=container_missing,
        )

    # =========================================================================
    # On demand / periodic
    # =========================================================================

    async def trigger(self) -> ReconcileReport:
        """Run one pass and broadcast the instance list if anything changed."""
        report = await self.reconcile()
        instances = await self._store.list_all()
        self._record_gauges(instances)

        if report.changed and self._notifier is not None:
            await self._notifier.publish_instances(instances)
        return report

    async def run(self) -> None:
        """Reconcile every `interval` seconds until cancelled."""
        logger.info(
            "Starting reconciler",
            extra={"event": LogEvent.APP_STARTED, "interval": self._interval},
        )
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.trigger()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    "Reconcile pass failed",
                    extra={
                        "event": LogEvent.RECONCILE_FAILED,
                        "error_type": type(e).__name__,
                    },
                )

    def start(self) -> asyncio.Task:
        """Start the periodic loop as a background task."""
        if not self.is_running:
            self._task = asyncio.create_task(self.run(), name="reconciler")
        return self._task

    async def stop(self) -> None:
        """Cancel the periodic loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reconciler stopped", extra={"event": LogEvent.APP_STOPPED})

    @staticmethod
    def _record_gauges(instances: list[Instance]) -> None:
        running = sum(1 for i in instances if i.status == InstanceStatus.RUNNING)
        INSTANCES_TOTAL.labels(status=InstanceStatus.RUNNING.value).set(running)
        INSTANCES_TOTAL.labels(status=InstanceStatus.STOPPED.value).set(len(instances) - running)
