"""Status-changed broadcasts over Redis PUB/SUB."""

import json
import logging
from typing import Protocol

from redis.exceptions import RedisError

from giftmgr.core.logging_schema import LogEvent
from giftmgr.core.models import Instance

logger = logging.getLogger(__name__)

EVENT_INSTANCES_UPDATED = "instances_updated"


class _Publisher(Protocol):
    async def publish(self, channel: str, payload: str) -> int: ...


def serialize_instance(instance: Instance) -> dict:
    """Public view of an instance (credentials excluded)."""
    data = instance.model_dump(exclude={"api_key", "dash_password"}, mode="json")
    data["is_running"] = instance.is_running
    return data


class StatusNotifier:
    """Publishes the full instance list whenever stored statuses change."""

    def __init__(self, publisher: _Publisher, channel: str) -> None:
        self._publisher = publisher
        self._channel = channel

    async def publish_instances(self, instances: list[Instance]) -> None:
        payload = json.dumps({
            "type": EVENT_INSTANCES_UPDATED,
            "data": [serialize_instance(i) for i in instances],
        })
        try:
            count = await self._publisher.publish(self._channel, payload)
        except RedisError as e:
            logger.warning(
                "Failed to publish status change: %s",
                e,
                extra={"event": LogEvent.STATUS_PUBLISHED, "channel": self._channel},
            )
            return

        logger.debug(
            "Published status change",
            extra={
                "event": LogEvent.STATUS_PUBLISHED,
                "channel": self._channel,
                "subscribers": count,
                "instances": len(instances),
            },
        )
