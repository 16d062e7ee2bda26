"""Redis PUB/SUB for instance status broadcasts.

ChannelPublisher pushes JSON payloads; ChannelSubscriber relays them to
SSE clients. PUB/SUB has no durability: a client that is not connected
misses the message and picks up the next full snapshot.
"""

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class ChannelPublisher:
    """Publishes payloads to a Redis PUB/SUB channel."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def publish(self, channel: str, payload: str) -> int:
        """Publish a payload.

        Returns the number of subscribers that received the message.
        """
        count = await self._client.publish(channel, payload)
        logger.debug("Published to %s (subscribers=%d)", channel, count)
        return count


class ChannelSubscriber:
    """Subscribes to one Redis PUB/SUB channel."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._pubsub: redis.client.PubSub | None = None
        self._channel: str | None = None

    async def subscribe(self, channel: str) -> None:
        self._channel = channel
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(channel)
        logger.info("Subscribed to %s", channel)

    async def unsubscribe(self) -> None:
        """Unsubscribe and close PubSub connection."""
        if self._pubsub:
            try:
                await self._pubsub.unsubscribe()
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning("Error closing pubsub: %s", e)
            self._pubsub = None
        self._channel = None

    async def get_message(self, timeout: float = 0.0) -> str | None:
        """Read the next payload, or None when nothing arrived within timeout."""
        if not self._pubsub or not self._channel:
            return None

        try:
            msg = await self._pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=timeout,
            )
        except redis.ConnectionError as e:
            logger.warning(
                "Redis connection error in pubsub: %s",
                e,
                extra={"error_type": "connection", "channel": self._channel},
            )
            return None

        if msg and msg["type"] == "message":
            return msg["data"]
        return None
