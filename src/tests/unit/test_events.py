"""Tests for the Redis PUB/SUB wrappers and the SSE event stream."""

from unittest.mock import AsyncMock, MagicMock

import redis.asyncio as redis

from giftmgr.app.api.v1.events import _event_generator
from giftmgr.infra.redis_pubsub import ChannelPublisher, ChannelSubscriber


def make_client(messages: list) -> MagicMock:
    pubsub = MagicMock(
        subscribe=AsyncMock(),
        unsubscribe=AsyncMock(),
        aclose=AsyncMock(),
        get_message=AsyncMock(side_effect=messages),
    )
    client = MagicMock(publish=AsyncMock(return_value=2))
    client.pubsub.return_value = pubsub
    return client


class TestChannelPublisher:
    async def test_publish_returns_subscriber_count(self) -> None:
        client = make_client([])

        count = await ChannelPublisher(client).publish("giftmgr:events", "{}")

        assert count == 2
        client.publish.assert_awaited_once_with("giftmgr:events", "{}")


class TestChannelSubscriber:
    async def test_returns_message_payload(self) -> None:
        client = make_client([{"type": "message", "data": '{"type": "instances_updated"}'}])
        subscriber = ChannelSubscriber(client)
        await subscriber.subscribe("giftmgr:events")

        assert await subscriber.get_message(timeout=0.1) == '{"type": "instances_updated"}'

    async def test_nothing_before_subscribe(self) -> None:
        assert await ChannelSubscriber(make_client([])).get_message() is None

    async def test_connection_error_yields_none(self) -> None:
        client = make_client([redis.ConnectionError("lost")])
        subscriber = ChannelSubscriber(client)
        await subscriber.subscribe("giftmgr:events")

        assert await subscriber.get_message(timeout=0.1) is None

    async def test_unsubscribe_closes_pubsub(self) -> None:
        client = make_client([])
        subscriber = ChannelSubscriber(client)
        await subscriber.subscribe("giftmgr:events")

        await subscriber.unsubscribe()

        client.pubsub.return_value.aclose.assert_awaited_once()
        assert await subscriber.get_message() is None


class TestEventStream:
    async def test_connected_then_instances(self) -> None:
        request = MagicMock(is_disconnected=AsyncMock(side_effect=[False, True]))
        subscriber = MagicMock(
            subscribe=AsyncMock(),
            unsubscribe=AsyncMock(),
            get_message=AsyncMock(return_value='{"type": "instances_updated", "data": []}'),
        )

        frames = [frame async for frame in _event_generator(request, subscriber)]

        assert frames[0] == "event: connected\ndata: {}\n\n"
        assert frames[1] == 'event: instances\ndata: {"type": "instances_updated", "data": []}\n\n'
        subscriber.unsubscribe.assert_awaited_once()
