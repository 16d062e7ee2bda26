"""SSE Events API endpoint.

Relays status-changed broadcasts (Redis PUB/SUB) to browsers.

Data flow:
  Reconciler -> StatusNotifier -> Redis PUB/SUB -> SSE endpoint

Each message carries the full instance list, so a client that misses
one only has to wait for the next.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from giftmgr.app.config import get_settings
from giftmgr.app.metrics.collector import SSE_ACTIVE_CONNECTIONS, SSE_MESSAGES_TOTAL
from giftmgr.core.logging_schema import LogEvent
from giftmgr.infra import get_redis
from giftmgr.infra.redis_pubsub import ChannelSubscriber

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def _event_generator(
    request: Request,
    subscriber: ChannelSubscriber,
) -> AsyncGenerator[str, None]:
    """Yield SSE frames.

    - instances: full instance list after a status change
    - heartbeat: every SSE_HEARTBEAT_INTERVAL seconds
    """
    settings = get_settings()
    channel = settings.redis_channel.events
    heartbeat_interval = settings.sse.heartbeat_interval

    logger.info("Client connected", extra={"event": LogEvent.SSE_CONNECTED, "channel": channel})

    SSE_ACTIVE_CONNECTIONS.inc()
    try:
        await subscriber.subscribe(channel)

        loop = asyncio.get_running_loop()
        last_heartbeat = loop.time()

        yield "event: connected\ndata: {}\n\n"
        SSE_MESSAGES_TOTAL.labels(event_type="connected").inc()

        while True:
            if await request.is_disconnected():
                break

            payload = await subscriber.get_message(timeout=1.0)
            if payload is not None:
                logger.debug("Received message", extra={"event": LogEvent.SSE_RECEIVED})
                yield f"event: instances\ndata: {payload}\n\n"
                SSE_MESSAGES_TOTAL.labels(event_type="instances").inc()

            now = loop.time()
            if now - last_heartbeat >= heartbeat_interval:
                yield "event: heartbeat\ndata: {}\n\n"
                SSE_MESSAGES_TOTAL.labels(event_type="heartbeat").inc()
                last_heartbeat = now

    except asyncio.CancelledError:
        pass
    finally:
        SSE_ACTIVE_CONNECTIONS.dec()
        await subscriber.unsubscribe()
        logger.info("Client disconnected", extra={"event": LogEvent.SSE_DISCONNECTED})


@router.get("/events")
async def sse_events(request: Request) -> StreamingResponse:
    """SSE stream of instance status changes."""
    subscriber = ChannelSubscriber(get_redis())
    return StreamingResponse(
        _event_generator(request, subscriber),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
