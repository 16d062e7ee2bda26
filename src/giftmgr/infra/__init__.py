"""Infrastructure connections (DB, Redis, Docker)."""

from giftmgr.infra.database import (
    close_db,
    create_engine,
    create_session_factory,
    create_tables,
    get_engine,
    get_session_factory,
    init_db,
)
from giftmgr.infra.docker import ContainerAPI, DockerClient, ImageAPI
from giftmgr.infra.redis import close_redis, get_redis, init_redis
from giftmgr.infra.redis_pubsub import ChannelPublisher, ChannelSubscriber

__all__ = [
    # DB
    "init_db",
    "close_db",
    "create_engine",
    "create_session_factory",
    "create_tables",
    "get_engine",
    "get_session_factory",
    # Docker
    "DockerClient",
    "ContainerAPI",
    "ImageAPI",
    # Redis
    "init_redis",
    "close_redis",
    "get_redis",
    "ChannelPublisher",
    "ChannelSubscriber",
]
