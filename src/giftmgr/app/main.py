"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text

from giftmgr import __version__
from giftmgr.adapters.runtime import DockerContainerDriver
from giftmgr.app.api.v1 import api_router
from giftmgr.app.config import get_settings
from giftmgr.app.dependencies import Services
from giftmgr.app.logging import setup_logging
from giftmgr.app.metrics import get_metrics_response
from giftmgr.app.middleware import LoggingMiddleware
from giftmgr.control.reconciler import Reconciler
from giftmgr.core.errors import GiftMgrError, ValidationFailedError
from giftmgr.core.interfaces import ContainerDriver
from giftmgr.core.logging_schema import LogEvent
from giftmgr.infra import (
    ChannelPublisher,
    DockerClient,
    close_db,
    close_redis,
    get_engine,
    get_redis,
    get_session_factory,
    init_db,
    init_redis,
)
from giftmgr.services.audit import AuditLog
from giftmgr.services.instance_store import InstanceStore
from giftmgr.services.monitor import InstanceMonitor
from giftmgr.services.notifier import StatusNotifier
from giftmgr.services.orchestrator import LifecycleOrchestrator
from giftmgr.services.ports import PortAllocator

setup_logging()
logger = logging.getLogger(__name__)


def build_services(
    store: InstanceStore,
    audit: AuditLog,
    driver: ContainerDriver,
    notifier: StatusNotifier | None,
) -> Services:
    settings = get_settings()
    ports = PortAllocator(store, settings.ports.start, settings.ports.end)
    return Services(
        orchestrator=LifecycleOrchestrator(store, driver, audit, ports, settings.tracker),
        monitor=InstanceMonitor(store, driver, audit),
        ports=ports,
        reconciler=Reconciler(store, driver, notifier, settings.reconciler.interval),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()

    await init_db()
    await init_redis()

    docker_client = DockerClient(settings.docker)
    if await docker_client.ping():
        logger.info(
            "Docker connected",
            extra={"event": LogEvent.DOCKER_CONNECTED, "host": docker_client.host},
        )
    else:
        logger.error(
            "Docker is not reachable, lifecycle operations will fail until it is",
            extra={"event": LogEvent.DOCKER_UNAVAILABLE, "host": docker_client.host},
        )

    session_factory = get_session_factory()
    store = InstanceStore(session_factory)
    audit = AuditLog(session_factory)
    driver = DockerContainerDriver(docker_client, settings.tracker)
    notifier = StatusNotifier(ChannelPublisher(get_redis()), settings.redis_channel.events)
    services = build_services(store, audit, driver, notifier)
    app.state.services = services

    await audit.purge_older_than(settings.audit.retention_days)

    if settings.reconciler.sync_on_startup:
        try:
            await services.reconciler.trigger()
        except Exception as e:
            logger.error(
                "Startup reconciliation failed",
                extra={"event": LogEvent.RECONCILE_FAILED, "error": str(e)},
            )
    services.reconciler.start()

    logger.info(
        "Starting application",
        extra={"event": LogEvent.APP_STARTED, "version": __version__},
    )

    yield

    logger.info("Shutting down application", extra={"event": LogEvent.APP_STOPPED})
    await services.reconciler.stop()
    await driver.close()
    await close_redis()
    await close_db()


app = FastAPI(title="Gift Instance Manager", version=__version__, lifespan=lifespan)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(GiftMgrError)
async def giftmgr_error_handler(request: Request, exc: GiftMgrError) -> JSONResponse:
    """Handle GiftMgrError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the common envelope."""
    parts = []
    for err in exc.errors():
        field = ".".join(str(loc) for loc in err["loc"] if loc != "body")
        parts.append(f"{field} is required" if err["type"] == "missing" else f"{field}: {err['msg']}")
    error = ValidationFailedError("; ".join(parts) or "Invalid request")
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response().model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={
            "event": LogEvent.UNHANDLED_ERROR,
            "path": request.url.path,
            "error_type": type(exc).__name__,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
        },
    )


app.include_router(api_router)


@app.get("/health")
async def health():
    """Liveness plus database reachability (no token required)."""
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
        database = "connected"
    except RuntimeError:
        database = "not initialized"
    except Exception as e:
        database = f"error: {e}"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": __version__,
        "services": {"database": database},
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    if not get_settings().metrics.enabled:
        return Response(status_code=404)
    return get_metrics_response()


def run() -> None:
    """Console entry point."""
    settings = get_settings()
    uvicorn.run(
        "giftmgr.app.main:app",
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )
