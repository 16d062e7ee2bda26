"""FastAPI dependencies: service lookup and the API token check."""

import hmac
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request

from giftmgr.app.config import get_settings
from giftmgr.control.reconciler import Reconciler
from giftmgr.core.errors import UnauthorizedError
from giftmgr.services.monitor import InstanceMonitor
from giftmgr.services.orchestrator import LifecycleOrchestrator
from giftmgr.services.ports import PortAllocator


@dataclass
class Services:
    """Service graph built once in the application lifespan."""

    orchestrator: LifecycleOrchestrator
    monitor: InstanceMonitor
    ports: PortAllocator
    reconciler: Reconciler


def _services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


def get_orchestrator(request: Request) -> LifecycleOrchestrator:
    return _services(request).orchestrator


def get_monitor(request: Request) -> InstanceMonitor:
    return _services(request).monitor


def get_port_allocator(request: Request) -> PortAllocator:
    return _services(request).ports


def get_reconciler(request: Request) -> Reconciler:
    return _services(request).reconciler


async def require_caller(
    authorization: Annotated[str | None, Header()] = None,
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Accept `Authorization: Bearer <token>` or `X-API-Key: <token>`.

    Raises:
        UnauthorizedError: If a token is configured and the request lacks it
    """
    expected = get_settings().auth.api_token
    if not expected:
        return

    presented = x_api_key
    if authorization and authorization.lower().startswith("bearer "):
        presented = authorization[7:].strip()

    if not presented or not hmac.compare_digest(presented, expected):
        raise UnauthorizedError("Invalid or missing API token")


Orchestrator = Annotated[LifecycleOrchestrator, Depends(get_orchestrator)]
Monitor = Annotated[InstanceMonitor, Depends(get_monitor)]
Ports = Annotated[PortAllocator, Depends(get_port_allocator)]
ReconcilerDep = Annotated[Reconciler, Depends(get_reconciler)]
