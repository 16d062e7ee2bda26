"""API v1 module."""

from fastapi import APIRouter, Depends

from giftmgr.app.api.v1.events import router as events_router
from giftmgr.app.api.v1.instances import router as instances_router
from giftmgr.app.api.v1.system import router as system_router
from giftmgr.app.dependencies import require_caller

api_router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_caller)])
api_router.include_router(instances_router)
api_router.include_router(system_router)
api_router.include_router(events_router)

__all__ = ["api_router", "events_router", "instances_router", "system_router"]
