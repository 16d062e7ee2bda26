"""Instance API endpoints."""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from giftmgr.app.api.responses import bulk_response, result_response
from giftmgr.app.dependencies import Monitor, Orchestrator
from giftmgr.core.schemas import InstanceCreate, InstanceUpdate

router = APIRouter(prefix="/instances", tags=["instances"])


# Fixed paths are declared first so they are never taken for an instance id
@router.post("/bulk/start")
async def start_all_instances(orchestrator: Orchestrator) -> JSONResponse:
    """Start every instance that is not running."""
    return bulk_response(await orchestrator.start_all())


@router.post("/bulk/stop")
async def stop_all_instances(orchestrator: Orchestrator) -> JSONResponse:
    """Stop every running instance."""
    return bulk_response(await orchestrator.stop_all())


@router.get("/available-images")
async def list_available_images(monitor: Monitor) -> JSONResponse:
    """Local tracker images usable as a per-instance docker_image."""
    return result_response(await monitor.available_images())


@router.get("")
async def list_instances(monitor: Monitor) -> JSONResponse:
    """List instances, newest first, with live container status."""
    return result_response(await monitor.list_instances())


@router.post("", status_code=201)
async def create_instance(body: InstanceCreate, orchestrator: Orchestrator) -> JSONResponse:
    return result_response(await orchestrator.create(body), status_code=201)


@router.get("/{instance_id}")
async def get_instance(instance_id: str, monitor: Monitor) -> JSONResponse:
    return result_response(await monitor.get_instance(instance_id))


@router.put("/{instance_id}")
async def update_instance(
    instance_id: str, body: InstanceUpdate, orchestrator: Orchestrator
) -> JSONResponse:
    """Update a stopped instance. Its container is recreated on next start."""
    return result_response(await orchestrator.update(instance_id, body))


@router.delete("/{instance_id}")
async def delete_instance(instance_id: str, orchestrator: Orchestrator) -> JSONResponse:
    return result_response(await orchestrator.delete(instance_id))


@router.post("/{instance_id}/start")
async def start_instance(instance_id: str, orchestrator: Orchestrator) -> JSONResponse:
    return result_response(await orchestrator.start(instance_id))


@router.post("/{instance_id}/stop")
async def stop_instance(instance_id: str, orchestrator: Orchestrator) -> JSONResponse:
    return result_response(await orchestrator.stop(instance_id))


@router.post("/{instance_id}/restart")
async def restart_instance(instance_id: str, orchestrator: Orchestrator) -> JSONResponse:
    return result_response(await orchestrator.restart(instance_id))


@router.get("/{instance_id}/logs")
async def get_instance_logs(
    instance_id: str,
    monitor: Monitor,
    tail: int = Query(default=100, ge=1, le=10000),
) -> JSONResponse:
    return result_response(await monitor.fetch_logs(instance_id, tail=tail))


@router.get("/{instance_id}/stats")
async def get_instance_stats(instance_id: str, monitor: Monitor) -> JSONResponse:
    return result_response(await monitor.fetch_stats(instance_id))


@router.get("/{instance_id}/events")
async def get_instance_events(
    instance_id: str,
    monitor: Monitor,
    limit: int = Query(default=100, ge=1, le=1000),
) -> JSONResponse:
    """Audit entries for the instance, newest first."""
    return result_response(await monitor.instance_events(instance_id, limit=limit))
