"""System API endpoints: runtime health, ports, forced reconciliation."""

from dataclasses import asdict

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from giftmgr import __version__
from giftmgr.app.api.responses import data_response, result_response
from giftmgr.app.dependencies import Monitor, Ports, ReconcilerDep
from giftmgr.core.errors import GiftMgrError
from giftmgr.core.result import OperationResult

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/health")
async def system_health(monitor: Monitor) -> JSONResponse:
    """Process and Docker reachability."""
    docker = await monitor.docker_ping()
    return data_response(
        {
            "status": "ok",
            "version": __version__,
            "docker": docker.success,
        }
    )


@router.get("/docker")
async def docker_info(monitor: Monitor) -> JSONResponse:
    return result_response(await monitor.docker_info())


@router.get("/docker/test")
async def docker_test(monitor: Monitor) -> JSONResponse:
    return result_response(await monitor.docker_ping())


@router.get("/ports")
async def list_ports(ports: Ports) -> JSONResponse:
    """Free and used ports in the configured range."""
    availability = await ports.available()
    data = asdict(availability)
    data["range"] = {"start": availability.start, "end": availability.end}
    return data_response(data)


@router.get("/ports/next")
async def next_port(ports: Ports) -> JSONResponse:
    try:
        port = await ports.next_available()
    except GiftMgrError as e:
        return result_response(OperationResult.from_error(e))
    return data_response({"port": port})


@router.post("/sync")
async def sync_statuses(reconciler: ReconcilerDep) -> JSONResponse:
    """Run one reconciliation pass now."""
    report = await reconciler.trigger()
    return data_response(
        {
            "checked": report.checked,
            "skipped": report.skipped,
            "updates": [asdict(u) for u in report.updates],
        },
        message=f"Synchronized {report.checked} instances, {len(report.updates)} updated",
    )
