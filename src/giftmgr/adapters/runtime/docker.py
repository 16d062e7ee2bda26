"""Docker container driver implementation."""

import logging
import re
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from giftmgr.app.config import TrackerConfig, get_settings
from giftmgr.app.metrics.collector import DOCKER_API_DURATION, DOCKER_API_ERRORS_TOTAL
from giftmgr.core.errors import ContainerNotFoundError, ContainerRuntimeError
from giftmgr.core.interfaces import (
    ContainerDriver,
    ContainerSpec,
    ContainerState,
    ContainerStats,
)
from giftmgr.core.logging_schema import LogEvent
from giftmgr.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HostConfig,
    ImageAPI,
    RestartPolicy,
)

logger = logging.getLogger(__name__)

# Control characters except tab
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def demux_log_stream(raw: bytes) -> str:
    """Strip Docker's 8-byte multiplexing headers from a non-TTY log stream.

    Frame layout: [stream type, 0, 0, 0, size (4 bytes big-endian)] + payload.
    TTY containers return plain text, which is passed through.
    """
    if len(raw) < 8 or raw[0] not in (0, 1, 2) or raw[1:4] != b"\x00\x00\x00":
        return raw.decode("utf-8", errors="replace")

    chunks = []
    pos = 0
    while pos + 8 <= len(raw):
        size = int.from_bytes(raw[pos + 4 : pos + 8], "big")
        chunks.append(raw[pos + 8 : pos + 8 + size])
        pos += 8 + size
    return b"".join(chunks).decode("utf-8", errors="replace")


def clean_log_lines(text: str) -> list[str]:
    """Split into lines, drop control characters and blank lines."""
    lines = []
    for line in text.splitlines():
        cleaned = _CONTROL_CHARS.sub("", line).rstrip()
        if cleaned.strip():
            lines.append(cleaned)
    return lines


def calculate_cpu_percent(stats: dict) -> float:
    """CPU usage over the sample window, scaled by online CPUs.

    cpu% = (cpu_delta / system_delta) * online_cpus * 100
    """
    cpu_stats = stats.get("cpu_stats") or {}
    precpu_stats = stats.get("precpu_stats") or {}
    cpu_usage = cpu_stats.get("cpu_usage") or {}
    precpu_usage = precpu_stats.get("cpu_usage") or {}

    cpu_delta = cpu_usage.get("total_usage", 0) - precpu_usage.get("total_usage", 0)
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu_stats.get(
        "system_cpu_usage", 0
    )
    if system_delta <= 0 or cpu_delta < 0:
        return 0.0

    online_cpus = (
        cpu_stats.get("online_cpus")
        or len(cpu_usage.get("percpu_usage") or [])
        or 1
    )
    return cpu_delta / system_delta * online_cpus * 100.0


def calculate_memory(stats: dict) -> tuple[int, int, float]:
    """Return (usage, limit, percent); percent is 0.0 for an unknown limit."""
    memory_stats = stats.get("memory_stats") or {}
    usage = memory_stats.get("usage", 0)
    limit = memory_stats.get("limit", 0)
    percent = usage / limit * 100.0 if limit > 0 else 0.0
    return usage, limit, percent


def image_repository(image_ref: str) -> str:
    """Repository part of an image reference: the tag is dropped, a registry port is kept."""
    name, sep, tag = image_ref.rpartition(":")
    if not sep or "/" in tag:
        return image_ref
    return name


def _docker_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message") or response.text
    except ValueError:
        return response.text


class DockerContainerDriver(ContainerDriver):
    """Docker-based container driver using ContainerAPI."""

    def __init__(
        self,
        client: DockerClient,
        tracker: TrackerConfig | None = None,
        containers: ContainerAPI | None = None,
        images: ImageAPI | None = None,
    ) -> None:
        self._client = client
        self._tracker = tracker or get_settings().tracker
        self._containers = containers or ContainerAPI(client)
        self._images = images or ImageAPI(client)

    def container_name(self, instance_name: str) -> str:
        return f"{self._tracker.name_prefix}{instance_name}"

    def build_config(self, spec: ContainerSpec) -> ContainerConfig:
        """Map a ContainerSpec onto the Docker create payload."""
        port_spec = f"{self._tracker.container_port}/tcp"
        return ContainerConfig(
            image=spec.image,
            name=self.container_name(spec.instance_name),
            env=[f"{key}={value}" for key, value in spec.env.items()],
            exposed_ports={port_spec: {}},
            labels=spec.labels,
            host_config=HostConfig(
                port_bindings={port_spec: spec.host_port},
                restart_policy=RestartPolicy(name=self._tracker.restart_policy),
                memory=self._tracker.memory_bytes,
                memory_swap=self._tracker.memory_swap_bytes,
            ),
        )

    @asynccontextmanager
    async def _docker_call(
        self,
        operation: str,
        container_id: str | None = None,
        missing_is_runtime_error: bool = False,
    ) -> AsyncIterator[None]:
        """Time a Docker call and translate its failures into domain errors."""
        start = time.monotonic()
        try:
            yield
        except httpx.HTTPStatusError as e:
            message = _docker_message(e.response)
            if e.response.status_code == 404 and not missing_is_runtime_error:
                DOCKER_API_ERRORS_TOTAL.labels(operation=operation, kind="not_found").inc()
                raise ContainerNotFoundError(
                    f"Container {container_id} not found"
                ) from e
            DOCKER_API_ERRORS_TOTAL.labels(operation=operation, kind="runtime").inc()
            logger.warning(
                "Docker %s failed: %s",
                operation,
                message,
                extra={
                    "event": LogEvent.DOCKER_API_ERROR,
                    "operation": operation,
                    "container_id": container_id,
                    "status_code": e.response.status_code,
                },
            )
            raise ContainerRuntimeError(message) from e
        except httpx.HTTPError as e:
            DOCKER_API_ERRORS_TOTAL.labels(operation=operation, kind="runtime").inc()
            logger.warning(
                "Docker %s failed: %s",
                operation,
                e,
                extra={
                    "event": LogEvent.DOCKER_API_ERROR,
                    "operation": operation,
                    "container_id": container_id,
                    "error_type": type(e).__name__,
                },
            )
            raise ContainerRuntimeError(f"Docker {operation} failed: {e}") from e
        finally:
            DOCKER_API_DURATION.labels(operation=operation).observe(
                time.monotonic() - start
            )

    async def create_container(self, spec: ContainerSpec) -> str:
        async with self._docker_call("image_check", missing_is_runtime_error=True):
            exists = await self._images.exists(spec.image)
        if not exists:
            raise ContainerRuntimeError(
                f"Docker image {spec.image} not found. Please build it first."
            )

        config = self.build_config(spec)
        async with self._docker_call("create", missing_is_runtime_error=True):
            return await self._containers.create(config)

    async def start(self, container_id: str) -> None:
        async with self._docker_call("start", container_id):
            await self._containers.start(container_id)

    async def stop(self, container_id: str, grace_period: int) -> None:
        async with self._docker_call("stop", container_id):
            await self._containers.stop(container_id, timeout=grace_period)

    async def restart(self, container_id: str, grace_period: int) -> None:
        async with self._docker_call("restart", container_id):
            await self._containers.restart(container_id, timeout=grace_period)

    async def remove(self, container_id: str, force: bool = False) -> None:
        async with self._docker_call("remove", container_id):
            await self._containers.remove(container_id, force=force)

    async def inspect_status(self, container_id: str) -> ContainerState:
        async with self._docker_call("inspect", container_id):
            data = await self._containers.inspect(container_id)
        if data is None:
            raise ContainerNotFoundError(f"Container {container_id} not found")

        state = data.get("State") or {}
        return ContainerState(
            running=bool(state.get("Running", False)),
            status=state.get("Status", "unknown"),
            started_at=state.get("StartedAt"),
            finished_at=state.get("FinishedAt"),
        )

    async def fetch_logs(self, container_id: str, tail: int = 100) -> list[str]:
        async with self._docker_call("logs", container_id):
            raw = await self._containers.logs(container_id, tail=tail, timestamps=True)
        return clean_log_lines(demux_log_stream(raw))

    async def fetch_stats(self, container_id: str) -> ContainerStats:
        async with self._docker_call("stats", container_id):
            stats = await self._containers.stats(container_id)

        usage, limit, memory_percent = calculate_memory(stats)
        return ContainerStats(
            cpu_percent=calculate_cpu_percent(stats),
            memory_usage_bytes=usage,
            memory_limit_bytes=limit,
            memory_percent=memory_percent,
            networks=stats.get("networks") or {},
        )

    async def list_images(self) -> list[dict]:
        """Tagged local images of the tracker repository, newest first.

        Each entry: {"image": "gift-tracker:v2", "id", "created", "size"}.
        """
        repository = image_repository(self._tracker.image)
        async with self._docker_call("image_list"):
            images = await self._images.list({"reference": [repository]})

        entries = []
        for image in images:
            for tag in image.get("RepoTags") or []:
                if image_repository(tag) != repository:
                    continue
                entries.append({
                    "image": tag,
                    "id": image.get("Id"),
                    "created": image.get("Created", 0),
                    "size": image.get("Size", 0),
                })
        entries.sort(key=lambda e: (-e["created"], e["image"]))
        return entries

    async def ping(self) -> bool:
        return await self._client.ping()

    async def info(self) -> dict:
        async with self._docker_call("info"):
            data = await self._client.info()
        return {
            "containers": data.get("Containers", 0),
            "running": data.get("ContainersRunning", 0),
            "paused": data.get("ContainersPaused", 0),
            "stopped": data.get("ContainersStopped", 0),
            "images": data.get("Images", 0),
            "version": data.get("ServerVersion"),
            "os": data.get("OperatingSystem"),
            "arch": data.get("Architecture"),
            "mem_total": data.get("MemTotal"),
            "cpus": data.get("NCPU"),
        }

    async def close(self) -> None:
        await self._client.close()
