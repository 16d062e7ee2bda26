"""Docker Engine API client.

Provides async Docker API access for tracker containers and images.
Supports both Unix socket and TCP connections.
"""

import json
import logging

import httpx
from pydantic import BaseModel

from giftmgr.app.config import DockerConfig, get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class RestartPolicy(BaseModel):
    name: str = "no"
    maximum_retry_count: int = 0

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        result: dict = {"Name": self.name}
        if self.name == "on-failure":
            result["MaximumRetryCount"] = self.maximum_retry_count
        return result


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    # container port spec ("3000/tcp") -> host port
    port_bindings: dict[str, int] = {}
    restart_policy: RestartPolicy = RestartPolicy()
    memory: int | None = None
    memory_swap: int | None = None

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {
            "PortBindings": {
                container_port: [{"HostPort": str(host_port)}]
                for container_port, host_port in self.port_bindings.items()
            },
            "RestartPolicy": self.restart_policy.to_api(),
        }
        if self.memory is not None:
            result["Memory"] = self.memory
        if self.memory_swap is not None:
            result["MemorySwap"] = self.memory_swap
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    env: list[str] = []
    exposed_ports: dict[str, dict] = {}
    labels: dict[str, str] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": self.exposed_ports,
            "HostConfig": self.host_config.to_api(),
        }
        if self.env:
            result["Env"] = self.env
        if self.labels:
            result["Labels"] = self.labels
        return result


# =============================================================================
# Docker Client
# =============================================================================


class DockerClient:
    """Async Docker API client.

    Owns one httpx.AsyncClient, created lazily and released by close().
    """

    def __init__(
        self,
        config: DockerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or get_settings().docker
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def api_timeout(self) -> float:
        return self._config.api_timeout

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        timeout = self._config.api_timeout
        host = self._config.host
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport,
                base_url="http://docker",
                timeout=timeout,
            )
        if host.startswith("unix://"):
            socket_path = host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=timeout,
            )
        base_url = host
        if base_url.startswith("tcp://"):
            base_url = base_url.replace("tcp://", "http://")
        return httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def ping(self) -> bool:
        """Return True when the daemon answers /_ping."""
        try:
            client = await self.get()
            resp = await client.get("/_ping")
        except httpx.HTTPError as e:
            logger.warning("Docker ping failed: %s", e)
            return False
        return resp.status_code == 200

    async def info(self) -> dict:
        """Raw /info payload."""
        client = await self.get()
        resp = await client.get("/info")
        resp.raise_for_status()
        return resp.json()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations.

    Non-2xx answers surface as httpx.HTTPStatusError, except the
    "already in that state" codes (304) which are treated as success.
    """

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def inspect(self, container_id: str) -> dict | None:
        """Inspect a container (None when it does not exist)."""
        client = await self._docker.get()
        resp = await client.get(f"/containers/{container_id}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: ContainerConfig) -> str:
        """Create a container and return its id."""
        client = await self._docker.get()
        resp = await client.post(
            "/containers/create",
            params={"name": config.name},
            json=config.to_api(),
        )
        resp.raise_for_status()
        container_id = resp.json()["Id"]
        logger.info("Created container: %s (%s)", config.name, container_id[:12])
        return container_id

    async def start(self, container_id: str) -> None:
        client = await self._docker.get()
        resp = await client.post(f"/containers/{container_id}/start")
        if resp.status_code not in (204, 304):
            resp.raise_for_status()
        logger.info("Started container: %s", container_id[:12])

    async def stop(self, container_id: str, timeout: int = 10) -> None:
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{container_id}/stop",
            params={"t": str(timeout)},
            timeout=self._request_timeout(timeout),
        )
        if resp.status_code not in (204, 304):
            resp.raise_for_status()
        logger.info("Stopped container: %s", container_id[:12])

    async def restart(self, container_id: str, timeout: int = 10) -> None:
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{container_id}/restart",
            params={"t": str(timeout)},
            timeout=self._request_timeout(timeout),
        )
        resp.raise_for_status()
        logger.info("Restarted container: %s", container_id[:12])

    async def remove(self, container_id: str, force: bool = False) -> None:
        client = await self._docker.get()
        resp = await client.delete(
            f"/containers/{container_id}",
            params={"force": "true" if force else "false"},
        )
        resp.raise_for_status()
        logger.info("Removed container: %s", container_id[:12])

    async def logs(self, container_id: str, tail: int = 100, timestamps: bool = True) -> bytes:
        """Get the raw (possibly multiplexed) log stream."""
        client = await self._docker.get()
        params = {
            "stdout": "true",
            "stderr": "true",
            "tail": str(tail),
            "timestamps": "true" if timestamps else "false",
        }
        resp = await client.get(f"/containers/{container_id}/logs", params=params)
        resp.raise_for_status()
        return resp.content

    async def stats(self, container_id: str) -> dict:
        """Take one non-streaming stats sample."""
        client = await self._docker.get()
        resp = await client.get(
            f"/containers/{container_id}/stats", params={"stream": "false"}
        )
        resp.raise_for_status()
        return resp.json()

    def _request_timeout(self, grace_period: int) -> float:
        # The daemon answers only after the grace period has elapsed
        return self._docker.api_timeout + grace_period


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def exists(self, image_ref: str) -> bool:
        """Check if image exists locally (404 means no; other errors raise)."""
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True

    async def list(self, filters: dict | None = None) -> list[dict]:
        """List local images."""
        client = await self._docker.get()
        params: dict = {}
        if filters:
            params["filters"] = json.dumps(filters)
        resp = await client.get("/images/json", params=params)
        resp.raise_for_status()
        return resp.json()
