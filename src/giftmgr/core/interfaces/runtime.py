"""Container driver interface for gift tracker workloads."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ContainerSpec:
    """Everything the runtime needs to create one tracker container."""

    instance_id: str
    instance_name: str
    image: str
    host_port: int
    env: dict[str, str]
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerState:
    """Container inspection result."""

    running: bool
    status: str
    started_at: str | None = None
    finished_at: str | None = None


@dataclass
class ContainerStats:
    """One resource usage sample."""

    cpu_percent: float
    memory_usage_bytes: int
    memory_limit_bytes: int
    memory_percent: float
    networks: dict = field(default_factory=dict)


class ContainerDriver(ABC):
    """Interface over the container runtime.

    Every method raises ContainerNotFoundError when the runtime has no
    container for the reference, and ContainerRuntimeError for any other
    failure. Nothing is retried.

    Implementations: DockerContainerDriver
    """

    @abstractmethod
    async def create_container(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container.

        Returns:
            Container reference (id)
        """
        ...

    @abstractmethod
    async def start(self, container_id: str) -> None: ...

    @abstractmethod
    async def stop(self, container_id: str, grace_period: int) -> None:
        """Stop a container, killing it after grace_period seconds."""
        ...

    @abstractmethod
    async def restart(self, container_id: str, grace_period: int) -> None: ...

    @abstractmethod
    async def remove(self, container_id: str, force: bool = False) -> None: ...

    @abstractmethod
    async def inspect_status(self, container_id: str) -> ContainerState: ...

    @abstractmethod
    async def fetch_logs(self, container_id: str, tail: int = 100) -> list[str]:
        """Fetch the last `tail` log lines, cleaned of control characters."""
        ...

    @abstractmethod
    async def fetch_stats(self, container_id: str) -> ContainerStats: ...

    @abstractmethod
    async def ping(self) -> bool:
        """Check runtime reachability. Never raises."""
        ...

    @abstractmethod
    async def list_images(self) -> list[dict]:
        """Local tracker images, newest first."""
        ...

    @abstractmethod
    async def info(self) -> dict:
        """Runtime host summary (counts, version, resources)."""
        ...

    async def close(self) -> None:
        """Release runtime connections."""
        pass
