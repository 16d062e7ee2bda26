"""Port allocator over the configured host port range."""

from dataclasses import dataclass
from typing import Protocol

from giftmgr.core.errors import PortsExhaustedError


class _UsedPortSource(Protocol):
    async def used_ports(self) -> list[int]: ...


@dataclass
class PortAvailability:
    available: list[int]
    used: list[int]
    start: int
    end: int


def compute_free_ports(start: int, end: int, used: list[int] | set[int]) -> list[int]:
    """Ports in [start, end] not in `used`, ascending."""
    taken = set(used)
    return [port for port in range(start, end + 1) if port not in taken]


class PortAllocator:
    """Suggests free host ports. Reserves nothing.

    Two callers may be handed the same port; the store's unique
    constraint decides which create wins.
    """

    def __init__(self, store: _UsedPortSource, start: int, end: int) -> None:
        self._store = store
        self.start = start
        self.end = end

    def in_range(self, port: int) -> bool:
        return self.start <= port <= self.end

    async def available(self) -> PortAvailability:
        used = await self._store.used_ports()
        return PortAvailability(
            available=compute_free_ports(self.start, self.end, used),
            used=[port for port in used if self.in_range(port)],
            start=self.start,
            end=self.end,
        )

    async def next_available(self) -> int:
        """Lowest free port.

        Raises:
            PortsExhaustedError: If every port in the range is taken
        """
        free = compute_free_ports(self.start, self.end, await self._store.used_ports())
        if not free:
            raise PortsExhaustedError(
                f"No available ports in range {self.start}-{self.end}"
            )
        return free[0]
