"""Runtime interfaces."""

from giftmgr.core.interfaces.runtime import (
    ContainerDriver,
    ContainerSpec,
    ContainerState,
    ContainerStats,
)

__all__ = ["ContainerDriver", "ContainerSpec", "ContainerState", "ContainerStats"]
