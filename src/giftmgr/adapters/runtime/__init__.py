"""Container driver implementations."""

from giftmgr.adapters.runtime.docker import DockerContainerDriver

__all__ = ["DockerContainerDriver"]
