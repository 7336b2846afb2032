"""Container sandbox – isolated repair-tool execution."""

from sandbox.executor import ContainerGateway, ContainerRun, SandboxError
from sandbox.mounts import MountResolver, resolve_host_path

__all__ = [
    "ContainerGateway",
    "ContainerRun",
    "SandboxError",
    "MountResolver",
    "resolve_host_path",
]
