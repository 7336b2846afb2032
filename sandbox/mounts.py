"""Host-path resolution for sibling containers.

When the pipeline itself runs inside a container, the paths it sees are
paths of its own virtual filesystem.  The Docker daemon resolves bind
mount sources on the *host*, so a path handed to a sibling container must
first be translated through the mount table of the current container.
Outside a container the translation is the identity.
"""

from __future__ import annotations

import logging
import os
import re
import socket
from pathlib import Path

logger = logging.getLogger(__name__)

DOCKERENV = Path("/.dockerenv")
_CPUSET = Path("/proc/1/cpuset")
_MOUNTINFO = Path("/proc/self/mountinfo")
_CONTAINER_ID_RE = re.compile(r"/containers/([0-9a-f]{64})/")


def running_in_container(marker: Path = DOCKERENV) -> bool:
    return marker.exists()


def detect_container_id(
    cpuset: Path = _CPUSET,
    mountinfo: Path = _MOUNTINFO,
) -> str:
    """Best guess of the id of the container this process runs in."""
    try:
        name = os.path.basename(cpuset.read_text().strip())
        if name:
            return name
    except OSError:
        pass

    # cgroup v2 hosts leave cpuset at "/", but the hostname/resolv.conf
    # bind mounts still reveal the container directory.
    try:
        match = _CONTAINER_ID_RE.search(mountinfo.read_text())
        if match:
            return match.group(1)
    except OSError:
        pass

    return socket.gethostname()


def resolve_host_path(
    path: str | Path,
    mounts: list[tuple[str, str]],
    workspace: str | Path,
) -> str:
    """Translate *path* through the workspace mount of *mounts*.

    *mounts* is a ``(source, destination)`` table.  When no mount targets
    *workspace*, or *path* lies outside it, *path* is returned unchanged.
    """
    path_str = str(path)
    workspace_str = str(workspace).rstrip("/")

    source = next((src for src, dest in mounts if dest.rstrip("/") == workspace_str), None)
    if source is None:
        return path_str

    if path_str == workspace_str:
        return source
    if path_str.startswith(workspace_str + "/"):
        return source.rstrip("/") + path_str[len(workspace_str):]
    return path_str


class MountResolver:
    """Maps local paths to the paths the container daemon can bind-mount."""

    def __init__(self, mounts: list[tuple[str, str]] | None = None, workspace: str | Path = ""):
        self.mounts = list(mounts or [])
        self.workspace = str(workspace)

    @property
    def nested(self) -> bool:
        return bool(self.mounts)

    @classmethod
    def for_current_process(cls, gateway, workspace: str | Path) -> MountResolver:
        """Introspect the current container, or return an identity resolver.

        *gateway* must offer ``container_mounts(container_id)``.
        """
        workspace_real = os.path.realpath(str(workspace))
        if not running_in_container():
            return cls(workspace=workspace_real)

        container_id = detect_container_id()
        mounts = gateway.container_mounts(container_id)
        logger.info(
            "Running inside container %s | %d mount(s) | workspace=%s",
            container_id[:12], len(mounts), workspace_real,
        )
        if not any(dest.rstrip("/") == workspace_real.rstrip("/") for _, dest in mounts):
            logger.warning(
                "Workspace %s is not a bind mount of this container; "
                "sibling containers will see local paths",
                workspace_real,
            )
        return cls(mounts=mounts, workspace=workspace_real)

    def resolve(self, path: str | Path) -> str:
        return resolve_host_path(path, self.mounts, self.workspace)
