"""Container runtime gateway – runs repair tools inside ephemeral containers.

Lifecycle of one run:
  1. Create a container from the tool image with the requested bind mounts
  2. Start it and wait for the tool command to exit
  3. Capture stdout and stderr separately
  4. Destroy the container (always, even on failure)

The gateway holds no per-run state, so one instance is shared by all
repair workers of a batch.

Requires:  docker (pip install docker)  +  Docker daemon running.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.models.containers import Container

logger = logging.getLogger(__name__)

MANAGED_LABEL = "managed-by"
MANAGED_VALUE = "seqrepair"


class SandboxError(Exception):
    """Raised when the container runtime rejects or fails an operation."""


# ── Result dataclass ─────────────────────────────────────────────────

@dataclass
class ContainerRun:
    """Structured output from one container run."""

    exit_code: int
    stdout: str
    stderr: str
    container_id: str = ""
    duration_s: float = 0.0
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "container_id": self.container_id,
            "duration_s": round(self.duration_s, 2),
            "success": self.success,
        }


# ── Gateway ──────────────────────────────────────────────────────────

class ContainerGateway:
    """Thin capability over the Docker engine.

    Usage::

        gateway = ContainerGateway()
        gateway.ensure_image("javierron/sequencer-multimodel:1.0")
        run = gateway.run(
            image="javierron/sequencer-multimodel:1.0",
            command="./sequencer-predict.sh --buggy_file=/tmp/Foo.java ...",
            binds={"/work/src/pkg": "/tmp", "/work/out/Foo.java1a2b": "/out"},
        )
        print(run.stdout)
    """

    def __init__(self, client: docker.DockerClient | None = None):
        self._client = client

    # -- Docker client (lazy) ------------------------------------------

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as exc:
                raise SandboxError(f"Docker runtime unreachable: {exc}") from exc
        return self._client

    # -- Image ---------------------------------------------------------

    def ensure_image(self, image: str) -> bool:
        """Pull *image* if it isn't available locally.

        Returns True when a pull was needed.
        """
        try:
            self.client.images.get(image)
            return False
        except ImageNotFound:
            pass
        except DockerException as exc:
            raise SandboxError(f"Could not inspect image '{image}': {exc}") from exc

        logger.info("Pulling image %s …", image)
        try:
            self.client.images.pull(image)
        except DockerException as exc:
            raise SandboxError(f"Could not pull image '{image}': {exc}") from exc
        return True

    # -- Run -----------------------------------------------------------

    def run(
        self,
        image: str,
        command: str,
        binds: dict[str, str],
        labels: dict[str, str] | None = None,
    ) -> ContainerRun:
        """Run *command* with ``bash -c`` in a fresh container and wait for it.

        *binds* maps host paths to container paths.  The container is
        **always** removed after execution.
        """
        all_labels = {MANAGED_LABEL: MANAGED_VALUE, **(labels or {})}
        container: Container | None = None
        t0 = time.monotonic()

        try:
            container = self.client.containers.create(
                image=image,
                command=["bash", "-c", command],
                volumes={
                    host: {"bind": target, "mode": "rw"}
                    for host, target in binds.items()
                },
                labels=all_labels,
                detach=True,
            )
            container.start()
            logger.info("Container %s started (image=%s)", container.short_id, image)

            status = container.wait()
            exit_code = int(status.get("StatusCode", 1)) if isinstance(status, dict) else int(status)

            stdout = _decode(container.logs(stdout=True, stderr=False))
            stderr = _decode(container.logs(stdout=False, stderr=True))

            return ContainerRun(
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                container_id=container.id,
                duration_s=time.monotonic() - t0,
                labels=all_labels,
            )
        except DockerException as exc:
            raise SandboxError(f"Container run failed: {exc}") from exc
        finally:
            self._destroy(container)

    # -- Introspection -------------------------------------------------

    def container_mounts(self, container_id: str) -> list[tuple[str, str]]:
        """Return the ``(source, destination)`` mount table of a container."""
        try:
            attrs = self.client.containers.get(container_id).attrs
        except DockerException as exc:
            raise SandboxError(f"Could not inspect container {container_id}: {exc}") from exc
        return [
            (m.get("Source", ""), m.get("Destination", ""))
            for m in attrs.get("Mounts", []) or []
        ]

    # -- Cleanup -------------------------------------------------------

    def remove_labelled(self, labels: dict[str, str]) -> int:
        """Force-remove every container carrying *labels*.  Never raises.

        Returns the number of containers removed.
        """
        filters = {"label": [f"{k}={v}" for k, v in labels.items()]}
        try:
            containers = self.client.containers.list(all=True, filters=filters)
        except Exception as exc:
            logger.warning("Could not list containers for cleanup: %s", exc)
            return 0

        removed = 0
        for container in containers:
            if self._destroy(container):
                removed += 1
        return removed

    @staticmethod
    def _destroy(container: Container | None) -> bool:
        """Force-remove the container.  Never raises."""
        if container is None:
            return False
        try:
            container.remove(force=True)
            logger.debug("Container %s destroyed", container.short_id)
            return True
        except NotFound:
            return False  # already gone
        except Exception as exc:
            logger.warning("Failed to destroy container: %s", exc)
            return False


def _decode(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8", errors="replace")
