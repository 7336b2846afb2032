"""Unit tests for the container runtime gateway.

The Docker client is a MagicMock, so no daemon is required.

Run:
    python -m pytest sandbox/test_executor.py -v
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, ImageNotFound, NotFound

from sandbox.executor import MANAGED_LABEL, ContainerGateway, SandboxError


def _container(exit_code: int = 0, stdout: bytes = b"out\n", stderr: bytes = b"err\n") -> MagicMock:
    container = MagicMock()
    container.id = "c" * 64
    container.short_id = "c" * 12
    container.wait.return_value = {"StatusCode": exit_code}
    streams = {"stdout": stdout, "stderr": stderr}
    container.logs.side_effect = lambda stdout=True, stderr=False: (
        streams["stdout"] if stdout else streams["stderr"]
    )
    return container


class TestEnsureImage:

    def test_present_image_is_not_pulled(self):
        client = MagicMock()
        gateway = ContainerGateway(client)

        assert gateway.ensure_image("img:1") is False
        client.images.pull.assert_not_called()

    def test_missing_image_is_pulled(self):
        client = MagicMock()
        client.images.get.side_effect = ImageNotFound("nope")
        gateway = ContainerGateway(client)

        assert gateway.ensure_image("img:1") is True
        client.images.pull.assert_called_once_with("img:1")

    def test_pull_error_becomes_sandbox_error(self):
        client = MagicMock()
        client.images.get.side_effect = ImageNotFound("nope")
        client.images.pull.side_effect = APIError("registry down")
        gateway = ContainerGateway(client)

        with pytest.raises(SandboxError):
            gateway.ensure_image("img:1")


class TestRun:

    def test_run_collects_output_and_removes_container(self):
        client = MagicMock()
        container = _container(exit_code=0, stdout=b"hello\n", stderr=b"warn\n")
        client.containers.create.return_value = container
        gateway = ContainerGateway(client)

        run = gateway.run("img:1", "echo hello", {"/host/src": "/tmp", "/host/out": "/out"}, {"batch": "b1"})

        assert run.success
        assert run.stdout == "hello\n"
        assert run.stderr == "warn\n"
        assert run.labels[MANAGED_LABEL] == "seqrepair"
        assert run.labels["batch"] == "b1"

        kwargs = client.containers.create.call_args.kwargs
        assert kwargs["command"] == ["bash", "-c", "echo hello"]
        assert kwargs["volumes"] == {
            "/host/src": {"bind": "/tmp", "mode": "rw"},
            "/host/out": {"bind": "/out", "mode": "rw"},
        }
        container.start.assert_called_once()
        container.remove.assert_called_once_with(force=True)

    def test_nonzero_exit_is_reported_not_raised(self):
        client = MagicMock()
        client.containers.create.return_value = _container(exit_code=3)
        gateway = ContainerGateway(client)

        run = gateway.run("img:1", "false", {})

        assert run.exit_code == 3
        assert not run.success

    def test_container_removed_when_wait_fails(self):
        client = MagicMock()
        container = _container()
        container.wait.side_effect = APIError("boom")
        client.containers.create.return_value = container
        gateway = ContainerGateway(client)

        with pytest.raises(SandboxError):
            gateway.run("img:1", "sleep 1", {})
        container.remove.assert_called_once_with(force=True)


class TestIntrospectionAndCleanup:

    def test_container_mounts(self):
        client = MagicMock()
        client.containers.get.return_value.attrs = {
            "Mounts": [
                {"Source": "/var/lib/ws", "Destination": "/workspace"},
                {"Source": "/var/run/docker.sock", "Destination": "/var/run/docker.sock"},
            ]
        }
        gateway = ContainerGateway(client)

        assert gateway.container_mounts("abc") == [
            ("/var/lib/ws", "/workspace"),
            ("/var/run/docker.sock", "/var/run/docker.sock"),
        ]

    def test_remove_labelled_counts_removed(self):
        client = MagicMock()
        gone = MagicMock()
        gone.remove.side_effect = NotFound("gone")
        client.containers.list.return_value = [MagicMock(), gone, MagicMock()]
        gateway = ContainerGateway(client)

        assert gateway.remove_labelled({"batch": "b1"}) == 2
        assert client.containers.list.call_args.kwargs["filters"] == {"label": ["batch=b1"]}

    def test_remove_labelled_never_raises(self):
        client = MagicMock()
        client.containers.list.side_effect = APIError("daemon gone")
        gateway = ContainerGateway(client)

        assert gateway.remove_labelled({"batch": "b1"}) == 0
