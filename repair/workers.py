"""Sandboxed repair worker pool.

One worker per modification point, at most ``threads`` running at once,
all joined against a single batch deadline:

  • each worker resolves its paths, mounts the buggy file's directory at
    ``/tmp`` and a private output directory at ``/out`` of a fresh tool
    container, runs the tool and collects the diffs it wrote;
  • a worker never raises: failures become an absent result;
  • when the deadline passes, queued workers are cancelled, running ones
    are abandoned, and their containers are removed on a best-effort
    basis through the batch label.  Abandoned workers may still be
    running when ``run()`` returns.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from sandbox.executor import ContainerGateway
from sandbox.mounts import MountResolver
from shared.config import SequencerConfig
from shared.schemas import ModificationPoint, ToolInvocationResult

logger = logging.getLogger(__name__)

BATCH_LABEL = "seqrepair.batch"
INPUT_MOUNT = "/tmp"
OUTPUT_MOUNT = "/out"
MODELS_DIR = "/root/sequencer/models"


def build_sequencer_command(
    buggy_file_name: str,
    buggy_line: int,
    beam_size: int,
    real_file_path: str | Path,
) -> str:
    """Command line of the SequenceR prediction script inside its image."""
    return (
        "./sequencer-predict.sh "
        f"--buggy_file={INPUT_MOUNT}/{buggy_file_name} "
        f"--buggy_line={buggy_line} "
        f"--beam_size={beam_size} "
        f"--real_file_path={real_file_path} "
        f"--output={OUTPUT_MOUNT} "
        f"--models_dir={MODELS_DIR}"
    )


CommandBuilder = Callable[[str, int, int, Path], str]


@dataclass
class WorkerOutcome:
    """Outcome of one worker: a result, or the reason there is none."""

    point: ModificationPoint
    result: ToolInvocationResult | None = None
    error: str = ""
    timed_out: bool = False

    @property
    def present(self) -> bool:
        return self.result is not None

    def diagnostic(self) -> dict[str, Any]:
        if self.result is not None:
            return self.result.diagnostic()
        return {"success": False, "message": self.error, "warning": ""}


class RepairWorkerPool:
    """Runs one containerized tool invocation per modification point."""

    def __init__(
        self,
        gateway: ContainerGateway,
        config: SequencerConfig,
        repo_path: str | Path,
        output_root: str | Path,
        resolver: MountResolver | None = None,
        timeout_s: float | None = None,
        command_builder: CommandBuilder = build_sequencer_command,
    ):
        self.gateway = gateway
        self.config = config
        self.repo_path = Path(repo_path).resolve()
        self.output_root = Path(output_root)
        self.resolver = resolver or MountResolver()
        self.timeout_s = config.timeout_seconds if timeout_s is None else timeout_s
        self.command_builder = command_builder

    async def run(self, points: list[ModificationPoint]) -> list[WorkerOutcome]:
        """Attempt every point; outcomes come back in submission order."""
        if not points:
            return []

        labels = {BATCH_LABEL: uuid.uuid4().hex}
        threads = max(1, self.config.THREADS)
        logger.info(
            "Submitting %d worker(s) | threads=%d | timeout=%.0fs | image=%s",
            len(points), threads, self.timeout_s, self.config.DOCKER_TAG,
        )

        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=threads, thread_name_prefix="repair-worker")
        submitted = [
            (point, loop.run_in_executor(executor, self._run_one, point, labels))
            for point in points
        ]

        try:
            done, pending = await asyncio.wait(
                [future for _, future in submitted], timeout=self.timeout_s,
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        outcomes: list[WorkerOutcome] = []
        for point, future in submitted:
            if future in done:
                exc = future.exception()
                if exc is not None:
                    outcomes.append(WorkerOutcome(point, error=f"{type(exc).__name__}: {exc}"))
                else:
                    outcomes.append(future.result())
            else:
                future.cancel()
                outcomes.append(WorkerOutcome(
                    point,
                    error=f"Worker did not finish within {self.timeout_s:.0f}s",
                    timed_out=True,
                ))

        if pending:
            logger.warning("%d worker(s) abandoned at batch timeout", len(pending))
            removed = await asyncio.to_thread(self.gateway.remove_labelled, labels)
            logger.info("Removed %d abandoned container(s)", removed)

        logger.info(
            "Worker batch finished | %d/%d result(s)",
            sum(1 for o in outcomes if o.present), len(outcomes),
        )
        return outcomes

    def _run_one(self, point: ModificationPoint, labels: dict[str, str]) -> WorkerOutcome:
        try:
            buggy_file = Path(point.file_path).resolve(strict=True)
            buggy_parent = buggy_file.parent
            relative_path = buggy_file.relative_to(self.repo_path)

            output_dir = self.output_root / f"{buggy_file.name}{point.identity}"
            output_dir.mkdir(parents=True, exist_ok=True)
            output_dir = output_dir.resolve()

            command = self.command_builder(
                buggy_file.name, point.line, self.config.BEAM_SIZE, relative_path,
            )
            binds = {
                self.resolver.resolve(buggy_parent): INPUT_MOUNT,
                self.resolver.resolve(output_dir): OUTPUT_MOUNT,
            }

            run = self.gateway.run(self.config.DOCKER_TAG, command, binds, labels)
            logger.debug("stdOut (%s:%d):\n%s", buggy_file.name, point.line, run.stdout)
            logger.debug("stdErr (%s:%d):\n%s", buggy_file.name, point.line, run.stderr)

            result = ToolInvocationResult.from_output_dir(
                str(buggy_file), output_dir, run.stdout, run.stderr, run.exit_code,
            )
            return WorkerOutcome(point, result)
        except Exception as exc:
            logger.error(
                "Got exception when running repair worker on %s:%d: %s",
                point.file_path, point.line, exc,
            )
            return WorkerOutcome(point, error=f"{type(exc).__name__}: {exc}")
