"""SequencerRepair step – runs the SequenceR model over detected points.

Flow:
  1. Precondition: classpath and source directories must be computed
  2. Detect modification points (none → PATCH_NOT_FOUND)
  3. Make sure the tool image is present and resolve sibling-container
     mounts; any infrastructure error → SKIPPED
  4. Fan the points out to the sandboxed worker pool
  5. Validate every produced diff through the detector
  6. Classify, keep CORRECT, cap, record

The per-run output directory is removed when the step ends.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable

from pipeline.context import JobContext, StepStatus
from pipeline.step import PipelineStep
from repair.classifier import PatchClassifier, filter_correct
from repair.detection.base import DetectionStrategy
from repair.workers import RepairWorkerPool, WorkerOutcome
from sandbox.executor import ContainerGateway
from sandbox.mounts import MountResolver
from shared.config import SequencerConfig
from shared.schemas import RepairPatch

logger = logging.getLogger(__name__)

TOOL_NAME = "SequencerRepair"
RESULTS_DIR_NAME = f"repairnator.{TOOL_NAME}.results"

ResolverFactory = Callable[[ContainerGateway, str], MountResolver]


class SequencerRepair(PipelineStep):
    """Generates, validates and classifies patches with SequenceR."""

    name = TOOL_NAME

    def __init__(
        self,
        context: JobContext,
        config: SequencerConfig,
        detector: DetectionStrategy,
        classifier: PatchClassifier,
        gateway: ContainerGateway | None = None,
        max_patches: int = 16,
        resolver_factory: ResolverFactory = MountResolver.for_current_process,
        requires_success: bool = True,
    ):
        super().__init__(context, requires_success)
        self.config = config
        self.detector = detector
        self.classifier = classifier
        self.gateway = gateway or ContainerGateway()
        self.max_patches = max_patches
        self.resolver_factory = resolver_factory

    @property
    def results_dir(self) -> Path:
        return Path(self.context.workspace) / RESULTS_DIR_NAME

    async def business_execute(self) -> StepStatus:
        logger.info("[%s] Entrance in %s step...", self.name, self.name)

        if not self.context.repair_classpath or not self.context.repair_source_dirs:
            message = "Classpath or sources not computed."
            self.context.add_step_error(self.name, message)
            return StepStatus.skipped(self, message)

        try:
            return await self._repair()
        finally:
            shutil.rmtree(self.results_dir, ignore_errors=True)

    async def _repair(self) -> StepStatus:
        context = self.context
        repo = Path(context.repo_local_path).resolve()
        self.results_dir.mkdir(parents=True, exist_ok=True)

        self.detector.setup(context, repo / "pom.xml", logger)
        points = await asyncio.to_thread(self.detector.detect, context)
        if not points:
            logger.info("[%s] No modification point detected.", self.name)
            return StepStatus.patch_not_found(self, "No modification point detected.")

        try:
            await asyncio.to_thread(self.gateway.ensure_image, self.config.DOCKER_TAG)
            resolver = await asyncio.to_thread(self.resolver_factory, self.gateway, context.workspace)
        except Exception as exc:
            message = "Error while retrieving sequencer docker image"
            context.add_step_error(self.name, message, exc)
            return StepStatus.skipped(self, f"{message}: {exc}")

        pool = RepairWorkerPool(
            self.gateway, self.config, repo, self.results_dir, resolver,
        )
        outcomes = await pool.run(points)

        for outcome in outcomes:
            if not outcome.present:
                context.add_step_error(
                    self.name,
                    f"No result for {outcome.point.file_path}:{outcome.point.line}: {outcome.error}",
                )
        context.record_tool_diagnostic(self.name, [o.diagnostic() for o in outcomes])

        candidates = self._candidates(outcomes, repo)
        logger.info("[%s] %d diff(s) produced by %d point(s)", self.name, len(candidates), len(points))

        validated: list[RepairPatch] = []
        for patch in candidates:
            if await asyncio.to_thread(self.detector.validate, patch):
                validated.append(patch)
        logger.info("[%s] %d/%d diff(s) validated", self.name, len(validated), len(candidates))

        kept = await asyncio.to_thread(
            filter_correct, self.classifier, validated, context.descriptor.project_id, self.max_patches,
        )
        if not kept:
            return StepStatus.patch_not_found(self, "No patch survived validation and classification.")

        recorded = context.record_patches(self.name, kept, self.max_patches)
        context.has_been_patched = True
        return StepStatus.success(self, f"{recorded} patch(es) recorded.")

    def _candidates(self, outcomes: list[WorkerOutcome], repo: Path) -> list[RepairPatch]:
        patches: list[RepairPatch] = []
        for outcome in outcomes:
            if outcome.result is None:
                continue
            buggy = Path(outcome.result.buggy_file_path)
            try:
                file_path = str(buggy.relative_to(repo))
            except ValueError:
                file_path = str(buggy)
            for diff in outcome.result.diffs:
                patches.append(RepairPatch(tool_name=self.name, file_path=file_path, diff=diff))
        return patches
