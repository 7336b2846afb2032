"""Launcher – wires the default step chain and runs one repair job.

Chain:
  CloneRepository → CheckoutCommit → BuildProject → GatherTestInformation
  → ComputeClasspath → ComputeSourceDir → SequencerRepair

Results are appended to the configured results file once the chain has
run, whatever its outcome.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from pipeline.context import JobContext, StepStatus
from pipeline.maven import MavenRunner
from pipeline.step import PipelineStep
from pipeline.steps import (
    BuildProject,
    CheckoutCommit,
    CloneRepository,
    ComputeClasspath,
    ComputeSourceDir,
    GatherTestInformation,
)
from repair.classifier import PatchClassifier, build_classifier
from repair.detection import DetectionStrategy, build_detector
from repair.sequencer import SequencerRepair
from sandbox.executor import ContainerGateway
from shared.config import SequencerConfig, Settings
from shared.results_exporter import export_results
from shared.schemas import JobDescriptor

logger = logging.getLogger(__name__)


def build_maven(settings: Settings) -> MavenRunner:
    return MavenRunner(binary=settings.MAVEN_BINARY, local_repository=settings.MAVEN_REPOSITORY)


def build_default_chain(
    context: JobContext,
    settings: Settings,
    config: SequencerConfig,
    maven: MavenRunner | None = None,
    gateway: ContainerGateway | None = None,
    detector: DetectionStrategy | None = None,
    classifier: PatchClassifier | None = None,
) -> PipelineStep:
    """Link the seven default steps and return the head of the chain."""
    maven = maven or build_maven(settings)
    detector = detector or build_detector(settings, config, maven)
    classifier = classifier or build_classifier(settings, config)

    head = CloneRepository(context)
    head.add_next_step(CheckoutCommit(context)) \
        .add_next_step(BuildProject(context, maven)) \
        .add_next_step(GatherTestInformation(context)) \
        .add_next_step(ComputeClasspath(context, maven)) \
        .add_next_step(ComputeSourceDir(context)) \
        .add_next_step(SequencerRepair(
            context,
            config,
            detector,
            classifier,
            gateway=gateway,
            max_patches=settings.MAX_PATCHES_PER_TOOL,
        ))
    return head


async def run_repair_job(
    descriptor: JobDescriptor,
    settings: Settings,
    config: SequencerConfig,
    chain_factory=build_default_chain,
    on_status: Callable[[StepStatus], None] | None = None,
) -> JobContext:
    """Execute the full chain for *descriptor* and export its results.

    *on_status* is called with every StepStatus as soon as it is recorded.
    """
    context = JobContext(descriptor=descriptor, status_listener=on_status)
    head = chain_factory(context, settings, config)

    logger.info(
        "Repair job started | repo=%s | commit=%s | workspace=%s",
        descriptor.repo_url, descriptor.commit or "-", descriptor.workspace,
    )
    t0 = time.monotonic()
    statuses = await head.execute()
    runtime = time.monotonic() - t0

    logger.info(
        "Repair job finished in %.1fs | %s | %d patch(es)",
        runtime,
        ", ".join(f"{s.step_name}={s.kind.value}" for s in statuses),
        len(context.patches),
    )

    try:
        export_results(context, runtime, settings.RESULTS_FILE, config)
    except OSError as exc:
        logger.error("Could not export results: %s", exc)
    return context
