"""Background orchestrator – runs one repair job and mirrors it into a RunState.

Workflow:
  1. Build the job descriptor (one workspace per run)
  2. Execute the step chain; every recorded step status is pushed as progress
  3. Store the exported run record, or the error that stopped the job
"""

from __future__ import annotations

import logging
from pathlib import Path

from backend.app.store import RunState
from pipeline.context import StepStatus
from pipeline.launcher import run_repair_job
from shared.config import SequencerConfig, Settings
from shared.results_exporter import build_record
from shared.schemas import JobDescriptor

logger = logging.getLogger(__name__)


async def execute_job(
    state: RunState,
    settings: Settings,
    config: SequencerConfig,
    runner=run_repair_job,
) -> None:
    """Run the repair job described by *state*, updating it as we go."""
    workspace = Path(settings.WORKSPACE_PATH).expanduser().resolve() / state.run_id
    descriptor = JobDescriptor(
        repo_url=state.repo_url,
        commit=state.commit,
        workspace=str(workspace),
        branch=state.branch,
    )

    def _on_status(status: StepStatus) -> None:
        state.push_progress(status.step_name, status.kind.value, status.message)

    state.push_progress("queue", "started", f"Repairing {descriptor.repo_slug} in {workspace}")
    try:
        context = await runner(descriptor, settings, config, on_status=_on_status)
    except Exception as exc:
        logger.exception("Repair job %s failed", state.run_id)
        state.fail(str(exc))
        return

    runtime = sum(s.duration_s for s in context.step_statuses)
    state.complete(build_record(context, runtime, config))
    logger.info(
        "Repair job %s completed | patches=%d", state.run_id, len(context.patches),
    )
