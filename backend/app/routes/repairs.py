"""Repair job endpoints.

POST /repair            – queue a repair job, returns run_id immediately
GET  /status/{run_id}   – JSON snapshot of the run state
GET  /runs              – list all runs
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from backend.app.orchestrator import execute_job
from backend.app.store import RunState, all_runs, create_run, get_run

router = APIRouter()
logger = logging.getLogger(__name__)

# Keep strong references so background tasks aren't garbage-collected.
_background_tasks: dict[str, asyncio.Task] = {}


def _handle_task_done(task: asyncio.Task, run_id: str, state: RunState) -> None:
    """Callback invoked when a job task finishes (success or crash)."""
    _background_tasks.pop(run_id, None)
    if task.cancelled():
        state.fail("Repair task was cancelled")
    elif exc := task.exception():
        logger.error("Repair job %s crashed: %s", run_id, exc)
        state.fail(f"Unhandled error: {exc}")


# ── Request / Response schemas ───────────────────────────────────────

class RepairRequest(BaseModel):
    repo_url: str = Field(min_length=1)
    commit: str = ""
    branch: str = ""


class RepairResponse(BaseModel):
    run_id: str
    status: str
    message: str


# ── POST /repair ─────────────────────────────────────────────────────

@router.post("/repair", response_model=RepairResponse, status_code=202)
async def queue_repair(body: RepairRequest, request: Request):
    """Create a run, start the repair job in the background and return."""
    run_id = str(uuid.uuid4())
    state = create_run(run_id, body.repo_url, body.commit, body.branch)

    app_state = request.app.state
    task = asyncio.create_task(
        execute_job(state, app_state.settings, app_state.sequencer_config, app_state.runner),
        name=f"repair-{run_id}",
    )
    _background_tasks[run_id] = task
    task.add_done_callback(lambda t: _handle_task_done(t, run_id, state))

    logger.info("Queued repair job %s for %s@%s", run_id, body.repo_url, body.commit or "HEAD")
    return RepairResponse(
        run_id=run_id,
        status="queued",
        message=f"Repair queued for {body.repo_url}",
    )


# ── GET /status/{run_id} ─────────────────────────────────────────────

@router.get("/status/{run_id}")
async def get_status(run_id: str):
    state = get_run(run_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return state.to_dict()


# ── GET /runs ────────────────────────────────────────────────────────

@router.get("/runs")
async def list_runs():
    """Return all runs stored in memory."""
    return {"runs": all_runs()}
