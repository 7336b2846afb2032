"""In-memory run store for tracking repair jobs submitted to the service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunState:
    """Tracks the live state of a single repair job."""

    run_id: str
    repo_url: str
    commit: str = ""
    branch: str = ""
    status: str = "queued"  # queued | running | completed | failed
    current_step: str = ""
    progress: list[dict[str, Any]] = field(default_factory=list)
    result: dict[str, Any] | None = None
    error: str = ""
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)

    def push_progress(self, step: str, status: str, message: str = "") -> None:
        self.current_step = step
        self.status = "running"
        self.updated_at = _utcnow_iso()
        self.progress.append(
            {
                "step": step,
                "status": status,
                "message": message,
                "timestamp": self.updated_at,
            }
        )

    def complete(self, result: dict[str, Any]) -> None:
        self.status = "completed"
        self.result = result
        self.updated_at = _utcnow_iso()

    def fail(self, error: str) -> None:
        self.status = "failed"
        self.error = error
        self.updated_at = _utcnow_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "repo_url": self.repo_url,
            "commit": self.commit,
            "branch": self.branch,
            "status": self.status,
            "current_step": self.current_step,
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ── Global in-memory store ──────────────────────────────────────────
_runs: dict[str, RunState] = {}


def create_run(run_id: str, repo_url: str, commit: str = "", branch: str = "") -> RunState:
    state = RunState(run_id=run_id, repo_url=repo_url, commit=commit, branch=branch)
    _runs[run_id] = state
    return state


def get_run(run_id: str) -> RunState | None:
    return _runs.get(run_id)


def all_runs() -> list[dict[str, Any]]:
    return [r.to_dict() for r in _runs.values()]


def clear_runs() -> None:
    _runs.clear()
