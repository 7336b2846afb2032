"""Job context and step statuses.

A ``JobContext`` is the mutable record one pipeline run carries from
step to step.  Steps run strictly one after the other, so the context is
never mutated by two steps at once; only the repair step's internal
workers run concurrently, and they never touch the context directly.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from shared.git import Repository
from shared.schemas import JobDescriptor, RepairPatch

if TYPE_CHECKING:
    from pipeline.step import PipelineStep

logger = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Step status ──────────────────────────────────────────────────────

class StatusKind(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    SKIPPED = "SKIPPED"
    PATCH_NOT_FOUND = "PATCH_NOT_FOUND"


@dataclass
class StepStatus:
    """Outcome of one executed step."""

    kind: StatusKind
    step: PipelineStep
    message: str = ""
    exception: str = ""
    started_at: str = ""
    duration_s: float = 0.0

    @property
    def step_name(self) -> str:
        return self.step.name

    @property
    def is_success(self) -> bool:
        return self.kind == StatusKind.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.kind == StatusKind.FAILURE

    @classmethod
    def success(cls, step: PipelineStep, message: str = "") -> StepStatus:
        return cls(StatusKind.SUCCESS, step, message)

    @classmethod
    def failure(cls, step: PipelineStep, message: str, exc: BaseException | None = None) -> StepStatus:
        detail = "".join(traceback.format_exception(exc)) if exc is not None else ""
        return cls(StatusKind.FAILURE, step, message, exception=detail)

    @classmethod
    def skipped(cls, step: PipelineStep, message: str) -> StepStatus:
        return cls(StatusKind.SKIPPED, step, message)

    @classmethod
    def patch_not_found(cls, step: PipelineStep, message: str = "No patch found.") -> StepStatus:
        return cls(StatusKind.PATCH_NOT_FOUND, step, message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step_name,
            "status": self.kind.value,
            "message": self.message,
            "exception": self.exception,
            "started_at": self.started_at,
            "duration_s": round(self.duration_s, 2),
        }


# ── Failing tests gathered from build reports ────────────────────────

@dataclass(frozen=True)
class FailingTest:
    """A test case that failed or errored in the buggy build."""

    class_name: str
    method: str
    failure_type: str = ""
    message: str = ""
    stack_trace: str = ""
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "class_name": self.class_name,
            "method": self.method,
            "failure_type": self.failure_type,
            "message": self.message,
            "is_error": self.is_error,
        }


# ── Job context ──────────────────────────────────────────────────────

@dataclass
class JobContext:
    """State of one repair run, shared by every step of the chain."""

    descriptor: JobDescriptor
    repo_local_path: str = ""
    repair_classpath: list[str] | None = None
    repair_source_dirs: list[str] | None = None
    failing_tests: list[FailingTest] = field(default_factory=list)
    patches: list[RepairPatch] = field(default_factory=list)
    tool_diagnostics: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    step_statuses: list[StepStatus] = field(default_factory=list)
    step_errors: list[dict[str, Any]] = field(default_factory=list)
    has_been_patched: bool = False
    created_at: str = field(default_factory=_utcnow_iso)

    status_listener: Callable[[StepStatus], None] | None = field(default=None, repr=False)
    _repository: Repository | None = field(default=None, repr=False)

    @property
    def workspace(self) -> str:
        return self.descriptor.workspace

    @property
    def repository(self) -> Repository:
        """The clone's repository handle, created once per job."""
        if self._repository is None or str(self._repository.path) != self.repo_local_path:
            if not self.repo_local_path:
                raise RuntimeError("Repository has not been cloned yet.")
            self._repository = Repository(Path(self.repo_local_path))
        return self._repository

    # ── Status bookkeeping ───────────────────────────────────────────

    def add_step_status(self, status: StepStatus) -> None:
        self.step_statuses.append(status)
        if self.status_listener is None:
            return
        try:
            self.status_listener(status)
        except Exception:
            logger.exception("Status listener failed on %s", status.step_name)

    def has_failed_step(self) -> bool:
        return any(s.is_failure for s in self.step_statuses)

    def add_step_error(self, step_name: str, message: str, exc: BaseException | None = None) -> None:
        """Record a non-fatal error raised inside a step."""
        entry = {
            "step": step_name,
            "message": message,
            "exception": repr(exc) if exc is not None else "",
            "timestamp": _utcnow_iso(),
        }
        self.step_errors.append(entry)
        logger.error("[%s] %s %s", step_name, message, entry["exception"])

    # ── Repair results ───────────────────────────────────────────────

    def patches_for(self, tool_name: str) -> list[RepairPatch]:
        return [p for p in self.patches if p.tool_name == tool_name]

    def record_patches(self, tool_name: str, patches: list[RepairPatch], max_count: int) -> int:
        """Append up to *max_count* patches of *tool_name* in order.

        Returns the number of patches recorded by this call.
        """
        room = max(0, max_count - len(self.patches_for(tool_name)))
        accepted = patches[:room]
        self.patches.extend(accepted)
        if len(patches) > room:
            logger.info(
                "[%s] Patch cap reached: recorded %d of %d (max %d per tool)",
                tool_name, len(accepted), len(patches), max_count,
            )
        return len(accepted)

    def record_tool_diagnostic(self, tool_name: str, diagnostic: list[dict[str, Any]]) -> None:
        self.tool_diagnostics[tool_name] = list(diagnostic)

    def to_dict(self) -> dict[str, Any]:
        return {
            "repo_url": self.descriptor.repo_url,
            "repo_slug": self.descriptor.repo_slug,
            "commit": self.descriptor.commit,
            "repo_local_path": self.repo_local_path,
            "workspace": self.workspace,
            "step_statuses": [s.to_dict() for s in self.step_statuses],
            "step_errors": list(self.step_errors),
            "failing_tests": [t.to_dict() for t in self.failing_tests],
            "patches": [p.to_dict() for p in self.patches],
            "tool_diagnostics": dict(self.tool_diagnostics),
            "has_been_patched": self.has_been_patched,
            "created_at": self.created_at,
        }
