"""Shared schemas used across the pipeline, repair step and backend."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class JobDescriptor:
    """One unit of work: a commit of a repository to repair."""

    repo_url: str
    commit: str
    workspace: str
    branch: str = ""

    @property
    def repo_slug(self) -> str:
        """``owner/name`` derived from the repository URL."""
        url = self.repo_url.strip().rstrip("/")
        url = re.sub(r"\.git$", "", url)
        url = re.sub(r"^git@[^:]+:", "", url)
        parts = [p for p in re.split(r"[/:]", url) if p]
        return "/".join(parts[-2:])

    @property
    def project_id(self) -> str:
        """Stable identity of the repaired project version."""
        return f"{self.repo_slug}-{self.commit}".replace("/", "-")


@dataclass(frozen=True)
class ModificationPoint:
    """A suspicious code location fed to a repair tool."""

    file_path: Path
    line: int
    context: tuple[str, ...] = ()
    score: float = 0.0

    @property
    def identity(self) -> str:
        """Short hash naming the per-candidate working directory."""
        key = f"{self.file_path}:{self.line}".encode("utf-8")
        return hashlib.sha1(key).hexdigest()[:10]

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": str(self.file_path),
            "line": self.line,
            "score": self.score,
            "identity": self.identity,
        }


@dataclass
class ToolInvocationResult:
    """Outcome of one containerized repair-tool run."""

    buggy_file_path: str
    output_dir: str
    stdout: str = ""
    stderr: str = ""
    success: bool = False
    message: str = ""
    warning: str = ""
    diffs: list[str] = field(default_factory=list)

    @classmethod
    def from_output_dir(
        cls,
        buggy_file_path: str,
        output_dir: str | Path,
        stdout: str,
        stderr: str,
        exit_code: int,
    ) -> ToolInvocationResult:
        """Collect the diffs the tool wrote into *output_dir*.

        Every non-empty regular file is one unified diff; files are read
        in name order so results are stable.
        """
        out = Path(output_dir)
        diffs: list[str] = []
        if out.is_dir():
            for entry in sorted(out.iterdir()):
                if not entry.is_file():
                    continue
                text = entry.read_text(encoding="utf-8", errors="replace")
                if text.strip():
                    diffs.append(text)

        warning = ""
        if stderr.strip():
            warning = stderr.strip().splitlines()[-1]

        if exit_code != 0:
            message = f"Tool exited with code {exit_code}"
        elif not diffs:
            message = "Tool produced no patch"
        else:
            message = f"{len(diffs)} patch(es) generated"

        return cls(
            buggy_file_path=buggy_file_path,
            output_dir=str(out),
            stdout=stdout,
            stderr=stderr,
            success=exit_code == 0 and bool(diffs),
            message=message,
            warning=warning,
            diffs=diffs,
        )

    def diagnostic(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "warning": self.warning,
        }


class PatchLabel(str, Enum):
    CORRECT = "CORRECT"
    OVERFITTING = "OVERFITTING"
    UNKNOWN = "UNKNOWN"


@dataclass
class RepairPatch:
    """A candidate fix produced by a repair tool."""

    tool_name: str
    file_path: str
    diff: str
    label: PatchLabel | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.tool_name, self.file_path, self.diff.strip())

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "file_path": self.file_path,
            "diff": self.diff,
            "label": self.label.value if self.label else None,
        }
