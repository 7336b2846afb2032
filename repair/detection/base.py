"""Detection strategy protocol shared by every candidate detector backend.

A detector is configured against one checked-out, already-built project
(``setup``), returns the ordered suspicious locations to feed the repair
tool (``detect``) and vets each produced diff (``validate``): first
structurally, then by building and testing it through the PatchValidator.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pipeline.context import JobContext
from pipeline.maven import MavenRunner
from repair.validator import PatchValidator
from shared.schemas import ModificationPoint, RepairPatch

logger = logging.getLogger(__name__)


def diff_targets(diff: str) -> list[str]:
    """Paths a unified diff writes to, without ``a/``/``b/`` prefixes."""
    targets: list[str] = []
    old_path = ""
    for line in diff.splitlines():
        if line.startswith("--- "):
            old_path = _header_path(line[4:])
        elif line.startswith("+++ "):
            new_path = _header_path(line[4:])
            path = old_path if new_path == "/dev/null" else new_path
            if path and path != "/dev/null" and path not in targets:
                targets.append(path)
    return targets


def _header_path(raw: str) -> str:
    path = raw.split("\t", 1)[0].strip()
    if path.startswith(("a/", "b/")):
        path = path[2:]
    return path


def read_context(path: Path, line: int, size: int) -> tuple[str, ...]:
    """*size* lines of source around *line* (1-based), inclusive."""
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return ()
    start = max(0, line - 1 - size)
    end = min(len(lines), line + size)
    return tuple(lines[start:end])


class DetectionStrategy(ABC):
    """Base class of candidate detector backends."""

    name: str = "base"

    def __init__(
        self,
        maven: MavenRunner,
        validation_goal: str = "test",
        validation_properties: dict[str, str] | None = None,
        context_size: int = 3,
    ):
        self.maven = maven
        self.validation_goal = validation_goal
        self.validation_properties = dict(validation_properties or {})
        self.context_size = context_size

        self.context: JobContext | None = None
        self.validator: PatchValidator | None = None
        self.logger = logger
        self._tracked: set[str] = set()

    # -- Protocol ------------------------------------------------------

    def setup(self, context: JobContext, pom: str | Path, step_logger: logging.Logger | None = None) -> None:
        """Bind the detector to a checked-out, already-built project."""
        self.context = context
        self.validator = PatchValidator(context.repository, self.maven, pom)
        self.logger = step_logger or logger
        self._tracked = set()

    def detect(self, context: JobContext) -> list[ModificationPoint]:
        """Ordered suspicious locations; empty when none or on failure."""
        try:
            points = self.find_points(context)
        except Exception as exc:
            self.logger.error("[%s] Detection failed: %s", self.name, exc)
            context.add_step_error(self.name, "Detection failed", exc)
            return []

        ordered = self._order(points)
        repo = Path(context.repo_local_path).resolve()
        self._tracked = {self._relative(p.file_path, repo) for p in ordered}
        self.logger.info("[%s] %d modification point(s) detected", self.name, len(ordered))
        return ordered

    def validate(self, patch: RepairPatch) -> bool:
        """Accept *patch* when it only touches tracked files and builds."""
        targets = diff_targets(patch.diff)
        if not targets:
            self.logger.debug("[%s] Rejecting diff without file headers", self.name)
            return False

        repo = Path(self.context.repo_local_path).resolve() if self.context else Path(".")
        for target in targets:
            if self._relative(Path(target), repo) not in self._tracked:
                self.logger.debug("[%s] Rejecting diff touching untracked file %s", self.name, target)
                return False

        if self.validator is None:
            raise RuntimeError("Detector used before setup().")
        return self.validator.apply(patch, self.validation_goal, self.validation_properties)

    # -- Backend hook --------------------------------------------------

    @abstractmethod
    def find_points(self, context: JobContext) -> list[ModificationPoint]:
        ...

    # -- Helpers -------------------------------------------------------

    @staticmethod
    def _relative(path: Path, repo: Path) -> str:
        if path.is_absolute():
            try:
                return str(path.resolve().relative_to(repo))
            except ValueError:
                return str(path)
        return str(path)

    @staticmethod
    def _order(points: list[ModificationPoint]) -> list[ModificationPoint]:
        """Highest score first; duplicates of (file, line) collapse."""
        best: dict[tuple[str, int], ModificationPoint] = {}
        for point in points:
            key = (str(point.file_path), point.line)
            if key not in best or point.score > best[key].score:
                best[key] = point
        return sorted(best.values(), key=lambda p: (-p.score, str(p.file_path), p.line))

    def __repr__(self) -> str:
        return f"<Detector: {self.name}>"
