"""Stack-trace detector – suspicious lines from failing-test stack frames.

Every frame of a failing test's stack trace that resolves to a file of the
computed source directories becomes a candidate.  Frames closer to the
top of a trace weigh more, and a line hit by several failing tests
accumulates the weight of each hit.
"""

from __future__ import annotations

import re
from collections import defaultdict
from pathlib import Path

from pipeline.context import JobContext
from repair.detection.base import DetectionStrategy, read_context
from shared.schemas import ModificationPoint

_FRAME_RE = re.compile(r"at\s+([\w$.]+)\.[\w$<>]+\(([\w$]+\.java):(\d+)\)")


def parse_frames(stack_trace: str) -> list[tuple[str, str, int]]:
    """``(class fqn, file name, line)`` of every Java frame, top first."""
    return [(m.group(1), m.group(2), int(m.group(3))) for m in _FRAME_RE.finditer(stack_trace)]


def source_file_for(fqn: str, file_name: str, source_dirs: list[Path]) -> Path | None:
    """Locate the source file declaring *fqn* in one of *source_dirs*."""
    outer = fqn.split("$", 1)[0]
    package = outer.rsplit(".", 1)[0] if "." in outer else ""
    relative = Path(*package.split(".")) / file_name if package else Path(file_name)
    for source_dir in source_dirs:
        candidate = source_dir / relative
        if candidate.is_file():
            return candidate.resolve()
    return None


class StackTraceDetector(DetectionStrategy):
    """Derives modification points from the failing tests' stack traces."""

    name = "stacktrace"

    def __init__(self, *args, max_points: int | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_points = max_points

    def find_points(self, context: JobContext) -> list[ModificationPoint]:
        source_dirs = [Path(d) for d in context.repair_source_dirs or []]
        scores: dict[tuple[Path, int], float] = defaultdict(float)

        for test in context.failing_tests:
            for depth, (fqn, file_name, line) in enumerate(parse_frames(test.stack_trace)):
                path = source_file_for(fqn, file_name, source_dirs)
                if path is None:
                    continue
                scores[(path, line)] += 1.0 / (depth + 1)

        points = [
            ModificationPoint(
                file_path=path,
                line=line,
                context=read_context(path, line, self.context_size),
                score=round(score, 6),
            )
            for (path, line), score in scores.items()
        ]
        points = self._order(points)
        if self.max_points is not None:
            points = points[: self.max_points]
        return points
