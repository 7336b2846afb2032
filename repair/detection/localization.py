"""Fault-localization detector – reads the ranking of an external localizer.

The localizer (for instance Astor run in fault-localization-only mode) is
an external command.  Its template may use the placeholders ``{repo}``,
``{classpath}``, ``{sources}``, ``{failing_tests}`` and ``{output}``; it must
write a CSV report to ``{output}`` with one ``file,line,score`` row per
suspicious line, file paths relative to the repository root or absolute.
"""

from __future__ import annotations

import csv
import os
import shlex
import subprocess
from pathlib import Path

from pipeline.context import JobContext
from repair.detection.base import DetectionStrategy, read_context
from shared.schemas import ModificationPoint

LOCALIZATION_TIMEOUT = 1800
REPORT_NAME = "suspicious.csv"


def parse_report(report: Path, repo: Path) -> list[tuple[Path, int, float]]:
    rows: list[tuple[Path, int, float]] = []
    with report.open(newline="", encoding="utf-8") as fh:
        for row in csv.reader(fh):
            if len(row) < 2 or row[0].lstrip().startswith("#"):
                continue
            try:
                line = int(row[1])
                score = float(row[2]) if len(row) > 2 and row[2].strip() else 0.0
            except ValueError:
                continue  # header row
            path = Path(row[0].strip())
            rows.append((path if path.is_absolute() else repo / path, line, score))
    return rows


class LocalizationDetector(DetectionStrategy):
    """Runs a fault localizer and turns its ranking into modification points."""

    name = "localization"

    def __init__(self, *args, command: str = "", max_points: int | None = 50, **kwargs):
        super().__init__(*args, **kwargs)
        self.command = command
        self.max_points = max_points

    def find_points(self, context: JobContext) -> list[ModificationPoint]:
        if not self.command:
            raise ValueError("No localization command configured.")

        repo = Path(context.repo_local_path).resolve()
        output = Path(context.workspace).resolve() / f"{self.name}.{REPORT_NAME}"
        output.unlink(missing_ok=True)

        args = shlex.split(self.command.format(
            repo=repo,
            classpath=os.pathsep.join(context.repair_classpath or []),
            sources=os.pathsep.join(context.repair_source_dirs or []),
            failing_tests=",".join(sorted({t.class_name for t in context.failing_tests})),
            output=output,
        ))
        self.logger.info("[%s] Running localizer: %s", self.name, " ".join(args))
        proc = subprocess.run(
            args, cwd=str(repo), capture_output=True, text=True, timeout=LOCALIZATION_TIMEOUT,
        )
        if proc.returncode != 0:
            raise RuntimeError(f"Localizer exited with code {proc.returncode}: {proc.stderr.strip()[-500:]}")
        if not output.is_file():
            raise RuntimeError(f"Localizer wrote no report at {output}")

        points = []
        for path, line, score in parse_report(output, repo):
            if not path.is_file():
                continue
            points.append(ModificationPoint(
                file_path=path.resolve(),
                line=line,
                context=read_context(path, line, self.context_size),
                score=score,
            ))

        points = self._order(points)
        if self.max_points is not None:
            points = points[: self.max_points]
        return points
