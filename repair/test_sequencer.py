"""End-to-end tests of the SequencerRepair step with every collaborator faked.

Run:
    python -m pytest repair/test_sequencer.py -v
"""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from unittest.mock import MagicMock

from pipeline.context import JobContext, StatusKind
from repair.classifier import PatchClassifier
from repair.sequencer import RESULTS_DIR_NAME, TOOL_NAME, SequencerRepair
from repair.workers import OUTPUT_MOUNT
from sandbox.executor import ContainerRun, SandboxError
from sandbox.mounts import MountResolver
from shared.config import SequencerConfig
from shared.schemas import JobDescriptor, ModificationPoint, PatchLabel


# ── Helpers ──────────────────────────────────────────────────────────

class FakeGateway:
    """Each run writes *diffs_per_run* distinct diffs, unless its line fails."""

    def __init__(self, fail_lines=(), diffs_per_run=2):
        self.fail_lines = set(fail_lines)
        self.diffs_per_run = diffs_per_run
        self.ensure_image = MagicMock(return_value=False)
        self.remove_labelled = MagicMock(return_value=0)
        self.runs = 0
        self._lock = threading.Lock()

    def run(self, image, command, binds, labels=None):
        with self._lock:
            self.runs += 1
        line = int(command.split("--buggy_line=")[1].split()[0])
        if line in self.fail_lines:
            raise SandboxError("tool crashed")
        out = Path(next(host for host, target in binds.items() if target == OUTPUT_MOUNT))
        for i in range(self.diffs_per_run):
            (out / f"patch_{i}.diff").write_text(
                f"--- a/src/Calc.java\n+++ b/src/Calc.java\n@@ -{line} +{line} @@\n-old\n+fix {i}\n"
            )
        return ContainerRun(exit_code=0, stdout="ok", stderr="")


class LabelFirst(PatchClassifier):
    """Labels the first *n* patches CORRECT and the rest OVERFITTING."""

    def __init__(self, n):
        self.n = n
        self.project_ids: list[str] = []

    def classify(self, patches, project_id):
        self.project_ids.append(project_id)
        for i, p in enumerate(patches):
            p.label = PatchLabel.CORRECT if i < self.n else PatchLabel.OVERFITTING
        return patches


def _context(tmp_path: Path, with_paths: bool = True) -> JobContext:
    workspace = tmp_path / "ws"
    repo = workspace / "acme-calc"
    (repo / "src").mkdir(parents=True)
    (repo / "src/Calc.java").write_text("class Calc {}\n")
    context = JobContext(JobDescriptor("https://github.com/acme/calc", "abc123", str(workspace)))
    context.repo_local_path = str(repo)
    if with_paths:
        context.repair_classpath = [str(repo / "target/classes")]
        context.repair_source_dirs = [str(repo / "src")]
    return context


def _points(context: JobContext, count: int) -> list[ModificationPoint]:
    source = Path(context.repo_local_path) / "src/Calc.java"
    return [ModificationPoint(file_path=source, line=i + 1) for i in range(count)]


def _detector(points, accept=lambda patch: True) -> MagicMock:
    detector = MagicMock()
    detector.detect.return_value = points
    detector.validate.side_effect = accept
    return detector


def _step(context, detector, classifier, gateway, max_patches=16) -> SequencerRepair:
    return SequencerRepair(
        context,
        SequencerConfig(THREADS=4, TIMEOUT=1),
        detector,
        classifier,
        gateway=gateway,
        max_patches=max_patches,
        resolver_factory=lambda gw, ws: MountResolver(workspace=ws),
    )


# ── Preconditions ────────────────────────────────────────────────────

class TestPreconditions:

    def test_missing_classpath_is_skipped(self, tmp_path):
        context = _context(tmp_path, with_paths=False)
        detector = _detector([])
        gateway = FakeGateway()

        status = asyncio.run(_step(context, detector, LabelFirst(1), gateway).run())

        assert status.kind == StatusKind.SKIPPED
        detector.setup.assert_not_called()
        detector.detect.assert_not_called()
        gateway.ensure_image.assert_not_called()
        assert gateway.runs == 0

    def test_empty_source_dirs_is_skipped(self, tmp_path):
        context = _context(tmp_path)
        context.repair_source_dirs = []
        detector = _detector([])

        status = asyncio.run(_step(context, detector, LabelFirst(1), FakeGateway()).run())

        assert status.kind == StatusKind.SKIPPED
        detector.detect.assert_not_called()

    def test_no_modification_point(self, tmp_path):
        context = _context(tmp_path)
        gateway = FakeGateway()

        status = asyncio.run(_step(context, _detector([]), LabelFirst(1), gateway).run())

        assert status.kind == StatusKind.PATCH_NOT_FOUND
        assert context.patches == []
        gateway.ensure_image.assert_not_called()
        assert gateway.runs == 0

    def test_image_failure_is_skipped(self, tmp_path):
        context = _context(tmp_path)
        gateway = FakeGateway()
        gateway.ensure_image.side_effect = SandboxError("registry unreachable")

        status = asyncio.run(
            _step(context, _detector(_points(context, 2)), LabelFirst(1), gateway).run()
        )

        assert status.kind == StatusKind.SKIPPED
        assert "Error while retrieving sequencer docker image" in status.message
        assert gateway.runs == 0
        assert not context.has_been_patched


# ── End-to-end ───────────────────────────────────────────────────────

class TestSequencerRepair:

    def test_six_points_four_workers(self, tmp_path):
        context = _context(tmp_path)
        points = _points(context, 6)
        gateway = FakeGateway(fail_lines={4})
        validated_count = {"n": 0}

        def accept(patch):
            # reject the second diff of the first two successful points
            if patch.diff.endswith("fix 1\n") and validated_count["n"] < 2:
                validated_count["n"] += 1
                return False
            return True

        detector = _detector(points, accept)
        classifier = LabelFirst(3)

        status = asyncio.run(_step(context, detector, classifier, gateway).run())

        assert status.kind == StatusKind.SUCCESS
        assert gateway.runs == 6
        assert detector.validate.call_count == 10
        assert len(context.patches) == 3
        assert all(p.tool_name == TOOL_NAME for p in context.patches)
        assert all(p.label == PatchLabel.CORRECT for p in context.patches)
        assert all(p.file_path == "src/Calc.java" for p in context.patches)
        assert context.has_been_patched

        diagnostics = context.tool_diagnostics[TOOL_NAME]
        assert len(diagnostics) == 6
        assert [d["success"] for d in diagnostics] == [True, True, True, False, True, True]
        assert classifier.project_ids == ["acme-calc-abc123"]

        detector.setup.assert_called_once()
        assert not (Path(context.workspace) / RESULTS_DIR_NAME).exists()

    def test_nothing_correct(self, tmp_path):
        context = _context(tmp_path)
        detector = _detector(_points(context, 2))

        status = asyncio.run(_step(context, detector, LabelFirst(0), FakeGateway()).run())

        assert status.kind == StatusKind.PATCH_NOT_FOUND
        assert context.patches == []
        assert not context.has_been_patched
        assert len(context.tool_diagnostics[TOOL_NAME]) == 2

    def test_nothing_validated(self, tmp_path):
        context = _context(tmp_path)
        detector = _detector(_points(context, 2), accept=lambda patch: False)
        classifier = LabelFirst(5)

        status = asyncio.run(_step(context, detector, classifier, FakeGateway()).run())

        assert status.kind == StatusKind.PATCH_NOT_FOUND
        assert not context.has_been_patched

    def test_cap_applies_in_detection_order(self, tmp_path):
        context = _context(tmp_path)
        detector = _detector(_points(context, 5))

        status = asyncio.run(
            _step(context, detector, LabelFirst(10), FakeGateway(), max_patches=4).run()
        )

        assert status.kind == StatusKind.SUCCESS
        assert [p.diff.splitlines()[2] for p in context.patches] == [
            "@@ -1 +1 @@", "@@ -1 +1 @@", "@@ -2 +2 @@", "@@ -2 +2 @@",
        ]

    def test_every_worker_failing(self, tmp_path):
        context = _context(tmp_path)
        detector = _detector(_points(context, 3))

        status = asyncio.run(
            _step(context, detector, LabelFirst(3), FakeGateway(fail_lines={1, 2, 3})).run()
        )

        assert status.kind == StatusKind.PATCH_NOT_FOUND
        assert [d["success"] for d in context.tool_diagnostics[TOOL_NAME]] == [False] * 3
        assert len(context.step_errors) == 3
        detector.validate.assert_not_called()
