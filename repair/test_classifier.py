"""Tests for the patch classifier gate."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from repair.classifier import (
    AcceptAllClassifier,
    OdsClassifier,
    PatchClassifier,
    build_classifier,
    cap_per_tool,
    deduplicate,
    filter_correct,
)
from shared.config import SequencerConfig, Settings
from shared.schemas import PatchLabel, RepairPatch


def _patches(count: int, tool: str = "SequencerRepair") -> list[RepairPatch]:
    return [RepairPatch(tool, f"src/F{i}.java", f"--- a/F{i}\n+++ b/F{i}\n") for i in range(count)]


class ScriptedClassifier(PatchClassifier):
    """Labels patches from a fixed list, in order."""

    def __init__(self, labels):
        self.labels = list(labels)
        self.seen: list[RepairPatch] = []

    def classify(self, patches, project_id):
        self.seen = list(patches)
        for patch_, label in zip(patches, self.labels):
            patch_.label = label
        return patches


# ── Gate ─────────────────────────────────────────────────────────────

class TestGate:

    def test_cap_keeps_first_detected(self):
        patches = _patches(50)

        kept = filter_correct(AcceptAllClassifier(), patches, "acme-calc-abc", max_per_tool=16)

        assert len(kept) == 16
        assert kept == patches[:16]

    def test_cap_is_per_tool(self):
        patches = _patches(3, "A") + _patches(3, "B")
        kept = cap_per_tool(patches, 2)
        assert [(p.tool_name, p.file_path) for p in kept] == [
            ("A", "src/F0.java"), ("A", "src/F1.java"),
            ("B", "src/F0.java"), ("B", "src/F1.java"),
        ]

    def test_only_correct_survive(self):
        patches = _patches(4)
        classifier = ScriptedClassifier([
            PatchLabel.OVERFITTING, PatchLabel.CORRECT, PatchLabel.UNKNOWN, PatchLabel.CORRECT,
        ])

        kept = filter_correct(classifier, patches, "p", max_per_tool=16)

        assert kept == [patches[1], patches[3]]

    def test_duplicates_collapse_before_classification(self):
        patches = _patches(2)
        duplicate = RepairPatch(patches[0].tool_name, patches[0].file_path, patches[0].diff + "\n")
        classifier = ScriptedClassifier([PatchLabel.CORRECT] * 3)

        kept = filter_correct(classifier, [patches[0], duplicate, patches[1]], "p", 16)

        assert classifier.seen == patches
        assert kept == patches
        assert deduplicate([duplicate, patches[0]]) == [duplicate]

    def test_nothing_correct(self):
        classifier = ScriptedClassifier([PatchLabel.OVERFITTING] * 3)
        assert filter_correct(classifier, _patches(3), "p", 16) == []


# ── ODS backend ──────────────────────────────────────────────────────

class TestOdsClassifier:

    def test_requires_command(self, tmp_path):
        with pytest.raises(ValueError):
            OdsClassifier("", tmp_path)

    def test_labels_from_json_map(self, tmp_path):
        classifier = OdsClassifier("ods --patches {patches_dir} --project {project}", tmp_path)
        patches = _patches(3)
        output = json.dumps({"patch_0": "correct", "patch_1": "OVERFITTING", "patch_2": "weird"})

        with patch(
            "repair.classifier.subprocess.run",
            return_value=MagicMock(returncode=0, stdout=output, stderr=""),
        ) as run:
            classifier.classify(patches, "acme-calc-abc")

        assert [p.label for p in patches] == [PatchLabel.CORRECT, PatchLabel.OVERFITTING, PatchLabel.UNKNOWN]
        args = run.call_args.args[0]
        assert args[args.index("--project") + 1] == "acme-calc-abc"
        written = sorted(p.name for p in (tmp_path / "acme-calc-abc").iterdir())
        assert written == ["patch_0.diff", "patch_1.diff", "patch_2.diff"]

    def test_failure_labels_unknown(self, tmp_path):
        classifier = OdsClassifier("ods {patches_dir}", tmp_path)
        patches = _patches(2)

        with patch(
            "repair.classifier.subprocess.run",
            return_value=MagicMock(returncode=1, stdout="", stderr="model missing"),
        ):
            classifier.classify(patches, "p")

        assert all(p.label == PatchLabel.UNKNOWN for p in patches)
        assert filter_correct(classifier, patches, "p", 16) == []

    def test_unparseable_output_labels_unknown(self, tmp_path):
        classifier = OdsClassifier("ods {patches_dir}", tmp_path)
        patches = _patches(1)

        with patch(
            "repair.classifier.subprocess.run",
            return_value=MagicMock(returncode=0, stdout="not json", stderr=""),
        ):
            classifier.classify(patches, "p")

        assert patches[0].label == PatchLabel.UNKNOWN


class TestBuildClassifier:

    def test_default_accepts_all(self):
        assert isinstance(build_classifier(Settings(), SequencerConfig()), AcceptAllClassifier)

    def test_ods(self, tmp_path):
        classifier = build_classifier(
            Settings(CLASSIFIER="ODS", ODS_COMMAND="ods {patches_dir}"),
            SequencerConfig(ODS_PATH=str(tmp_path)),
        )
        assert isinstance(classifier, OdsClassifier)
        assert classifier.ods_path == tmp_path

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_classifier(Settings(CLASSIFIER="crystal-ball"), SequencerConfig())
