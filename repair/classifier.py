"""Patch classifier gate – keeps only patches labelled CORRECT.

The overfitting classifier (ODS) is an external black box.  The gate
deduplicates candidates, asks the classifier for one label per patch,
keeps the CORRECT ones and caps how many are kept per tool, preserving
first-detected order throughout.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from shared.config import SequencerConfig, Settings
from shared.schemas import PatchLabel, RepairPatch

logger = logging.getLogger(__name__)

ODS_TIMEOUT = 1800


class PatchClassifier(ABC):
    """Attaches a PatchLabel to every patch."""

    name: str = "base"

    @abstractmethod
    def classify(self, patches: list[RepairPatch], project_id: str) -> list[RepairPatch]:
        ...


class AcceptAllClassifier(PatchClassifier):
    """Labels every patch CORRECT (no overfitting detection)."""

    name = "none"

    def classify(self, patches: list[RepairPatch], project_id: str) -> list[RepairPatch]:
        for patch in patches:
            patch.label = PatchLabel.CORRECT
        return patches


class OdsClassifier(PatchClassifier):
    """Runs the external ODS command over a directory of diffs.

    The patches are written to ``<ods_path>/<project_id>/patch_<i>.diff``;
    the command template may use ``{patches_dir}`` and ``{project}`` and
    must print a JSON object mapping ``patch_<i>`` to a label.  Missing
    or unknown labels, and any failure of the command, yield UNKNOWN.
    """

    name = "ods"

    def __init__(self, command: str, ods_path: str | Path):
        if not command:
            raise ValueError("The ODS classifier needs a command.")
        self.command = command
        self.ods_path = Path(ods_path)

    def classify(self, patches: list[RepairPatch], project_id: str) -> list[RepairPatch]:
        if not patches:
            return patches
        try:
            labels = self._run(patches, project_id)
        except Exception as exc:
            logger.warning("ODS classification failed for %s: %s", project_id, exc)
            labels = {}

        for index, patch in enumerate(patches):
            raw = str(labels.get(f"patch_{index}", "")).upper()
            patch.label = PatchLabel(raw) if raw in PatchLabel.__members__ else PatchLabel.UNKNOWN
        return patches

    def _run(self, patches: list[RepairPatch], project_id: str) -> dict[str, str]:
        patches_dir = self.ods_path / project_id
        patches_dir.mkdir(parents=True, exist_ok=True)
        for stale in patches_dir.glob("patch_*.diff"):
            stale.unlink()
        for index, patch in enumerate(patches):
            (patches_dir / f"patch_{index}.diff").write_text(patch.diff, encoding="utf-8")

        args = shlex.split(self.command.format(patches_dir=patches_dir, project=project_id))
        proc = subprocess.run(args, capture_output=True, text=True, timeout=ODS_TIMEOUT)
        if proc.returncode != 0:
            raise RuntimeError(f"ODS exited with code {proc.returncode}: {proc.stderr.strip()[-500:]}")
        labels = json.loads(proc.stdout)
        if not isinstance(labels, dict):
            raise ValueError("ODS output is not a JSON object")
        return labels


def build_classifier(settings: Settings, config: SequencerConfig) -> PatchClassifier:
    choice = settings.CLASSIFIER.strip().lower()
    if choice == OdsClassifier.name:
        return OdsClassifier(settings.ODS_COMMAND, config.ODS_PATH)
    if choice == AcceptAllClassifier.name:
        return AcceptAllClassifier()
    raise ValueError(f"Unknown classifier '{settings.CLASSIFIER}'.")


# ── Gate ─────────────────────────────────────────────────────────────

def deduplicate(patches: list[RepairPatch]) -> list[RepairPatch]:
    seen: set[tuple[str, str, str]] = set()
    unique: list[RepairPatch] = []
    for patch in patches:
        if patch.key in seen:
            continue
        seen.add(patch.key)
        unique.append(patch)
    return unique


def cap_per_tool(patches: list[RepairPatch], max_per_tool: int) -> list[RepairPatch]:
    """Keep the first *max_per_tool* patches of each tool."""
    counts: dict[str, int] = {}
    kept: list[RepairPatch] = []
    for patch in patches:
        if counts.get(patch.tool_name, 0) >= max_per_tool:
            continue
        counts[patch.tool_name] = counts.get(patch.tool_name, 0) + 1
        kept.append(patch)
    return kept


def filter_correct(
    classifier: PatchClassifier,
    patches: list[RepairPatch],
    project_id: str,
    max_per_tool: int,
) -> list[RepairPatch]:
    """Deduplicate, classify, keep CORRECT, cap per tool."""
    unique = deduplicate(patches)
    labelled = classifier.classify(unique, project_id)
    for patch in labelled:
        logger.debug("patch: %s %s", patch.file_path, patch.label.value if patch.label else None)
    logger.debug("patches passing before overfitting detection: %d", len(labelled))

    correct = [p for p in labelled if p.label == PatchLabel.CORRECT]
    logger.debug("patches marked as CORRECT by overfitting detection: %d", len(correct))
    return cap_per_tool(correct, max_per_tool)
