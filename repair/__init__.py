"""Repair package – SequenceR patch generation, validation and classification."""

from repair.classifier import (
    AcceptAllClassifier,
    OdsClassifier,
    PatchClassifier,
    build_classifier,
    filter_correct,
)
from repair.detection import DetectionStrategy, build_detector
from repair.sequencer import TOOL_NAME, SequencerRepair
from repair.validator import PatchValidator
from repair.workers import RepairWorkerPool, WorkerOutcome, build_sequencer_command

__all__ = [
    "SequencerRepair",
    "TOOL_NAME",
    # Detection
    "DetectionStrategy",
    "build_detector",
    # Workers
    "RepairWorkerPool",
    "WorkerOutcome",
    "build_sequencer_command",
    # Validation & classification
    "PatchValidator",
    "PatchClassifier",
    "AcceptAllClassifier",
    "OdsClassifier",
    "build_classifier",
    "filter_correct",
]
