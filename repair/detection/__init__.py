"""Candidate detector backends."""

from __future__ import annotations

from pipeline.maven import MavenRunner
from repair.detection.base import DetectionStrategy, diff_targets
from repair.detection.localization import LocalizationDetector
from repair.detection.stacktrace import StackTraceDetector
from shared.config import SequencerConfig, Settings

DETECTORS: dict[str, type[DetectionStrategy]] = {
    StackTraceDetector.name: StackTraceDetector,
    LocalizationDetector.name: LocalizationDetector,
}


def build_detector(settings: Settings, config: SequencerConfig, maven: MavenRunner) -> DetectionStrategy:
    """Instantiate the backend named by ``settings.DETECTION_STRATEGY``."""
    strategy = settings.DETECTION_STRATEGY.strip().lower()
    common = {
        "validation_goal": settings.VALIDATION_GOAL,
        "context_size": config.CONTEXT_SIZE,
    }
    if strategy == StackTraceDetector.name:
        return StackTraceDetector(maven, **common)
    if strategy == LocalizationDetector.name:
        return LocalizationDetector(maven, command=settings.LOCALIZATION_COMMAND, **common)
    raise ValueError(
        f"Unknown detection strategy '{settings.DETECTION_STRATEGY}'. "
        f"Available: {sorted(DETECTORS)}"
    )


__all__ = [
    "DetectionStrategy",
    "StackTraceDetector",
    "LocalizationDetector",
    "DETECTORS",
    "build_detector",
    "diff_targets",
]
