"""Preparatory pipeline steps."""

from pipeline.steps.build import BuildProject, GatherTestInformation
from pipeline.steps.clone import CheckoutCommit, CloneRepository
from pipeline.steps.paths import ComputeClasspath, ComputeSourceDir

__all__ = [
    "CloneRepository",
    "CheckoutCommit",
    "BuildProject",
    "GatherTestInformation",
    "ComputeClasspath",
    "ComputeSourceDir",
]
