"""Pipeline package – job context, step chain and preparatory steps."""

from pipeline.context import FailingTest, JobContext, StatusKind, StepStatus
from pipeline.maven import MavenError, MavenResult, MavenRunner
from pipeline.step import PipelineStep, build_step_graph

__all__ = [
    "JobContext",
    "FailingTest",
    "StatusKind",
    "StepStatus",
    "PipelineStep",
    "build_step_graph",
    "MavenRunner",
    "MavenResult",
    "MavenError",
]
