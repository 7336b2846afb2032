"""Build steps – run the test suite of the buggy commit and read its reports.

BuildProject runs ``mvn test`` with test failures ignored: the step
succeeds when the project compiles and the suite runs to completion.
GatherTestInformation then parses the surefire XML reports into
``FailingTest`` records and enforces the "build should fail" contract.
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from pathlib import Path

from pipeline.context import FailingTest, JobContext, StepStatus
from pipeline.maven import MavenError, MavenRunner
from pipeline.step import PipelineStep

logger = logging.getLogger(__name__)

SUREFIRE_GLOB = "**/target/surefire-reports/TEST-*.xml"


class BuildProject(PipelineStep):
    """Compiles the project and runs its tests."""

    name = "BuildProject"

    def __init__(self, context: JobContext, maven: MavenRunner, requires_success: bool = True):
        super().__init__(context, requires_success)
        self.maven = maven

    async def business_execute(self) -> StepStatus:
        repo = self.context.repo_local_path
        try:
            result = await asyncio.to_thread(
                self.maven.run, repo, "test", {"maven.test.failure.ignore": "true"},
            )
        except MavenError as exc:
            return StepStatus.failure(self, str(exc), exc)

        if not result.success:
            logger.warning("[%s] Build output tail:\n%s", self.name, result.output[-1500:])
            return StepStatus.failure(self, f"Build failed (exit {result.exit_code}).")
        return StepStatus.success(self, "Project built and tests executed.")


def parse_surefire_report(path: Path) -> list[FailingTest]:
    """Return the failing and erroring test cases of one surefire report."""
    failing: list[FailingTest] = []
    root = ET.parse(path).getroot()
    for case in root.iter("testcase"):
        for tag in ("failure", "error"):
            node = case.find(tag)
            if node is None:
                continue
            failing.append(
                FailingTest(
                    class_name=case.get("classname", ""),
                    method=case.get("name", ""),
                    failure_type=node.get("type", ""),
                    message=node.get("message", "") or "",
                    stack_trace=(node.text or "").strip(),
                    is_error=tag == "error",
                )
            )
            break
    return failing


class GatherTestInformation(PipelineStep):
    """Collects failing tests from the surefire reports."""

    name = "GatherTestInformation"

    def __init__(self, context: JobContext, expect_failure: bool = True, requires_success: bool = True):
        super().__init__(context, requires_success)
        self.expect_failure = expect_failure

    async def business_execute(self) -> StepStatus:
        repo = Path(self.context.repo_local_path)
        reports = sorted(repo.glob(SUREFIRE_GLOB))
        if not reports:
            return StepStatus.failure(self, "No surefire report found.")

        failing: list[FailingTest] = []
        for report in reports:
            try:
                failing.extend(parse_surefire_report(report))
            except ET.ParseError as exc:
                self.context.add_step_error(self.name, f"Unreadable report {report.name}", exc)

        self.context.failing_tests = failing
        logger.info(
            "[%s] %d report(s), %d failing test(s)", self.name, len(reports), len(failing),
        )

        if self.expect_failure and not failing:
            return StepStatus.failure(self, "No failing test found; nothing to repair.")
        return StepStatus.success(self, f"{len(failing)} failing test(s).")
