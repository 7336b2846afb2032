"""Repository steps – clone the project and check out the buggy commit."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from pipeline.context import StepStatus
from pipeline.step import PipelineStep
from shared.git import GitCommandError, run_git

logger = logging.getLogger(__name__)


class CloneRepository(PipelineStep):
    """Clones the job's repository into the workspace."""

    name = "CloneRepository"

    async def business_execute(self) -> StepStatus:
        descriptor = self.context.descriptor
        workspace = Path(descriptor.workspace)
        target = workspace / descriptor.repo_slug.replace("/", "-")

        logger.info("[%s] Cloning %s into %s", self.name, descriptor.repo_url, target)
        workspace.mkdir(parents=True, exist_ok=True)
        if target.exists():
            logger.warning("[%s] Removing stale clone at %s", self.name, target)
            shutil.rmtree(target)

        try:
            await asyncio.to_thread(
                run_git, ["clone", descriptor.repo_url, str(target)], workspace,
            )
        except GitCommandError as exc:
            return StepStatus.failure(self, f"Clone failed: {exc.stderr}", exc)

        self.context.repo_local_path = str(target.resolve())
        return StepStatus.success(self, f"Cloned into {target}")


class CheckoutCommit(PipelineStep):
    """Checks out the commit under repair (detached HEAD)."""

    name = "CheckoutCommit"

    async def business_execute(self) -> StepStatus:
        descriptor = self.context.descriptor
        repo = self.context.repository

        ref = descriptor.commit or descriptor.branch
        if not ref:
            return StepStatus.success(self, "No commit requested; keeping the default branch.")

        try:
            if descriptor.branch and descriptor.commit:
                await asyncio.to_thread(repo.git, "checkout", descriptor.branch)
            await asyncio.to_thread(
                repo.git, "-c", "advice.detachedHead=false", "checkout", ref,
            )
        except GitCommandError as exc:
            return StepStatus.failure(self, f"Checkout of {ref} failed: {exc.stderr}", exc)

        head = (await asyncio.to_thread(repo.git, "rev-parse", "HEAD")).stdout.strip()
        logger.info("[%s] HEAD is now %s", self.name, head)
        return StepStatus.success(self, f"Checked out {head}")
