"""Patch validator – builds and tests one candidate patch in isolation.

Protocol for one patch, run while holding the repository lock:
  1. Create a uniquely named branch from the current ref and check it out
  2. Write the diff to a temporary file and ``git apply --ignore-whitespace``
  3. Run the project's build/test goal with the patch applied
  4. Always: hard reset, drop files the patch created, check out the
     original ref again and delete the temporary branch

Any error is logged and reported as a failed validation.
"""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
from pathlib import Path

from pipeline.maven import MavenRunner
from shared.git import Repository
from shared.schemas import RepairPatch

logger = logging.getLogger(__name__)


class PatchValidator:
    """Validates patches against one repository clone."""

    def __init__(self, repository: Repository, maven: MavenRunner, pom: str | Path | None = None):
        self.repository = repository
        self.maven = maven
        self.pom = pom

    def apply(self, patch: RepairPatch, goal: str, properties: dict[str, str] | None = None) -> bool:
        """Return True when the project builds and passes *goal* with *patch*."""
        logger.info("Testing patch on %s", patch.file_path)
        with self.repository.lock:
            try:
                return self._apply_locked(patch, goal, properties)
            except Exception as exc:
                logger.error("Error while testing if patch is buildable: %s", exc)
                return False

    def _apply_locked(self, patch: RepairPatch, goal: str, properties: dict[str, str] | None) -> bool:
        repo = self.repository
        original_ref = repo.current_ref()
        branch = f"{Path(patch.file_path).name}-{uuid.uuid4()}"
        untracked_before = repo.untracked_files()

        try:
            repo.git("checkout", "-q", "-b", branch, original_ref)

            fd, diff_path = tempfile.mkstemp(suffix=".diff", prefix="seqrepair-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(patch.diff if patch.diff.endswith("\n") else patch.diff + "\n")
                applied = repo.git("apply", "--ignore-whitespace", diff_path, check=False)
            finally:
                os.unlink(diff_path)

            if applied.returncode != 0:
                logger.info("Patch does not apply: %s", applied.stderr.strip())
                return False

            result = self.maven.run(repo.path, goal, properties, self.pom)
            logger.info(
                "Patch on %s %s goal '%s'",
                patch.file_path, "passed" if result.success else "failed", goal,
            )
            return result.success
        finally:
            self._restore(original_ref, branch, untracked_before)

    def _restore(self, original_ref: str, branch: str, untracked_before: set[str]) -> None:
        """Put the working tree back on *original_ref*.  Best effort, never raises."""
        repo = self.repository
        try:
            repo.git("reset", "-q", "--hard", check=False)
            for leftover in sorted(repo.untracked_files() - untracked_before):
                (repo.path / leftover).unlink(missing_ok=True)
            repo.git("-c", "advice.detachedHead=false", "checkout", "-q", original_ref, check=False)
            repo.git("branch", "-D", branch, check=False)
        except Exception as exc:
            logger.warning("Could not fully restore %s after validation: %s", repo.path, exc)
