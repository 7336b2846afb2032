"""Maven invocation – run a build goal, get pass/fail."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MAVEN_SUCCESS = 0
MAVEN_TIMEOUT = 3600
_OUTPUT_TAIL = 4000


class MavenError(Exception):
    """Raised when the Maven binary cannot be started."""


@dataclass
class MavenResult:
    goal: str
    exit_code: int
    output: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == MAVEN_SUCCESS and not self.timed_out


class MavenRunner:
    """Runs Maven goals in batch mode against a project directory."""

    def __init__(
        self,
        binary: str = "mvn",
        local_repository: str = "",
        timeout: int = MAVEN_TIMEOUT,
    ):
        self.binary = binary
        self.local_repository = local_repository
        self.timeout = timeout

    def command(
        self,
        project_dir: str | Path,
        goal: str,
        properties: dict[str, str] | None = None,
        pom: str | Path | None = None,
    ) -> list[str]:
        pom_path = Path(pom) if pom else Path(project_dir) / "pom.xml"
        cmd = [self.binary, "-B", "-f", str(pom_path), *goal.split()]
        for key, value in sorted((properties or {}).items()):
            cmd.append(f"-D{key}={value}")
        if self.local_repository:
            cmd.append(f"-Dmaven.repo.local={self.local_repository}")
        return cmd

    def run(
        self,
        project_dir: str | Path,
        goal: str,
        properties: dict[str, str] | None = None,
        pom: str | Path | None = None,
    ) -> MavenResult:
        cmd = self.command(project_dir, goal, properties, pom)
        logger.info("Running %s  (cwd=%s)", " ".join(cmd), project_dir)
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(project_dir),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise MavenError(f"Maven binary not found: {self.binary}") from exc
        except subprocess.TimeoutExpired as exc:
            logger.warning("Maven goal '%s' timed out after %ds", goal, self.timeout)
            output = exc.output if isinstance(exc.output, str) else ""
            return MavenResult(goal=goal, exit_code=-1, output=output[-_OUTPUT_TAIL:], timed_out=True)

        if proc.returncode != MAVEN_SUCCESS:
            logger.info("Maven goal '%s' exited with code %d", goal, proc.returncode)
        return MavenResult(goal=goal, exit_code=proc.returncode, output=proc.stdout[-_OUTPUT_TAIL:])
