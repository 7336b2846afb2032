"""Git CLI wrapper and the repository handle shared by pipeline steps.

Git branch/checkout state is global to a working tree, so every
operation that moves HEAD must hold ``Repository.lock``.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 600


class GitCommandError(Exception):
    """Raised when a git subprocess exits with a non-zero code."""

    def __init__(self, cmd: list[str], code: int, stderr: str):
        self.cmd = cmd
        self.code = code
        self.stderr = stderr
        super().__init__(f"git {' '.join(cmd[1:])} failed (exit {code}): {stderr}")


def run_git(args: list[str], cwd: str | Path, check: bool = True) -> subprocess.CompletedProcess:
    """Run a git command and return the result."""
    cmd = ["git"] + args
    logger.debug("git %s  (cwd=%s)", " ".join(args), cwd)
    result = subprocess.run(
        cmd,
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=GIT_TIMEOUT,
    )
    if check and result.returncode != 0:
        logger.error("git %s failed: %s", " ".join(args), result.stderr.strip())
        raise GitCommandError(cmd, result.returncode, result.stderr.strip())
    return result


class Repository:
    """A local clone, owned by one job, with its working-tree lock."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.lock = threading.Lock()

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return run_git(list(args), cwd=self.path, check=check)

    def current_ref(self) -> str:
        """Branch name, or the commit sha when HEAD is detached."""
        branch = self.git("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()
        if branch == "HEAD":
            return self.git("rev-parse", "HEAD").stdout.strip()
        return branch

    def branches(self) -> list[str]:
        out = self.git("branch", "--format=%(refname:short)").stdout
        # a detached HEAD is listed as "(HEAD detached at ...)"
        return [line.strip() for line in out.splitlines() if line.strip() and not line.startswith("(")]

    def untracked_files(self) -> set[str]:
        out = self.git("ls-files", "--others", "--exclude-standard").stdout
        return {line for line in out.splitlines() if line}

    def __repr__(self) -> str:
        return f"<Repository: {self.path}>"
