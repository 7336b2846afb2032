"""Path steps – compute the classpath and source directories used by repair tools."""

from __future__ import annotations

import asyncio
import logging
import os
import xml.etree.ElementTree as ET
from pathlib import Path

from pipeline.context import JobContext, StepStatus
from pipeline.maven import MavenError, MavenRunner
from pipeline.step import PipelineStep

logger = logging.getLogger(__name__)

CLASSPATH_FILE = "target/seqrepair.classpath"
DEFAULT_SOURCE_DIR = "src/main/java"
_SKIP_DIRS = {"target", "node_modules", ".git"}


def module_dirs(repo: Path) -> list[Path]:
    """Every directory of *repo* holding a pom.xml, root first."""
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(repo):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS and not d.startswith("."))
        if "pom.xml" in filenames:
            found.append(Path(dirpath))
    return found


def declared_source_dir(pom: Path) -> str | None:
    """The ``<build><sourceDirectory>`` of *pom*, if any."""
    try:
        root = ET.parse(pom).getroot()
    except ET.ParseError:
        return None
    for node in root.iter():
        if node.tag.rsplit("}", 1)[-1] == "sourceDirectory" and node.text:
            return node.text.strip().replace("${project.basedir}/", "").replace("${basedir}/", "")
    return None


class ComputeClasspath(PipelineStep):
    """Resolves dependency jars plus compiled classes of every module."""

    name = "ComputeClasspath"

    def __init__(self, context: JobContext, maven: MavenRunner, requires_success: bool = True):
        super().__init__(context, requires_success)
        self.maven = maven

    async def business_execute(self) -> StepStatus:
        repo = Path(self.context.repo_local_path)
        try:
            result = await asyncio.to_thread(
                self.maven.run, repo, "dependency:build-classpath",
                {"mdep.outputFile": CLASSPATH_FILE},
            )
        except MavenError as exc:
            return StepStatus.failure(self, str(exc), exc)

        if not result.success:
            return StepStatus.failure(self, f"Classpath computation failed (exit {result.exit_code}).")

        entries: list[str] = []
        for module in module_dirs(repo):
            for compiled in ("target/classes", "target/test-classes"):
                path = module / compiled
                if path.is_dir():
                    entries.append(str(path.resolve()))
            cp_file = module / CLASSPATH_FILE
            if cp_file.is_file():
                entries.extend(e for e in cp_file.read_text().strip().split(os.pathsep) if e)

        classpath = list(dict.fromkeys(entries))
        self.context.repair_classpath = classpath
        logger.info("[%s] %d classpath entries", self.name, len(classpath))
        return StepStatus.success(self, f"{len(classpath)} classpath entries.")


class ComputeSourceDir(PipelineStep):
    """Finds the main source directory of every module."""

    name = "ComputeSourceDir"

    async def business_execute(self) -> StepStatus:
        repo = Path(self.context.repo_local_path)
        sources: list[str] = []
        for module in module_dirs(repo):
            relative = declared_source_dir(module / "pom.xml") or DEFAULT_SOURCE_DIR
            candidate = (module / relative).resolve()
            if candidate.is_dir():
                sources.append(str(candidate))

        self.context.repair_source_dirs = sources
        if not sources:
            return StepStatus.failure(self, "No source directory found.")
        logger.info("[%s] Source dirs: %s", self.name, sources)
        return StepStatus.success(self, f"{len(sources)} source dir(s).")
