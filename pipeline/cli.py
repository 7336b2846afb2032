"""Command-line entry point: repair one commit of one repository.

Usage:
    python -m pipeline --repo-url https://github.com/owner/project --commit 1a2b3c4
    python -m pipeline --repo-url ... --commit ... --detection localization
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pipeline.launcher import run_repair_job
from repair.detection import DETECTORS
from shared.config import load_config
from shared.logs import configure_logging
from shared.schemas import JobDescriptor

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m pipeline",
        description="Generate and validate SequenceR patches for a failing build.",
    )
    parser.add_argument("--repo-url", required=True, help="Git URL of the repository to repair")
    parser.add_argument("--commit", default="", help="Commit id of the failing build")
    parser.add_argument("--branch", default="", help="Branch holding the commit")
    parser.add_argument(
        "--workspace",
        default=None,
        help="Working directory for the clone and tool outputs (default: WORKSPACE_PATH)",
    )
    parser.add_argument(
        "--detection",
        choices=sorted(DETECTORS),
        default=None,
        help="Candidate detector backend (default: DETECTION_STRATEGY)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings, config = load_config()
    if args.detection:
        settings = settings.model_copy(update={"DETECTION_STRATEGY": args.detection})
    configure_logging(settings)

    workspace = Path(args.workspace or settings.WORKSPACE_PATH).expanduser().resolve()
    descriptor = JobDescriptor(
        repo_url=args.repo_url,
        commit=args.commit,
        workspace=str(workspace),
        branch=args.branch,
    )

    context = asyncio.run(run_repair_job(descriptor, settings, config))

    summary = {
        "project_id": descriptor.project_id,
        "steps": [s.to_dict() for s in context.step_statuses],
        "patches": len(context.patches),
        "has_been_patched": context.has_been_patched,
    }
    print(json.dumps(summary, indent=2))
    return 0 if context.has_been_patched else 1


if __name__ == "__main__":
    sys.exit(main())
