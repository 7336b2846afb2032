"""Results exporter.

Renders a finished JobContext into a JSON record and appends it to the
results file.

Usage::

    from shared.results_exporter import export_results

    export_results(context, runtime_seconds=812.4, output_path="shared/results.json")
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pipeline.context import JobContext
    from shared.config import SequencerConfig

logger = logging.getLogger(__name__)

_DEFAULT_OUTPUT = Path(__file__).resolve().parent / "results.json"


# ── Public API ───────────────────────────────────────────────────────

def export_results(
    context: JobContext,
    runtime_seconds: float,
    output_path: str | Path | None = None,
    config: SequencerConfig | None = None,
) -> dict[str, Any]:
    """Build the run record, append it to the results file and return it.

    Args:
        context:         The job context after the step chain executed.
        runtime_seconds: Wall-clock seconds for the whole chain.
        output_path:     Where to write the JSON (default: shared/results.json).
        config:          When given, its collector settings go into the record.
    """
    record = build_record(context, runtime_seconds, config)

    dest = Path(output_path) if output_path else _DEFAULT_OUTPUT
    dest.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {"runs": []}
    if dest.exists():
        try:
            data = json.loads(dest.read_text())
        except json.JSONDecodeError:
            logger.warning("Results file %s is not valid JSON; starting a new one", dest)
        if not isinstance(data.get("runs"), list):
            data = {"runs": []}

    data["runs"].append(record)
    dest.write_text(json.dumps(data, indent=2) + "\n")
    logger.info("Results written to %s (%d run(s))", dest, len(data["runs"]))
    return record


def build_record(
    context: JobContext,
    runtime_seconds: float,
    config: SequencerConfig | None = None,
) -> dict[str, Any]:
    """Pure function: JobContext → JSON-serialisable run record."""
    statuses = context.step_statuses
    final = statuses[-1].kind.value if statuses else "NOT_RUN"
    record = {
        **context.to_dict(),
        "project_id": context.descriptor.project_id,
        "final_status": final,
        "patch_count": len(context.patches),
        "runtime_seconds": round(runtime_seconds, 2),
        "exported_at": datetime.now(timezone.utc).isoformat(),
    }
    if config is not None:
        record["collector"] = {
            "path": config.COLLECTOR_PATH,
            "raw_url_source": config.RAW_URL_SOURCE.value,
        }
    return record
