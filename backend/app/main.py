"""FastAPI application entry point."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.routes import health, repairs
from pipeline.launcher import run_repair_job
from shared.config import SequencerConfig, Settings, load_config
from shared.logs import configure_logging

_logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    sequencer_config: SequencerConfig | None = None,
    runner=run_repair_job,
) -> FastAPI:
    """Build the intake service around explicit configuration."""
    if settings is None or sequencer_config is None:
        loaded_settings, loaded_config = load_config()
        settings = settings or loaded_settings
        sequencer_config = sequencer_config or loaded_config
    configure_logging(settings)

    app = FastAPI(
        title="SequenceR Repair Service",
        description="Queues repair jobs: clone, build, detect, generate, validate and classify patches.",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.sequencer_config = sequencer_config
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ───────────────────────────────────────────────────────
    app.include_router(health.router, tags=["health"])
    app.include_router(repairs.router, tags=["repairs"])

    @app.on_event("startup")
    async def startup_event():
        _logger.info(
            "Starting repair service | workspace=%s | image=%s | threads=%d | log_file=%s",
            settings.WORKSPACE_PATH, sequencer_config.DOCKER_TAG,
            sequencer_config.THREADS, settings.LOG_FILE,
        )

    return app


app = create_app()
