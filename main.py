"""NicheScore server: read API plus the scheduled pipeline."""

from __future__ import annotations

import logging

import uvicorn

from api.app import create_app
from config.settings import PipelineConfig, settings
from data.database import init_db
from pipeline.runner import PipelineRunner, build_oracle, default_collectors

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
log = logging.getLogger(__name__)

app = create_app()


@app.on_event("startup")
async def on_startup() -> None:
    log.info("Initialising database…")
    await init_db()

    config = PipelineConfig.from_settings(settings)
    runner = PipelineRunner(
        config,
        oracle=build_oracle(config, settings),
        collectors=default_collectors(config, settings),
        broadcast_fn=app.state.broadcaster.broadcast,
        schedule=settings.PIPELINE_SCHEDULE,
    )
    app.state.runner = runner
    if settings.PIPELINE_ENABLED:
        runner.start()
    else:
        log.info("Pipeline schedule disabled (set PIPELINE_ENABLED=true to enable)")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if hasattr(app.state, "runner"):
        app.state.runner.stop()
        log.info("Pipeline scheduler stopped.")


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.DASHBOARD_PORT,
        reload=False,
    )
