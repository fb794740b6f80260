from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


def _runner(request: Request):
    # Attached by main.py at startup
    return getattr(request.app.state, "runner", None)


@router.post("/run")
async def trigger_run(request: Request, source: str | None = None):
    runner = _runner(request)
    if runner is None:
        raise HTTPException(503, "Pipeline not initialized")
    if source is not None and source not in runner.sources:
        raise HTTPException(400, f"Unknown source: {source}")

    result = await runner.run([source] if source else None, trigger="manual")
    return {
        "collected": result.collected,
        "classified": result.classified,
        "quarantined": result.quarantined,
        "trends": result.trends,
        "errors": result.errors,
        "duration_seconds": round(result.duration_seconds, 2),
    }


@router.get("/status")
async def pipeline_status(request: Request):
    runner = _runner(request)
    if runner is None:
        return {"running": False, "jobs": []}
    return runner.get_status()
