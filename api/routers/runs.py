from __future__ import annotations

from fastapi import APIRouter, Query, Request

from data.repositories import PipelineRunRepository

router = APIRouter(prefix="/api/runs", tags=["runs"])


@router.get("")
async def recent_runs(request: Request, limit: int = Query(20, ge=1, le=100)):
    async with request.app.state.session_scope() as session:
        runs = await PipelineRunRepository(session).recent_runs(limit=limit)
        return [
            {
                "id": r.id,
                "trigger": r.trigger,
                "status": r.status,
                "collected": r.collected,
                "classified": r.classified,
                "quarantined": r.quarantined,
                "trends": r.trends,
                "error_message": r.error_message,
                "duration_seconds": r.duration_seconds,
                "started_at": r.started_at.isoformat() if r.started_at else None,
                "finished_at": r.finished_at.isoformat() if r.finished_at else None,
            }
            for r in runs
        ]
