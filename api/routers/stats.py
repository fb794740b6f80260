from __future__ import annotations

from fastapi import APIRouter, Query, Request

from data.repositories import RawPostRepository, TrendRepository

router = APIRouter(prefix="/api", tags=["problems"])

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30}


@router.get("/stats")
async def stats(request: Request):
    async with request.app.state.session_scope() as session:
        return await RawPostRepository(session).get_stats()


@router.get("/top")
async def top_problems(
    request: Request,
    period: str = Query("week", pattern="^(day|week|month)$"),
    limit: int = Query(20, ge=1, le=200),
    category: str | None = None,
):
    async with request.app.state.session_scope() as session:
        rows = await TrendRepository(session).top_problems(
            days=PERIOD_DAYS[period], limit=limit, category=category
        )
    return {"period": period, "rows": rows}
