from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Query, Request

from data.repositories import RawPostRepository, TrendRepository, utcnow

router = APIRouter(prefix="/api/trends", tags=["trends"])


def _snapshot_to_dict(t) -> dict:
    return {
        "date": t.date.isoformat(),
        "category": t.category,
        "post_count": t.post_count,
        "avg_sentiment": t.avg_sentiment,
        "platforms": t.platforms,
        "top_example": t.top_example,
    }


@router.get("")
async def list_trends(request: Request, days: int = Query(30, ge=1, le=365)):
    now = utcnow()
    since = now - timedelta(days=days)
    # Today counts as one of the ``days`` calendar days
    first_day = now.date() - timedelta(days=days - 1)
    async with request.app.state.session_scope() as session:
        snapshots = await TrendRepository(session).list_snapshots(since=first_day)
        breakdown = await RawPostRepository(session).source_breakdown(since)
    return {
        "days": days,
        "trends": [_snapshot_to_dict(t) for t in snapshots],
        "platform_breakdown": breakdown,
    }
