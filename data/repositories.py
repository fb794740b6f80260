from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, insert, select
from sqlalchemy.dialects.sqlite import insert as sqlite_upsert
from sqlalchemy.ext.asyncio import AsyncSession

from core.models import (
    QUARANTINE_CATEGORY,
    QUARANTINE_SENTIMENT,
    QUARANTINE_SUBCATEGORY,
    QUARANTINE_SUMMARY,
    CategoryRollup,
    JudgmentRecord,
    RawPost,
)
from core.scoring import (
    NEUTRAL_SOURCE_QUALITY,
    frequency_score,
    niche_score,
    solvability_score,
)
from data.schema import DBClassification, DBPipelineRun, DBRawPost, DBTrendSnapshot

# ── helpers ──────────────────────────────────────────────────────────

# Category rankings mix sources, so NicheScore uses a flat source-quality
# value. The weighted per-post average is reported next to it.
PLACEHOLDER_SOURCE_QUALITY = 6


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day."""
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _avg_one_decimal(total: int, count: int) -> float:
    avg = Decimal(total) / Decimal(count)
    return float(avg.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def rollup_rows(rows: Iterable[Sequence]) -> list[CategoryRollup]:
    """Group (category, sentiment, summary, source, collected_at, post_id,
    source_quality) rows.

    The top example is the highest-sentiment post; ties go to the earliest
    collected post, then to the lowest post id.
    """
    by_category: dict[str, list[Sequence]] = defaultdict(list)
    for row in rows:
        by_category[row[0]].append(row)

    rollups: list[CategoryRollup] = []
    for category, members in by_category.items():
        members.sort(key=lambda r: (-r[1], r[4], r[5]))
        total = sum(r[1] for r in members)
        rollups.append(
            CategoryRollup(
                category=category,
                post_count=len(members),
                avg_sentiment=_avg_one_decimal(total, len(members)),
                platforms=sorted({r[3] for r in members}),
                top_example=members[0][2],
                solvable_count=len(members),
                avg_source_quality=_avg_one_decimal(
                    sum(r[6] for r in members), len(members)
                ),
            )
        )
    rollups.sort(key=lambda r: (-r.post_count, r.category))
    return rollups


# ── RawPostRepository ────────────────────────────────────────────────


class RawPostRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def insert_if_absent(
        self, post: RawPost, collected_at: datetime, quality: int = NEUTRAL_SOURCE_QUALITY
    ) -> bool:
        """Insert a post unless (source, source_id) exists. True if stored."""
        stmt = (
            sqlite_upsert(DBRawPost)
            .values(
                {
                    DBRawPost.source: post.source,
                    DBRawPost.source_id: post.source_id,
                    DBRawPost.author: post.author or "anonymous",
                    DBRawPost.content: post.content,
                    DBRawPost.url: post.url,
                    DBRawPost.posted_at: post.posted_at,
                    DBRawPost.collected_at: collected_at,
                    DBRawPost.source_quality: quality,
                    DBRawPost.metadata_: post.metadata or {},
                }
            )
            .on_conflict_do_nothing(index_elements=["source", "source_id"])
        )
        result = await self._s.execute(stmt)
        return bool(result.rowcount and result.rowcount > 0)

    async def pending(
        self, limit: int, exclude: Iterable[int] = ()
    ) -> list[DBRawPost]:
        """Oldest-first posts that have no classification yet."""
        q = (
            select(DBRawPost)
            .outerjoin(DBClassification, DBClassification.raw_post_id == DBRawPost.id)
            .where(DBClassification.id.is_(None))
        )
        excluded = list(exclude)
        if excluded:
            q = q.where(DBRawPost.id.not_in(excluded))
        q = q.order_by(DBRawPost.collected_at.asc(), DBRawPost.id.asc()).limit(limit)
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def count(self) -> int:
        return await self._s.scalar(select(func.count(DBRawPost.id))) or 0

    async def get_stats(self) -> dict:
        per_source_q = (
            select(DBRawPost.source, func.count(DBRawPost.id).label("count"))
            .group_by(DBRawPost.source)
            .order_by(func.count(DBRawPost.id).desc(), DBRawPost.source)
        )
        rows = (await self._s.execute(per_source_q)).all()
        total = sum(r[1] for r in rows)
        classified = await self._s.scalar(select(func.count(DBClassification.id))) or 0
        quarantined = (
            await self._s.scalar(
                select(func.count(DBClassification.id)).where(
                    DBClassification.is_quarantined.is_(True)
                )
            )
            or 0
        )
        return {
            "total_posts": total,
            "classified": classified,
            "quarantined": quarantined,
            "pending": total - classified,
            "platforms": [{"platform": r[0], "count": r[1]} for r in rows],
        }

    async def source_breakdown(self, since: datetime) -> list[dict]:
        q = (
            select(DBRawPost.source, func.count(DBRawPost.id))
            .where(DBRawPost.collected_at >= since)
            .group_by(DBRawPost.source)
            .order_by(func.count(DBRawPost.id).desc(), DBRawPost.source)
        )
        rows = (await self._s.execute(q)).all()
        return [{"platform": r[0], "count": r[1]} for r in rows]


# ── ClassificationRepository ─────────────────────────────────────────


class ClassificationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def add(self, raw_post_id: int, judgment: JudgmentRecord) -> None:
        """Raises IntegrityError if the post is already classified."""
        await self._s.execute(
            insert(DBClassification).values(
                raw_post_id=raw_post_id,
                category=judgment.category,
                subcategory=judgment.subcategory,
                sentiment_score=judgment.sentiment_score,
                is_app_solvable=judgment.is_app_solvable,
                summary=judgment.summary,
                is_quarantined=False,
                classified_at=utcnow(),
            )
        )

    async def quarantine(self, raw_post_id: int) -> None:
        await self._s.execute(
            insert(DBClassification).values(
                raw_post_id=raw_post_id,
                category=QUARANTINE_CATEGORY,
                subcategory=QUARANTINE_SUBCATEGORY,
                sentiment_score=QUARANTINE_SENTIMENT,
                is_app_solvable=False,
                summary=QUARANTINE_SUMMARY,
                is_quarantined=True,
                classified_at=utcnow(),
            )
        )

    async def for_post(self, raw_post_id: int) -> list[DBClassification]:
        q = select(DBClassification).where(DBClassification.raw_post_id == raw_post_id)
        return list((await self._s.execute(q)).scalars().all())


# ── TrendRepository ──────────────────────────────────────────────────


class TrendRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def category_rollups(
        self,
        since: datetime,
        until: datetime | None = None,
        *,
        category: str | None = None,
    ) -> list[CategoryRollup]:
        """Roll up solvable, non-quarantined classifications by category."""
        q = (
            select(
                DBClassification.category,
                DBClassification.sentiment_score,
                DBClassification.summary,
                DBRawPost.source,
                DBRawPost.collected_at,
                DBRawPost.id,
                DBRawPost.source_quality,
            )
            .join(DBRawPost, DBRawPost.id == DBClassification.raw_post_id)
            .where(
                DBRawPost.collected_at >= since,
                DBClassification.is_app_solvable.is_(True),
                DBClassification.is_quarantined.is_(False),
            )
        )
        if until is not None:
            q = q.where(DBRawPost.collected_at < until)
        if category:
            q = q.where(DBClassification.category.ilike(f"%{category}%"))
        rows = (await self._s.execute(q)).all()
        return rollup_rows(rows)

    async def top_problems(
        self,
        *,
        days: int = 7,
        limit: int = 10,
        category: str | None = None,
        now: datetime | None = None,
    ) -> list[dict]:
        """Categories over the last ``days`` days ranked by post count, scored."""
        since = (now or utcnow()) - timedelta(days=days)
        rollups = await self.category_rollups(since, category=category)
        rows = []
        for rank, r in enumerate(rollups[:limit], 1):
            solvability = solvability_score(r.solvable_count, r.post_count)
            rows.append(
                {
                    "rank": rank,
                    "niche_score": niche_score(
                        sentiment=_round_half_up(r.avg_sentiment),
                        frequency=frequency_score(r.post_count),
                        source_quality=PLACEHOLDER_SOURCE_QUALITY,
                        solvability=solvability,
                    ),
                    "category": r.category,
                    "post_count": r.post_count,
                    "avg_sentiment": r.avg_sentiment,
                    "solvability": solvability,
                    "avg_source_quality": r.avg_source_quality,
                    "platforms": r.platforms,
                    "top_example": r.top_example,
                }
            )
        return rows

    async def upsert_snapshot(self, day: date, rollup: CategoryRollup) -> None:
        values = {
            "post_count": rollup.post_count,
            "avg_sentiment": rollup.avg_sentiment,
            "platforms": list(rollup.platforms),
            "top_example": rollup.top_example,
            "updated_at": utcnow(),
        }
        stmt = (
            sqlite_upsert(DBTrendSnapshot)
            .values(date=day, category=rollup.category, **values)
            .on_conflict_do_update(index_elements=["date", "category"], set_=values)
        )
        await self._s.execute(stmt)

    async def list_snapshots(
        self, *, since: date, until: date | None = None
    ) -> list[DBTrendSnapshot]:
        q = select(DBTrendSnapshot).where(DBTrendSnapshot.date >= since)
        if until is not None:
            q = q.where(DBTrendSnapshot.date <= until)
        q = q.order_by(
            DBTrendSnapshot.date.asc(),
            DBTrendSnapshot.post_count.desc(),
            DBTrendSnapshot.category.asc(),
        )
        result = await self._s.execute(q)
        return list(result.scalars().all())


# ── PipelineRunRepository ────────────────────────────────────────────


class PipelineRunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def log_run(
        self,
        *,
        trigger: str,
        status: str,
        collected: int,
        classified: int,
        quarantined: int,
        trends: int,
        error_message: str,
        duration_seconds: float,
        started_at: datetime,
    ) -> None:
        run = DBPipelineRun(
            trigger=trigger,
            status=status,
            collected=collected,
            classified=classified,
            quarantined=quarantined,
            trends=trends,
            error_message=error_message,
            duration_seconds=round(duration_seconds, 2),
            started_at=started_at,
            finished_at=utcnow(),
        )
        self._s.add(run)

    async def recent_runs(self, limit: int = 20) -> list[DBPipelineRun]:
        q = (
            select(DBPipelineRun)
            .order_by(DBPipelineRun.started_at.desc(), DBPipelineRun.id.desc())
            .limit(limit)
        )
        result = await self._s.execute(q)
        return list(result.scalars().all())
