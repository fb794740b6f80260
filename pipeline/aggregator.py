from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import DataError, IntegrityError

from core.errors import AggregationWriteFailure
from core.models import CategoryRollup
from data.database import SessionScope
from data.repositories import TrendRepository, day_bounds, utcnow

log = logging.getLogger(__name__)


class TrendAggregator:
    """Rolls classified, solvable posts into daily per-category snapshots."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def aggregate(self, day: date | None = None) -> int:
        """Upsert one snapshot per category for ``day`` (UTC, default today).

        Re-running for the same day overwrites the earlier rows. Returns the
        number of categories written.
        """
        day = day or utcnow().date()
        log.info("Aggregating trends for %s", day.isoformat())
        start, end = day_bounds(day)

        async with self._session_scope() as session:
            rollups = await TrendRepository(session).category_rollups(start, end)

        saved = 0
        for rollup in rollups:
            try:
                await self._write(day, rollup)
                saved += 1
            except AggregationWriteFailure as e:
                log.error("Trend snapshot failed for %s", e)

        log.info("Trends done: %d/%d categories aggregated", saved, len(rollups))
        return saved

    async def _write(self, day: date, rollup: CategoryRollup) -> None:
        try:
            async with self._session_scope() as session:
                await TrendRepository(session).upsert_snapshot(day, rollup)
        except (IntegrityError, DataError) as e:
            raise AggregationWriteFailure(rollup.category, str(e.orig or e)) from e
