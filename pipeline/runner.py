from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import DataError, IntegrityError

from collectors.appstore import AppStoreCollector
from collectors.base import BaseCollector
from collectors.hackernews import HackerNewsCollector
from collectors.lemmy import LemmyCollector
from collectors.reddit import RedditCollector
from collectors.stackexchange import StackExchangeCollector
from config.settings import PipelineConfig, Settings, settings
from core.models import PipelineResult
from data.database import SessionScope, get_session
from data.repositories import PipelineRunRepository
from pipeline.aggregator import TrendAggregator
from pipeline.classifier import Classifier
from pipeline.ingest import Ingestor
from pipeline.oracle import Oracle, OpenAIOracle

log = logging.getLogger(__name__)

Broadcast = Callable[[dict], Awaitable[None]]


def default_collectors(config: PipelineConfig, s: Settings = settings) -> dict[str, BaseCollector]:
    return {
        "reddit": RedditCollector(config, s),
        "hackernews": HackerNewsCollector(config, s),
        "lemmy": LemmyCollector(s),
        "stackexchange": StackExchangeCollector(config, s),
        "appstore": AppStoreCollector(s),
    }


def build_oracle(config: PipelineConfig, s: Settings = settings) -> Oracle | None:
    """The configured oracle, or None when no API key is set."""
    if not s.ORACLE_API_KEY:
        log.warning("ORACLE_API_KEY is not set; classification will be skipped")
        return None
    return OpenAIOracle(
        api_key=s.ORACLE_API_KEY,
        model=config.oracle_model,
        max_tokens=config.oracle_max_tokens,
        timeout=config.oracle_timeout_seconds,
    )


class PipelineRunner:
    """Runs collect → ingest → classify → aggregate, on demand or on a cron."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        oracle: Oracle | None,
        collectors: dict[str, BaseCollector],
        session_scope: SessionScope = get_session,
        broadcast_fn: Broadcast | None = None,
        schedule: str = settings.PIPELINE_SCHEDULE,
    ) -> None:
        self._config = config
        self._session_scope = session_scope
        self._collectors = collectors
        self._ingestor = Ingestor(session_scope, weights=config.source_weights)
        self._classifier = Classifier(oracle, config, session_scope) if oracle else None
        self._aggregator = TrendAggregator(session_scope)
        self._broadcast = broadcast_fn
        self._schedule = schedule
        self._scheduler = AsyncIOScheduler()

    @property
    def sources(self) -> list[str]:
        return list(self._collectors)

    def start(self) -> None:
        self._scheduler.add_job(
            self.run,
            CronTrigger.from_crontab(self._schedule, timezone=timezone.utc),
            kwargs={"trigger": "schedule"},
            id="pipeline",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        log.info("Pipeline scheduler started with cron '%s'", self._schedule)

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def get_status(self) -> dict:
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run": job.next_run_time.isoformat()
                    if job.next_run_time
                    else None,
                }
            )
        return {"running": self._scheduler.running, "schedule": self._schedule, "jobs": jobs}

    async def run(
        self,
        sources: Iterable[str] | None = None,
        *,
        trigger: str = "manual",
        classify: bool = True,
        aggregate: bool = True,
    ) -> PipelineResult:
        started_at = datetime.now(timezone.utc)
        t0 = time.monotonic()
        result = PipelineResult()
        selected = list(sources) if sources is not None else list(self._collectors)
        log.info("Pipeline run started (%s): %s", trigger, ", ".join(selected) or "no collectors")

        for name in selected:
            collector = self._collectors.get(name)
            if collector is None:
                result.errors.append(f"unknown source: {name}")
                continue
            try:
                collected = await collector.collect()
            except Exception as e:
                log.error("Collector %s failed: %s", name, e)
                result.errors.append(f"{name}: {e}")
                continue
            result.errors.extend(collected.errors)
            result.collected += await self._ingestor.ingest(collected.items)

        if classify and self._classifier is not None:
            classified = await self._classifier.classify()
            result.classified = classified.classified
            result.quarantined = classified.quarantined
        elif classify:
            result.errors.append("classification skipped: no oracle configured")

        if aggregate:
            result.trends = await self._aggregator.aggregate()

        result.duration_seconds = time.monotonic() - t0
        log.info(
            "Pipeline complete in %.1fs | collected %d | classified %d (%d quarantined) | trends %d",
            result.duration_seconds,
            result.collected,
            result.classified,
            result.quarantined,
            result.trends,
        )
        await self._record(result, trigger, started_at)

        if self._broadcast:
            await self._broadcast(
                {
                    "event": "pipeline_complete",
                    "collected": result.collected,
                    "classified": result.classified,
                    "quarantined": result.quarantined,
                    "trends": result.trends,
                    "errors": len(result.errors),
                }
            )
        return result

    async def _record(self, result: PipelineResult, trigger: str, started_at: datetime) -> None:
        status = "success" if not result.errors else "partial"
        if result.errors and not (result.collected or result.classified or result.trends):
            status = "failed"
        try:
            async with self._session_scope() as session:
                await PipelineRunRepository(session).log_run(
                    trigger=trigger,
                    status=status,
                    collected=result.collected,
                    classified=result.classified,
                    quarantined=result.quarantined,
                    trends=result.trends,
                    error_message="; ".join(result.errors)[:500],
                    duration_seconds=result.duration_seconds,
                    started_at=started_at,
                )
        except (IntegrityError, DataError) as e:
            log.error("Failed to record pipeline run: %s", e)
