"""End-to-end pipeline runs with fake collectors and a scripted oracle."""

from collections.abc import Sequence

import httpx
from sqlalchemy import select

from collectors.base import BaseCollector
from config.settings import PipelineConfig
from core.models import RawPost
from data.repositories import PipelineRunRepository, RawPostRepository
from data.schema import DBRawPost
from pipeline.runner import PipelineRunner, default_collectors


class StaticCollector(BaseCollector):
    """Serves canned posts per target; a target mapped to an exception raises it."""

    def __init__(self, name: str, pages: dict) -> None:
        super().__init__(delay_seconds=0)
        self.source_name = name
        self._pages = pages

    def targets(self) -> Sequence[str]:
        return list(self._pages)

    async def fetch(self, client: httpx.AsyncClient, target: str) -> list[RawPost]:
        page = self._pages[target]
        if isinstance(page, Exception):
            raise page
        return page


class ExplodingCollector(StaticCollector):
    async def collect(self):
        raise RuntimeError("collector crashed")


def _runner(scope, collectors, oracle, events=None, batch_size=50) -> PipelineRunner:
    async def broadcast(event: dict) -> None:
        events.append(event)

    return PipelineRunner(
        PipelineConfig(batch_size=batch_size, oracle_timeout_seconds=5.0),
        oracle=oracle,
        collectors=collectors,
        session_scope=scope,
        broadcast_fn=broadcast if events is not None else None,
    )


async def _runs(scope):
    async with scope() as session:
        return await PipelineRunRepository(session).recent_runs()


async def test_full_run_collects_classifies_and_aggregates(scope, make_post, echo_oracle):
    collectors = {
        "reddit": StaticCollector("reddit", {"AppIdeas": [make_post(1), make_post(2)]}),
        "lemmy": StaticCollector("lemmy", {"gardening": [make_post(3, source="lemmy")]}),
    }
    events: list[dict] = []
    runner = _runner(scope, collectors, echo_oracle, events)

    result = await runner.run()

    assert result.collected == 3
    assert result.classified == 3
    assert result.quarantined == 0
    assert result.trends == 1
    assert result.errors == []

    (run,) = await _runs(scope)
    assert run.status == "success"
    assert run.trigger == "manual"
    assert (run.collected, run.classified, run.trends) == (3, 3, 1)

    assert events == [
        {
            "event": "pipeline_complete",
            "collected": 3,
            "classified": 3,
            "quarantined": 0,
            "trends": 1,
            "errors": 0,
        }
    ]


async def test_second_run_is_a_no_op(scope, make_post, echo_oracle):
    collectors = {"reddit": StaticCollector("reddit", {"AppIdeas": [make_post(1)]})}
    runner = _runner(scope, collectors, echo_oracle)

    await runner.run()
    again = await runner.run()

    assert again.collected == 0
    assert again.classified == 0
    assert len(echo_oracle.prompts) == 1


async def test_failing_target_is_recorded_as_partial(scope, make_post, echo_oracle):
    collectors = {
        "reddit": StaticCollector(
            "reddit",
            {"AppIdeas": [make_post(1)], "gardening": ConnectionError("reset by peer")},
        )
    }

    result = await _runner(scope, collectors, echo_oracle).run()

    assert result.collected == 1
    assert result.errors == ["reddit/gardening: reset by peer"]
    (run,) = await _runs(scope)
    assert run.status == "partial"
    assert "reset by peer" in run.error_message


async def test_crashing_collector_does_not_stop_the_others(scope, make_post, echo_oracle):
    collectors = {
        "x": ExplodingCollector("x", {}),
        "reddit": StaticCollector("reddit", {"AppIdeas": [make_post(1)]}),
    }

    result = await _runner(scope, collectors, echo_oracle).run()

    assert result.collected == 1
    assert result.errors == ["x: collector crashed"]


async def test_selected_sources_only(scope, make_post, echo_oracle):
    collectors = {
        "reddit": StaticCollector("reddit", {"AppIdeas": [make_post(1)]}),
        "lemmy": StaticCollector("lemmy", {"gardening": [make_post(2, source="lemmy")]}),
    }
    runner = _runner(scope, collectors, echo_oracle)
    assert runner.sources == ["reddit", "lemmy"]

    result = await runner.run(["lemmy"], aggregate=False)

    assert result.collected == 1
    assert result.trends == 0
    async with scope() as session:
        stats = await RawPostRepository(session).get_stats()
    assert stats["platforms"] == [{"platform": "lemmy", "count": 1}]


async def test_no_oracle_leaves_posts_pending(scope, make_post):
    collectors = {"reddit": StaticCollector("reddit", {"AppIdeas": [make_post(1), make_post(2)]})}

    result = await _runner(scope, collectors, oracle=None).run()

    assert result.collected == 2
    assert result.classified == 0
    assert result.errors == ["classification skipped: no oracle configured"]
    async with scope() as session:
        stats = await RawPostRepository(session).get_stats()
    assert stats["pending"] == 2
    assert stats["quarantined"] == 0


async def test_run_with_nothing_to_do_fails_softly(scope):
    result = await _runner(scope, {}, oracle=None).run(["tiktok"])

    assert result.errors[0] == "unknown source: tiktok"
    (run,) = await _runs(scope)
    assert run.status == "failed"


async def test_status_before_start(scope, echo_oracle):
    status = _runner(scope, {}, echo_oracle).get_status()
    assert status["running"] is False
    assert status["jobs"] == []
    assert status["schedule"] == "0 */6 * * *"


async def test_run_stamps_configured_source_weights(scope, make_post, echo_oracle):
    collectors = {
        "reddit": StaticCollector("reddit", {"AppIdeas": [make_post(1, tier="idea_subreddit")]}),
        "appstore": StaticCollector("appstore", {"111": [make_post(2, source="appstore_ios")]}),
    }
    runner = PipelineRunner(
        PipelineConfig(source_weights={"idea_subreddit": 10, "appstore_ios": 3}),
        oracle=echo_oracle,
        collectors=collectors,
        session_scope=scope,
    )

    await runner.run()

    async with scope() as session:
        rows = await session.execute(select(DBRawPost.source_id, DBRawPost.source_quality))
        assert dict(rows.all()) == {"reddit-1": 10, "appstore_ios-2": 3}


def test_default_collectors_include_app_store():
    assert set(default_collectors(PipelineConfig())) == {
        "reddit",
        "hackernews",
        "lemmy",
        "stackexchange",
        "appstore",
    }
