"""Tests for the classification batcher and quarantine path."""

import asyncio
import json
import math
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from config.settings import PipelineConfig
from conftest import NOW, FakeOracle, judgment, judgments
from core.errors import OracleUnavailable
from core.models import QUARANTINE_CATEGORY, QUARANTINE_SUBCATEGORY, QUARANTINE_SUMMARY, JudgmentRecord
from data.repositories import ClassificationRepository
from data.schema import DBClassification
from pipeline.classifier import Classifier
from pipeline.ingest import Ingestor


def _ticking_clock():
    """Distinct, increasing collection times."""
    ticks = iter(range(10_000))
    return lambda: NOW + timedelta(seconds=next(ticks))


async def _seed(scope, make_post, n: int, clock=None) -> None:
    await Ingestor(scope, clock=clock or _ticking_clock()).ingest(
        [make_post(i) for i in range(1, n + 1)]
    )


async def _classifications(scope) -> list[DBClassification]:
    async with scope() as session:
        rows = await session.execute(select(DBClassification).order_by(DBClassification.raw_post_id))
        return list(rows.scalars().all())


async def test_next_batch_is_oldest_first(scope, make_post, config, echo_oracle):
    clock_values = iter([NOW + timedelta(minutes=m) for m in (5, 1, 3)])
    await Ingestor(scope, clock=lambda: next(clock_values)).ingest(
        [make_post(1), make_post(2), make_post(3)]
    )
    classifier = Classifier(echo_oracle, config, scope)

    batch = await classifier.next_batch(2)

    assert [p.source_id for p in batch] == ["reddit-2", "reddit-3"]


async def test_next_batch_breaks_time_ties_by_insert_order(scope, make_post, config, echo_oracle, clock):
    await _seed(scope, make_post, 4, clock=clock)
    batch = await Classifier(echo_oracle, config, scope).next_batch(10)
    assert [p.source_id for p in batch] == ["reddit-1", "reddit-2", "reddit-3", "reddit-4"]


async def test_classify_drains_backlog(scope, make_post, echo_oracle):
    await _seed(scope, make_post, 120)
    classifier = Classifier(echo_oracle, PipelineConfig(batch_size=50), scope)

    result = await classifier.classify()

    assert result.batches == math.ceil(120 / 50)
    assert len(echo_oracle.prompts) == 3
    assert result.classified == 120
    assert result.quarantined == 0
    assert await classifier.next_batch(50) == []


async def test_batches_are_sent_in_collection_order(scope, make_post, echo_oracle):
    await _seed(scope, make_post, 5)
    await Classifier(echo_oracle, PipelineConfig(batch_size=2), scope).classify()

    first, second, third = echo_oracle.prompts
    assert "problem 1" in first and "problem 2" in first
    assert "problem 3" in second and "problem 4" in second
    assert "problem 5" in third


async def test_classify_persists_judgment_fields(scope, make_post, config):
    await _seed(scope, make_post, 1)
    oracle = FakeOracle(
        lambda prompt, n: judgments(
            {
                "index": 1,
                "category": "Property Management",
                "subcategory": "Tenant Screening",
                "sentiment_score": 9,
                "is_app_solvable": True,
                "summary": "Landlord cannot screen tenants quickly.",
            }
        )
    )

    await Classifier(oracle, config, scope).classify()

    (row,) = await _classifications(scope)
    assert row.category == "property management"
    assert row.subcategory == "tenant screening"
    assert row.sentiment_score == 9
    assert row.is_app_solvable is True
    assert row.is_quarantined is False
    assert row.summary == "Landlord cannot screen tenants quickly."


async def test_repeated_runs_classify_each_post_at_most_once(scope, make_post, config, echo_oracle):
    await _seed(scope, make_post, 10)
    classifier = Classifier(echo_oracle, config, scope)

    await classifier.classify()
    await _seed(scope, make_post, 15)
    second = await classifier.classify()

    assert second.classified == 5
    async with scope() as session:
        per_post = await session.execute(
            select(DBClassification.raw_post_id, func.count())
            .group_by(DBClassification.raw_post_id)
        )
        counts = [c for _, c in per_post.all()]
    assert len(counts) == 15
    assert set(counts) == {1}


async def test_oracle_timeout_quarantines_whole_batch(scope, make_post):
    await _seed(scope, make_post, 50)

    async def never_answers(prompt, n):
        await asyncio.sleep(10)
        return "[]"

    classifier = Classifier(
        FakeOracle(never_answers),
        PipelineConfig(batch_size=50, oracle_timeout_seconds=0.05),
        scope,
    )

    result = await classifier.classify()

    assert result.quarantined == 50
    assert result.classified == 0
    rows = await _classifications(scope)
    assert len(rows) == 50
    for row in rows:
        assert row.category == QUARANTINE_CATEGORY
        assert row.subcategory == QUARANTINE_SUBCATEGORY
        assert row.sentiment_score == 1
        assert row.is_app_solvable is False
        assert row.is_quarantined is True
        assert row.summary == QUARANTINE_SUMMARY
    assert await classifier.next_batch(50) == []


async def test_oracle_error_quarantines_and_continues(scope, make_post):
    await _seed(scope, make_post, 4)
    calls = {"n": 0}

    def flaky(prompt, n):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OracleUnavailable("503 from provider")
        return judgments(*(judgment(i) for i in range(1, n + 1)))

    result = await Classifier(FakeOracle(flaky), PipelineConfig(batch_size=2), scope).classify()

    assert result.batches == 2
    assert result.quarantined == 2
    assert result.classified == 2
    rows = await _classifications(scope)
    assert [r.is_quarantined for r in rows] == [True, True, False, False]


async def test_unexpected_oracle_exception_is_contained(scope, make_post, config):
    await _seed(scope, make_post, 3)

    def broken(prompt, n):
        raise ConnectionResetError("socket closed")

    result = await Classifier(FakeOracle(broken), config, scope).classify()
    assert result.quarantined == 3


async def test_malformed_output_quarantines_batch(scope, make_post, config):
    await _seed(scope, make_post, 3)
    oracle = FakeOracle(lambda prompt, n: "Sorry, I can't help with that.")

    result = await Classifier(oracle, config, scope).classify()

    assert result.quarantined == 3
    assert all(r.is_quarantined for r in await _classifications(scope))


async def test_out_of_range_judgment_is_dropped(scope, make_post, config):
    await _seed(scope, make_post, 2)
    oracle = FakeOracle(
        lambda prompt, n: "```json\n"
        + json.dumps([judgment(1, sentiment=4), judgment(2, sentiment=6), judgment(3, sentiment=9)])
        + "\n```"
    )

    result = await Classifier(oracle, config, scope).classify()

    assert result.classified == 2
    assert result.dropped == 1
    assert result.quarantined == 0
    rows = await _classifications(scope)
    assert [r.sentiment_score for r in rows] == [4, 6]


async def test_post_the_oracle_skipped_is_quarantined(scope, make_post, config):
    await _seed(scope, make_post, 3)
    oracle = FakeOracle(lambda prompt, n: judgments(judgment(1), judgment(3)))

    result = await Classifier(oracle, config, scope).classify()

    assert result.classified == 2
    assert result.quarantined == 1
    rows = await _classifications(scope)
    assert [r.is_quarantined for r in rows] == [False, True, False]
    assert len(oracle.prompts) == 1


async def test_already_classified_post_is_skipped_not_duplicated(scope, make_post, config, echo_oracle):
    await _seed(scope, make_post, 3)
    classifier = Classifier(echo_oracle, config, scope)
    batch = await classifier.next_batch()

    # Another run classifies post 2 between selection and persistence.
    async with scope() as session:
        await ClassificationRepository(session).add(
            batch[1].id,
            JudgmentRecord(index=1, category="other", sentiment_score=3, is_app_solvable=False),
        )

    saved, quarantined, dropped = await classifier._save(
        batch, [JudgmentRecord(**judgment(i)) for i in (1, 2, 3)]
    )
    assert (saved, quarantined, dropped) == (2, 0, 0)
    assert len(await _classifications(scope)) == 3

    assert await classifier._quarantine(batch) == 0


async def test_empty_backlog_never_calls_oracle(scope, config, echo_oracle):
    result = await Classifier(echo_oracle, config, scope).classify()
    assert result.batches == 0
    assert echo_oracle.prompts == []


async def test_store_outage_propagates_from_classify(unreachable_scope, config, echo_oracle):
    with pytest.raises(OperationalError):
        await Classifier(echo_oracle, config, unreachable_scope).classify()
    assert echo_oracle.prompts == []
