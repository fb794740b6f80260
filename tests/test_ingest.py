"""Tests for idempotent ingestion."""

from dataclasses import replace
from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from data.repositories import RawPostRepository
from data.schema import DBRawPost
from pipeline.ingest import Ingestor


async def _count(scope) -> int:
    async with scope() as session:
        return await RawPostRepository(session).count()


async def test_ingest_stores_new_records(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    posts = [make_post(i) for i in range(3)]

    assert await ingestor.ingest(posts) == 3
    assert await _count(scope) == 3


async def test_ingest_twice_is_idempotent(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    posts = [make_post(i) for i in range(5)]

    await ingestor.ingest(posts)
    assert await ingestor.ingest(posts) == 0
    assert await _count(scope) == 5


async def test_overlapping_windows_only_store_new(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    await ingestor.ingest([make_post(i) for i in range(0, 10)])

    assert await ingestor.ingest([make_post(i) for i in range(5, 15)]) == 5
    assert await _count(scope) == 15


async def test_same_native_id_on_different_sources_are_distinct(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    post = make_post(1, source="reddit")
    twin = replace(make_post(1, source="lemmy"), source_id=post.source_id)

    assert await ingestor.ingest([post, twin]) == 2


async def test_duplicate_is_never_mutated(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    original = make_post(1, content="original text")
    await ingestor.ingest([original])
    await ingestor.ingest([replace(original, content="edited text")])

    async with scope() as session:
        rows = (await session.execute(select(DBRawPost))).scalars().all()
    assert [r.content for r in rows] == ["original text"]


async def test_bad_record_does_not_abort_batch(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    broken = replace(make_post(2), source_id=None)

    stored = await ingestor.ingest([make_post(1), broken, make_post(3)])

    assert stored == 2
    assert await _count(scope) == 2


async def test_metadata_and_defaults_round_trip(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    post = replace(make_post(1, tier="idea_subreddit", score=42), author="", posted_at=None)
    await ingestor.ingest([post])

    async with scope() as session:
        row = (await session.execute(select(DBRawPost))).scalar_one()
    assert row.metadata_ == {"tier": "idea_subreddit", "score": 42}
    assert row.author == "anonymous"
    assert row.posted_at is None
    assert row.collected_at is not None


async def test_unserialisable_metadata_skips_only_that_record(scope, make_post, clock):
    ingestor = Ingestor(scope, clock=clock)
    bad = replace(make_post(2), metadata={"edited": datetime(2026, 1, 1)})

    stored = await ingestor.ingest([make_post(1), bad, make_post(3)])

    assert stored == 2
    async with scope() as session:
        ids = (await session.execute(select(DBRawPost.source_id))).scalars().all()
    assert sorted(ids) == ["reddit-1", "reddit-3"]


async def test_store_outage_propagates(unreachable_scope, make_post):
    with pytest.raises(OperationalError):
        await Ingestor(unreachable_scope).ingest([make_post(1)])


async def test_posts_are_stamped_with_source_quality(scope, make_post, clock):
    weights = {"idea_subreddit": 8, "general_subreddit": 5, "niche_subreddit": 9, "x": 4}
    ingestor = Ingestor(scope, clock=clock, weights=weights)
    await ingestor.ingest(
        [
            make_post(1, tier="idea_subreddit"),
            make_post(2),
            make_post(3, source="x"),
            make_post(4, source="lemmy"),
        ]
    )

    async with scope() as session:
        rows = await session.execute(
            select(DBRawPost.source_id, DBRawPost.source_quality).order_by(DBRawPost.id)
        )
        assert dict(rows.all()) == {"reddit-1": 8, "reddit-2": 9, "x-3": 4, "lemmy-4": 5}
