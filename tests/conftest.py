from __future__ import annotations

import json
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from config.settings import PipelineConfig
from core.models import RawPost
from data.database import build_engine, init_db, session_scope

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

_NUMBERED_RE = re.compile(r'^(\d+)\. "', re.MULTILINE)


class FakeOracle:
    """Scripted oracle: calls ``respond(prompt, n_posts)`` and records prompts."""

    def __init__(self, respond) -> None:
        self._respond = respond
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        n_posts = len(_NUMBERED_RE.findall(prompt))
        result = self._respond(prompt, n_posts)
        if hasattr(result, "__await__"):
            result = await result
        return result


def judgments(*items: dict) -> str:
    return json.dumps(list(items))


def judgment(index: int, category: str = "gardening", sentiment: int = 5, solvable: bool = True, summary: str | None = None) -> dict:
    return {
        "index": index,
        "category": category,
        "subcategory": "general",
        "sentiment_score": sentiment,
        "is_app_solvable": solvable,
        "summary": summary or f"Problem number {index}",
    }


@pytest.fixture
async def engine():
    eng = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def scope(engine):
    return session_scope(engine)


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(batch_size=50, oracle_timeout_seconds=5.0)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_post():
    def _make(i: int, source: str = "reddit", content: str | None = None, **metadata) -> RawPost:
        return RawPost(
            source=source,
            source_id=f"{source}-{i}",
            author=f"user{i}",
            content=content or f"I wish there was an app for problem {i}",
            url=f"https://example.com/{source}/{i}",
            posted_at=NOW,
            metadata=metadata,
        )

    return _make


@pytest.fixture
def echo_oracle():
    """Oracle that judges every numbered post as a solvable gardening problem."""
    return FakeOracle(
        lambda prompt, n: judgments(*(judgment(i, sentiment=6) for i in range(1, n + 1)))
    )


@pytest.fixture
def unreachable_scope():
    """Session scope whose store is down: every session fails to open."""

    @asynccontextmanager
    async def _scope():
        raise OperationalError("BEGIN", {}, Exception("unable to open database file"))
        yield

    return _scope
