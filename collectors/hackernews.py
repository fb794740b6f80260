"""Hacker News collector using the Algolia search API (no auth)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx

from collectors.base import BaseCollector
from config.settings import PipelineConfig, Settings, settings
from core.models import RawPost, Source


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def normalize_hn_item(item: dict[str, Any]) -> RawPost:
    content = item.get("comment_text") or item.get("story_text") or item.get("title") or ""
    object_id = str(item.get("objectID", ""))
    return RawPost(
        source=Source.HACKERNEWS.value,
        source_id=object_id,
        author=item.get("author") or "anonymous",
        content=content,
        url=f"https://news.ycombinator.com/item?id={object_id}",
        posted_at=_parse_iso(item.get("created_at")),
        metadata={
            "type": "comment" if item.get("comment_text") else "story",
            "story_title": item.get("story_title") or item.get("title"),
        },
    )


class HackerNewsCollector(BaseCollector):
    source_name = Source.HACKERNEWS.value

    def __init__(
        self,
        config: PipelineConfig,
        s: Settings = settings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            delay_seconds=s.SCRAPE_REQUEST_DELAY,
            timeout=s.SCRAPE_TIMEOUT_SECONDS,
            client=client,
        )
        self._keywords = config.keywords
        self._base_url = s.HACKERNEWS_BASE_URL.rstrip("/")
        self._per_keyword = s.HACKERNEWS_RESULTS_PER_KEYWORD

    def targets(self) -> tuple[str, ...]:
        return self._keywords

    def search_params(self, keyword: str) -> dict[str, Any]:
        return {
            "query": keyword,
            "tags": "(story,comment)",
            "hitsPerPage": self._per_keyword,
        }

    async def fetch(self, client: httpx.AsyncClient, target: str) -> list[RawPost]:
        resp = await client.get(
            f"{self._base_url}/search_by_date", params=self.search_params(target)
        )
        resp.raise_for_status()
        hits = resp.json().get("hits", [])
        return [normalize_hn_item(h) for h in hits if h.get("objectID")]
