"""Reddit collector using httpx (public JSON listings)."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import httpx

from collectors.base import BaseCollector
from config.settings import PipelineConfig, Settings, settings, split_list
from core.models import RawPost, Source
from core.scoring import subreddit_tier


def normalize_reddit_post(
    post: dict[str, Any],
    idea_subreddits: Iterable[str] = (),
    general_subreddits: Iterable[str] = (),
) -> RawPost:
    title = post.get("title", "")
    selftext = post.get("selftext") or ""
    content = f"{title}\n\n{selftext}" if selftext else title
    subreddit = post.get("subreddit", "")
    created = post.get("created_utc")
    return RawPost(
        source=Source.REDDIT.value,
        source_id=str(post.get("id", "")),
        author=post.get("author") or "[deleted]",
        content=content,
        url=f"https://www.reddit.com{post.get('permalink', '')}",
        posted_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        metadata={
            "subreddit": subreddit,
            "score": post.get("score", 0),
            "num_comments": post.get("num_comments", 0),
            "tier": subreddit_tier(subreddit, idea_subreddits, general_subreddits),
        },
    )


class RedditCollector(BaseCollector):
    source_name = Source.REDDIT.value

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
        self._config = config
        self._subreddits = split_list(s.REDDIT_SUBREDDITS)
        self._limit = s.REDDIT_LIMIT

    def targets(self) -> tuple[str, ...]:
        return self._subreddits

    async def fetch(self, client: httpx.AsyncClient, target: str) -> list[RawPost]:
        resp = await client.get(
            f"https://www.reddit.com/r/{target}/new.json",
            params={"limit": self._limit, "raw_json": 1},
        )
        resp.raise_for_status()
        data = resp.json()

        items: list[RawPost] = []
        for child in data.get("data", {}).get("children", []):
            post = child.get("data", {})
            if not post.get("title") or not post.get("id"):
                continue
            items.append(
                normalize_reddit_post(
                    post,
                    self._config.idea_subreddits,
                    self._config.general_subreddits,
                )
            )
        return items
