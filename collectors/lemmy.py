"""Lemmy collector (federated Reddit alternative, read API needs no auth)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx

from collectors.base import BaseCollector
from config.settings import Settings, settings, split_list
from core.models import RawPost, Source


def normalize_lemmy_post(view: dict[str, Any], instance: str) -> RawPost:
    post = view.get("post", {})
    creator = view.get("creator", {})
    community = view.get("community", {})
    title = post.get("name") or ""
    body = post.get("body") or ""
    published = post.get("published")
    counts = view.get("counts")
    return RawPost(
        source=Source.LEMMY.value,
        source_id=f"lemmy_{post.get('id')}",
        author=creator.get("name") or "anonymous",
        content=f"{title}\n\n{body}" if body else title,
        url=post.get("ap_id") or f"{instance.rstrip('/')}/post/{post.get('id')}",
        posted_at=datetime.fromisoformat(published.replace("Z", "+00:00")) if published else None,
        metadata={
            "community": community.get("name"),
            "score": counts.get("score") if counts else None,
        },
    )


class LemmyCollector(BaseCollector):
    source_name = Source.LEMMY.value

    def __init__(
        self,
        s: Settings = settings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            delay_seconds=s.SCRAPE_REQUEST_DELAY,
            timeout=s.SCRAPE_TIMEOUT_SECONDS,
            client=client,
        )
        self._instance = s.LEMMY_INSTANCE.rstrip("/")
        self._communities = split_list(s.LEMMY_COMMUNITIES)
        self._limit = s.LEMMY_LIMIT

    def targets(self) -> tuple[str, ...]:
        return self._communities

    async def fetch(self, client: httpx.AsyncClient, target: str) -> list[RawPost]:
        resp = await client.get(
            f"{self._instance}/api/v3/post/list",
            params={"community_name": target, "sort": "New", "limit": self._limit},
        )
        resp.raise_for_status()
        views = resp.json().get("posts", [])
        return [normalize_lemmy_post(v, self._instance) for v in views if v.get("post")]
