"""App Store collector: low-star iOS reviews from the iTunes customer-reviews feed.

Unhappy reviewers tend to spell out what is broken and what they wish the
app did, so only reviews at or below ``APPSTORE_MAX_RATING`` are kept.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx

from collectors.base import BaseCollector
from config.settings import Settings, settings, split_list
from core.models import RawPost, Source


def _label(entry: dict[str, Any], key: str) -> str:
    value = entry.get(key) or {}
    return str(value.get("label") or "") if isinstance(value, dict) else ""


def review_rating(entry: dict[str, Any]) -> int | None:
    rating = _label(entry, "im:rating")
    return int(rating) if rating.isdigit() else None


def normalize_appstore_review(entry: dict[str, Any], app_id: str) -> RawPost:
    title = _label(entry, "title")
    body = _label(entry, "content")
    updated = _label(entry, "updated")
    author = (entry.get("author") or {}).get("name") or {}
    link = ((entry.get("link") or {}).get("attributes") or {}).get("href")
    return RawPost(
        source=Source.APPSTORE_IOS.value,
        source_id=_label(entry, "id"),
        author=author.get("label") or "anonymous",
        content=f"{title}\n\n{body}" if title and body else (body or title),
        url=link or f"https://apps.apple.com/app/id{app_id}",
        posted_at=datetime.fromisoformat(updated) if updated else None,
        metadata={
            "app_id": app_id,
            "star_rating": review_rating(entry),
        },
    )


class AppStoreCollector(BaseCollector):
    source_name = "appstore"

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
        self._app_ids = split_list(s.APPSTORE_IOS_APP_IDS)
        self._country = s.APPSTORE_COUNTRY
        self._max_rating = s.APPSTORE_MAX_RATING

    def targets(self) -> tuple[str, ...]:
        return self._app_ids

    def feed_url(self, app_id: str) -> str:
        return (
            f"https://itunes.apple.com/{self._country}/rss/customerreviews"
            f"/page=1/id={app_id}/sortby=mostrecent/json"
        )

    async def fetch(self, client: httpx.AsyncClient, target: str) -> list[RawPost]:
        resp = await client.get(self.feed_url(target))
        resp.raise_for_status()
        entries = resp.json().get("feed", {}).get("entry") or []
        # A feed with a single review returns it as an object, not a list
        if isinstance(entries, dict):
            entries = [entries]

        items: list[RawPost] = []
        for entry in entries:
            rating = review_rating(entry)
            # The app's own metadata entry carries no rating
            if rating is None or rating > self._max_rating or not _label(entry, "id"):
                continue
            items.append(normalize_appstore_review(entry, target))
        return items
