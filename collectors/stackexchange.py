"""Stack Exchange collector.

Searches niche Q&A sites for frustration keywords. Without an API key the
quota is 300 requests a day, so collection stops once the API reports fewer
than ``MIN_QUOTA`` requests left.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, NamedTuple

import httpx

from collectors.base import BaseCollector
from config.settings import PipelineConfig, Settings, settings, split_list
from core.models import RawPost, Source

MIN_QUOTA = 10
KEYWORDS_PER_SITE = 3


class SiteSearch(NamedTuple):
    site: str
    keyword: str

    def __str__(self) -> str:
        return f'{self.site}/"{self.keyword}"'


def normalize_stackexchange_question(item: dict[str, Any], site: str) -> RawPost:
    title = item.get("title") or ""
    body = item.get("body") or item.get("excerpt") or ""
    owner = item.get("owner") or {}
    created = item.get("creation_date")
    question_id = item.get("question_id")
    return RawPost(
        source=Source.STACKEXCHANGE.value,
        source_id=f"se_{site}_{question_id}",
        author=owner.get("display_name") or "anonymous",
        content=f"{title}\n\n{body}" if body else title,
        url=item.get("link") or f"https://{site}.stackexchange.com/questions/{question_id}",
        posted_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        metadata={
            "site": site,
            "tags": item.get("tags") or [],
            "score": item.get("score") or 0,
        },
    )


class StackExchangeCollector(BaseCollector):
    source_name = Source.STACKEXCHANGE.value

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
        self._base_url = s.STACKEXCHANGE_BASE_URL.rstrip("/")
        self._sites = split_list(s.STACKEXCHANGE_SITES)
        self._keywords = config.keywords[:KEYWORDS_PER_SITE]
        self._api_key = s.STACKEXCHANGE_API_KEY
        self._page_size = s.STACKEXCHANGE_PAGE_SIZE

    def targets(self) -> list[SiteSearch]:
        return [SiteSearch(site, kw) for site in self._sites for kw in self._keywords]

    def search_params(self, target: SiteSearch) -> dict[str, Any]:
        params: dict[str, Any] = {
            "order": "desc",
            "sort": "creation",
            "q": target.keyword,
            "site": target.site,
            "pagesize": self._page_size,
        }
        if self._api_key:
            params["key"] = self._api_key
        return params

    async def fetch(self, client: httpx.AsyncClient, target: SiteSearch) -> list[RawPost]:
        resp = await client.get(
            f"{self._base_url}/search/excerpts", params=self.search_params(target)
        )
        resp.raise_for_status()
        data = resp.json()
        quota = data.get("quota_remaining")
        if quota is not None and quota < MIN_QUOTA:
            self.stop_early(f"quota low ({quota})")
        return [
            normalize_stackexchange_question(q, target.site)
            for q in data.get("items", [])
            if q.get("question_id")
        ]
