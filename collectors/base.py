from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import httpx

from core.models import CollectResult, RawPost

log = logging.getLogger(__name__)

USER_AGENT = "NicheScore/1.0 (market research; problem discovery)"


class BaseCollector(ABC):
    """Fetches one source, target by target, into normalised RawPosts.

    A failing target (subreddit, keyword, site...) is logged and recorded in
    the result's errors; the remaining targets still run.
    """

    source_name: str

    def __init__(
        self,
        *,
        delay_seconds: float = 2.0,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._limiter = RateLimiter(delay_seconds)
        self._timeout = timeout
        self._client = client
        self._stopped = False

    @abstractmethod
    def targets(self) -> Sequence[Any]:
        """Units of work for one collection cycle."""

    @abstractmethod
    async def fetch(self, client: httpx.AsyncClient, target: Any) -> list[RawPost]:
        """Fetch and normalise a single target."""

    def stop_early(self, reason: str) -> None:
        log.info("%s: stopping collection early (%s)", self.source_name, reason)
        self._stopped = True

    async def collect(self) -> CollectResult:
        items: list[RawPost] = []
        errors: list[str] = []
        t0 = time.monotonic()
        self._stopped = False

        async with self._client_scope() as client:
            for target in self.targets():
                if self._stopped:
                    break
                await self._limiter.wait()
                try:
                    new_items = await self.fetch(client, target)
                    items.extend(new_items)
                    log.info("%s/%s: %d posts fetched", self.source_name, target, len(new_items))
                except Exception as exc:
                    msg = f"{self.source_name}/{target}: {exc}"
                    log.warning("Collect error: %s", msg)
                    errors.append(msg)

        return CollectResult(
            source=self.source_name,
            items=items,
            errors=errors,
            duration_seconds=time.monotonic() - t0,
        )

    @asynccontextmanager
    async def _client_scope(self) -> AsyncGenerator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            timeout=self._timeout,
        ) as client:
            yield client


class RateLimiter:
    """Simple token-bucket style rate limiter."""

    def __init__(self, delay_seconds: float = 2.0) -> None:
        self._delay = delay_seconds
        self._lock = asyncio.Lock()
        self._last_request: float = 0.0

    async def wait(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            elapsed = loop.time() - self._last_request
            if elapsed < self._delay:
                await asyncio.sleep(self._delay - elapsed)
            self._last_request = loop.time()
