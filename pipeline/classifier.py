"""Classification batcher.

Reads pending posts oldest-first, sends them to the oracle in batches and
saves one classification per post. A batch that fails as a whole (oracle
error, timeout, unparseable reply) is quarantined so the backlog always
drains, at the cost of never retrying it automatically.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from sqlalchemy.exc import IntegrityError

from config.settings import PipelineConfig
from core.errors import OracleError, OracleTimeout, OracleUnavailable
from core.models import ClassifyResult, JudgmentRecord
from data.database import SessionScope
from data.repositories import ClassificationRepository, RawPostRepository
from data.schema import DBRawPost
from pipeline.oracle import Oracle, build_prompt
from pipeline.parser import match_judgments, parse_oracle_output

log = logging.getLogger(__name__)


class Classifier:
    def __init__(
        self,
        oracle: Oracle,
        config: PipelineConfig,
        session_scope: SessionScope,
    ) -> None:
        self._oracle = oracle
        self._config = config
        self._session_scope = session_scope

    async def next_batch(
        self, size: int | None = None, exclude: Iterable[int] = ()
    ) -> list[DBRawPost]:
        async with self._session_scope() as session:
            return await RawPostRepository(session).pending(
                size or self._config.batch_size, exclude=exclude
            )

    async def classify(self) -> ClassifyResult:
        """Drain the backlog one batch at a time."""
        log.info("Starting classification (batch size %d)", self._config.batch_size)
        result = ClassifyResult()
        # Posts already handed to the oracle this run. Excluding them keeps
        # the loop finite even when a write for one of them fails.
        attempted: set[int] = set()

        while True:
            batch = await self.next_batch(exclude=attempted)
            if not batch:
                break
            attempted.update(p.id for p in batch)
            result.batches += 1

            try:
                judgments = await self._judge(batch)
            except OracleError as e:
                log.error("Batch of %d failed: %s", len(batch), e)
                quarantined = await self._quarantine(batch)
                result.quarantined += quarantined
                log.info("Quarantined %d/%d posts, continuing", quarantined, len(batch))
                continue

            saved, quarantined, dropped = await self._save(batch, judgments)
            result.classified += saved
            result.quarantined += quarantined
            result.dropped += dropped
            log.info("Batch done: %d/%d classified", saved, len(batch))

        log.info(
            "Classification done: %d classified, %d quarantined in %d batches",
            result.classified,
            result.quarantined,
            result.batches,
        )
        return result

    async def _judge(self, batch: list[DBRawPost]) -> list[JudgmentRecord]:
        prompt = build_prompt([p.content for p in batch], self._config.excerpt_length)
        timeout = self._config.oracle_timeout_seconds
        try:
            raw = await asyncio.wait_for(self._oracle(prompt), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OracleTimeout(f"no oracle reply within {timeout:.0f}s") from e
        except OracleError:
            raise
        except Exception as e:
            raise OracleUnavailable(f"oracle call failed: {e}", e) from e
        return parse_oracle_output(raw)

    async def _save(
        self, batch: list[DBRawPost], judgments: list[JudgmentRecord]
    ) -> tuple[int, int, int]:
        pairs, mismatches = match_judgments(batch, judgments)
        for mismatch in mismatches:
            log.warning("Dropping judgment: %s", mismatch)

        saved = 0
        for post, judgment in pairs:
            try:
                async with self._session_scope() as session:
                    await ClassificationRepository(session).add(post.id, judgment)
                saved += 1
            except IntegrityError:
                log.warning("Post %s (%s) already classified, skipping", post.id, post.source_id)

        # The oracle skipped these entirely; left pending they would come back
        # in every future batch.
        judged = {post.id for post, _ in pairs}
        skipped = [p for p in batch if p.id not in judged]
        quarantined = await self._quarantine(skipped) if skipped else 0
        if skipped:
            log.warning("Oracle returned no judgment for %d posts, quarantined %d", len(skipped), quarantined)
        return saved, quarantined, len(mismatches)

    async def _quarantine(self, posts: list[DBRawPost]) -> int:
        """Mark each post unclassifiable, independently of the others."""
        count = 0
        for post in posts:
            try:
                async with self._session_scope() as session:
                    await ClassificationRepository(session).quarantine(post.id)
                count += 1
            except IntegrityError:
                log.debug("Post %s classified elsewhere, not quarantined", post.source_id)
        return count
