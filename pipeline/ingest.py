from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime

from sqlalchemy.exc import OperationalError, StatementError

from config.settings import DEFAULT_SOURCE_WEIGHTS
from core.errors import TransientIngestWriteFailure
from core.models import RawPost
from core.scoring import source_quality
from data.database import SessionScope
from data.repositories import RawPostRepository, utcnow

log = logging.getLogger(__name__)


class Ingestor:
    """Persists normalised posts, absorbing duplicates by (source, source_id).

    Each post is stamped with its source-quality score from ``weights`` at
    insert time.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        clock: Callable[[], datetime] = utcnow,
        weights: Mapping[str, int] = DEFAULT_SOURCE_WEIGHTS,
    ) -> None:
        self._session_scope = session_scope
        self._clock = clock
        self._weights = weights

    async def ingest(self, records: Iterable[RawPost]) -> int:
        """Store each record once. Returns count of newly inserted rows.

        Every record gets its own transaction so a bad row cannot roll back
        the others. Store outages (OperationalError) are not caught.
        """
        new_count = 0
        seen = 0
        for record in records:
            seen += 1
            try:
                if await self._insert(record):
                    new_count += 1
            except TransientIngestWriteFailure as e:
                log.warning("Skipping post %s", e)
        log.info("Ingested %d records (%d new)", seen, new_count)
        return new_count

    async def _insert(self, record: RawPost) -> bool:
        try:
            async with self._session_scope() as session:
                return await RawPostRepository(session).insert_if_absent(
                    record,
                    collected_at=self._clock(),
                    quality=source_quality(record.source, record.metadata, self._weights),
                )
        except OperationalError:
            raise
        except StatementError as e:
            # Constraint violations, and values the driver cannot bind or
            # serialise (e.g. a datetime inside metadata).
            raise TransientIngestWriteFailure(
                record.source, record.source_id, str(e.orig or e)
            ) from e
