"""Pipeline error taxonomy.

Each error is contained at the smallest granularity it affects. Only a
store outage (SQLAlchemy ``OperationalError``) escapes a pipeline run.

Duplicate records have no class here: the ``ON CONFLICT DO NOTHING``
insert absorbs them.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for contained pipeline failures."""


class TransientIngestWriteFailure(PipelineError):
    """A single record could not be written during ingestion."""

    def __init__(self, source: str, source_id: str, reason: str) -> None:
        super().__init__(f"{source}/{source_id}: {reason}")
        self.source = source
        self.source_id = source_id


class OracleError(PipelineError):
    """Whole-batch failure of the classification oracle."""


class OracleUnavailable(OracleError):
    """The oracle could not be reached or returned an error."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class OracleTimeout(OracleError):
    """The oracle did not answer within the configured timeout."""


class MalformedOutput(OracleError):
    """The oracle answered, but not with a parseable JSON array."""


class PartialJudgmentMismatch(PipelineError):
    """One judgment references a post that is not in the batch."""

    def __init__(self, index: int, batch_size: int) -> None:
        super().__init__(f"judgment index {index} matches no post in batch of {batch_size}")
        self.index = index
        self.batch_size = batch_size


class AggregationWriteFailure(PipelineError):
    """A single category snapshot could not be written."""

    def __init__(self, category: str, reason: str) -> None:
        super().__init__(f"{category}: {reason}")
        self.category = category
