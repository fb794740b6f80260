from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Source(str, Enum):
    """Origin platforms a RawPost can come from."""

    REDDIT = "reddit"
    HACKERNEWS = "hackernews"
    LEMMY = "lemmy"
    STACKEXCHANGE = "stackexchange"
    PRODUCTHUNT = "producthunt"
    APPSTORE_IOS = "appstore_ios"
    APPSTORE_GOOGLE = "appstore_google"
    X = "x"
    TIKTOK = "tiktok"


@dataclass
class RawPost:
    """A single piece of user text normalised from any source."""

    source: str  # Source value, e.g. "reddit"
    source_id: str  # unique id within that source
    author: str
    content: str
    url: str
    posted_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# Sentinel classification written for posts the oracle could not judge.
QUARANTINE_CATEGORY = "unclassified"
QUARANTINE_SUBCATEGORY = "parse_error"
QUARANTINE_SENTIMENT = 1
QUARANTINE_SUMMARY = "Classifier could not parse this post"


class JudgmentRecord(BaseModel):
    """One oracle judgment, referencing its post by 1-based batch position."""

    index: int = Field(ge=1)
    category: str = Field(min_length=1)
    subcategory: str = ""
    sentiment_score: int = Field(ge=1, le=10)
    is_app_solvable: bool
    summary: str = ""

    @field_validator("category", "subcategory")
    @classmethod
    def _lowercase(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("summary")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


@dataclass
class CategoryRollup:
    """Solvable posts of one category over some window."""

    category: str
    post_count: int
    avg_sentiment: float
    platforms: list[str]
    top_example: str
    solvable_count: int = 0
    avg_source_quality: float = 0.0


@dataclass
class CollectResult:
    """Outcome of a single collector run."""

    source: str
    items: list[RawPost]
    errors: list[str]
    duration_seconds: float


@dataclass
class ClassifyResult:
    """Counts from one classifier drain loop."""

    batches: int = 0
    classified: int = 0
    quarantined: int = 0
    dropped: int = 0


@dataclass
class PipelineResult:
    """What a full pipeline run reports, even on partial failure."""

    collected: int = 0
    classified: int = 0
    quarantined: int = 0
    trends: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
