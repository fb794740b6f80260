"""NicheScore calculation.

NicheScore = sentiment*2 + frequency*3 + source_quality*2 + solvability*3,
every input on a 1-10 scale, clamped to [0, 100]. Frequency and
solvability carry the heavier weights.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from core.models import Source

SENTIMENT_WEIGHT = 2
FREQUENCY_WEIGHT = 3
SOURCE_QUALITY_WEIGHT = 2
SOLVABILITY_WEIGHT = 3

NEUTRAL_SOURCE_QUALITY = 5
DEFAULT_SUBREDDIT_TIER = "niche_subreddit"

# (upper bound on post count, score); anything above the last bound scores 10
_FREQUENCY_STEPS: tuple[tuple[int, int], ...] = (
    (1, 1),
    (3, 2),
    (6, 3),
    (10, 4),
    (15, 5),
    (25, 6),
    (40, 7),
    (60, 8),
    (80, 9),
)


def niche_score(
    sentiment: int, frequency: int, source_quality: int, solvability: int
) -> int:
    raw = (
        sentiment * SENTIMENT_WEIGHT
        + frequency * FREQUENCY_WEIGHT
        + source_quality * SOURCE_QUALITY_WEIGHT
        + solvability * SOLVABILITY_WEIGHT
    )
    return max(0, min(round(raw), 100))


def frequency_score(post_count: int) -> int:
    """Compress an unbounded post count into a 1-10 sub-score."""
    for upper, score in _FREQUENCY_STEPS:
        if post_count <= upper:
            return score
    return 10


def source_quality(
    source: str,
    metadata: Mapping[str, Any] | None,
    weights: Mapping[str, int],
) -> int:
    """Look up how much we trust a post's origin.

    Reddit posts are weighted by the tier of their subreddit rather than by
    platform; a missing or unknown tier falls back to the niche tier.
    """
    if source == Source.REDDIT:
        tier = (metadata or {}).get("tier") or DEFAULT_SUBREDDIT_TIER
        return weights.get(tier, weights.get(DEFAULT_SUBREDDIT_TIER, NEUTRAL_SOURCE_QUALITY))
    return weights.get(source, NEUTRAL_SOURCE_QUALITY)


def subreddit_tier(
    subreddit: str, idea: Iterable[str], general: Iterable[str]
) -> str:
    if subreddit in set(idea):
        return "idea_subreddit"
    if subreddit in set(general):
        return "general_subreddit"
    return DEFAULT_SUBREDDIT_TIER


def solvability_score(solvable: int, total: int) -> int:
    """Share of app-solvable posts, scaled to 0-10."""
    if total <= 0:
        return 0
    return round(solvable / total * 10)
