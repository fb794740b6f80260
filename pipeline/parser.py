from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import TypeVar

from pydantic import ValidationError

from core.errors import MalformedOutput, PartialJudgmentMismatch
from core.models import JudgmentRecord

log = logging.getLogger(__name__)

T = TypeVar("T")

# Handles ```\n[...]\n``` and any language tag, e.g. ```json or ```JSON5
_FENCE_RE = re.compile(r"```[\w-]*\s*([\s\S]*?)\s*```")


def _strip_wrapping(raw_text: str) -> str:
    text = raw_text.strip()
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    if text[:1] in ("[", "{"):
        return text
    # Prose around an unfenced array: keep the outermost brackets.
    start, end = text.find("["), text.rfind("]")
    if 0 <= start < end:
        return text[start : end + 1]
    return text


def parse_oracle_output(raw_text: str) -> list[JudgmentRecord]:
    """Parse the oracle's reply into judgments.

    Raises MalformedOutput if no JSON array can be read. Elements that do not
    fit the judgment shape are logged and dropped.
    """
    text = _strip_wrapping(raw_text or "")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedOutput(
            f"Invalid JSON in oracle output: {e}. Raw text: {raw_text[:200]}..."
        ) from e
    if not isinstance(data, list):
        raise MalformedOutput(
            f"Expected a JSON array, got {type(data).__name__}. Raw text: {raw_text[:200]}..."
        )

    judgments: list[JudgmentRecord] = []
    for position, item in enumerate(data, 1):
        try:
            judgments.append(JudgmentRecord.model_validate(item))
        except ValidationError as e:
            error_summary = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            log.warning("Dropping judgment #%d: %s", position, error_summary)
    return judgments


def match_judgments(
    batch: Sequence[T], judgments: Sequence[JudgmentRecord]
) -> tuple[list[tuple[T, JudgmentRecord]], list[PartialJudgmentMismatch]]:
    """Pair each judgment with batch[index - 1].

    Out-of-range indexes, and repeats of an index already matched, come back
    as mismatches instead of pairs.
    """
    pairs: list[tuple[T, JudgmentRecord]] = []
    mismatches: list[PartialJudgmentMismatch] = []
    used: set[int] = set()
    for judgment in judgments:
        if judgment.index > len(batch) or judgment.index in used:
            mismatches.append(PartialJudgmentMismatch(judgment.index, len(batch)))
            continue
        used.add(judgment.index)
        pairs.append((batch[judgment.index - 1], judgment))
    return pairs, mismatches
