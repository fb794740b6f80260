"""Classification oracle boundary.

The oracle is any async callable that turns a rendered prompt into raw text.
``OpenAIOracle`` is the production implementation; tests pass a plain
coroutine function. Provider errors never escape this module: they are
wrapped in ``OracleUnavailable``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from textwrap import dedent
from typing import Protocol

import openai

from core.errors import OracleTimeout, OracleUnavailable
from core.text import excerpt

log = logging.getLogger(__name__)

CLASSIFIER_PROMPT = dedent("""
You are a problem classifier for market research. For each numbered post below, determine if it describes a real problem that could be solved by a mobile or web app.

Return ONLY a JSON array. Each element must have:
- "index": the post number (1-based)
- "category": broad problem area (e.g. "property management", "gardening", "meal planning"). Use lowercase.
- "subcategory": specific issue (e.g. "tenant screening", "plant disease identification"). Use lowercase.
- "sentiment_score": 1-10, how frustrated/urgent the person sounds (10 = extremely frustrated)
- "is_app_solvable": true/false, could a mobile or web app realistically help?
- "summary": one plain-English sentence summarizing the problem

If a post is not about a real problem (just joking, off-topic, etc.), set is_app_solvable to false and sentiment_score to 1.

Posts:

{posts}

Return ONLY the JSON array, no other text.
""").strip()


class Oracle(Protocol):
    async def __call__(self, prompt: str) -> str: ...


def build_prompt(contents: Sequence[str], excerpt_length: int = 300) -> str:
    """Number each post's cleaned excerpt, 1-based, in batch order."""
    numbered = "\n\n".join(
        f'{i}. "{excerpt(text, excerpt_length)}"' for i, text in enumerate(contents, 1)
    )
    return CLASSIFIER_PROMPT.format(posts=numbered)


class OpenAIOracle:
    """Chat-completions backed oracle."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        max_tokens: int = 8192,
        timeout: float = 120.0,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        # Retries are disabled: a failed batch is quarantined, not retried.
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key or None, timeout=timeout, max_retries=0
        )

    async def __call__(self, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=0.0,
                messages=[{"role": "user", "content": prompt}],
            )
        except openai.APITimeoutError as e:
            raise OracleTimeout(f"oracle request timed out: {e}") from e
        except openai.OpenAIError as e:
            raise OracleUnavailable(f"oracle request failed: {e}", e) from e

        if not response.choices:
            raise OracleUnavailable("oracle returned no choices")
        content = response.choices[0].message.content or ""
        if response.usage:
            log.debug(
                "Oracle usage: %d prompt / %d completion tokens",
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
        return content
