"""AI-backed keyword difficulty estimates (best effort)."""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class KeywordDifficultyEstimator:
    """Ask an LLM for a 0-100 ranking difficulty score.

    Failures never propagate: a missing client, a bad response or a network
    error all yield ``None`` so rank persistence is never blocked.
    """

    def __init__(self, llm: Any = None):
        self._llm = llm

    async def estimate(self, keyword: str, location: Optional[str] = None) -> Optional[int]:
        if self._llm is None or not getattr(self._llm, "is_configured", True):
            return None

        prompt = (
            "Estimate how hard it is to rank on the first page of Google for "
            f"the keyword {keyword!r}"
            + (f" in {location}" if location else "")
            + ". Respond as JSON: {\"difficulty\": <integer 0-100>}"
        )
        try:
            data = await self._llm.generate_json(prompt=prompt)
            value = data.get("difficulty") if isinstance(data, dict) else data
            score = int(round(float(value)))
        except Exception as exc:
            logger.warning("Difficulty estimate failed for %r: %s", keyword, exc)
            return None
        return max(0, min(100, score))
