"""OpenAI access for keyword difficulty estimates.

Responses are cached in memory (difficulty for a keyword barely moves
within a day) and spend is tracked against an optional monthly budget.
"""

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import openai

from rank_engine.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# USD per 1K tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4.1-mini": (0.0004, 0.0016),
}
_FALLBACK_PRICING = MODEL_PRICING["gpt-4o-mini"]

JSON_SYSTEM_PROMPT = "You are an SEO analyst. Respond ONLY with valid JSON."


class BudgetExceededError(RuntimeError):
    """The monthly LLM budget is spent."""


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    cost_usd: float = 0.0
    cache_hits: int = 0
    period_start: float = field(default_factory=time.time)

    def record(self, model: str, input_tokens: int, output_tokens: int) -> float:
        in_rate, out_rate = MODEL_PRICING.get(model, _FALLBACK_PRICING)
        cost = input_tokens / 1000 * in_rate + output_tokens / 1000 * out_rate
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.requests += 1
        self.cost_usd += cost
        return cost

    def roll_over(self, period_seconds: float = 30 * 86400) -> None:
        """Start a fresh spend period once the current one has elapsed."""
        if time.time() - self.period_start >= period_seconds:
            logger.info("LLM spend period rolled over at $%.4f", self.cost_usd)
            self.input_tokens = self.output_tokens = self.requests = self.cache_hits = 0
            self.cost_usd = 0.0
            self.period_start = time.time()


class _ResponseCache:
    """Prompt-keyed TTL cache; oldest entry evicted when full."""

    def __init__(self, ttl_seconds: float = 86400, max_entries: int = 2000):
        self._ttl = ttl_seconds
        self._max = max_entries
        self._entries: dict[str, tuple[float, str]] = {}

    @staticmethod
    def key(*parts: Any) -> str:
        return hashlib.sha256(json.dumps(parts, default=str).encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[str]:
        hit = self._entries.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if time.time() - stored_at > self._ttl:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: str) -> None:
        if len(self._entries) >= self._max:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]
        self._entries[key] = (time.time(), value)


class LLMClient:
    """Async wrapper around OpenAI chat completions.

    Usage::

        client = LLMClient()
        data = await client.generate_json("Rate the difficulty of 'crm software'")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = 256,
        temperature: float = 0.2,
        timeout: int = 30,
        requests_per_minute: int = 60,
        monthly_budget_usd: Optional[float] = None,
        cache_ttl_seconds: float = 86400,
    ):
        self._api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._budget = monthly_budget_usd

        self._client: Optional[openai.AsyncOpenAI] = None
        if self._api_key:
            self._client = openai.AsyncOpenAI(api_key=self._api_key, timeout=timeout)

        self._limiter = RateLimiter(requests_per_minute, name="openai")
        self._cache = _ResponseCache(ttl_seconds=cache_ttl_seconds)
        self.usage = TokenUsage()

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def model(self) -> str:
        return self._model

    async def generate_text(
        self,
        prompt: str,
        system_prompt: str = "You are an SEO analyst.",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Return the model's reply to ``prompt``.

        Raises:
            RuntimeError: no API key is configured.
            BudgetExceededError: the monthly budget is used up.
        """
        if self._client is None:
            raise RuntimeError("OpenAI is not configured. Set OPENAI_API_KEY.")

        temperature = self._temperature if temperature is None else temperature
        cache_key = _ResponseCache.key(self._model, system_prompt, prompt, temperature)
        cached = self._cache.get(cache_key)
        if cached is not None:
            self.usage.cache_hits += 1
            logger.debug("LLM cache hit (%s)", cache_key[:12])
            return cached

        self.usage.roll_over()
        if self._budget is not None and self.usage.cost_usd >= self._budget:
            raise BudgetExceededError(
                f"Monthly LLM budget of ${self._budget:.2f} reached (${self.usage.cost_usd:.4f} spent)"
            )

        await self._limiter.acquire()
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens or self._max_tokens,
            temperature=temperature,
        )
        text = (response.choices[0].message.content or "").strip()
        if response.usage:
            cost = self.usage.record(
                self._model, response.usage.prompt_tokens, response.usage.completion_tokens
            )
            logger.info(
                "OpenAI %s: %d in / %d out tokens, $%.6f",
                self._model, response.usage.prompt_tokens, response.usage.completion_tokens, cost,
            )
        self._cache.put(cache_key, text)
        return text

    async def generate_json(self, prompt: str, system_prompt: str = JSON_SYSTEM_PROMPT) -> Any:
        """Ask for JSON and decode it, tolerating a fenced code block.

        Raises:
            ValueError: the reply is not valid JSON.
        """
        raw = await self.generate_text(prompt=prompt, system_prompt=system_prompt)
        body = raw.strip()
        if body.startswith("```"):
            body = body.split("\n", 1)[1] if "\n" in body else ""
            body = body.rsplit("```", 1)[0]
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            logger.debug("Unparseable LLM reply: %s", raw[:500])
            raise ValueError(f"LLM returned invalid JSON: {exc}") from exc

    def get_usage_summary(self) -> dict[str, Any]:
        return {
            "model": self._model,
            "total_requests": self.usage.requests,
            "total_input_tokens": self.usage.input_tokens,
            "total_output_tokens": self.usage.output_tokens,
            "cache_hits": self.usage.cache_hits,
            "total_cost_usd": round(self.usage.cost_usd, 6),
            "monthly_budget_usd": self._budget,
        }
