"""Sequential batch rank checks with pacing and per-keyword failure isolation."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from rank_engine.modules.rank_tracker.checker import RankChecker, RankCheckOutcome
from rank_engine.modules.rank_tracker.difficulty import KeywordDifficultyEstimator
from rank_engine.modules.rank_tracker.errors import (
    RankCheckError,
    TransientNetworkError,
    classify_exception,
)
from rank_engine.modules.rank_tracker.history import RankHistoryStore
from rank_engine.utils.helpers import normalize_domain
from rank_engine.utils.validators import validate_domain, validate_keywords

logger = logging.getLogger(__name__)

MAX_BATCH_KEYWORDS = 50
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class BatchValidationError(ValueError):
    """The batch request itself is invalid; nothing was checked."""


@dataclass
class BatchRequest:
    """Input for :meth:`BatchRankRunner.run`."""

    domain: str
    keywords: list[str]
    location: Optional[str] = None
    client_id: Optional[str] = None
    keyword_ids: Optional[list[Optional[str]]] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchRequest":
        return cls(
            domain=data.get("domain", ""),
            keywords=data.get("keywords", []),
            location=data.get("location"),
            client_id=data.get("clientId") or data.get("client_id"),
            keyword_ids=data.get("keywordIds") or data.get("keyword_ids"),
        )

    def validate(self, max_keywords: int = MAX_BATCH_KEYWORDS) -> None:
        ok, error = validate_domain(self.domain)
        if not ok:
            raise BatchValidationError(error)
        ok, error = validate_keywords(self.keywords, max_count=max_keywords)
        if not ok:
            raise BatchValidationError(error)
        if self.keyword_ids is not None and len(self.keyword_ids) != len(self.keywords):
            raise BatchValidationError("keywordIds must line up one-to-one with keywords.")


class BatchRankRunner:
    """Check and persist ranks for up to 50 keywords, one at a time.

    Keywords run sequentially with a pacing delay between them to stay
    under provider rate limits.  A failing keyword becomes an ``error`` row
    and the loop moves on; only transient network failures are retried.

    Usage::

        runner = BatchRankRunner(checker, RankHistoryStore())
        result = await runner.run(BatchRequest("example.com", ["crm", "erp"]))
    """

    def __init__(
        self,
        checker: RankChecker,
        store: RankHistoryStore,
        difficulty_estimator: Optional[KeywordDifficultyEstimator] = None,
        pacing_delay: float = 4.0,
        long_batch_pacing_delay: float = 5.0,
        long_batch_threshold: int = 20,
        max_transient_retries: int = 2,
        retry_base_delay: float = 2.0,
        failure_warning_rate: float = 0.3,
        max_keywords: int = MAX_BATCH_KEYWORDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._checker = checker
        self._store = store
        self._difficulty = difficulty_estimator
        self._pacing_delay = pacing_delay
        self._long_batch_pacing_delay = long_batch_pacing_delay
        self._long_batch_threshold = long_batch_threshold
        self._max_retries = max_transient_retries
        self._retry_base_delay = retry_base_delay
        self._failure_warning_rate = failure_warning_rate
        self._max_keywords = max_keywords
        self._sleep = sleep

    def pacing_delay_for(self, total: int) -> float:
        if total > self._long_batch_threshold:
            return self._long_batch_pacing_delay
        return self._pacing_delay

    async def run(self, request: BatchRequest | dict[str, Any]) -> dict[str, Any]:
        """Run the batch and return the per-keyword summary.

        Raises:
            BatchValidationError: the request is malformed.
            ProviderNotConfiguredError: no provider credentials at all;
                raised before any network call.
        """
        if isinstance(request, dict):
            request = BatchRequest.from_dict(request)
        request.validate(self._max_keywords)
        self._checker.provider.ensure_configured()

        domain = normalize_domain(request.domain)
        keywords = [k.strip() for k in request.keywords]
        total = len(keywords)
        delay = self.pacing_delay_for(total)
        logger.info(
            "Batch rank check: %d keyword(s) for %r (delay %.1fs)",
            total, domain, delay,
        )

        results: list[dict[str, Any]] = []
        total_cost = 0.0
        for idx, keyword in enumerate(keywords):
            keyword_id = request.keyword_ids[idx] if request.keyword_ids else None
            logger.info("Checking keyword %d/%d: %r", idx + 1, total, keyword)
            row, cost = await self._process_keyword(
                keyword, domain, request.location, request.client_id, keyword_id
            )
            total_cost += cost
            results.append(row)

            if idx < total - 1:
                logger.debug("Pacing: sleeping %.1fs before next keyword", delay)
                await self._sleep(delay)

        successful = sum(1 for r in results if r["status"] == STATUS_SUCCESS)
        failed = total - successful
        summary: dict[str, Any] = {
            "total": total,
            "successful": successful,
            "failed": failed,
            "totalCost": round(total_cost, 6),
            "results": results,
        }
        if total and failed / total > self._failure_warning_rate:
            summary["warning"] = (
                f"{failed} of {total} keyword checks failed; "
                "the SERP provider may be unavailable or misconfigured."
            )
            logger.warning("Batch for %r: %s", domain, summary["warning"])

        logger.info(
            "Batch complete for %r: %d succeeded, %d failed, cost %.4f",
            domain, successful, failed, total_cost,
        )
        return summary

    async def _process_keyword(
        self,
        keyword: str,
        domain: str,
        location: Optional[str],
        client_id: Optional[str],
        keyword_id: Optional[str],
    ) -> tuple[dict[str, Any], float]:
        try:
            outcome = await self._check_with_retry(keyword, domain, location)
            difficulty = await self._estimate_difficulty(keyword, outcome.location)
            observation = self._store.record(
                outcome.to_observation(
                    client_id=client_id,
                    keyword_id=keyword_id,
                    difficulty=difficulty,
                )
            )
        except Exception as exc:
            error = classify_exception(exc)
            logger.error("Rank check failed for %r: [%s] %s", keyword, error.code, error.message)
            row = {
                "keyword": keyword,
                "rank": None,
                "inTop100": False,
                "previousRank": None,
                "rankChange": None,
                "status": STATUS_ERROR,
                "error": error.message,
                "errorCode": error.code,
            }
            if error.suggestion:
                row["suggestion"] = error.suggestion
            return row, 0.0

        row = {
            "keyword": keyword,
            "rank": observation.rank,
            "inTop100": observation.in_top_100,
            "previousRank": observation.previous_rank,
            "rankChange": observation.rank_change,
            "difficulty": observation.difficulty,
            "matchedUrl": observation.matched_url,
            "cost": outcome.cost,
            "status": STATUS_SUCCESS,
        }
        return row, outcome.cost

    async def _check_with_retry(
        self,
        keyword: str,
        domain: str,
        location: Optional[str],
    ) -> RankCheckOutcome:
        attempt = 0
        while True:
            try:
                return await self._checker.check(keyword, domain, location)
            except RankCheckError as exc:
                error = exc
            except Exception as exc:
                error = classify_exception(exc)
                if not isinstance(error, TransientNetworkError):
                    raise error from exc

            if not isinstance(error, TransientNetworkError) or attempt >= self._max_retries:
                raise error
            attempt += 1
            wait = self._retry_base_delay * attempt
            logger.warning(
                "Transient error for %r (%s); retry %d/%d in %.0fs",
                keyword, error.message, attempt, self._max_retries, wait,
            )
            await self._sleep(wait)

    async def _estimate_difficulty(self, keyword: str, location: str) -> Optional[int]:
        if self._difficulty is None:
            return None
        try:
            return await self._difficulty.estimate(keyword, location)
        except Exception as exc:
            logger.warning("Difficulty estimate skipped for %r: %s", keyword, exc)
            return None
