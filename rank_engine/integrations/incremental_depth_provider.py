"""Incremental-depth SERP provider (DataForSEO live/advanced payload shape).

The API bills by the number of results requested, so asking for the top 10
is cheaper than the top 100.  Each :meth:`query` call fetches exactly the
requested depth; the rank checker decides whether to go deeper.
"""

import logging
import os
from typing import Any, Optional

import httpx

from rank_engine.integrations.serp_provider import (
    RESULTS_PER_PAGE,
    SerpProvider,
    SerpQueryResult,
    find_domain_position,
)
from rank_engine.models.ranking import SOURCE_INCREMENTAL
from rank_engine.modules.rank_tracker.errors import (
    AuthenticationError,
    IPNotWhitelistedError,
    MalformedResponseError,
    ProviderTaskError,
    RateLimitError,
)
from rank_engine.utils.locations import location_code

logger = logging.getLogger(__name__)

INCREMENTAL_API_URL = "https://api.dataforseo.com/v3/serp/google/organic/live/advanced"
STATUS_OK = 20000
AUTH_STATUS_CODES = {40100, 40101, 40102, 40103}
IP_STATUS_CODES = {40104}
RATE_LIMIT_STATUS_CODES = {40202, 40209}
DEFAULT_COST_PER_PAGE = 0.002


class IncrementalDepthProvider(SerpProvider):
    """Query a per-page-billed SERP API at an explicit result depth.

    Usage::

        provider = IncrementalDepthProvider(login="me@example.com", password="secret")
        result = await provider.query("best crm", "example.com", "United States", 20)
    """

    source = SOURCE_INCREMENTAL
    supports_partial_depth = True
    endpoint = INCREMENTAL_API_URL

    def __init__(
        self,
        login: Optional[str] = None,
        password: Optional[str] = None,
        endpoint: Optional[str] = None,
        cost_per_page: float = DEFAULT_COST_PER_PAGE,
        language_code: str = "en",
        timeout: float = 90.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self._login = login or os.getenv("DATAFORSEO_LOGIN", "")
        self._password = password or os.getenv("DATAFORSEO_PASSWORD", "")
        self._cost_per_page = cost_per_page
        self._language_code = language_code
        if endpoint:
            self.endpoint = endpoint

    def is_configured(self) -> bool:
        return bool(self._login and self._password)

    def estimate_cost(self, depth: int) -> float:
        pages = max(1, -(-depth // RESULTS_PER_PAGE))
        return round(self._cost_per_page * pages, 6)

    def build_payload(self, keyword: str, location: str, depth: int) -> list[dict[str, Any]]:
        return [{
            "keyword": keyword,
            "location_code": location_code(location),
            "language_code": self._language_code,
            "depth": depth,
        }]

    async def query(
        self,
        keyword: str,
        domain: str,
        location: str,
        max_depth: int,
    ) -> SerpQueryResult:
        self.ensure_configured()
        logger.debug("Incremental query %r for %r at depth %d", keyword, domain, max_depth)

        data = await self._post_json(
            self.build_payload(keyword, location, max_depth),
            auth=(self._login, self._password),
        )
        task = self._unwrap_task(data)
        organic_urls = self._extract_organic_urls(task)[:max_depth]
        rank, url, scanned = find_domain_position(organic_urls, domain)

        cost = task.get("cost")
        if not isinstance(cost, (int, float)):
            cost = data.get("cost")
        if not isinstance(cost, (int, float)):
            cost = self.estimate_cost(max_depth)

        logger.info(
            "Incremental provider depth %d: %r -> %s",
            max_depth, keyword, "#%d" % rank if rank else "not found",
        )
        return SerpQueryResult(
            found=rank is not None,
            rank=rank,
            matched_url=url,
            results_scanned=scanned,
            cost=float(cost),
            depth=max_depth,
        )

    @staticmethod
    def _raise_for_status(status_code: Any, message: str) -> None:
        if status_code == STATUS_OK:
            return
        if status_code in IP_STATUS_CODES or "whitelist" in message.lower():
            raise IPNotWhitelistedError(message)
        if status_code in AUTH_STATUS_CODES:
            raise AuthenticationError(message)
        if status_code in RATE_LIMIT_STATUS_CODES:
            raise RateLimitError(message)
        raise ProviderTaskError(message, provider_code=status_code)

    def _unwrap_task(self, data: Any) -> dict[str, Any]:
        """Check the envelope and task status codes and return the task."""
        if not isinstance(data, dict):
            raise MalformedResponseError("Incremental provider response is not an object")
        self._raise_for_status(
            data.get("status_code"),
            str(data.get("status_message") or "unknown API error"),
        )
        tasks = data.get("tasks")
        if not isinstance(tasks, list) or not tasks:
            raise MalformedResponseError("Response contains no tasks")
        task = tasks[0]
        if not isinstance(task, dict):
            raise MalformedResponseError("Task is not an object")
        self._raise_for_status(
            task.get("status_code"),
            str(task.get("status_message") or "unknown task error"),
        )
        return task

    @staticmethod
    def _extract_organic_urls(task: dict[str, Any]) -> list[str]:
        """Organic result URLs in SERP order; ads, snippets and panels are skipped."""
        results = task.get("result")
        if results is None:
            return []
        if not isinstance(results, list):
            raise MalformedResponseError("Task has no result list")
        urls: list[str] = []
        for block in results:
            if block is None:
                continue
            if not isinstance(block, dict):
                raise MalformedResponseError("Result block is not an object")
            items = block.get("items") or []
            if not isinstance(items, list):
                raise MalformedResponseError("Result block 'items' is not a list")
            for item in items:
                if not isinstance(item, dict):
                    raise MalformedResponseError("SERP item is not an object")
                if item.get("type") != "organic":
                    continue
                urls.append(str(item.get("url") or item.get("domain") or ""))
        return urls
