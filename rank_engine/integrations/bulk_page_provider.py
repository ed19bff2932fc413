"""Bulk-page SERP provider (Oxylabs realtime API payload shape).

One request asks for every result page needed to cover the requested
depth, so there is nothing to gain from probing shallow depths first; the
rank checker always runs this provider in single full-depth mode.
"""

import logging
import math
import os
from typing import Any, Optional

import httpx

from rank_engine.integrations.serp_provider import (
    RESULTS_PER_PAGE,
    SerpProvider,
    SerpQueryResult,
    find_domain_position,
)
from rank_engine.models.ranking import SOURCE_BULK
from rank_engine.modules.rank_tracker.errors import (
    AuthenticationError,
    MalformedResponseError,
    ProviderTaskError,
)
from rank_engine.utils.locations import geo_location

logger = logging.getLogger(__name__)

BULK_API_URL = "https://realtime.oxylabs.io/v1/queries"
DEFAULT_COST_PER_PAGE = 0.002


class BulkPageProvider(SerpProvider):
    """Fetch up to ``ceil(max_depth / 10)`` result pages in one request.

    Usage::

        provider = BulkPageProvider(username="user", password="secret")
        result = await provider.query("best crm", "example.com", "United States", 100)
    """

    source = SOURCE_BULK
    supports_partial_depth = False
    endpoint = BULK_API_URL

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        endpoint: Optional[str] = None,
        cost_per_page: float = DEFAULT_COST_PER_PAGE,
        timeout: float = 90.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self._username = username or os.getenv("OXYLABS_USER", "")
        self._password = password or os.getenv("OXYLABS_PASS", "")
        self._cost_per_page = cost_per_page
        if endpoint:
            self.endpoint = endpoint

    def is_configured(self) -> bool:
        return bool(self._username and self._password)

    def estimate_cost(self, pages: int) -> float:
        """Flat per-page estimate; every page is billed as one request."""
        return round(self._cost_per_page * pages, 6)

    def build_payload(self, keyword: str, location: str, pages: int) -> dict[str, Any]:
        return {
            "source": "google_search",
            "domain": "com",
            "query": keyword,
            "geo_location": geo_location(location),
            "parse": True,
            "pages": pages,
            "context": [{"key": "results_language", "value": "en"}],
        }

    async def query(
        self,
        keyword: str,
        domain: str,
        location: str,
        max_depth: int,
    ) -> SerpQueryResult:
        self.ensure_configured()
        pages = max(1, math.ceil(max_depth / RESULTS_PER_PAGE))
        logger.debug(
            "Bulk query %r for %r: %d page(s), location=%r",
            keyword, domain, pages, location,
        )

        data = await self._post_json(
            self.build_payload(keyword, location, pages),
            auth=(self._username, self._password),
        )
        organic_urls = self._extract_organic_urls(data)[:max_depth]
        rank, url, scanned = find_domain_position(organic_urls, domain)

        result = SerpQueryResult(
            found=rank is not None,
            rank=rank,
            matched_url=url,
            results_scanned=scanned,
            cost=self.estimate_cost(pages),
            depth=max_depth,
        )
        logger.info(
            "Bulk provider: %r -> %s (%d organic results scanned)",
            keyword, "#%d" % rank if rank else "not found", scanned,
        )
        return result

    @staticmethod
    def _extract_organic_urls(data: Any) -> list[str]:
        """Concatenate organic result URLs across every returned page."""
        if not isinstance(data, dict):
            raise MalformedResponseError("Bulk provider response is not an object")

        if "results" not in data:
            message = str(data.get("message") or "response has no results")
            if "unauthorized" in message.lower() or "credentials" in message.lower():
                raise AuthenticationError(message)
            raise ProviderTaskError(message)

        pages = data.get("results")
        if not isinstance(pages, list):
            raise MalformedResponseError("Bulk provider 'results' is not a list")

        urls: list[str] = []
        for page in pages:
            if not isinstance(page, dict):
                raise MalformedResponseError("Result page is not an object")
            content = page.get("content")
            if not isinstance(content, dict):
                raise MalformedResponseError("Result page has no parsed content")
            parsed = content.get("results") or {}
            if not isinstance(parsed, dict):
                raise MalformedResponseError("Result page has no parsed results")
            organic = parsed.get("organic") or []
            if not isinstance(organic, list):
                raise MalformedResponseError("Result page has no organic list")
            for item in organic:
                if not isinstance(item, dict):
                    raise MalformedResponseError("Organic result is not an object")
                urls.append(str(item.get("url") or ""))
        return urls
