"""Common interface for third-party SERP APIs used by the rank checker."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from rank_engine.modules.rank_tracker.errors import (
    MalformedResponseError,
    ProviderNotConfiguredError,
    classify_exception,
)
from rank_engine.utils.helpers import domain_matches

logger = logging.getLogger(__name__)

RESULTS_PER_PAGE = 10


@dataclass
class SerpQueryResult:
    """Outcome of one provider query."""

    found: bool
    rank: Optional[int]
    matched_url: Optional[str]
    results_scanned: int
    cost: float
    depth: int


def find_domain_position(
    organic_urls: Iterable[str],
    domain: str,
) -> tuple[Optional[int], Optional[str], int]:
    """Scan organic result URLs in order for the target domain.

    Returns:
        ``(rank, matched_url, scanned)`` where rank is the 1-based position
        among the organic results, or ``None`` when absent.
    """
    scanned = 0
    for url in organic_urls:
        scanned += 1
        if domain_matches(url, domain):
            return scanned, url, scanned
    return None, None, scanned


class SerpProvider(ABC):
    """A SERP API that can locate a domain's organic rank for a keyword.

    Implementations set ``source`` (the tag persisted on observations) and
    ``supports_partial_depth``: when ``True`` a shallow query is cheaper
    than a deep one, so the rank checker probes depth tiers one by one;
    when ``False`` the checker makes a single full-depth call.
    """

    source: str = "provider"
    supports_partial_depth: bool = False
    endpoint: str = ""

    def __init__(
        self,
        timeout: float = 90.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout
        self._client = client

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials are available for this provider."""

    @abstractmethod
    async def query(
        self,
        keyword: str,
        domain: str,
        location: str,
        max_depth: int,
    ) -> SerpQueryResult:
        """Look up ``domain`` in the top ``max_depth`` results for ``keyword``."""

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ProviderNotConfiguredError(
                f"{self.source} credentials are not configured"
            )

    async def _post_json(
        self,
        payload: Any,
        auth: tuple[str, str],
    ) -> Any:
        """POST ``payload`` to the provider endpoint and decode the JSON body.

        Transport and HTTP failures are converted to the rank-check error
        taxonomy here so every provider reports them the same way.
        """
        try:
            if self._client is not None:
                response = await self._client.post(self.endpoint, json=payload, auth=auth)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.endpoint, json=payload, auth=auth)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("%s request failed: %s", self.source, exc)
            raise classify_exception(exc) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"{self.source} returned a non-JSON body"
            ) from exc

    def describe(self) -> dict[str, Any]:
        return {
            "provider": self.source,
            "configured": self.is_configured(),
            "endpoint": self.endpoint,
            "partial_depth": self.supports_partial_depth,
        }

    async def close(self) -> None:
        """Release the injected HTTP client, if any."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
