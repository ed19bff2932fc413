"""Progressive-depth rank checking on top of a SERP provider."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Sequence

from rank_engine.models.ranking import RankObservation
from rank_engine.modules.rank_tracker.errors import RankCheckError, classify_exception
from rank_engine.utils.helpers import normalize_domain, utcnow
from rank_engine.utils.locations import resolve_location
from rank_engine.utils.rate_limiter import PacingGate

if TYPE_CHECKING:
    from rank_engine.integrations.serp_provider import SerpProvider

logger = logging.getLogger(__name__)

DEFAULT_DEPTH_TIERS: tuple[int, ...] = (10, 20, 50, 100)
DEFAULT_MAX_DEPTH = 100

MODE_PROGRESSIVE = "progressive"
MODE_SINGLE = "single"


@dataclass
class RankCheckOutcome:
    """Result of checking one keyword, with the cost of every query made."""

    keyword: str
    domain: str
    location: str
    location_code: int
    found: bool
    rank: Optional[int]
    matched_url: Optional[str]
    cost: float
    source: str
    mode: str
    tiers_queried: list[int] = field(default_factory=list)
    checked_at: datetime = field(default_factory=utcnow)

    def to_observation(
        self,
        client_id: Optional[str] = None,
        keyword_id: Optional[str] = None,
        difficulty: Optional[int] = None,
    ) -> RankObservation:
        """Build the (unsaved) observation for this outcome."""
        observation = RankObservation(
            domain=self.domain,
            keyword=self.keyword,
            location=self.location,
            location_code=self.location_code,
            rank=self.rank,
            matched_url=self.matched_url,
            difficulty=difficulty,
            checked_at=self.checked_at,
            source=self.source,
            client_id=client_id,
            keyword_id=keyword_id,
            cost=self.cost,
        )
        observation.stamp()
        return observation


def plan_tiers(tiers: Sequence[int], max_depth: int) -> Optional[list[int]]:
    """Return the tiers to probe up to ``max_depth``, or ``None`` if unusable.

    Tiers beyond ``max_depth`` are dropped and ``max_depth`` itself becomes
    the last tier.  Non-increasing or non-positive tiers make progressive
    search meaningless, signalled by ``None``.
    """
    tiers = list(tiers)
    if not tiers or any(t <= 0 for t in tiers):
        return None
    if any(b <= a for a, b in zip(tiers, tiers[1:])):
        return None
    planned = [t for t in tiers if t < max_depth]
    planned.append(max_depth)
    return planned


class RankChecker:
    """Find a domain's rank while paying for as few result pages as possible.

    With a provider that supports partial depth, the checker queries each
    depth tier in turn (10, then 20, then 50, then 100) and stops at the
    first tier containing the domain.  A domain at #7 costs one tier-10
    query; a domain outside the top 100 costs all four.  Providers without
    partial-depth support, or a misconfigured tier list, get a single query
    at ``max_depth``.

    Usage::

        checker = RankChecker(IncrementalDepthProvider())
        outcome = await checker.check("best crm", "https://www.example.com")
    """

    def __init__(
        self,
        provider: "SerpProvider",
        depth_tiers: Sequence[int] = DEFAULT_DEPTH_TIERS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        gate: Optional[PacingGate] = None,
    ):
        self._provider = provider
        self._depth_tiers = tuple(depth_tiers)
        self._max_depth = max_depth
        self._gate = gate

    @property
    def provider(self) -> "SerpProvider":
        return self._provider

    def mode_for(self, max_depth: Optional[int] = None) -> str:
        """Which search mode this checker uses with its provider."""
        depth = max_depth or self._max_depth
        if not self._provider.supports_partial_depth:
            return MODE_SINGLE
        if plan_tiers(self._depth_tiers, depth) is None:
            return MODE_SINGLE
        return MODE_PROGRESSIVE

    async def check(
        self,
        keyword: str,
        domain: str,
        location: Optional[str] = None,
        max_depth: Optional[int] = None,
    ) -> RankCheckOutcome:
        """Check one keyword.

        Raises:
            RankCheckError: any provider failure, already classified.
        """
        self._provider.ensure_configured()
        depth = max_depth or self._max_depth
        target = normalize_domain(domain)
        resolved = resolve_location(location)

        mode = self.mode_for(depth)
        tiers = plan_tiers(self._depth_tiers, depth) if mode == MODE_PROGRESSIVE else [depth]
        if mode == MODE_SINGLE and self._provider.supports_partial_depth:
            logger.warning(
                "Depth tiers %s are not strictly increasing; using one full-depth query",
                self._depth_tiers,
            )

        total_cost = 0.0
        queried: list[int] = []
        result = None
        for tier in tiers:
            if self._gate is not None:
                await self._gate.wait(self._provider.source)
            try:
                result = await self._provider.query(keyword, target, resolved.name, tier)
            except RankCheckError:
                raise
            except Exception as exc:
                raise classify_exception(exc) from exc
            queried.append(tier)
            total_cost += result.cost
            if result.found:
                break
            logger.debug("%r not in top %d for %r", target, tier, keyword)

        outcome = RankCheckOutcome(
            keyword=keyword,
            domain=target,
            location=resolved.name,
            location_code=resolved.code,
            found=bool(result and result.found),
            rank=result.rank if result and result.found else None,
            matched_url=result.matched_url if result and result.found else None,
            cost=round(total_cost, 6),
            source=self._provider.source,
            mode=mode,
            tiers_queried=queried,
        )
        if outcome.found:
            logger.info(
                "Found %r at #%d for %r (tiers=%s, cost=%.4f)",
                target, outcome.rank, keyword, queried, outcome.cost,
            )
        else:
            logger.info(
                "%r not in top %d for %r (cost=%.4f)",
                target, depth, keyword, outcome.cost,
            )
        return outcome
