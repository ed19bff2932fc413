"""Monthly and weekly rank reports built from stored observations."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import mean
from typing import Any, Callable, Optional, Sequence

from rank_engine.models.ranking import RankObservation
from rank_engine.modules.rank_tracker.history import RankHistoryStore
from rank_engine.utils.helpers import (
    ensure_utc,
    month_start,
    normalize_domain,
    round_or_none,
    shift_month,
    utcnow,
)

logger = logging.getLogger(__name__)

TREND_IMPROVED = "improved"
TREND_DECLINED = "declined"
TREND_STABLE = "stable"
TREND_NEW = "new"

MONTHLY_TREND_THRESHOLD = 5
WEEKLY_TREND_THRESHOLD = 3
TOP_PERFORMER_RANK = 10

COMPARISON_STATUSES = (
    "improved",
    "declined",
    "unchanged",
    "now_ranking",
    "lost_ranking",
    "new",
    "not_checked",
)
_COMPARISON_SUMMARY_KEYS = {
    "improved": "improved",
    "declined": "declined",
    "unchanged": "unchanged",
    "now_ranking": "nowRanking",
    "lost_ranking": "lostRanking",
    "new": "new",
    "not_checked": "notChecked",
}


class AggregationFilterError(ValueError):
    """A report was requested without a domain or client filter."""


def _non_null(ranks: Sequence[Optional[int]]) -> list[int]:
    return [r for r in ranks if r is not None]


def classify_monthly_trend(
    ranks: Sequence[Optional[int]],
    threshold: int = MONTHLY_TREND_THRESHOLD,
) -> str:
    """Compare the first and the latest non-null rank of a series.

    Examples:
        >>> classify_monthly_trend([40, 38, 30])
        'improved'
        >>> classify_monthly_trend([10, 10, 10])
        'stable'
        >>> classify_monthly_trend([None, 12])
        'new'
    """
    values = _non_null(ranks)
    if len(values) < 2:
        return TREND_NEW
    return _trend_from_change(values[0] - values[-1], threshold)


def classify_weekly_trend(
    ranks: Sequence[Optional[int]],
    threshold: int = WEEKLY_TREND_THRESHOLD,
) -> str:
    """Compare only the last two non-null ranks of a series."""
    values = _non_null(ranks)
    if len(values) < 2:
        return TREND_NEW
    return _trend_from_change(values[-2] - values[-1], threshold)


def _trend_from_change(change: int, threshold: int) -> str:
    if change > threshold:
        return TREND_IMPROVED
    if change < -threshold:
        return TREND_DECLINED
    return TREND_STABLE


def compare_ranks(
    previous_checked: bool,
    previous_rank: Optional[int],
    current_checked: bool,
    current_rank: Optional[int],
) -> str:
    """Classify one keyword between two consecutive periods."""
    if not previous_checked:
        return "new"
    if not current_checked:
        return "not_checked"
    if previous_rank is None and current_rank is None:
        return "unchanged"
    if previous_rank is None:
        return "now_ranking"
    if current_rank is None:
        return "lost_ranking"
    if previous_rank > current_rank:
        return "improved"
    if previous_rank < current_rank:
        return "declined"
    return "unchanged"


@dataclass(frozen=True)
class ReportPeriod:
    """A half-open ``[start, end)`` reporting bucket."""

    key: str
    label: str
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.key,
            "label": self.label,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def monthly_periods(now: datetime, months: int) -> list[ReportPeriod]:
    """Calendar months ending with the month of ``now``, oldest first."""
    now = ensure_utc(now)
    periods = []
    for back in range(months - 1, -1, -1):
        year, month = shift_month(now.year, now.month, -back)
        next_year, next_month = shift_month(year, month, 1)
        start = month_start(year, month)
        periods.append(ReportPeriod(
            key=f"{year:04d}-{month:02d}",
            label=start.strftime("%B %Y"),
            start=start,
            end=month_start(next_year, next_month),
        ))
    return periods


def weekly_periods(now: datetime, weeks: int) -> list[ReportPeriod]:
    """Rolling 7-day windows ending at ``now - 7*i`` days, oldest first.

    These are not ISO weeks: the newest window is always the seven days
    leading up to ``now``.
    """
    now = ensure_utc(now)
    periods = []
    for back in range(weeks - 1, -1, -1):
        end = now - timedelta(days=7 * back)
        start = end - timedelta(days=7)
        periods.append(ReportPeriod(
            key=f"week-{back}",
            label=f"{start:%b %d} - {end:%b %d, %Y}",
            start=start,
            end=end,
        ))
    return periods


class RankAggregator:
    """Roll rank observations into period reports with trend detection.

    Both report shapes share the same structure: ``monthlyStats`` /
    ``weeklyStats`` per period, a per-keyword timeline, a comparison of the
    two most recent periods that have data, and an overall summary.  "No
    data" is a valid outcome and yields the same shape with zero counts.

    Usage::

        aggregator = RankAggregator(RankHistoryStore())
        report = aggregator.monthly_report(domain="example.com", months=6)
    """

    def __init__(
        self,
        store: RankHistoryStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._clock = clock

    def monthly_report(
        self,
        domain: Optional[str] = None,
        client_id: Optional[str] = None,
        months: int = 6,
    ) -> dict[str, Any]:
        self._check_filters(domain, client_id, months)
        periods = monthly_periods(self._clock(), months)
        return self._build_report(
            "monthly", periods, domain, client_id, classify_monthly_trend
        )

    def weekly_report(
        self,
        domain: Optional[str] = None,
        client_id: Optional[str] = None,
        weeks: int = 4,
    ) -> dict[str, Any]:
        self._check_filters(domain, client_id, weeks)
        periods = weekly_periods(self._clock(), weeks)
        return self._build_report(
            "weekly", periods, domain, client_id, classify_weekly_trend
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_filters(domain: Optional[str], client_id: Optional[str], count: int) -> None:
        if not (domain and normalize_domain(domain)) and not client_id:
            raise AggregationFilterError("Either a domain or a client id is required.")
        if count < 1:
            raise AggregationFilterError("At least one period must be requested.")

    def _build_report(
        self,
        period_type: str,
        periods: list[ReportPeriod],
        domain: Optional[str],
        client_id: Optional[str],
        classify: Callable[[Sequence[Optional[int]]], str],
    ) -> dict[str, Any]:
        observations = self._store.query_range(
            domain=domain,
            client_id=client_id,
            start=periods[0].start,
            end=periods[-1].end,
        )
        logger.info(
            "Building %s report (%d period(s)) from %d observation(s)",
            period_type, len(periods), len(observations),
        )

        # period key -> keyword -> observations, oldest first
        buckets: dict[str, dict[str, list[RankObservation]]] = {
            p.key: defaultdict(list) for p in periods
        }
        for obs in observations:
            moment = obs.checked_at_utc
            for period in periods:
                if period.contains(moment):
                    buckets[period.key][obs.keyword].append(obs)
                    break

        stats = [
            dict(period.to_dict(), **self._period_stats(buckets[period.key]))
            for period in reversed(periods)
            if buckets[period.key]
        ]
        timeline = self._keyword_timeline(periods, buckets, classify)
        comparison = self._comparison(periods, buckets)

        stats_key = "monthlyStats" if period_type == "monthly" else "weeklyStats"
        return {
            "periodType": period_type,
            "domain": normalize_domain(domain) if domain else None,
            "clientId": client_id,
            "generatedAt": ensure_utc(self._clock()).isoformat(),
            "periods": [p.to_dict() for p in periods],
            stats_key: stats,
            "keywordTimeline": timeline,
            "comparison": comparison,
            "summary": self._summary(timeline),
            "performanceCategories": self._performance_categories(timeline),
        }

    @staticmethod
    def _period_stats(by_keyword: dict[str, list[RankObservation]]) -> dict[str, Any]:
        latest = [checks[-1] for checks in by_keyword.values()]
        ranks = _non_null([obs.rank for obs in latest])
        return {
            "totalKeywords": len(latest),
            "averageRank": round_or_none(mean(ranks)) if ranks else None,
            "top10": sum(1 for r in ranks if r <= 10),
            "top30": sum(1 for r in ranks if r <= 30),
            "top100": sum(1 for r in ranks if r <= 100),
            "notRankingCount": len(latest) - len(ranks),
            "totalChecks": sum(len(checks) for checks in by_keyword.values()),
        }

    @staticmethod
    def _keyword_timeline(
        periods: list[ReportPeriod],
        buckets: dict[str, dict[str, list[RankObservation]]],
        classify: Callable[[Sequence[Optional[int]]], str],
    ) -> list[dict[str, Any]]:
        keywords = sorted({kw for bucket in buckets.values() for kw in bucket})
        timeline = []
        for keyword in keywords:
            history = []
            current_rank = None
            last_checked = None
            for period in periods:
                checks = buckets[period.key].get(keyword, [])
                rank = checks[-1].rank if checks else None
                if checks:
                    current_rank = rank
                    last_checked = checks[-1]
                history.append({
                    "period": period.key,
                    "label": period.label,
                    "rank": rank,
                    "checked": bool(checks),
                    "checks": [
                        {
                            "rank": obs.rank,
                            "checkedAt": obs.checked_at_utc.isoformat(),
                            "source": obs.source,
                        }
                        for obs in checks
                    ],
                })

            ranks = [entry["rank"] for entry in history]
            values = _non_null(ranks)
            timeline.append({
                "keyword": keyword,
                "keywordId": last_checked.keyword_id if last_checked else None,
                "location": last_checked.location if last_checked else None,
                "history": history,
                "currentRank": current_rank,
                "bestRank": min(values) if values else None,
                "worstRank": max(values) if values else None,
                "averageRank": round_or_none(mean(values)) if values else None,
                "trend": classify(ranks),
                "everRanked": bool(values),
            })
        return timeline

    @staticmethod
    def _comparison(
        periods: list[ReportPeriod],
        buckets: dict[str, dict[str, list[RankObservation]]],
    ) -> dict[str, Any]:
        summary = {key: 0 for key in _COMPARISON_SUMMARY_KEYS.values()}
        with_data = [p for p in periods if buckets[p.key]]
        if len(with_data) < 2:
            return {
                "currentPeriod": with_data[-1].key if with_data else None,
                "previousPeriod": None,
                "keywords": [],
                "summary": summary,
            }

        previous, current = with_data[-2], with_data[-1]
        prev_bucket, cur_bucket = buckets[previous.key], buckets[current.key]
        rows = []
        for keyword in sorted(set(prev_bucket) | set(cur_bucket)):
            prev_rank = prev_bucket[keyword][-1].rank if keyword in prev_bucket else None
            cur_rank = cur_bucket[keyword][-1].rank if keyword in cur_bucket else None
            status = compare_ranks(
                keyword in prev_bucket, prev_rank, keyword in cur_bucket, cur_rank
            )
            change = None
            if prev_rank is not None and cur_rank is not None:
                change = prev_rank - cur_rank
            rows.append({
                "keyword": keyword,
                "previousRank": prev_rank,
                "currentRank": cur_rank,
                "change": change,
                "status": status,
            })
            summary[_COMPARISON_SUMMARY_KEYS[status]] += 1

        return {
            "currentPeriod": current.key,
            "previousPeriod": previous.key,
            "keywords": rows,
            "summary": summary,
        }

    @staticmethod
    def _summary(timeline: list[dict[str, Any]]) -> dict[str, Any]:
        current = _non_null([entry["currentRank"] for entry in timeline])
        trends = [entry["trend"] for entry in timeline]
        return {
            "totalKeywords": len(timeline),
            "improved": trends.count(TREND_IMPROVED),
            "declined": trends.count(TREND_DECLINED),
            "stable": trends.count(TREND_STABLE),
            "new": trends.count(TREND_NEW),
            "averageRank": round_or_none(mean(current)) if current else None,
        }

    @staticmethod
    def _performance_categories(timeline: list[dict[str, Any]]) -> dict[str, int]:
        return {
            "topPerformers": sum(
                1 for e in timeline
                if e["currentRank"] is not None and e["currentRank"] <= TOP_PERFORMER_RANK
            ),
            "needAttention": sum(1 for e in timeline if e["trend"] == TREND_DECLINED),
            "stable": sum(1 for e in timeline if e["trend"] == TREND_STABLE),
            "lostVisibility": sum(
                1 for e in timeline if e["everRanked"] and e["currentRank"] is None
            ),
        }
