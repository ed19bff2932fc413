"""Rank history persistence: one observation per domain, keyword and day."""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, delete, func, not_, select

from rank_engine.database import get_session
from rank_engine.models.ranking import RankObservation
from rank_engine.utils.helpers import day_bounds, ensure_utc, normalize_domain

logger = logging.getLogger(__name__)

# Rank assumed for a domain that fell out of the tracked depth.
DROP_OUT_FLOOR_RANK = 101


def compute_rank_change(
    previous_rank: Optional[int],
    new_rank: Optional[int],
    floor_rank: int = DROP_OUT_FLOOR_RANK,
) -> Optional[int]:
    """Signed rank movement; positive means the domain moved up.

    Examples:
        >>> compute_rank_change(20, 12)
        8
        >>> compute_rank_change(12, 20)
        -8
        >>> compute_rank_change(15, None)
        -86
        >>> compute_rank_change(None, 5) is None
        True
    """
    if previous_rank is None:
        return None
    if new_rank is None:
        return previous_rank - floor_rank
    return previous_rank - new_rank


class RankHistoryStore:
    """Time-series of :class:`RankObservation` rows.

    Usage::

        store = RankHistoryStore()
        saved = store.record(observation)
        rows = store.query_range(domain="example.com", start=since)
    """

    def __init__(self, drop_out_floor_rank: int = DROP_OUT_FLOOR_RANK):
        self._floor_rank = drop_out_floor_rank

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(self, observation: RankObservation) -> RankObservation:
        """Persist ``observation`` as the only record for its day.

        ``previous_rank`` comes from the latest earlier observation in a
        *different* calendar month; same-month checks are skipped so the
        change reads month over month.  Existing rows for the same domain,
        keyword and UTC day are deleted before the insert, in the same
        transaction.
        """
        observation.domain = normalize_domain(observation.domain)
        observation.keyword = observation.keyword.strip()
        observation.stamp()
        checked_at = observation.checked_at
        day_start, day_end = day_bounds(checked_at)

        with get_session() as session:
            previous = session.execute(
                select(RankObservation)
                .where(
                    RankObservation.domain == observation.domain,
                    RankObservation.keyword == observation.keyword,
                    RankObservation.checked_at < checked_at,
                    not_(and_(
                        RankObservation.year == observation.year,
                        RankObservation.month == observation.month,
                    )),
                )
                .order_by(RankObservation.checked_at.desc())
                .limit(1)
            ).scalar_one_or_none()

            observation.previous_rank = previous.rank if previous else None
            observation.rank_change = compute_rank_change(
                observation.previous_rank, observation.rank, self._floor_rank
            )

            removed = session.execute(
                delete(RankObservation).where(
                    RankObservation.domain == observation.domain,
                    RankObservation.keyword == observation.keyword,
                    RankObservation.checked_at >= day_start,
                    RankObservation.checked_at < day_end,
                ),
                execution_options={"synchronize_session": False},
            ).rowcount
            session.add(observation)

        if removed:
            logger.debug(
                "Replaced %d same-day observation(s) for %r / %r",
                removed, observation.domain, observation.keyword,
            )
        logger.debug(
            "Recorded %r / %r rank=%s prev=%s change=%s",
            observation.domain, observation.keyword, observation.rank,
            observation.previous_rank, observation.rank_change,
        )
        return observation

    def dedupe_daily(self, domain: Optional[str] = None) -> int:
        """Keep only the latest observation per domain, keyword and day.

        Returns:
            Number of rows deleted.
        """
        stmt = select(RankObservation).order_by(RankObservation.checked_at.desc())
        if domain:
            stmt = stmt.where(RankObservation.domain == normalize_domain(domain))

        with get_session() as session:
            rows = session.execute(stmt).scalars().all()
            groups: dict[tuple, list[RankObservation]] = defaultdict(list)
            for row in rows:
                day = row.checked_at_utc.date()
                groups[(row.domain, row.keyword, day)].append(row)

            stale_ids = []
            for group in groups.values():
                # Rows are newest first; everything after the first is older.
                stale_ids.extend(r.id for r in group[1:])

            if stale_ids:
                session.execute(
                    delete(RankObservation).where(RankObservation.id.in_(stale_ids)),
                    execution_options={"synchronize_session": False},
                )

        logger.info(
            "Duplicate sweep removed %d observation(s) across %d day group(s)",
            len(stale_ids), len(groups),
        )
        return len(stale_ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_range(
        self,
        domain: Optional[str] = None,
        keyword: Optional[str] = None,
        client_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[RankObservation]:
        """Observations matching the filters, oldest first.

        ``start`` is inclusive and ``end`` exclusive.
        """
        stmt = select(RankObservation)
        if domain:
            stmt = stmt.where(RankObservation.domain == normalize_domain(domain))
        if keyword:
            stmt = stmt.where(RankObservation.keyword == keyword.strip())
        if client_id:
            stmt = stmt.where(RankObservation.client_id == client_id)
        if start is not None:
            stmt = stmt.where(RankObservation.checked_at >= ensure_utc(start))
        if end is not None:
            stmt = stmt.where(RankObservation.checked_at < ensure_utc(end))
        stmt = stmt.order_by(RankObservation.checked_at.asc(), RankObservation.id.asc())

        with get_session() as session:
            return list(session.execute(stmt).scalars().all())

    def latest(self, domain: str, keyword: str) -> Optional[RankObservation]:
        """Most recent observation for a domain-keyword pair."""
        with get_session() as session:
            return session.execute(
                select(RankObservation)
                .where(
                    RankObservation.domain == normalize_domain(domain),
                    RankObservation.keyword == keyword.strip(),
                )
                .order_by(RankObservation.checked_at.desc())
                .limit(1)
            ).scalar_one_or_none()

    def count(self, domain: Optional[str] = None) -> int:
        stmt = select(func.count(RankObservation.id))
        if domain:
            stmt = stmt.where(RankObservation.domain == normalize_domain(domain))
        with get_session() as session:
            return session.execute(stmt).scalar_one()
