"""Rank observation SQLAlchemy model."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rank_engine.database import Base
from rank_engine.utils.helpers import ensure_utc

SOURCE_BULK = "bulk-provider"
SOURCE_INCREMENTAL = "incremental-provider"
SOURCE_MANUAL = "manual"
SOURCES = (SOURCE_BULK, SOURCE_INCREMENTAL, SOURCE_MANUAL)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RankObservation(Base):
    """One SERP check outcome for a domain + keyword at a point in time.

    ``rank`` is ``None`` when the domain was not found within the searched
    depth.  ``month``/``year`` are derived from ``checked_at`` for grouping,
    and ``previous_rank``/``rank_change`` are filled in once when the
    observation is recorded.
    """

    __tablename__ = "rank_observations"
    __table_args__ = (
        Index("ix_rank_obs_domain_keyword_checked", "domain", "keyword", "checked_at"),
        Index("ix_rank_obs_client_checked", "client_id", "checked_at"),
        Index("ix_rank_obs_year_month_domain", "year", "month", "domain"),
        Index("ix_rank_obs_keyword_id_year_month", "keyword_id", "year", "month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(500), nullable=False)
    keyword: Mapped[str] = mapped_column(String(500), nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False, default="United States")
    location_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    in_top_100: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    difficulty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    matched_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rank_change: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default=SOURCE_INCREMENTAL)
    client_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    keyword_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    def stamp(self) -> None:
        """Derive ``in_top_100``, ``month`` and ``year`` from rank and timestamp."""
        if self.checked_at is None:
            self.checked_at = _utcnow()
        self.checked_at = ensure_utc(self.checked_at)
        self.in_top_100 = self.rank is not None
        self.month = self.checked_at.month
        self.year = self.checked_at.year

    @property
    def checked_at_utc(self) -> datetime:
        return ensure_utc(self.checked_at)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the cross-language record field names."""
        return {
            "id": self.id,
            "domain": self.domain,
            "keyword": self.keyword,
            "location": self.location,
            "locationCode": self.location_code,
            "rank": self.rank,
            "inTop100": self.in_top_100,
            "difficulty": self.difficulty,
            "matchedUrl": self.matched_url,
            "checkedAt": self.checked_at_utc.isoformat() if self.checked_at else None,
            "month": self.month,
            "year": self.year,
            "previousRank": self.previous_rank,
            "rankChange": self.rank_change,
            "source": self.source,
            "client": self.client_id,
            "keywordId": self.keyword_id,
            "cost": self.cost,
        }

    def __repr__(self) -> str:
        return (
            f"<RankObservation id={self.id} kw={self.keyword!r} "
            f"domain={self.domain!r} rank={self.rank} at={self.checked_at}>"
        )
