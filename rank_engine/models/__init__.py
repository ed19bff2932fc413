"""SQLAlchemy ORM models; import every model so Base.metadata is populated."""

from rank_engine.models.ranking import (
    RankObservation,
    SOURCE_BULK,
    SOURCE_INCREMENTAL,
    SOURCE_MANUAL,
    SOURCES,
)

__all__ = [
    "RankObservation",
    "SOURCE_BULK",
    "SOURCE_INCREMENTAL",
    "SOURCE_MANUAL",
    "SOURCES",
]
