"""Rank Tracker module: progressive SERP checks, rank history, and period reports."""

from rank_engine.modules.rank_tracker.aggregator import AggregationFilterError, RankAggregator
from rank_engine.modules.rank_tracker.batch import BatchRankRunner, BatchRequest, BatchValidationError
from rank_engine.modules.rank_tracker.checker import RankChecker, RankCheckOutcome
from rank_engine.modules.rank_tracker.difficulty import KeywordDifficultyEstimator
from rank_engine.modules.rank_tracker.history import RankHistoryStore

__all__ = [
    "AggregationFilterError",
    "BatchRankRunner",
    "BatchRequest",
    "BatchValidationError",
    "KeywordDifficultyEstimator",
    "RankAggregator",
    "RankCheckOutcome",
    "RankChecker",
    "RankHistoryStore",
]
