"""SERP provider and LLM integrations."""

from rank_engine.integrations.bulk_page_provider import BulkPageProvider
from rank_engine.integrations.incremental_depth_provider import IncrementalDepthProvider
from rank_engine.integrations.serp_provider import SerpProvider, SerpQueryResult

__all__ = [
    "BulkPageProvider",
    "IncrementalDepthProvider",
    "SerpProvider",
    "SerpQueryResult",
]
