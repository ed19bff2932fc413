"""Shared pytest fixtures for the rank engine tests."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure project root is on sys.path so 'rank_engine' is importable.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from rank_engine.integrations.serp_provider import SerpProvider, SerpQueryResult  # noqa: E402


class FakeSerpProvider(SerpProvider):
    """In-memory provider: ranks are looked up from a keyword -> rank map.

    ``errors`` maps a keyword to a list of exceptions raised on successive
    calls before the normal answer is returned.  Every call is recorded in
    ``calls`` as ``(keyword, max_depth)``.
    """

    source = "incremental-provider"

    def __init__(
        self,
        ranks: Optional[dict[str, Optional[int]]] = None,
        errors: Optional[dict[str, list[Exception]]] = None,
        partial_depth: bool = True,
        configured: bool = True,
        cost_per_10: float = 0.002,
    ):
        super().__init__()
        self.ranks = dict(ranks or {})
        self.errors = {k: list(v) for k, v in (errors or {}).items()}
        self.supports_partial_depth = partial_depth
        self._configured = configured
        self._cost_per_10 = cost_per_10
        self.calls: list[tuple[str, int]] = []

    def is_configured(self) -> bool:
        return self._configured

    async def query(self, keyword, domain, location, max_depth):
        self.calls.append((keyword, max_depth))
        pending = self.errors.get(keyword)
        if pending:
            raise pending.pop(0)
        rank = self.ranks.get(keyword)
        found = rank is not None and rank <= max_depth
        return SerpQueryResult(
            found=found,
            rank=rank if found else None,
            matched_url=f"https://{domain}/{keyword.replace(' ', '-')}" if found else None,
            results_scanned=rank if found else max_depth,
            cost=round(self._cost_per_10 * (max_depth // 10), 6),
            depth=max_depth,
        )


@pytest.fixture(autouse=True)
def _reset_db_engine():
    """Autouse fixture: reset the global DB engine before and after every test.

    This prevents cross-test pollution when tests create their own in-memory
    databases.
    """
    from rank_engine.database import reset_engine
    reset_engine()
    yield
    reset_engine()


@pytest.fixture()
def test_db():
    """Provide an in-memory SQLite database with all tables created.

    Yields a database URL string. The engine is automatically torn down
    after the test by the autouse ``_reset_db_engine`` fixture.
    """
    from rank_engine.database import reset_engine, init_db
    reset_engine()
    db_url = "sqlite:///:memory:"
    init_db(database_url=db_url, echo=False)
    yield db_url


@pytest.fixture()
def store(test_db):
    from rank_engine.modules.rank_tracker.history import RankHistoryStore
    return RankHistoryStore()


@pytest.fixture()
def fake_provider_cls():
    """The :class:`FakeSerpProvider` class, for tests that build their own."""
    return FakeSerpProvider


@pytest.fixture()
def no_sleep():
    """AsyncMock standing in for ``asyncio.sleep``; records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture()
def mock_llm_client():
    """Return a mock LLMClient that returns a canned difficulty score."""
    client = MagicMock()
    client.is_configured = True
    client.generate_json = AsyncMock(return_value={"difficulty": 42})
    client.generate_text = AsyncMock(return_value='{"difficulty": 42}')
    return client


def make_observation(
    keyword: str,
    rank: Optional[int],
    when: datetime,
    domain: str = "example.com",
    client_id: Optional[str] = None,
    source: str = "manual",
):
    """Build an unsaved RankObservation at ``when`` (UTC)."""
    from rank_engine.models.ranking import RankObservation
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return RankObservation(
        domain=domain,
        keyword=keyword,
        location="United States",
        location_code=2840,
        rank=rank,
        checked_at=when,
        source=source,
        client_id=client_id,
        cost=0.0,
    )


@pytest.fixture()
def observation_factory():
    return make_observation
