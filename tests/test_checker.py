"""Tests for progressive-depth rank checking."""

import httpx
import pytest

from rank_engine.modules.rank_tracker.checker import (
    MODE_PROGRESSIVE,
    MODE_SINGLE,
    RankChecker,
    plan_tiers,
)
from rank_engine.modules.rank_tracker.errors import (
    AuthenticationError,
    ProviderNotConfiguredError,
    RankTimeoutError,
    TransientNetworkError,
)
from rank_engine.utils.rate_limiter import PacingGate


class TestPlanTiers:

    def test_default_tiers(self):
        assert plan_tiers([10, 20, 50, 100], 100) == [10, 20, 50, 100]

    def test_max_depth_truncates_and_terminates(self):
        assert plan_tiers([10, 20, 50, 100], 30) == [10, 20, 30]

    def test_non_increasing_tiers_are_rejected(self):
        assert plan_tiers([10, 50, 20, 100], 100) is None
        assert plan_tiers([10, 10, 100], 100) is None

    def test_empty_or_non_positive(self):
        assert plan_tiers([], 100) is None
        assert plan_tiers([0, 10], 100) is None


class TestProgressiveCost:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rank,expected_tiers", [
        (1, [10]),
        (7, [10]),
        (10, [10]),
        (11, [10, 20]),
        (20, [10, 20]),
        (35, [10, 20, 50]),
        (99, [10, 20, 50, 100]),
    ])
    async def test_tiers_queried_until_found(self, fake_provider_cls, rank, expected_tiers):
        provider = fake_provider_cls(ranks={"crm": rank})
        outcome = await RankChecker(provider).check("crm", "example.com")

        assert outcome.found is True
        assert outcome.rank == rank
        assert outcome.tiers_queried == expected_tiers
        assert [depth for _, depth in provider.calls] == expected_tiers
        assert outcome.mode == MODE_PROGRESSIVE

    @pytest.mark.asyncio
    async def test_absent_domain_costs_all_four_tiers(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={})
        outcome = await RankChecker(provider).check("crm", "example.com")

        assert outcome.found is False
        assert outcome.rank is None
        assert outcome.matched_url is None
        assert len(provider.calls) == 4
        # 0.002 + 0.004 + 0.010 + 0.020
        assert outcome.cost == pytest.approx(0.036)

    @pytest.mark.asyncio
    async def test_rank_seven_costs_one_shallow_query(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={"crm": 7})
        outcome = await RankChecker(provider).check("crm", "example.com")
        assert provider.calls == [("crm", 10)]
        assert outcome.cost == pytest.approx(0.002)

    @pytest.mark.asyncio
    async def test_bulk_style_provider_uses_single_query(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={"crm": 7}, partial_depth=False)
        checker = RankChecker(provider)
        outcome = await checker.check("crm", "example.com")

        assert checker.mode_for() == MODE_SINGLE
        assert outcome.mode == MODE_SINGLE
        assert provider.calls == [("crm", 100)]

    @pytest.mark.asyncio
    async def test_misordered_tiers_degrade_to_single_query(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={})
        checker = RankChecker(provider, depth_tiers=(50, 10, 100))
        outcome = await checker.check("crm", "example.com")
        assert outcome.mode == MODE_SINGLE
        assert provider.calls == [("crm", 100)]


class TestCheckInputs:

    @pytest.mark.asyncio
    async def test_domain_is_normalized(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={"crm": 3})
        outcome = await RankChecker(provider).check("crm", "https://www.Example.com/page")
        assert outcome.domain == "example.com"

    @pytest.mark.asyncio
    async def test_location_defaults_to_united_states(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={"crm": 3})
        outcome = await RankChecker(provider).check("crm", "example.com")
        assert outcome.location_code == 2840

    @pytest.mark.asyncio
    async def test_location_is_resolved(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={"crm": 3})
        outcome = await RankChecker(provider).check("crm", "example.com", location="Berlin, Germany")
        assert outcome.location_code == 2276

    @pytest.mark.asyncio
    async def test_to_observation_carries_fields(self, fake_provider_cls):
        provider = fake_provider_cls(ranks={"crm": 3})
        outcome = await RankChecker(provider).check("crm", "example.com")
        obs = outcome.to_observation(client_id="c1", keyword_id="k1", difficulty=40)
        assert obs.rank == 3
        assert obs.in_top_100 is True
        assert obs.client_id == "c1"
        assert obs.keyword_id == "k1"
        assert obs.difficulty == 40
        assert obs.source == "incremental-provider"
        assert obs.month == outcome.checked_at.month


class TestCheckErrors:

    @pytest.mark.asyncio
    async def test_unconfigured_provider_fails_before_querying(self, fake_provider_cls):
        provider = fake_provider_cls(configured=False)
        with pytest.raises(ProviderNotConfiguredError):
            await RankChecker(provider).check("crm", "example.com")
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_typed_errors_propagate(self, fake_provider_cls):
        provider = fake_provider_cls(errors={"crm": [AuthenticationError("bad login")]})
        with pytest.raises(AuthenticationError):
            await RankChecker(provider).check("crm", "example.com")

    @pytest.mark.asyncio
    async def test_raw_exceptions_are_classified(self, fake_provider_cls):
        provider = fake_provider_cls(errors={
            "crm": [httpx.ConnectError("socket hang up")],
            "erp": [httpx.ReadTimeout("slow")],
        })
        checker = RankChecker(provider)
        with pytest.raises(TransientNetworkError):
            await checker.check("crm", "example.com")
        with pytest.raises(RankTimeoutError):
            await checker.check("erp", "example.com")


class TestPacing:

    @pytest.mark.asyncio
    async def test_gate_is_awaited_before_each_tier(self, fake_provider_cls, no_sleep):
        now = [0.0]
        gate = PacingGate(global_interval=2.0, clock=lambda: now[0], sleep=no_sleep)
        provider = fake_provider_cls(ranks={"crm": 35})
        await RankChecker(provider, gate=gate).check("crm", "example.com")

        # Clock never advances, so every tier after the first waits 2s.
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 2.0]
