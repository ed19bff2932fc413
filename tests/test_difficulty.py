"""Tests for the LLM-backed difficulty estimator and LLM client helpers."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rank_engine.integrations.llm_client import BudgetExceededError, LLMClient
from rank_engine.modules.rank_tracker.difficulty import KeywordDifficultyEstimator


class TestKeywordDifficultyEstimator:

    @pytest.mark.asyncio
    async def test_returns_score(self, mock_llm_client):
        estimator = KeywordDifficultyEstimator(mock_llm_client)
        assert await estimator.estimate("crm software", "United States") == 42
        prompt = mock_llm_client.generate_json.await_args.kwargs["prompt"]
        assert "crm software" in prompt
        assert "United States" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw,expected", [
        ({"difficulty": 140}, 100),
        ({"difficulty": -3}, 0),
        ({"difficulty": "57.6"}, 58),
    ])
    async def test_clamped_and_rounded(self, mock_llm_client, raw, expected):
        mock_llm_client.generate_json.return_value = raw
        assert await KeywordDifficultyEstimator(mock_llm_client).estimate("crm") == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [{"difficulty": None}, {"other": 1}, "hard"])
    async def test_unusable_payload_is_none(self, mock_llm_client, raw):
        mock_llm_client.generate_json.return_value = raw
        assert await KeywordDifficultyEstimator(mock_llm_client).estimate("crm") is None

    @pytest.mark.asyncio
    async def test_llm_error_is_none(self, mock_llm_client):
        mock_llm_client.generate_json.side_effect = ValueError("LLM returned invalid JSON")
        assert await KeywordDifficultyEstimator(mock_llm_client).estimate("crm") is None

    @pytest.mark.asyncio
    async def test_no_client(self):
        assert await KeywordDifficultyEstimator().estimate("crm") is None

    @pytest.mark.asyncio
    async def test_unconfigured_client_is_not_called(self, mock_llm_client):
        mock_llm_client.is_configured = False
        assert await KeywordDifficultyEstimator(mock_llm_client).estimate("crm") is None
        mock_llm_client.generate_json.assert_not_awaited()


class TestLLMClient:

    def test_unconfigured_without_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert LLMClient().is_configured is False

    @pytest.mark.asyncio
    async def test_generate_text_requires_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            await LLMClient().generate_text("hello")

    @pytest.mark.asyncio
    async def test_generate_json_strips_fences(self):
        client = LLMClient(api_key="sk-test")
        with patch.object(client, "generate_text", AsyncMock(return_value='```json\n{"difficulty": 30}\n```')):
            assert await client.generate_json("x") == {"difficulty": 30}

    @pytest.mark.asyncio
    async def test_generate_json_invalid(self):
        client = LLMClient(api_key="sk-test")
        with patch.object(client, "generate_text", AsyncMock(return_value="not json")):
            with pytest.raises(ValueError):
                await client.generate_json("x")

    @staticmethod
    def _client_with_reply(content='{"difficulty": 10}', **kwargs):
        client = LLMClient(api_key="sk-test", **kwargs)
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = " " + content + " "
        response.usage.prompt_tokens = 1000
        response.usage.completion_tokens = 1000
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=response)
        return client

    @pytest.mark.asyncio
    async def test_usage_is_tracked(self):
        client = self._client_with_reply()
        text = await client.generate_text("x")
        assert text == '{"difficulty": 10}'
        summary = client.get_usage_summary()
        assert summary["total_requests"] == 1
        assert summary["total_cost_usd"] == pytest.approx(0.00075)

    @pytest.mark.asyncio
    async def test_repeated_prompt_is_served_from_cache(self):
        client = self._client_with_reply()
        await client.generate_text("difficulty of crm")
        await client.generate_text("difficulty of crm")
        assert client._client.chat.completions.create.await_count == 1
        assert client.get_usage_summary()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_budget_blocks_further_calls(self):
        client = self._client_with_reply(monthly_budget_usd=0.0005)
        await client.generate_text("first")
        with pytest.raises(BudgetExceededError):
            await client.generate_text("second")

    @pytest.mark.asyncio
    async def test_budget_error_does_not_block_estimate(self):
        client = self._client_with_reply(monthly_budget_usd=0.0)
        assert await KeywordDifficultyEstimator(client).estimate("crm") is None
