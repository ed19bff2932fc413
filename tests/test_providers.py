"""Provider tests driven through httpx.MockTransport."""

import json

import httpx
import pytest

from rank_engine.integrations.bulk_page_provider import BulkPageProvider
from rank_engine.integrations.incremental_depth_provider import IncrementalDepthProvider
from rank_engine.integrations.serp_provider import find_domain_position
from rank_engine.modules.rank_tracker.errors import (
    AuthenticationError,
    IPNotWhitelistedError,
    MalformedResponseError,
    ProviderNotConfiguredError,
    ProviderTaskError,
    RankTimeoutError,
    RateLimitError,
    TransientNetworkError,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _organic(urls):
    return [{"type": "organic", "url": u} for u in urls]


def _dataforseo_body(items, cost=0.0025, status=20000, message="Ok."):
    return {
        "status_code": 20000,
        "status_message": "Ok.",
        "tasks": [{
            "status_code": status,
            "status_message": message,
            "cost": cost,
            "result": [{"items": items}],
        }],
    }


class TestFindDomainPosition:

    def test_first_match_wins(self):
        urls = ["https://a.com", "https://www.example.com/x", "https://example.com/y"]
        assert find_domain_position(urls, "example.com") == (2, "https://www.example.com/x", 2)

    def test_subdomain_matches(self):
        rank, url, _ = find_domain_position(["https://blog.example.com/post"], "example.com")
        assert rank == 1

    def test_absent(self):
        assert find_domain_position(["https://a.com", "https://b.com"], "example.com") == (None, None, 2)


class TestIncrementalDepthProvider:

    @pytest.mark.asyncio
    async def test_payload_and_rank(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization", "")
            items = [{"type": "paid", "url": "https://ads.com"}] + _organic(
                ["https://a.com", "https://b.com", "https://example.com/crm"]
            )
            return httpx.Response(200, json=_dataforseo_body(items))

        provider = IncrementalDepthProvider("login", "secret", client=_client(handler))
        result = await provider.query("crm", "example.com", "Canada", 20)

        assert seen["body"] == [{
            "keyword": "crm",
            "location_code": 2124,
            "language_code": "en",
            "depth": 20,
        }]
        assert seen["auth"].startswith("Basic ")
        assert result.found is True
        # Paid results are not counted.
        assert result.rank == 3
        assert result.matched_url == "https://example.com/crm"
        assert result.cost == pytest.approx(0.0025)

    @pytest.mark.asyncio
    async def test_not_found_and_null_result(self):
        def handler(request):
            body = _dataforseo_body([])
            body["tasks"][0]["result"] = None
            return httpx.Response(200, json=body)

        provider = IncrementalDepthProvider("login", "secret", client=_client(handler))
        result = await provider.query("crm", "example.com", "United States", 10)
        assert result.found is False
        assert result.rank is None

    @pytest.mark.asyncio
    async def test_cost_estimate_when_missing(self):
        def handler(request):
            body = _dataforseo_body(_organic(["https://a.com"]))
            del body["tasks"][0]["cost"]
            return httpx.Response(200, json=body)

        provider = IncrementalDepthProvider(
            "login", "secret", cost_per_page=0.001, client=_client(handler)
        )
        result = await provider.query("crm", "example.com", "United States", 50)
        assert result.cost == pytest.approx(0.005)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,message,error", [
        (40104, "Please whitelist your IP", IPNotWhitelistedError),
        (40100, "You are not authorized", AuthenticationError),
        (40202, "Rate limit exceeded", RateLimitError),
        (40501, "Invalid field: depth", ProviderTaskError),
    ])
    async def test_task_status_errors(self, status, message, error):
        def handler(request):
            return httpx.Response(200, json=_dataforseo_body([], status=status, message=message))

        provider = IncrementalDepthProvider("login", "secret", client=_client(handler))
        with pytest.raises(error) as excinfo:
            await provider.query("crm", "example.com", "United States", 10)
        assert message in excinfo.value.message

    @pytest.mark.asyncio
    async def test_http_401_is_auth_error(self):
        provider = IncrementalDepthProvider(
            "login", "secret",
            client=_client(lambda request: httpx.Response(401, text="Unauthorized")),
        )
        with pytest.raises(AuthenticationError):
            await provider.query("crm", "example.com", "United States", 10)

    @pytest.mark.asyncio
    async def test_connection_reset_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("socket hang up", request=request)

        provider = IncrementalDepthProvider("login", "secret", client=_client(handler))
        with pytest.raises(TransientNetworkError) as excinfo:
            await provider.query("crm", "example.com", "United States", 10)
        assert excinfo.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider = IncrementalDepthProvider("login", "secret", client=_client(handler))
        with pytest.raises(RankTimeoutError):
            await provider.query("crm", "example.com", "United States", 10)

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        provider = IncrementalDepthProvider(
            "login", "secret",
            client=_client(lambda request: httpx.Response(200, text="<html>oops</html>")),
        )
        with pytest.raises(MalformedResponseError):
            await provider.query("crm", "example.com", "United States", 10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mutate", [
        lambda body: body["tasks"].__setitem__(0, "oops"),
        lambda body: body["tasks"][0].__setitem__("result", ["oops"]),
        lambda body: body["tasks"][0]["result"][0].__setitem__("items", {"type": "organic"}),
        lambda body: body["tasks"][0]["result"][0]["items"].append("https://example.com"),
    ])
    async def test_non_object_entries_are_malformed(self, mutate):
        def handler(request):
            body = _dataforseo_body(_organic(["https://other.com"]))
            mutate(body)
            return httpx.Response(200, json=body)

        provider = IncrementalDepthProvider("login", "secret", client=_client(handler))
        with pytest.raises(MalformedResponseError):
            await provider.query("crm", "example.com", "United States", 10)

    @pytest.mark.asyncio
    async def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("DATAFORSEO_LOGIN", raising=False)
        monkeypatch.delenv("DATAFORSEO_PASSWORD", raising=False)
        provider = IncrementalDepthProvider()
        assert provider.is_configured() is False
        with pytest.raises(ProviderNotConfiguredError):
            await provider.query("crm", "example.com", "United States", 10)

    def test_credentials_from_env(self, monkeypatch):
        monkeypatch.setenv("DATAFORSEO_LOGIN", "me")
        monkeypatch.setenv("DATAFORSEO_PASSWORD", "pw")
        assert IncrementalDepthProvider().is_configured() is True


class TestBulkPageProvider:

    @pytest.mark.asyncio
    async def test_pages_are_concatenated(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            page1 = {"content": {"results": {"organic": [{"url": f"https://site{i}.com"} for i in range(10)]}}}
            page2 = {"content": {"results": {"organic": [
                {"url": "https://other.com"},
                {"url": "https://www.example.com/pricing"},
            ]}}}
            return httpx.Response(200, json={"results": [page1, page2]})

        provider = BulkPageProvider("user", "pass", client=_client(handler))
        result = await provider.query("crm", "example.com", "New York", 100)

        assert seen["body"]["pages"] == 10
        assert seen["body"]["geo_location"] == "New York,New York,United States"
        assert seen["body"]["parse"] is True
        assert result.rank == 12
        assert result.matched_url == "https://www.example.com/pricing"
        assert result.cost == pytest.approx(0.02)
        assert provider.supports_partial_depth is False

    @pytest.mark.asyncio
    async def test_missing_results_with_auth_message(self):
        provider = BulkPageProvider(
            "user", "pass",
            client=_client(lambda request: httpx.Response(200, json={"message": "Unauthorized"})),
        )
        with pytest.raises(AuthenticationError):
            await provider.query("crm", "example.com", "United States", 10)

    @pytest.mark.asyncio
    async def test_missing_results_other_message(self):
        provider = BulkPageProvider(
            "user", "pass",
            client=_client(lambda request: httpx.Response(200, json={"message": "Job failed"})),
        )
        with pytest.raises(ProviderTaskError):
            await provider.query("crm", "example.com", "United States", 10)

    @pytest.mark.asyncio
    async def test_results_truncated_to_depth(self):
        def handler(request):
            organic = [{"url": f"https://site{i}.com"} for i in range(10)]
            organic.append({"url": "https://example.com"})
            return httpx.Response(200, json={"results": [{"content": {"results": {"organic": organic}}}]})

        provider = BulkPageProvider("user", "pass", client=_client(handler))
        result = await provider.query("crm", "example.com", "United States", 10)
        assert result.found is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pages", [
        ["not a page"],
        [{"content": {"results": {"organic": ["https://example.com"]}}}],
        [{"content": {"results": {"organic": {"url": "https://example.com"}}}}],
        [{"content": {"results": "html"}}],
    ])
    async def test_non_object_pages_are_malformed(self, pages):
        provider = BulkPageProvider(
            "user", "pass",
            client=_client(lambda request: httpx.Response(200, json={"results": pages})),
        )
        with pytest.raises(MalformedResponseError):
            await provider.query("crm", "example.com", "United States", 10)

    @pytest.mark.asyncio
    async def test_rate_limited_status(self):
        provider = BulkPageProvider(
            "user", "pass",
            client=_client(lambda request: httpx.Response(429, text="Too many requests")),
        )
        with pytest.raises(RateLimitError):
            await provider.query("crm", "example.com", "United States", 10)

    def test_describe(self):
        info = BulkPageProvider("user", "pass").describe()
        assert info["provider"] == "bulk-provider"
        assert info["configured"] is True
        assert info["partial_depth"] is False
