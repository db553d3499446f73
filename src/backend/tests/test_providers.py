import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from oracle.errors import ProviderUnavailable
from oracle.models.schemas import NumericValue, TextValue
from oracle.services.providers import CoinGeckoProvider, NewsApiProvider, ProviderHealthMonitor

from helpers import make_subject

CG_BASE = "https://cg.test/api/v3"
NEWS_BASE = "https://news.test/v2"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _fetch(provider, handler, subject=None):
    async def scenario():
        async with _client(handler) as client:
            return await provider.fetch(subject or make_subject(), client)

    return asyncio.run(scenario())


def test_coingecko_fetch_builds_numeric_records():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["ids"] = request.url.params["ids"]
        return httpx.Response(
            200, json={"bitcoin": {"usd": 65000.5, "last_updated_at": 1700000000}}
        )

    provider = CoinGeckoProvider(coin_ids=["bitcoin", "ethereum"], base_url=CG_BASE)

    records = _fetch(provider, handler)

    assert seen == {"path": "/api/v3/simple/price", "ids": "bitcoin"}
    assert len(records) == 1
    rec = records[0]
    assert rec.source == "coingecko-price"
    assert rec.value == NumericValue(value=65000.5)
    assert rec.reliability == 0.9
    assert rec.metadata == {"coin": "bitcoin", "currency": "usd"}
    assert rec.observed_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)


def test_coingecko_queries_all_coins_when_none_mentioned():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ids"] = request.url.params["ids"]
        return httpx.Response(200, json={"ethereum": {"usd": 3000}})

    provider = CoinGeckoProvider(coin_ids=["bitcoin", "ethereum"], base_url=CG_BASE)
    subject = make_subject(question="Will crypto market cap rise?")

    records = _fetch(provider, handler, subject)

    assert seen["ids"] == "bitcoin,ethereum"
    assert [r.metadata["coin"] for r in records] == ["ethereum"]


def test_non_success_status_raises_provider_unavailable():
    provider = CoinGeckoProvider(base_url=CG_BASE)

    with pytest.raises(ProviderUnavailable) as exc_info:
        _fetch(provider, lambda request: httpx.Response(429, json={"error": "rate limited"}))

    assert exc_info.value.provider_id == "coingecko"
    assert "HTTP 429" in str(exc_info.value)


def test_transport_error_raises_provider_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderUnavailable):
        _fetch(CoinGeckoProvider(base_url=CG_BASE), handler)


def test_news_without_api_key_makes_no_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"articles": []})

    assert _fetch(NewsApiProvider(base_url=NEWS_BASE), handler) == []
    assert calls == []


def test_news_fetch_builds_text_records():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("X-Api-Key")
        seen["q"] = request.url.params["q"]
        return httpx.Response(
            200,
            json={
                "articles": [
                    {
                        "title": "Launch confirmed",
                        "description": "Agency says yes",
                        "url": "https://news.test/a",
                        "publishedAt": "2024-05-01T12:00:00Z",
                        "source": {"name": "Wire"},
                    },
                    {"title": None, "description": None},
                ]
            },
        )

    provider = NewsApiProvider(base_url=NEWS_BASE, api_key="secret")
    subject = make_subject(question="Will the launch happen?", category="news")

    records = _fetch(provider, handler, subject)

    assert seen == {"path": "/v2/everything", "key": "secret", "q": "Will the launch happen?"}
    assert len(records) == 1
    rec = records[0]
    assert rec.source == "newsapi-news"
    assert rec.value == TextValue(value="Launch confirmed Agency says yes")
    assert rec.url == "https://news.test/a"
    assert rec.observed_at == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert rec.metadata == {"publisher": "Wire"}


def test_ping_reports_status():
    provider = CoinGeckoProvider(base_url=CG_BASE)

    async def scenario(status):
        async with _client(lambda request: httpx.Response(status)) as client:
            return await provider.ping(client)

    assert asyncio.run(scenario(200)) is True
    assert provider.last_error is None
    assert asyncio.run(scenario(500)) is False
    assert provider.last_error == "HTTP 500"


def test_health_monitor_marks_transitions():
    up = CoinGeckoProvider(base_url=CG_BASE)
    down = NewsApiProvider(base_url=NEWS_BASE)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200 if request.url.host == "cg.test" else 503)

    async def scenario():
        async with _client(handler) as client:
            monitor = ProviderHealthMonitor([up, down], client, interval=3600)
            await monitor.check_all()

    asyncio.run(scenario())

    assert up.healthy is True
    assert down.healthy is False
    assert down.last_error == "HTTP 503"
    assert up.last_check is not None
    assert down.status().healthy is False


def test_health_monitor_ticker_starts_and_stops():
    provider = CoinGeckoProvider(base_url=CG_BASE)

    async def scenario():
        async with _client(lambda request: httpx.Response(503)) as client:
            monitor = ProviderHealthMonitor([provider], client, interval=3600)
            monitor.start()
            assert monitor.running
            await asyncio.sleep(0.05)
            await monitor.stop()
            return monitor.running

    assert asyncio.run(scenario()) is False
    assert provider.healthy is False
