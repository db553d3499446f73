"""
Data providers — the external sources evidence is collected from.

Each provider is a thin HTTP client over a shared ``httpx.AsyncClient`` that
turns one API response into a list of EvidenceRecords. Provider health is
written only by ``ProviderHealthMonitor``'s periodic ticker and read by source
selection in the Evidence Collector.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import httpx

from oracle.config import settings
from oracle.errors import ProviderUnavailable
from oracle.models.schemas import (
    EvidenceRecord,
    ProviderKind,
    ProviderStatus,
    Subject,
    TextValue,
    utcnow,
)

logger = logging.getLogger(__name__)


class DataProvider:
    """
    Base class for an HTTP evidence source.

    Subclasses implement ``fetch``. ``ping`` is shared: a GET against the base
    URL, healthy on any status below 400.
    """

    provider_id: str = "provider"
    name: str = "Data Provider"
    kind: ProviderKind = ProviderKind.WEB
    keywords: Sequence[str] = ()

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        reliability: float = 0.8,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.reliability = reliability
        self.timeout = timeout

        self.healthy = True
        self.last_check: Optional[datetime] = None
        self.last_error: Optional[str] = None

    def matches(self, subject: Subject) -> bool:
        """Whether this provider's keyword rules route the subject here."""
        text = subject.search_text
        return any(keyword in text for keyword in self.keywords)

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    async def fetch(self, subject: Subject, client: httpx.AsyncClient) -> List[EvidenceRecord]:
        raise NotImplementedError

    async def ping(self, client: httpx.AsyncClient, timeout: float = 5.0) -> bool:
        """Liveness probe. Returns False on any request error or a non-success status."""
        try:
            resp = await client.get(self.base_url, headers=self.auth_headers(), timeout=timeout)
        except httpx.HTTPError as e:
            self.last_error = f"{type(e).__name__}: {e}"
            return False
        if resp.status_code >= 400:
            self.last_error = f"HTTP {resp.status_code}"
            return False
        self.last_error = None
        return True

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        try:
            resp = await client.get(
                f"{self.base_url}{path}",
                params=params,
                headers=headers if headers is not None else self.auth_headers(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(self.provider_id, f"{type(e).__name__}: {e}") from e
        if resp.status_code != 200:
            raise ProviderUnavailable(self.provider_id, f"HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderUnavailable(self.provider_id, "invalid JSON body") from e

    def status(self) -> ProviderStatus:
        return ProviderStatus(
            provider_id=self.provider_id,
            name=self.name,
            kind=self.kind,
            base_url=self.base_url,
            reliability=self.reliability,
            healthy=self.healthy,
            last_check=self.last_check,
            last_error=self.last_error,
        )


class CoinGeckoProvider(DataProvider):
    """Spot prices from the CoinGecko simple-price API."""

    provider_id = "coingecko"
    name = "CoinGecko API"
    kind = ProviderKind.FINANCIAL
    keywords = ("price", "financial", "crypto", "bitcoin", "ethereum", "market cap", "stock")

    def __init__(self, coin_ids: Sequence[str] = ("bitcoin",), **kwargs):
        kwargs.setdefault("reliability", 0.9)
        super().__init__(**kwargs)
        self.coin_ids = list(coin_ids)

    def auth_headers(self) -> Dict[str, str]:
        return {"x-cg-demo-api-key": self.api_key} if self.api_key else {}

    def _coins_for(self, subject: Subject) -> List[str]:
        text = subject.search_text
        mentioned = [coin for coin in self.coin_ids if coin in text]
        return mentioned or self.coin_ids

    async def fetch(self, subject: Subject, client: httpx.AsyncClient) -> List[EvidenceRecord]:
        coins = self._coins_for(subject)
        data = await self._get_json(
            client,
            "/simple/price",
            params={
                "ids": ",".join(coins),
                "vs_currencies": "usd",
                "include_last_updated_at": "true",
            },
        )
        records = []
        for coin in coins:
            quote = data.get(coin) or {}
            price = quote.get("usd")
            if not isinstance(price, (int, float)) or isinstance(price, bool):
                continue
            updated = quote.get("last_updated_at")
            observed_at = (
                datetime.fromtimestamp(updated, tz=utcnow().tzinfo)
                if isinstance(updated, (int, float))
                else utcnow()
            )
            records.append(
                EvidenceRecord.of(
                    f"{self.provider_id}-price",
                    float(price),
                    self.reliability,
                    observed_at=observed_at,
                    coin=coin,
                    currency="usd",
                )
            )
        return records


class NewsApiProvider(DataProvider):
    """Headlines from NewsAPI's ``/everything`` search."""

    provider_id = "newsapi"
    name = "News API"
    kind = ProviderKind.NEWS
    keywords = ("news", "event", "announcement", "decision", "election", "launch")

    def __init__(self, page_size: int = 20, **kwargs):
        kwargs.setdefault("reliability", 0.8)
        super().__init__(**kwargs)
        self.page_size = page_size

    def auth_headers(self) -> Dict[str, str]:
        return {"X-Api-Key": self.api_key} if self.api_key else {}

    async def fetch(self, subject: Subject, client: httpx.AsyncClient) -> List[EvidenceRecord]:
        if not self.api_key:
            logger.debug("NewsAPI key not configured, skipping news evidence")
            return []

        data = await self._get_json(
            client,
            "/everything",
            params={"q": subject.question, "pageSize": self.page_size, "sortBy": "publishedAt"},
        )
        records = []
        for article in data.get("articles", []):
            text = " ".join(
                part for part in (article.get("title"), article.get("description")) if part
            )
            if not text:
                continue
            published = article.get("publishedAt")
            try:
                observed_at = datetime.fromisoformat(published.replace("Z", "+00:00"))
            except (AttributeError, ValueError):
                observed_at = utcnow()
            records.append(
                EvidenceRecord(
                    source=f"{self.provider_id}-news",
                    value=TextValue(value=text),
                    observed_at=observed_at,
                    reliability=self.reliability,
                    url=article.get("url"),
                    metadata={"publisher": (article.get("source") or {}).get("name")},
                )
            )
        return records


def default_providers() -> List[DataProvider]:
    """Providers configured from settings."""
    return [
        CoinGeckoProvider(
            coin_ids=settings.coingecko_coin_ids,
            base_url=settings.coingecko_base_url,
            api_key=settings.coingecko_api_key,
            timeout=settings.data_source_timeout_seconds,
        ),
        NewsApiProvider(
            base_url=settings.newsapi_base_url,
            api_key=settings.newsapi_api_key,
            timeout=settings.data_source_timeout_seconds,
        ),
    ]


class ProviderHealthMonitor:
    """
    Periodic liveness polling for a set of providers.

    Owned by the Evidence Collector's lifecycle: ``start()`` spawns the ticker
    task, ``stop()`` signals it and waits for it to exit.
    """

    def __init__(
        self,
        providers: Sequence[DataProvider],
        client: httpx.AsyncClient,
        interval: float = 30.0,
        ping_timeout: float = 5.0,
    ):
        self.providers = list(providers)
        self.client = client
        self.interval = interval
        self.ping_timeout = ping_timeout
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="provider-health-monitor")

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def check_all(self) -> None:
        """Ping every provider concurrently and record the result."""
        results = await asyncio.gather(
            *[p.ping(self.client, timeout=self.ping_timeout) for p in self.providers],
            return_exceptions=True,
        )
        now = utcnow()
        for provider, result in zip(self.providers, results):
            healthy = result is True
            if isinstance(result, BaseException):
                provider.last_error = f"{type(result).__name__}: {result}"
            if provider.healthy and not healthy:
                logger.warning(
                    "Health check failed for source %s: %s", provider.provider_id, provider.last_error
                )
            elif healthy and not provider.healthy:
                logger.info("Source %s recovered", provider.provider_id)
            provider.healthy = healthy
            provider.last_check = now

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.check_all()
            except Exception:
                logger.exception("Provider health check round failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
