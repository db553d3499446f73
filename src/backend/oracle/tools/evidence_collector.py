"""
Tool: Evidence Collector

Gathers EvidenceRecords from every data provider relevant to a market, then
acts as the baseline agent: a quick price-trend, news-polarity or generic
read of the same evidence the other agents will see.

Collection runs BEFORE any agent scores; the orchestrator hands the collected
batch to all four agents, this one included.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from oracle.config import settings
from oracle.errors import AgentNotReady, ProviderUnavailable
from oracle.models.schemas import (
    AgentKind,
    Assessment,
    EvidenceRecord,
    NumericValue,
    ProviderStatus,
    Subject,
    TextValue,
)
from oracle.services.providers import DataProvider, ProviderHealthMonitor, default_providers
from oracle.tools.outcomes import (
    NO,
    NO_DATA,
    REQUIRES_VALIDATION,
    UNCERTAIN,
    YES,
    CONFIDENCE_FLOOR,
    clamp_confidence,
    mean,
)

logger = logging.getLogger(__name__)

PRICE_CATEGORIES = ("price", "financial", "crypto")
NEWS_CATEGORIES = ("news", "event")

# Question phrasing that turns a price trend into a directional bet
UPWARD_TERMS = ("increase", "higher")

POSITIVE_INDICATORS = ("yes", "will", "increase", "rise", "grow", "success", "win", "achieve")
NEGATIVE_INDICATORS = ("no", "decrease", "fall", "decline", "fail", "lose", "reject")

_POSITIVE_RE = re.compile(r"\b(" + "|".join(POSITIVE_INDICATORS) + r")\b")
_NEGATIVE_RE = re.compile(r"\b(" + "|".join(NEGATIVE_INDICATORS) + r")\b")


def price_series_trend(prices: List[float]) -> float:
    """Signed first-to-last change of one time-ordered series, relative to its peak."""
    peak = max(abs(p) for p in prices)
    return (prices[-1] - prices[0]) / peak if peak else 0.0


class EvidenceCollectorTool:
    """
    Collects evidence from external providers and scores it as a baseline.

    The httpx client and the provider health ticker are created in ``setup()``
    and released in ``teardown()``. A client passed to the constructor is used
    as-is and left open on teardown.
    """

    agent_id = "evidence_collector"
    kind = AgentKind.COLLECTOR
    name = "Evidence Collector"
    description = "Collects market evidence from external data providers"

    def __init__(
        self,
        providers: Optional[Sequence[DataProvider]] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_evidence_points: Optional[int] = None,
        health_check_interval: Optional[float] = None,
    ):
        self.providers: List[DataProvider] = (
            list(providers) if providers is not None else default_providers()
        )
        self.max_evidence_points = max_evidence_points or settings.max_evidence_points
        self.health_check_interval = health_check_interval or settings.health_check_interval_seconds

        self._client = client
        self._owns_client = client is None
        self._monitor: Optional[ProviderHealthMonitor] = None

    # ── Lifecycle ──────────────────────────────

    async def setup(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.data_source_timeout_seconds)
        self._monitor = ProviderHealthMonitor(
            self.providers,
            self._client,
            interval=self.health_check_interval,
            ping_timeout=settings.health_check_timeout_seconds,
        )
        self._monitor.start()
        logger.info("Evidence collector ready with %d providers", len(self.providers))

    async def teardown(self) -> None:
        if self._monitor is not None:
            await self._monitor.stop()
            self._monitor = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ── Collection ─────────────────────────────

    def sources(self) -> List[ProviderStatus]:
        return [provider.status() for provider in self.providers]

    def healthy_sources(self) -> List[ProviderStatus]:
        return [provider.status() for provider in self.providers if provider.healthy]

    def select_providers(self, subject: Subject) -> List[DataProvider]:
        """
        Healthy providers whose keyword rules match the market.

        Falls back to every healthy provider when no provider matches at all.
        """
        # Health flags are written by the monitor task; read a snapshot once
        snapshot = [(provider, provider.healthy) for provider in self.providers]
        matching = [(p, healthy) for p, healthy in snapshot if p.matches(subject)]
        if matching:
            return [p for p, healthy in matching if healthy]
        return [p for p, healthy in snapshot if healthy]

    async def collect(self, subject: Subject) -> List[EvidenceRecord]:
        """
        Fetch from all relevant providers concurrently.

        A provider failure is logged and skipped; the batch is capped at
        ``max_evidence_points``.
        """
        if self._client is None:
            raise AgentNotReady(self.agent_id)

        selected = self.select_providers(subject)
        if not selected:
            logger.warning("No healthy data sources for market %s", subject.id)
            return []

        logger.info(
            "Collecting evidence for market %s from %s",
            subject.id,
            ", ".join(p.provider_id for p in selected),
        )
        results = await asyncio.gather(
            *[provider.fetch(subject, self._client) for provider in selected],
            return_exceptions=True,
        )

        evidence: List[EvidenceRecord] = []
        for provider, result in zip(selected, results):
            if isinstance(result, ProviderUnavailable):
                logger.warning("Failed to fetch from %s: %s", provider.provider_id, result)
            elif isinstance(result, Exception):
                logger.warning(
                    "Failed to fetch from %s: %s: %s",
                    provider.provider_id,
                    type(result).__name__,
                    result,
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                evidence.extend(result)

        if len(evidence) > self.max_evidence_points:
            logger.info(
                "Truncating %d evidence records to %d", len(evidence), self.max_evidence_points
            )
            evidence = evidence[: self.max_evidence_points]

        logger.info("Collected %d evidence records for market %s", len(evidence), subject.id)
        return evidence

    # ── Baseline scoring ───────────────────────

    async def evaluate(self, evidence: List[EvidenceRecord], subject: Subject) -> Assessment:
        if not evidence:
            return Assessment(
                outcome=NO_DATA,
                confidence=CONFIDENCE_FLOOR,
                reasoning=["No data available for analysis"],
            )

        category = subject.category.lower()
        if any(term in category for term in PRICE_CATEGORIES):
            outcome, confidence, reasoning = self._analyze_price(evidence, subject)
        elif any(term in category for term in NEWS_CATEGORIES):
            outcome, confidence, reasoning = self._analyze_news(evidence)
        else:
            outcome, confidence, reasoning = self._analyze_generic(evidence)

        source_count = len({record.source for record in evidence})
        reasoning.insert(0, f"Analyzed {len(evidence)} data points from {source_count} sources")
        return Assessment(
            outcome=outcome,
            confidence=clamp_confidence(confidence),
            reasoning=reasoning,
            evidence_used=evidence,
        )

    def _analyze_price(self, evidence: List[EvidenceRecord], subject: Subject):
        price_data = [
            r for r in evidence if "price" in r.source or "financial" in r.source
        ]
        if not price_data:
            return UNCERTAIN, 0.3, ["No price data available"]

        reasoning = [
            f"Price data reliability: {mean(r.reliability for r in price_data) * 100:.1f}%"
        ]
        # one series per source and asset
        series: Dict[Tuple[str, Optional[str]], List[float]] = {}
        for r in sorted(price_data, key=lambda r: r.observed_at):
            if isinstance(r.value, NumericValue):
                series.setdefault((r.source, r.metadata.get("coin")), []).append(r.value.value)
        trends = [price_series_trend(prices) for prices in series.values() if len(prices) >= 2]
        if not trends:
            reasoning.append("Not enough price points for a trend")
            return UNCERTAIN, 0.3, reasoning

        question = subject.question.lower()
        if not any(term in question for term in UPWARD_TERMS):
            reasoning.append("Question does not imply a price direction")
            return UNCERTAIN, 0.3, reasoning

        trend = mean(trends)
        direction = "increasing" if trend > 0 else "decreasing"
        reasoning.append(
            f"Price trend: {direction} by {abs(trend) * 100:.1f}% across {len(trends)} series"
        )
        return (YES if trend > 0 else NO), max(CONFIDENCE_FLOOR, min(0.9, 0.5 + abs(trend))), reasoning

    def _analyze_news(self, evidence: List[EvidenceRecord]):
        news_data = [r for r in evidence if "news" in r.source or "article" in r.source]
        if not news_data:
            return UNCERTAIN, 0.3, ["No news data available"]

        positive = negative = 0
        for record in news_data:
            text = (
                record.value.normalised
                if isinstance(record.value, TextValue)
                else str(record.value.value).lower()
            )
            if _POSITIVE_RE.search(text):
                positive += 1
            if _NEGATIVE_RE.search(text):
                negative += 1

        reasoning = [f"Found {positive} positive and {negative} negative indicators"]
        if positive > negative:
            return YES, 0.6 + (positive / len(news_data)) * 0.3, reasoning
        if negative > positive:
            return NO, 0.6 + (negative / len(news_data)) * 0.3, reasoning
        return UNCERTAIN, 0.4, reasoning

    def _analyze_generic(self, evidence: List[EvidenceRecord]):
        avg_reliability = mean(r.reliability for r in evidence)
        return (
            REQUIRES_VALIDATION,
            min(0.7, 0.3 + avg_reliability * 0.4),
            [f"Average source reliability: {avg_reliability * 100:.1f}%"],
        )
