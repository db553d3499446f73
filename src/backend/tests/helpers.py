"""Shared builders and test doubles for the oracle test suite."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import List, Optional, Sequence

import httpx

from oracle.models.schemas import (
    AgentKind,
    AgentResponse,
    Assessment,
    EvidenceRecord,
    Subject,
    utcnow,
)
from oracle.services.providers import DataProvider


def make_subject(
    subject_id: str = "m1",
    question: str = "Will the bitcoin price increase this week?",
    category: str = "crypto",
    deadline_hours: float = 24.0,
    age_hours: float = 48.0,
) -> Subject:
    now = utcnow()
    return Subject(
        id=subject_id,
        question=question,
        category=category,
        deadline=now + timedelta(hours=deadline_hours),
        created_at=now - timedelta(hours=age_hours),
    )


def record(
    source: str,
    value,
    reliability: float = 0.9,
    age_minutes: float = 0.0,
    **metadata,
) -> EvidenceRecord:
    return EvidenceRecord.of(
        source,
        value,
        reliability,
        observed_at=utcnow() - timedelta(minutes=age_minutes),
        **metadata,
    )


def response(
    agent_id: str,
    outcome: str,
    confidence: float,
    kind: AgentKind = AgentKind.VALIDATOR,
    duration: float = 0.1,
    reasoning: Optional[List[str]] = None,
) -> AgentResponse:
    return AgentResponse(
        agent_id=agent_id,
        agent_kind=kind,
        outcome=outcome,
        confidence=confidence,
        reasoning=reasoning if reasoning is not None else [f"{agent_id} says {outcome}"],
        duration_seconds=duration,
    )


class StaticProvider(DataProvider):
    """Provider returning a fixed batch, or raising when ``error`` is set."""

    def __init__(
        self,
        provider_id: str,
        records: Sequence[EvidenceRecord] = (),
        keywords: Sequence[str] = ("price",),
        error: Optional[Exception] = None,
        healthy: bool = True,
    ):
        super().__init__(base_url=f"https://{provider_id}.test")
        self.provider_id = provider_id
        self.name = provider_id
        self.keywords = tuple(keywords)
        self.records = list(records)
        self.error = error
        self.healthy = healthy
        self.fetch_count = 0

    async def fetch(self, subject: Subject, client: httpx.AsyncClient) -> List[EvidenceRecord]:
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def ping(self, client: httpx.AsyncClient, timeout: float = 5.0) -> bool:
        return self.healthy


class FixedStrategy:
    """Scoring strategy returning a canned assessment after an optional delay."""

    def __init__(
        self,
        agent_id: str = "fixed",
        kind: AgentKind = AgentKind.VALIDATOR,
        outcome: str = "YES",
        confidence: float = 0.8,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        setup_error: Optional[Exception] = None,
        teardown_error: Optional[Exception] = None,
    ):
        self.agent_id = agent_id
        self.kind = kind
        self.name = f"Fixed {agent_id}"
        self.description = "canned assessment"
        self.outcome = outcome
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.setup_error = setup_error
        self.teardown_error = teardown_error
        self.calls = 0

    async def setup(self) -> None:
        if self.setup_error is not None:
            raise self.setup_error

    async def evaluate(self, evidence, subject) -> Assessment:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Assessment(
            outcome=self.outcome,
            confidence=self.confidence,
            reasoning=[f"{self.agent_id}: {self.outcome}"],
            evidence_used=list(evidence),
        )

    async def teardown(self) -> None:
        if self.teardown_error is not None:
            raise self.teardown_error


def offline_client() -> httpx.AsyncClient:
    """Client whose every request is answered 200 with an empty JSON body."""
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
