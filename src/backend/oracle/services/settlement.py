"""
Settlement layer — reads market metadata and records final decisions.

Two implementations share the ``SettlementClient`` protocol:
  - InMemorySettlementLedger: process-local ledger for development, tests and the CLI
  - HttpSettlementClient: thin JSON client for a remote settlement service
"""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Dict, List, Optional, Protocol

import httpx

from oracle.errors import InvalidSubject, OracleError
from oracle.models.schemas import (
    DisputeDecision,
    ResolutionOutcome,
    Subject,
    SubjectStatus,
)

logger = logging.getLogger(__name__)


class SettlementClient(Protocol):
    async def get_subject(self, subject_id: str) -> Subject: ...

    async def submit(self, outcome: ResolutionOutcome) -> str: ...

    async def submit_dispute_resolution(self, subject_id: str, decision: DisputeDecision) -> str: ...


def settlement_reference(payload: str) -> str:
    return "0x" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


class InMemorySettlementLedger:
    """
    Keeps markets and submitted decisions in memory.

    References are the sha256 of the submitted JSON payload.
    """

    def __init__(self, subjects: Optional[List[Subject]] = None):
        self._subjects: Dict[str, Subject] = {s.id: s for s in subjects or []}
        self.resolutions: Dict[str, List[ResolutionOutcome]] = {}
        self.disputes: Dict[str, List[DisputeDecision]] = {}

    def register(self, subject: Subject) -> Subject:
        self._subjects[subject.id] = subject
        logger.info("Registered market %s: %s", subject.id, subject.question)
        return subject

    def subjects(self) -> List[Subject]:
        return list(self._subjects.values())

    async def get_subject(self, subject_id: str) -> Subject:
        subject = self._subjects.get(subject_id)
        if subject is None:
            raise InvalidSubject(subject_id)
        return subject

    async def submit(self, outcome: ResolutionOutcome) -> str:
        subject = await self.get_subject(outcome.subject_id)
        reference = settlement_reference(outcome.model_dump_json())
        self.resolutions.setdefault(outcome.subject_id, []).append(
            outcome.model_copy(update={"settlement_reference": reference})
        )
        self._subjects[subject.id] = subject.model_copy(update={"status": SubjectStatus.RESOLVED})
        logger.info("Recorded resolution for market %s: %s", outcome.subject_id, reference)
        return reference

    async def submit_dispute_resolution(self, subject_id: str, decision: DisputeDecision) -> str:
        subject = await self.get_subject(subject_id)
        payload = json.dumps(
            {"subject_id": subject_id, "decision": decision.model_dump(mode="json")},
            sort_keys=True,
        )
        reference = settlement_reference(payload)
        self.disputes.setdefault(subject_id, []).append(decision)
        self._subjects[subject_id] = subject.model_copy(update={"status": SubjectStatus.DISPUTED})
        logger.info("Recorded dispute resolution for market %s: %s", subject_id, reference)
        return reference


class HttpSettlementClient:
    """
    JSON-over-HTTP settlement client.

    Endpoints:
      GET  /subjects/{id}           → Subject (404 → InvalidSubject)
      POST /resolutions             → {"reference": ...}
      POST /subjects/{id}/disputes  → {"reference": ...}
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, headers=headers
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def get_subject(self, subject_id: str) -> Subject:
        client = await self._get_client()
        resp = await client.get(f"/subjects/{subject_id}")
        if resp.status_code == 404:
            raise InvalidSubject(subject_id)
        resp.raise_for_status()
        return Subject.model_validate(resp.json())

    async def submit(self, outcome: ResolutionOutcome) -> str:
        client = await self._get_client()
        resp = await client.post("/resolutions", json=outcome.model_dump(mode="json"))
        return self._reference(resp, outcome.subject_id)

    async def submit_dispute_resolution(self, subject_id: str, decision: DisputeDecision) -> str:
        client = await self._get_client()
        resp = await client.post(
            f"/subjects/{subject_id}/disputes", json=decision.model_dump(mode="json")
        )
        return self._reference(resp, subject_id)

    @staticmethod
    def _reference(resp: httpx.Response, subject_id: str) -> str:
        if resp.status_code == 404:
            raise InvalidSubject(subject_id)
        resp.raise_for_status()
        reference = resp.json().get("reference")
        if not reference:
            raise OracleError(f"Settlement service returned no reference for market {subject_id}")
        logger.info("Submitted to settlement for market %s: %s", subject_id, reference)
        return reference
