import asyncio
import json

import httpx
import pytest

from oracle.errors import InvalidSubject, OracleError
from oracle.models.schemas import DisputeDecision, ResolutionOutcome, SubjectStatus
from oracle.services.settlement import HttpSettlementClient, InMemorySettlementLedger

from helpers import make_subject


def _outcome(subject_id="m1"):
    return ResolutionOutcome(subject_id=subject_id, outcome="YES", confidence=0.8, resolved=True)


def _decision():
    return DisputeDecision(outcome="DISPUTE_RESOLVED", confidence=0.8, evidence=["recount"])


# ── In-memory ledger ─────────────────────────

def test_ledger_records_resolution_and_updates_status():
    ledger = InMemorySettlementLedger([make_subject("m1")])

    reference = asyncio.run(ledger.submit(_outcome()))
    subject = asyncio.run(ledger.get_subject("m1"))

    assert reference.startswith("0x") and len(reference) == 66
    assert ledger.resolutions["m1"][0].settlement_reference == reference
    assert subject.status == SubjectStatus.RESOLVED


def test_ledger_dispute_marks_market_disputed():
    ledger = InMemorySettlementLedger([make_subject("m1")])

    reference = asyncio.run(ledger.submit_dispute_resolution("m1", _decision()))

    assert reference.startswith("0x")
    assert [d.evidence for d in ledger.disputes["m1"]] == [["recount"]]
    assert asyncio.run(ledger.get_subject("m1")).status == SubjectStatus.DISPUTED


def test_ledger_unknown_market():
    ledger = InMemorySettlementLedger()

    with pytest.raises(InvalidSubject, match="Market nope not found"):
        asyncio.run(ledger.get_subject("nope"))
    with pytest.raises(InvalidSubject):
        asyncio.run(ledger.submit(_outcome("nope")))


def test_ledger_register_lists_subjects():
    ledger = InMemorySettlementLedger()
    ledger.register(make_subject("a"))
    ledger.register(make_subject("b"))

    assert [s.id for s in ledger.subjects()] == ["a", "b"]


# ── HTTP client ──────────────────────────────

def _client(handler, api_key="") -> HttpSettlementClient:
    http = httpx.AsyncClient(base_url="https://settle.test", transport=httpx.MockTransport(handler))
    return HttpSettlementClient("https://settle.test", api_key=api_key, client=http)


def test_http_get_subject_parses_market():
    subject = make_subject("m1")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/subjects/m1"
        return httpx.Response(200, json=json.loads(subject.model_dump_json()))

    result = asyncio.run(_client(handler).get_subject("m1"))

    assert result == subject


def test_http_missing_subject_is_invalid():
    client = _client(lambda request: httpx.Response(404, json={"detail": "not found"}))

    with pytest.raises(InvalidSubject):
        asyncio.run(client.get_subject("m9"))


def test_http_submit_returns_reference():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"reference": "0xabc"})

    reference = asyncio.run(_client(handler).submit(_outcome()))

    assert reference == "0xabc"
    assert seen["path"] == "/resolutions"
    assert seen["body"]["subject_id"] == "m1"
    assert seen["body"]["outcome"] == "YES"


def test_http_dispute_posts_to_market():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(200, json={"reference": "0xdef"})

    reference = asyncio.run(_client(handler).submit_dispute_resolution("m1", _decision()))

    assert reference == "0xdef"
    assert seen["path"] == "/subjects/m1/disputes"


def test_http_submit_without_reference_is_an_error():
    client = _client(lambda request: httpx.Response(200, json={}))

    with pytest.raises(OracleError, match="no reference"):
        asyncio.run(client.submit(_outcome()))


def test_http_server_error_propagates():
    client = _client(lambda request: httpx.Response(500))

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.submit(_outcome()))
