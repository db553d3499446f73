"""
REST API for market registration, resolution and disputes.

Resolution and dispute calls always answer 200 with a ResolutionOutcome;
callers branch on ``resolved``. Only lookups map an unknown market to 404.
"""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException

from oracle.agent.orchestrator import ResolutionOrchestrator
from oracle.api.deps import get_orchestrator
from oracle.errors import InvalidSubject
from oracle.models.schemas import (
    DisputeRequest,
    ResolutionOutcome,
    StageResponse,
    Subject,
    SubjectRegistration,
)
from oracle.services.settlement import InMemorySettlementLedger

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=Subject, status_code=201)
async def register_market(
    registration: SubjectRegistration,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    """Register a market with the in-memory ledger."""
    ledger = orchestrator.settlement
    if not isinstance(ledger, InMemorySettlementLedger):
        raise HTTPException(
            status_code=409,
            detail="Markets are owned by the remote settlement service",
        )
    subject = Subject(
        id=registration.id or str(uuid.uuid4())[:8],
        question=registration.question,
        category=registration.category,
        deadline=registration.deadline,
        description=registration.description,
    )
    return ledger.register(subject)


@router.get("/{market_id}", response_model=Subject)
async def get_market(
    market_id: str,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.settlement.get_subject(market_id)
    except InvalidSubject as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{market_id}/resolve", response_model=ResolutionOutcome)
async def resolve_market(
    market_id: str,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    """
    Run (or join) the resolution for a market.

    Concurrent requests for the same market share one run.
    """
    return await orchestrator.resolve(market_id)


@router.post("/{market_id}/dispute", response_model=ResolutionOutcome)
async def dispute_market(
    market_id: str,
    dispute: DisputeRequest,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.handle_dispute(market_id, dispute.evidence)


@router.get("/{market_id}/stage", response_model=StageResponse)
async def market_stage(
    market_id: str,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    return StageResponse(subject_id=market_id, stage=orchestrator.stage(market_id))
