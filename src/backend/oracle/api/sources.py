"""Data source status endpoints."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from oracle.agent.orchestrator import ResolutionOrchestrator
from oracle.api.deps import get_orchestrator
from oracle.models.schemas import ProviderStatus

router = APIRouter()


@router.get("", response_model=List[ProviderStatus])
async def list_sources(
    healthy: bool = False,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    """All configured data sources, or only the currently healthy ones."""
    collector = orchestrator.collector
    return collector.healthy_sources() if healthy else collector.sources()
