"""Agent health endpoints."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from oracle.agent.orchestrator import ResolutionOrchestrator
from oracle.api.deps import get_orchestrator
from oracle.models.schemas import AgentHealth

router = APIRouter()


@router.get("", response_model=List[AgentHealth])
async def list_agents(orchestrator: ResolutionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.agent_health()


@router.get("/{agent_id}", response_model=AgentHealth)
async def get_agent(agent_id: str, orchestrator: ResolutionOrchestrator = Depends(get_orchestrator)):
    agent = orchestrator.agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent {agent_id} not found")
    return agent.health()
