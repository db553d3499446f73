"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends

from oracle.agent.orchestrator import ResolutionOrchestrator
from oracle.api.deps import get_orchestrator
from oracle.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.app_name}


@router.get("/api/health/status")
async def oracle_status(orchestrator: ResolutionOrchestrator = Depends(get_orchestrator)):
    """Orchestrator, agent, consensus-engine and data-source status."""
    status = orchestrator.status()
    agents_healthy = all(agent["healthy"] for agent in status["agents"])
    return {
        "status": "ok" if agents_healthy else "degraded",
        **status,
    }


@router.get("/api/health/config")
async def config_check():
    """Diagnostic endpoint: shows whether provider keys are configured (no secrets)."""
    return {
        "coingecko_api_key_set": bool(settings.coingecko_api_key),
        "newsapi_api_key_set": bool(settings.newsapi_api_key),
        "settlement": "http" if settings.settlement_base_url else "in-memory",
        "agent_timeout_seconds": settings.agent_timeout_seconds,
        "max_resolution_time_seconds": settings.max_resolution_time_seconds,
        "dispute_window_seconds": settings.dispute_window_seconds,
    }
