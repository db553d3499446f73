"""Request-scoped access to the orchestrator the app lifespan built."""
from fastapi import HTTPException, Request

from oracle.agent.orchestrator import ResolutionOrchestrator


def get_orchestrator(request: Request) -> ResolutionOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None or not orchestrator.initialized:
        raise HTTPException(status_code=503, detail="Oracle not initialized")
    return orchestrator
