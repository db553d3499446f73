"""
Resolution Oracle — FastAPI Backend
"""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from oracle.agent.orchestrator import ResolutionOrchestrator, build_orchestrator
from oracle.api import agents, health, markets, sources, ws
from oracle.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[], ResolutionOrchestrator]


def _mask(val: str) -> str:
    if not val:
        return "(empty)"
    if len(val) <= 8:
        return "***"
    return val[:4] + "..." + val[-4:]


def create_app(orchestrator_factory: Optional[OrchestratorFactory] = None) -> FastAPI:
    factory = orchestrator_factory or build_orchestrator

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=== Resolution Oracle Starting ===")
        logger.info(f"  agent_timeout_seconds      : {settings.agent_timeout_seconds}")
        logger.info(f"  max_resolution_time_seconds: {settings.max_resolution_time_seconds}")
        logger.info(f"  dispute_window_seconds     : {settings.dispute_window_seconds}")
        logger.info(f"  coingecko_api_key          : {_mask(settings.coingecko_api_key)}")
        logger.info(f"  newsapi_api_key            : {_mask(settings.newsapi_api_key)}")
        logger.info(f"  settlement_base_url        : {settings.settlement_base_url or '(in-memory)'}")
        if not settings.newsapi_api_key:
            logger.warning("NEWSAPI_API_KEY is empty -- news evidence will be skipped")

        orchestrator = factory()
        await orchestrator.start()
        app.state.orchestrator = orchestrator
        try:
            yield
        finally:
            await orchestrator.stop()
            app.state.orchestrator = None

    app = FastAPI(
        title=settings.app_name,
        description="Multi-agent consensus oracle for prediction-market resolution",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(health.router, tags=["health"])
    app.include_router(markets.router, prefix="/api/markets", tags=["markets"])
    app.include_router(agents.router, prefix="/api/agents", tags=["agents"])
    app.include_router(sources.router, prefix="/api/sources", tags=["sources"])
    app.include_router(ws.router, prefix="/ws", tags=["websocket"])
    return app


app = create_app()


def serve() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("oracle.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
