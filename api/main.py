"""Main FastAPI application for the Helix swap engine."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import EngineConfig
from service import SwapService
from api.dependencies import set_session
from api.models import HealthResponse
from api.routes import trades

logger = logging.getLogger(__name__)


def create_app(config: Optional[EngineConfig] = None) -> FastAPI:
    """Build the API application.

    Args:
        config: Engine configuration, loaded from the environment when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info("Starting Helix swap API...")

        engine_config = config or EngineConfig.from_env()
        engine_config.validate()
        service = SwapService(engine_config)
        await service.start()

        # Set global session instance for dependency injection
        set_session(service.session)
        logger.info("Helix swap API started successfully")

        yield

        logger.info("Stopping Helix swap API...")
        set_session(None)
        await service.stop()
        logger.info("Helix swap API stopped")

    app = FastAPI(
        title="Helix Swap API",
        description="Trade progress for cross-ledger atomic swaps",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(trades.router)

    @app.get("/", response_model=HealthResponse)
    async def root():
        """API health check."""
        return HealthResponse(
            status="online",
            service="Helix Swap API",
            version="1.0.0"
        )

    @app.get("/health")
    async def health_check():
        """Simple health check for monitoring."""
        return {"status": "healthy"}

    return app


app = create_app()
