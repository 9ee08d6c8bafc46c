"""
FastAPI application for the launchpad live coin stream.

This API provides:
- Browser WebSocket at /ws for live coinUpdate messages
- Coin market data, market-cap history and candles
- Health and stream statistics
"""
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from src.api.routes import coins, health
from src.fetchers.pump import PumpClient
from src.streaming.service import init_streaming

logger = structlog.get_logger()

SERVICE_NAME = "Launchpad Live Stream"
VERSION = "1.0.0"


def create_app(
    pump_client: Optional[PumpClient] = None,
    connect_factory: Optional[Callable[..., Any]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        pump_client: Market data client (created on startup if None)
        connect_factory: Replacement for websockets.connect (upstream feed)
        clock: Epoch-milliseconds clock for the broker
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting launchpad live stream")
        client = pump_client or PumpClient()
        app.state.pump_client = client
        broker = init_streaming(
            app,
            client.fetch_market_data,
            connect_factory=connect_factory,
            clock=clock,
        )
        try:
            yield
        finally:
            logger.info("Shutting down launchpad live stream")
            await broker.shutdown()
            await client.close()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Real-time market data fan-out for launchpad coin threads",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(coins.router, prefix="/api", tags=["Coins"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": SERVICE_NAME,
            "version": VERSION,
            "docs": "/docs",
        }

    return app


app = create_app()
