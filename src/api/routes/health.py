"""
Health check endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from src.api.routes.coins import get_broker
from src.streaming.broker import FanOutBroker

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/detailed")
async def detailed_health_check(broker: FanOutBroker = Depends(get_broker)):
    """
    Detailed health check including the upstream feed and broker state.
    """
    upstream = broker.bridge.get_stats()

    if broker.is_shutdown:
        status = "stopped"
    elif upstream["connected"]:
        status = "healthy"
    else:
        # Browsers keep their subscriptions; updates resume after reconnect
        status = "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "upstream": upstream,
            "broker": broker.get_stats(),
        },
    }
