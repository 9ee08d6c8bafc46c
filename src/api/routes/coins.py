"""
Coin market data endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.fetchers.pump import PumpClient
from src.streaming.broker import FanOutBroker
from src.streaming.history import TIMEFRAMES

router = APIRouter()


def get_broker(request: Request) -> FanOutBroker:
    broker = getattr(request.app.state, "broker", None)
    if broker is None:
        raise HTTPException(status_code=503, detail="Stream not initialized")
    return broker


def get_pump_client(request: Request) -> PumpClient:
    client = getattr(request.app.state, "pump_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Market data client not initialized")
    return client


@router.get("/coin/{mint}")
async def get_coin(mint: str, client: PumpClient = Depends(get_pump_client)):
    """
    Current market data for a coin, straight from pump.fun.
    """
    data = await client.fetch_market_data(mint)
    if data is None:
        raise HTTPException(status_code=404, detail="Coin not found")

    return {
        "success": True,
        "mint": mint,
        "marketCap": data.market_cap,
        "volume24h": data.volume,
        "priceUsd": data.price_usd,
        "holders": data.holders,
        "graduated": data.graduated,
    }


@router.get("/coin/{mint}/history")
async def get_price_history(mint: str, broker: FanOutBroker = Depends(get_broker)):
    """
    Market-cap points recorded for a coin, oldest first.
    """
    return {
        "mint": mint,
        "points": broker.get_price_history(mint),
    }


@router.get("/coin/{mint}/candles")
async def get_candles(
    mint: str,
    timeframe: str = Query("1m", description="One of 1m, 5m, 15m, 1h"),
    broker: FanOutBroker = Depends(get_broker),
):
    """
    OHLC candles for a coin, oldest first. The last candle may still be open.
    """
    if timeframe not in TIMEFRAMES:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown timeframe {timeframe!r}, expected one of {', '.join(TIMEFRAMES)}",
        )

    return {
        "mint": mint,
        "timeframe": timeframe,
        "candles": broker.get_candle_history(mint, timeframe),
    }
