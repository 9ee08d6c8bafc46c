"""
pump.fun market data client.

Combines two APIs per coin:
- frontend-api-v3 /coins/{mint}: USD market cap, SOL market cap, graduation
- advanced-api-v2 /coins/metadata/{mint}: volume (SOL), holders, fallback market cap

Either call may fail on its own; the result is built from whatever answered.
The SOL/USD rate is derived from the v3 payload to convert volume to USD.
"""
import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Optional

import httpx
import structlog

from src.config.settings import settings
from src.fetchers.base import BaseClient

logger = structlog.get_logger()

# pump.fun tokens are minted with 6 decimals
TOKEN_DECIMALS = 6


@dataclass
class MarketData:
    """Aggregate market data for one coin."""

    market_cap: float = 0.0  # USD
    volume: float = 0.0  # USD when a SOL rate is known, else SOL
    holders: int = 0
    price_usd: float = 0.0
    graduated: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def _to_float(value: Any) -> float:
    """Parse API numbers that may arrive as strings or be missing."""
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def parse_market_data(
    v3_data: Optional[dict[str, Any]],
    advanced_data: Optional[dict[str, Any]],
) -> Optional[MarketData]:
    """
    Merge the two API payloads.

    Returns None when neither API produced data.
    """
    if v3_data is None and advanced_data is None:
        return None

    data = MarketData()
    sol_price_usd = 0.0

    if v3_data is not None:
        data.market_cap = _to_float(v3_data.get("usd_market_cap"))
        data.graduated = bool(v3_data.get("complete") or False)
        market_cap_sol = _to_float(v3_data.get("market_cap"))
        if market_cap_sol > 0:
            sol_price_usd = data.market_cap / market_cap_sol
        # total_supply is in raw base units
        supply = _to_float(v3_data.get("total_supply")) / 10 ** TOKEN_DECIMALS
        if supply > 0:
            data.price_usd = data.market_cap / supply

    if advanced_data is not None:
        volume_sol = _to_float(advanced_data.get("volume"))
        data.volume = volume_sol * sol_price_usd if sol_price_usd > 0 else volume_sol
        data.holders = _to_int(
            advanced_data.get("num_holders_v2") or advanced_data.get("num_holders")
        )
        if not data.market_cap:
            data.market_cap = _to_float(advanced_data.get("marketcap"))

    return data


class PumpClient:
    """Client for pump.fun coin market data."""

    def __init__(
        self,
        frontend_base: Optional[str] = None,
        advanced_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize clients for both APIs.

        Args:
            frontend_base: frontend-api-v3 base URL (defaults to settings)
            advanced_base: advanced-api-v2 base URL (defaults to settings)
            transport: Custom httpx transport (tests)
        """
        self.frontend = BaseClient(
            base_url=frontend_base or settings.pump_frontend_api_base,
            rate_limit=settings.pump_rate_limit,
            transport=transport,
        )
        self.advanced = BaseClient(
            base_url=advanced_base or settings.pump_advanced_api_base,
            rate_limit=settings.pump_rate_limit,
            transport=transport,
        )

    async def get_coin(self, mint: str) -> Optional[dict[str, Any]]:
        """Raw frontend-api-v3 coin payload."""
        return await self.frontend.get(f"/coins/{mint}")

    async def get_coin_metadata(self, mint: str) -> Optional[dict[str, Any]]:
        """Raw advanced-api-v2 coin metadata payload."""
        return await self.advanced.get(f"/coins/metadata/{mint}")

    async def fetch_market_data(self, mint: str) -> Optional[MarketData]:
        """
        Fetch market data for a coin from both APIs in parallel.

        Never raises; unknown coins and API failures yield None.
        """
        v3_result, advanced_result = await asyncio.gather(
            self.get_coin(mint),
            self.get_coin_metadata(mint),
            return_exceptions=True,
        )

        v3_data = self._unwrap(v3_result, mint, "frontend-v3")
        advanced_data = self._unwrap(advanced_result, mint, "advanced-v2")

        data = parse_market_data(v3_data, advanced_data)
        if data is not None:
            logger.debug(
                "Pump.fun market data",
                mint=mint[:8],
                market_cap=round(data.market_cap, 2),
                volume=round(data.volume, 2),
                holders=data.holders,
            )
        return data

    @staticmethod
    def _unwrap(result: Any, mint: str, source: str) -> Optional[dict[str, Any]]:
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.debug("Market data source failed", source=source, mint=mint[:8], error=str(result))
            return None
        if not isinstance(result, dict):
            return None
        return result

    async def close(self) -> None:
        await self.frontend.close()
        await self.advanced.close()

    async def __aenter__(self) -> "PumpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
