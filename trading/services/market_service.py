# trading/services/market_service.py
from typing import Any, Dict


class MarketService:
    """Public quote endpoints; responses are passed through unchanged."""

    def __init__(self, http_client, endpoints) -> None:
        self._http = http_client
        self._ep = endpoints

    async def get_price(self, symbol: str) -> Dict[str, Any]:
        return await self._http.get_public(self._ep.quote_price, params={"symbol": symbol})

    async def get_order_book(self, symbol: str, limit: int = 20) -> Dict[str, Any]:
        return await self._http.get_public(self._ep.quote_depth, params={"symbol": symbol, "limit": limit})

    async def get_recent_trades(self, symbol: str, limit: int = 100) -> Dict[str, Any]:
        return await self._http.get_public(self._ep.quote_trades, params={"symbol": symbol, "limit": limit})

    async def get_klines(self, symbol: str, interval: str, limit: int = 500) -> Dict[str, Any]:
        # interval: 1m, 3m, 5m, 15m, 30m, 1h, 2h, 4h, 6h, 12h, 1d, 3d, 1w, 1M
        return await self._http.get_public(
            self._ep.quote_klines, params={"symbol": symbol, "interval": interval, "limit": limit}
        )

    async def get_all_contracts(self) -> Dict[str, Any]:
        return await self._http.get_public(self._ep.quote_contracts)
