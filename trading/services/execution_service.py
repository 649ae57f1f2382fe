# trading/services/execution_service.py
import logging
from typing import Any, Dict, Mapping, Optional, Union

from trading.enums import OrderType, PositionSide, Side
from trading.models import Order


class ExecutionService:
    """
    Signed order placement/cancel and order queries. Stateless: the exchange
    owns order state, acknowledgements are returned unmodified.
    """

    def __init__(self, http_client, endpoints) -> None:
        self._http = http_client
        self._ep = endpoints
        self.log = getattr(http_client, "log", logging.getLogger("ExecutionService"))

    async def place_order(self, order: Union[Order, Mapping[str, Any]]) -> Dict[str, Any]:
        """POST /trade/order"""
        params = order.to_params() if isinstance(order, Order) else dict(order)
        self.log.info(
            f"place_order {params.get('symbol')} {params.get('side')}/{params.get('positionSide')} "
            f"{params.get('type')} qty={params.get('quantity')} px={params.get('price')} "
            f"stop={params.get('stopPrice')}"
        )
        return await self._http.post_private(self._ep.trade_order, params=params)

    async def market_order(self, symbol: str, side: Side, position_side: PositionSide, quantity: Any) -> Dict[str, Any]:
        return await self.place_order(Order(
            symbol=symbol, side=Side(side), position_side=PositionSide(position_side),
            type=OrderType.MARKET, quantity=quantity,
        ))

    async def limit_order(self, symbol: str, side: Side, position_side: PositionSide,
                          quantity: Any, price: Any) -> Dict[str, Any]:
        return await self.place_order(Order(
            symbol=symbol, side=Side(side), position_side=PositionSide(position_side),
            type=OrderType.LIMIT, quantity=quantity, price=price,
        ))

    async def cancel_order(self, symbol: str, order_id: Any) -> Dict[str, Any]:
        """DELETE /trade/order"""
        return await self._http.delete_private(self._ep.trade_order, params={"symbol": symbol, "orderId": order_id})

    async def cancel_all_orders(self, symbol: str) -> Dict[str, Any]:
        """DELETE /trade/allOrders"""
        return await self._http.delete_private(self._ep.trade_all_orders, params={"symbol": symbol})

    async def get_order(self, symbol: str, order_id: Any) -> Dict[str, Any]:
        return await self._http.get_private(self._ep.trade_order, params={"symbol": symbol, "orderId": order_id})

    async def get_open_orders(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        params = {"symbol": symbol} if symbol else {}
        return await self._http.get_private(self._ep.trade_open_orders, params=params)

    async def set_leverage(self, symbol: str, leverage: int, side: PositionSide) -> Dict[str, Any]:
        """POST /trade/leverage; side is LONG or SHORT."""
        return await self._http.post_private(
            self._ep.trade_leverage,
            params={"symbol": symbol, "leverage": leverage, "side": PositionSide(side).value},
        )
