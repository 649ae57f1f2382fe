# trading/app/trade_api.py
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from trading.enums import PositionSide, Side
from trading.models import CompositeOrderRequest, CompositeOrderResult, Order
from trading.services.account_service import AccountService
from trading.services.execution_service import ExecutionService
from trading.services.market_service import MarketService
from trading.services.trading_service import TradingService


class TradeAPI:
    """
    Application-facing gateway surface: market data, account queries and
    trading operations over one signed HttpClient. Every call is one (or, for
    composite flows, a few) REST round trips and returns the exchange JSON or
    raises GatewayError.
    """

    def __init__(self,
                 market_svc: MarketService,
                 account_svc: AccountService,
                 exec_svc: ExecutionService,
                 trading_svc: TradingService,
                 logger: Optional[logging.Logger] = None,
                 ):
        self.market_svc = market_svc
        self.account_svc = account_svc
        self.exec_svc = exec_svc
        self.trading_svc = trading_svc
        self.log = logger or exec_svc.log

    @classmethod
    def from_http(cls, http_client, endpoints) -> "TradeAPI":
        account = AccountService(http_client, endpoints)
        execution = ExecutionService(http_client, endpoints)
        return cls(
            market_svc=MarketService(http_client, endpoints),
            account_svc=account,
            exec_svc=execution,
            trading_svc=TradingService(execution, account),
        )

    # ---- market data ----
    async def get_price(self, symbol: str) -> Dict[str, Any]:
        return await self.market_svc.get_price(symbol)

    async def get_order_book(self, symbol: str, limit: int = 20) -> Dict[str, Any]:
        return await self.market_svc.get_order_book(symbol, limit)

    async def get_recent_trades(self, symbol: str, limit: int = 100) -> Dict[str, Any]:
        return await self.market_svc.get_recent_trades(symbol, limit)

    async def get_klines(self, symbol: str, interval: str, limit: int = 500) -> Dict[str, Any]:
        return await self.market_svc.get_klines(symbol, interval, limit)

    async def get_all_contracts(self) -> Dict[str, Any]:
        return await self.market_svc.get_all_contracts()

    # ---- account ----
    async def get_balance(self) -> Dict[str, Any]:
        return await self.account_svc.get_balance()

    async def get_account_info(self) -> Dict[str, Any]:
        return await self.account_svc.get_account_info()

    async def get_positions(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        return await self.account_svc.get_positions(symbol)

    # ---- trading ----
    async def place_order(self, order: Union[Order, Mapping[str, Any]]) -> Dict[str, Any]:
        return await self.exec_svc.place_order(order)

    async def market_order(self, symbol: str, side: Side, position_side: PositionSide, quantity: Any) -> Dict[str, Any]:
        return await self.exec_svc.market_order(symbol, side, position_side, quantity)

    async def limit_order(self, symbol: str, side: Side, position_side: PositionSide,
                          quantity: Any, price: Any) -> Dict[str, Any]:
        return await self.exec_svc.limit_order(symbol, side, position_side, quantity, price)

    async def cancel_order(self, symbol: str, order_id: Any) -> Dict[str, Any]:
        return await self.exec_svc.cancel_order(symbol, order_id)

    async def cancel_all_orders(self, symbol: str) -> Dict[str, Any]:
        return await self.exec_svc.cancel_all_orders(symbol)

    async def get_order(self, symbol: str, order_id: Any) -> Dict[str, Any]:
        return await self.exec_svc.get_order(symbol, order_id)

    async def get_open_orders(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        return await self.exec_svc.get_open_orders(symbol)

    async def set_leverage(self, symbol: str, leverage: int, side: PositionSide) -> Dict[str, Any]:
        return await self.exec_svc.set_leverage(symbol, leverage, side)

    async def close_position(self, symbol: str, position_side: PositionSide) -> Dict[str, Any]:
        return await self.trading_svc.close_position(symbol, position_side)

    async def add_stop_loss_take_profit(self, symbol: str, position_side: PositionSide,
                                        stop_loss: Optional[Any] = None,
                                        take_profit: Optional[Any] = None) -> List[Dict[str, Any]]:
        return await self.trading_svc.add_stop_loss_take_profit(symbol, position_side, stop_loss, take_profit)

    async def place_order_with_risk(self, req: CompositeOrderRequest) -> CompositeOrderResult:
        return await self.trading_svc.place_order_with_risk(req)
