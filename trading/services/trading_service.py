# trading/services/trading_service.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

from trading.enums import OrderType, PositionSide
from trading.errors import CompositeOrderPartialFailure
from trading.models import CompositeOrderRequest, CompositeOrderResult, LegResult, Order
from trading.services.account_service import AccountService
from trading.services.execution_service import ExecutionService

NO_POSITION = {"message": "No position to close"}
NO_POSITION_FOR_SIDE = {"message": "No position found for the specified side"}


class TradingService:
    """
    Multi-call trading flows: closing a position and attaching stop-loss /
    take-profit legs. None of these are atomic and nothing is rolled back;
    after a CompositeOrderPartialFailure the caller has to reconcile.
    """

    def __init__(self, exec_svc: ExecutionService, account_svc: AccountService,
                 logger: Optional[logging.Logger] = None) -> None:
        self._exec = exec_svc
        self._account = account_svc
        self._log = logger or getattr(exec_svc, "log", logging.getLogger("TradingService"))

    async def close_position(self, symbol: str, position_side: PositionSide) -> Dict[str, Any]:
        """Read positions, then market-close the matching side. The position may move in between."""
        position_side = PositionSide(position_side)
        resp = await self._account.get_positions(symbol)
        if not (resp or {}).get("data"):
            return dict(NO_POSITION)

        row = self._account.find_position(resp, position_side)
        if row is None:
            return dict(NO_POSITION_FOR_SIDE)

        size = self._account.position_size(row)
        if not size:
            return dict(NO_POSITION_FOR_SIDE)

        self._log.info(f"close_position {symbol} {position_side.value} size={size}")
        return await self._exec.market_order(symbol, position_side.closing_side, position_side, size)

    @staticmethod
    def _risk_legs(symbol: str, position_side: PositionSide,
                   stop_loss: Optional[Any], take_profit: Optional[Any]) -> List[tuple]:
        side = position_side.closing_side
        legs = []
        if stop_loss is not None:
            legs.append(("stop_loss", Order(symbol=symbol, side=side, position_side=position_side,
                                            type=OrderType.STOP_MARKET, stop_price=stop_loss)))
        if take_profit is not None:
            legs.append(("take_profit", Order(symbol=symbol, side=side, position_side=position_side,
                                              type=OrderType.TAKE_PROFIT_MARKET, stop_price=take_profit)))
        return legs

    async def _place_legs(self, symbol: str, position_side: PositionSide,
                          stop_loss: Optional[Any], take_profit: Optional[Any]) -> Dict[str, LegResult]:
        legs = self._risk_legs(symbol, position_side, stop_loss, take_profit)
        if not legs:
            return {}
        # both legs run to completion before we look at either outcome
        outcomes = await asyncio.gather(
            *(self._exec.place_order(order) for _, order in legs),
            return_exceptions=True,
        )
        results: Dict[str, LegResult] = {}
        for (name, order), out in zip(legs, outcomes):
            if isinstance(out, BaseException):
                if isinstance(out, asyncio.CancelledError):
                    raise out
                self._log.error(f"{name} leg failed for {symbol} {position_side.value}: {out}")
                results[name] = LegResult(name=name, order=order, error=out)
            else:
                results[name] = LegResult(name=name, order=order, response=out)
        return results

    async def add_stop_loss_take_profit(self, symbol: str, position_side: PositionSide,
                                        stop_loss: Optional[Any] = None,
                                        take_profit: Optional[Any] = None) -> List[Dict[str, Any]]:
        results = await self._place_legs(symbol, PositionSide(position_side), stop_loss, take_profit)
        if any(not leg.ok for leg in results.values()):
            raise CompositeOrderPartialFailure(results)
        return [leg.response for leg in results.values()]

    async def place_order_with_risk(self, req: CompositeOrderRequest) -> CompositeOrderResult:
        """Primary order first; risk legs only after it was accepted."""
        primary = await self._exec.place_order(req.order)
        result = CompositeOrderResult(primary=primary)
        if not req.has_risk_legs:
            return result

        result.legs = await self._place_legs(
            req.order.symbol, PositionSide(req.order.position_side), req.stop_loss, req.take_profit
        )
        if any(not leg.ok for leg in result.legs.values()):
            raise CompositeOrderPartialFailure(result.legs, primary=primary)
        return result
