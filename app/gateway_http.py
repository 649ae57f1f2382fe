# app/gateway_http.py
import asyncio
import contextlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from trading.enums import Channel, EventKind, OrderType, PositionSide, Side
from trading.errors import CompositeOrderPartialFailure, GatewayError
from trading.event_bus import RollingQueue
from trading.models import CompositeOrderRequest, Order, StreamEvent
from utils.logger import logger

# frontend channel names -> relay channels
_CHANNELS = {"trades": Channel.TRADE, "trade": Channel.TRADE, "depth": Channel.DEPTH,
             "ticker": Channel.TICKER, "kline": Channel.KLINE}

_BROADCAST_KINDS = (EventKind.TRADE, EventKind.DEPTH, EventKind.TICKER, EventKind.KLINE)


class ClientHub:
    """
    Connected dashboard sockets; one relay observer per event kind feeds them all.
    Each socket gets its own drop-oldest queue and writer task, so a stalled
    client only loses its own backlog.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._maxsize = maxsize
        self.clients: Dict[Any, Tuple[RollingQueue, asyncio.Task]] = {}

    def add(self, ws) -> None:
        q = RollingQueue(self._maxsize)
        task = asyncio.get_running_loop().create_task(self._writer(ws, q), name="dashboard-writer")
        self.clients[ws] = (q, task)

    async def remove(self, ws) -> None:
        entry = self.clients.pop(ws, None)
        if entry is None:
            return
        _, task = entry
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def broadcast(self, event: StreamEvent) -> None:
        frame = event.to_dict()
        for q, _ in list(self.clients.values()):
            q.put_nowait(frame)

    async def _writer(self, ws, q: RollingQueue) -> None:
        while True:
            frame = await q.get()
            try:
                await ws.send_json(frame)
            except Exception as e:
                logger.debug(f"drop dashboard client: {e!r}")
                self.clients.pop(ws, None)
                return
            finally:
                q.task_done()


def build_app(container) -> FastAPI:
    app = FastAPI(title="BingX Trading Gateway")
    api = container.api
    relay = container.relay
    hub = ClientHub()
    for kind in _BROADCAST_KINDS:
        container.bus.on(kind, hub.broadcast)
    app.state.hub = hub

    class MarketOrderReq(BaseModel):
        symbol: str
        side: Side
        positionSide: PositionSide
        quantity: float

    class LimitOrderReq(MarketOrderReq):
        price: float

    class RiskOrderReq(MarketOrderReq):
        orderType: OrderType = OrderType.LIMIT
        price: Optional[float] = None
        stopLoss: Optional[float] = None
        takeProfit: Optional[float] = None

    class CancelReq(BaseModel):
        symbol: str
        orderId: str

    class ClosePositionReq(BaseModel):
        symbol: str
        positionSide: PositionSide

    class LeverageReq(BaseModel):
        symbol: str
        leverage: int
        side: PositionSide

    @app.exception_handler(CompositeOrderPartialFailure)
    async def _partial_failure(_, exc: CompositeOrderPartialFailure):
        legs = {name: ({"ok": True, "response": leg.response} if leg.ok else {"ok": False, "error": str(leg.error)})
                for name, leg in exc.legs.items()}
        return JSONResponse(status_code=502, content={"error": str(exc), "mainOrder": exc.primary, "legs": legs})

    @app.exception_handler(GatewayError)
    async def _gateway_error(_, exc: GatewayError):
        return JSONResponse(status_code=502, content={
            "error": str(exc), "status": exc.status, "code": exc.code, "body": exc.payload or None,
        })

    @app.get("/api/health")
    async def health():
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat(),
                "stream": relay.state.value}

    # ---- market ----
    @app.get("/api/market/price/{symbol}")
    async def price(symbol: str):
        return await api.get_price(symbol)

    @app.get("/api/market/depth/{symbol}")
    async def depth(symbol: str, limit: int = 20):
        return await api.get_order_book(symbol, limit)

    @app.get("/api/market/klines/{symbol}")
    async def klines(symbol: str, interval: str = "1m", limit: int = 500):
        return await api.get_klines(symbol, interval, limit)

    @app.get("/api/market/contracts")
    async def contracts():
        return await api.get_all_contracts()

    @app.get("/api/market/trades/{symbol}")
    async def trades(symbol: str, limit: int = 100):
        return await api.get_recent_trades(symbol, limit)

    # ---- account ----
    @app.get("/api/account/balance")
    async def balance():
        return await api.get_balance()

    @app.get("/api/account/positions")
    async def positions(symbol: Optional[str] = None):
        return await api.get_positions(symbol)

    # ---- trade ----
    @app.post("/api/trade/market")
    async def market(req: MarketOrderReq):
        return await api.market_order(req.symbol, req.side, req.positionSide, req.quantity)

    @app.post("/api/trade/limit")
    async def limit(req: LimitOrderReq):
        return await api.limit_order(req.symbol, req.side, req.positionSide, req.quantity, req.price)

    @app.post("/api/trade/order-with-risk")
    async def order_with_risk(req: RiskOrderReq):
        is_market = req.orderType is OrderType.MARKET
        # a zero trigger price means "no leg"
        stop_loss = req.stopLoss or None
        take_profit = req.takeProfit or None
        order = Order(
            symbol=req.symbol, side=req.side, position_side=req.positionSide,
            type=OrderType.MARKET if is_market else OrderType.LIMIT,
            quantity=req.quantity, price=None if is_market else req.price,
        )
        result = await api.place_order_with_risk(
            CompositeOrderRequest(order=order, stop_loss=stop_loss, take_profit=take_profit)
        )
        return {
            "mainOrder": result.primary,
            "riskManagement": {"stopLoss": stop_loss, "takeProfit": take_profit},
            "legs": {name: leg.response for name, leg in result.legs.items()},
        }

    @app.delete("/api/trade/order")
    async def cancel(req: CancelReq):
        return await api.cancel_order(req.symbol, req.orderId)

    @app.delete("/api/trade/all-orders/{symbol}")
    async def cancel_all(symbol: str):
        return await api.cancel_all_orders(symbol)

    @app.get("/api/trade/orders")
    async def open_orders(symbol: Optional[str] = None):
        return await api.get_open_orders(symbol)

    @app.post("/api/trade/close-position")
    async def close_position(req: ClosePositionReq):
        return await api.close_position(req.symbol, req.positionSide)

    @app.post("/api/trade/leverage")
    async def leverage(req: LeverageReq):
        return await api.set_leverage(req.symbol, req.leverage, req.side)

    # ---- dashboard stream ----
    @app.websocket("/ws")
    async def stream(ws: WebSocket):
        await ws.accept()
        logger.info("Dashboard client connected")
        await ws.send_json({"type": "connected", "message": "Connected to trading terminal"})
        hub.add(ws)
        try:
            while True:
                text = await ws.receive_text()
                try:
                    msg: Dict[str, Any] = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning(f"dashboard sent invalid json: {text[:128]}")
                    continue
                if not isinstance(msg, dict) or msg.get("type") != "subscribe":
                    continue
                channel = _CHANNELS.get(str(msg.get("channel", "")))
                if channel is None or not msg.get("symbol"):
                    await ws.send_json({"type": "error", "message": f"unknown channel {msg.get('channel')}"})
                    continue
                sub = await relay.subscribe(msg["symbol"], channel, msg.get("interval"))
                await ws.send_json({"type": "subscribed", "dataType": sub.data_type})
        except WebSocketDisconnect:
            pass
        finally:
            await hub.remove(ws)
            logger.info("Dashboard client disconnected")

    return app
