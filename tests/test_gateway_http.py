# tests/test_gateway_http.py
import asyncio

import pytest
from fastapi.testclient import TestClient

from app.gateway_http import ClientHub, build_app
from trading.enums import Channel, ConnectionState, EventKind, OrderType, PositionSide, Side
from trading.errors import CompositeOrderPartialFailure, GatewayError
from trading.event_bus import EventBus
from trading.models import CompositeOrderResult, LegResult, Order, StreamEvent, Subscription
from conftest import wait_for


class FakeApi:
    def __init__(self):
        self.calls = []
        self.fail_risk = False

    async def get_price(self, symbol):
        self.calls.append(("get_price", symbol))
        return {"code": 0, "data": {"symbol": symbol, "price": "65000.1"}}

    async def market_order(self, symbol, side, position_side, quantity):
        self.calls.append(("market_order", symbol, side, position_side, quantity))
        return {"code": 0, "data": {"order": {"orderId": 1}}}

    async def get_balance(self):
        raise GatewayError(200, "Signature verification failed", {"code": 100001}, code=100001)

    async def cancel_order(self, symbol, order_id):
        self.calls.append(("cancel_order", symbol, order_id))
        return {"code": 0, "data": {}}

    async def close_position(self, symbol, position_side):
        self.calls.append(("close_position", symbol, position_side))
        return {"message": "No position to close"}

    async def place_order_with_risk(self, req):
        self.calls.append(("place_order_with_risk", req))
        leg_order = Order(symbol=req.order.symbol, side=Side.SELL, position_side=PositionSide.LONG,
                          type=OrderType.STOP_MARKET, stop_price=req.stop_loss)
        if self.fail_risk:
            raise CompositeOrderPartialFailure(
                {"stop_loss": LegResult("stop_loss", leg_order, error=GatewayError(200, "rejected", code=1))},
                primary={"code": 0, "data": {"order": {"orderId": 7}}},
            )
        return CompositeOrderResult(
            primary={"code": 0, "data": {"order": {"orderId": 7}}},
            legs={"stop_loss": LegResult("stop_loss", leg_order, response={"code": 0})},
        )


class FakeRelay:
    state = ConnectionState.CONNECTED

    def __init__(self):
        self.subscribed = []

    async def subscribe(self, symbol, channel, interval=None):
        sub = Subscription.of(symbol, channel, interval)
        self.subscribed.append(sub)
        return sub


class FakeContainer:
    def __init__(self):
        self.api = FakeApi()
        self.relay = FakeRelay()
        self.bus = EventBus()


@pytest.fixture
def container():
    return FakeContainer()


@pytest.fixture
def client(container):
    return TestClient(build_app(container))


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "OK"
    assert body["stream"] == "connected"


def test_price_passthrough(client, container):
    resp = client.get("/api/market/price/BTC-USDT")
    assert resp.status_code == 200
    assert resp.json()["data"]["price"] == "65000.1"
    assert container.api.calls == [("get_price", "BTC-USDT")]


def test_market_order_validates_enums(client, container):
    ok = client.post("/api/trade/market",
                     json={"symbol": "BTC-USDT", "side": "BUY", "positionSide": "LONG", "quantity": 0.01})
    assert ok.status_code == 200
    _, symbol, side, pos, qty = container.api.calls[-1]
    assert (symbol, side, pos, qty) == ("BTC-USDT", Side.BUY, PositionSide.LONG, 0.01)

    bad = client.post("/api/trade/market",
                      json={"symbol": "BTC-USDT", "side": "HOLD", "positionSide": "LONG", "quantity": 0.01})
    assert bad.status_code == 422


def test_gateway_error_maps_to_502(client):
    resp = client.get("/api/account/balance")
    assert resp.status_code == 502
    assert resp.json()["code"] == 100001


def test_cancel_order_body(client, container):
    resp = client.request("DELETE", "/api/trade/order", json={"symbol": "BTC-USDT", "orderId": "123"})
    assert resp.status_code == 200
    assert container.api.calls[-1] == ("cancel_order", "BTC-USDT", "123")


def test_close_position(client, container):
    resp = client.post("/api/trade/close-position", json={"symbol": "BTC-USDT", "positionSide": "SHORT"})
    assert resp.json() == {"message": "No position to close"}
    assert container.api.calls[-1] == ("close_position", "BTC-USDT", PositionSide.SHORT)


def test_order_with_risk(client, container):
    resp = client.post("/api/trade/order-with-risk", json={
        "symbol": "BTC-USDT", "side": "BUY", "positionSide": "LONG",
        "quantity": 0.01, "orderType": "MARKET", "price": 1, "stopLoss": 60000,
    })
    body = resp.json()
    assert resp.status_code == 200
    assert body["mainOrder"]["data"]["order"]["orderId"] == 7
    assert body["riskManagement"] == {"stopLoss": 60000, "takeProfit": None}
    assert body["legs"] == {"stop_loss": {"code": 0}}

    req = container.api.calls[-1][1]
    assert req.order.type is OrderType.MARKET
    assert req.order.price is None


def test_order_with_risk_partial_failure(client, container):
    container.api.fail_risk = True
    resp = client.post("/api/trade/order-with-risk", json={
        "symbol": "BTC-USDT", "side": "BUY", "positionSide": "LONG",
        "quantity": 0.01, "price": 65000, "stopLoss": 60000,
    })
    body = resp.json()
    assert resp.status_code == 502
    assert body["mainOrder"]["data"]["order"]["orderId"] == 7
    assert body["legs"]["stop_loss"]["ok"] is False


def test_dashboard_subscribe(client, container):
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_json({"type": "subscribe", "symbol": "BTC-USDT", "channel": "trades"})
        assert ws.receive_json() == {"type": "subscribed", "dataType": "BTC-USDT@trade"}

        ws.send_text("not json")
        ws.send_json({"type": "subscribe", "symbol": "BTC-USDT", "channel": "kline", "interval": "5m"})
        assert ws.receive_json() == {"type": "subscribed", "dataType": "BTC-USDT@kline_5m"}

        ws.send_json({"type": "subscribe", "symbol": "BTC-USDT", "channel": "funding"})
        assert ws.receive_json()["type"] == "error"

    assert [s.channel for s in container.relay.subscribed] == [Channel.TRADE, Channel.KLINE]


def test_zero_trigger_price_is_not_a_leg(client, container):
    resp = client.post("/api/trade/order-with-risk", json={
        "symbol": "BTC-USDT", "side": "BUY", "positionSide": "LONG",
        "quantity": 0.01, "price": 65000, "stopLoss": 0, "takeProfit": 70000,
    })
    assert resp.status_code == 200
    assert resp.json()["riskManagement"] == {"stopLoss": None, "takeProfit": 70000}

    req = container.api.calls[-1][1]
    assert req.stop_loss is None
    assert req.take_profit == 70000


class RecordingWs:
    def __init__(self):
        self.sent = []

    async def send_json(self, frame):
        self.sent.append(frame)


class StalledWs(RecordingWs):
    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def send_json(self, frame):
        await self.gate.wait()
        self.sent.append(frame)


class BrokenWs:
    async def send_json(self, frame):
        raise RuntimeError("socket gone")


def tick(i):
    return StreamEvent(EventKind.TRADE, {"seq": i}, "BTC-USDT@trade")


@pytest.mark.asyncio
async def test_stalled_dashboard_client_does_not_starve_others():
    hub = ClientHub(maxsize=2)
    slow, fast = StalledWs(), RecordingWs()
    hub.add(slow)
    hub.add(fast)
    for i in range(5):
        hub.broadcast(tick(i))

    await wait_for(lambda: len(fast.sent) == 5)
    assert [f["data"]["seq"] for f in fast.sent] == [0, 1, 2, 3, 4]
    assert slow.sent == []

    # the stalled client kept only its newest backlog
    slow.gate.set()
    await wait_for(lambda: len(slow.sent) == 2)
    assert [f["data"]["seq"] for f in slow.sent] == [3, 4]

    await hub.remove(slow)
    await hub.remove(fast)
    assert hub.clients == {}


@pytest.mark.asyncio
async def test_failing_dashboard_client_is_dropped():
    hub = ClientHub()
    broken, ok = BrokenWs(), RecordingWs()
    hub.add(broken)
    hub.add(ok)
    hub.broadcast(tick(1))

    await wait_for(lambda: broken not in hub.clients and len(ok.sent) == 1)
    assert list(hub.clients) == [ok]
    await hub.remove(ok)
