# tests/test_trading_service.py
import pytest
from decimal import Decimal

from trading.enums import OrderType, PositionSide, Side
from trading.errors import CompositeOrderPartialFailure, GatewayError
from trading.models import CompositeOrderRequest, Order
from trading.services.endpoints import Endpoints
from trading.services.account_service import AccountService
from trading.services.execution_service import ExecutionService
from trading.services.trading_service import TradingService, NO_POSITION, NO_POSITION_FOR_SIDE

EP = Endpoints(rest_base="https://open-api.bingx.com", ws_url="wss://open-api-swap.bingx.com/swap-market")


class FakeHttp:
    """Records every signed call; order placement can be made to fail per order type."""

    def __init__(self, positions=None, fail_types=()):
        self.positions = positions if positions is not None else {"code": 0, "data": []}
        self.fail_types = set(fail_types)
        self.calls = []

    @property
    def orders(self):
        return [params for method, path, params in self.calls if method == "POST" and path == EP.trade_order]

    async def get_private(self, path, params=None):
        self.calls.append(("GET", path, dict(params or {})))
        assert path == EP.user_positions
        return self.positions

    async def post_private(self, path, params=None):
        self.calls.append(("POST", path, dict(params or {})))
        if params.get("type") in self.fail_types:
            raise GatewayError(200, f"{params['type']} rejected", code=101204)
        return {"code": 0, "data": {"order": {"orderId": len(self.calls), "type": params["type"]}}}


def make_svc(http):
    return TradingService(ExecutionService(http, EP), AccountService(http, EP))


@pytest.mark.asyncio
async def test_close_position_without_positions_is_noop():
    http = FakeHttp({"code": 0, "data": []})
    resp = await make_svc(http).close_position("BTC-USDT", PositionSide.LONG)
    assert resp == NO_POSITION
    assert http.orders == []


@pytest.mark.asyncio
async def test_close_position_missing_side_is_noop():
    http = FakeHttp({"code": 0, "data": [{"symbol": "BTC-USDT", "positionSide": "SHORT", "positionAmt": "-1"}]})
    resp = await make_svc(http).close_position("BTC-USDT", PositionSide.LONG)
    assert resp == NO_POSITION_FOR_SIDE
    assert http.orders == []


@pytest.mark.asyncio
async def test_close_position_zero_size_is_noop():
    http = FakeHttp({"code": 0, "data": [{"symbol": "BTC-USDT", "positionSide": "LONG", "positionAmt": "0"}]})
    resp = await make_svc(http).close_position("BTC-USDT", PositionSide.LONG)
    assert resp == NO_POSITION_FOR_SIDE
    assert http.orders == []


@pytest.mark.asyncio
async def test_close_long_places_one_market_sell():
    http = FakeHttp({"code": 0, "data": [
        {"symbol": "BTC-USDT", "positionSide": "SHORT", "positionAmt": "-2"},
        {"symbol": "BTC-USDT", "positionSide": "LONG", "positionAmt": "0.5"},
    ]})
    await make_svc(http).close_position("BTC-USDT", "LONG")

    assert http.orders == [{
        "symbol": "BTC-USDT", "side": "SELL", "positionSide": "LONG",
        "type": "MARKET", "quantity": "0.5",
    }]


@pytest.mark.asyncio
async def test_close_short_uses_absolute_size():
    http = FakeHttp({"code": 0, "data": {"symbol": "ETH-USDT", "positionSide": "SHORT", "positionAmt": "-3.20"}})
    await make_svc(http).close_position("ETH-USDT", PositionSide.SHORT)

    (order,) = http.orders
    assert order["side"] == "BUY"
    assert order["quantity"] == "3.2"


@pytest.mark.asyncio
async def test_stop_loss_only_places_one_stop_market():
    http = FakeHttp()
    resps = await make_svc(http).add_stop_loss_take_profit("BTC-USDT", PositionSide.LONG, stop_loss=60000)

    assert len(resps) == 1
    assert http.orders == [{
        "symbol": "BTC-USDT", "side": "SELL", "positionSide": "LONG",
        "type": "STOP_MARKET", "stopPrice": "60000",
    }]


@pytest.mark.asyncio
async def test_short_legs_use_buy_side():
    http = FakeHttp()
    await make_svc(http).add_stop_loss_take_profit("BTC-USDT", PositionSide.SHORT,
                                                    stop_loss=70000.5, take_profit=Decimal("55000"))
    by_type = {o["type"]: o for o in http.orders}
    assert set(by_type) == {"STOP_MARKET", "TAKE_PROFIT_MARKET"}
    assert by_type["STOP_MARKET"]["side"] == "BUY"
    assert by_type["STOP_MARKET"]["stopPrice"] == "70000.5"
    assert by_type["TAKE_PROFIT_MARKET"]["stopPrice"] == "55000"


@pytest.mark.asyncio
async def test_no_legs_places_nothing():
    http = FakeHttp()
    assert await make_svc(http).add_stop_loss_take_profit("BTC-USDT", PositionSide.LONG) == []
    assert http.calls == []


@pytest.mark.asyncio
async def test_one_failing_leg_still_places_the_other():
    http = FakeHttp(fail_types={"TAKE_PROFIT_MARKET"})
    with pytest.raises(CompositeOrderPartialFailure) as ei:
        await make_svc(http).add_stop_loss_take_profit("BTC-USDT", PositionSide.LONG,
                                                        stop_loss=60000, take_profit=70000)

    assert {o["type"] for o in http.orders} == {"STOP_MARKET", "TAKE_PROFIT_MARKET"}
    err = ei.value
    assert set(err.failed) == {"take_profit"}
    assert set(err.succeeded) == {"stop_loss"}
    assert err.succeeded["stop_loss"].response["code"] == 0
    assert "101204" in str(err.failed["take_profit"].error)


@pytest.mark.asyncio
async def test_composite_order_places_primary_then_legs():
    http = FakeHttp()
    order = Order(symbol="BTC-USDT", side=Side.BUY, position_side=PositionSide.LONG,
                  type=OrderType.LIMIT, quantity=0.01, price=65000)
    result = await make_svc(http).place_order_with_risk(
        CompositeOrderRequest(order=order, stop_loss=60000, take_profit=70000)
    )

    assert http.orders[0]["type"] == "LIMIT"
    assert http.orders[0]["price"] == "65000"
    assert {o["type"] for o in http.orders[1:]} == {"STOP_MARKET", "TAKE_PROFIT_MARKET"}
    assert result.primary["data"]["order"]["type"] == "LIMIT"
    assert set(result.legs) == {"stop_loss", "take_profit"}
    assert all(leg.ok for leg in result.legs.values())


@pytest.mark.asyncio
async def test_composite_order_without_legs_returns_primary_only():
    http = FakeHttp()
    order = Order(symbol="BTC-USDT", side=Side.SELL, position_side=PositionSide.SHORT,
                  type=OrderType.MARKET, quantity=1)
    result = await make_svc(http).place_order_with_risk(CompositeOrderRequest(order=order))
    assert len(http.orders) == 1
    assert result.legs == {}


@pytest.mark.asyncio
async def test_composite_primary_failure_places_no_legs():
    http = FakeHttp(fail_types={"LIMIT"})
    order = Order(symbol="BTC-USDT", side=Side.BUY, position_side=PositionSide.LONG,
                  type=OrderType.LIMIT, quantity=0.01, price=65000)
    with pytest.raises(GatewayError) as ei:
        await make_svc(http).place_order_with_risk(
            CompositeOrderRequest(order=order, stop_loss=60000, take_profit=70000)
        )

    assert not isinstance(ei.value, CompositeOrderPartialFailure)
    assert [o["type"] for o in http.orders] == ["LIMIT"]


@pytest.mark.asyncio
async def test_composite_leg_failure_reports_primary():
    http = FakeHttp(fail_types={"STOP_MARKET"})
    order = Order(symbol="BTC-USDT", side=Side.BUY, position_side=PositionSide.LONG,
                  type=OrderType.MARKET, quantity=0.01)
    with pytest.raises(CompositeOrderPartialFailure) as ei:
        await make_svc(http).place_order_with_risk(
            CompositeOrderRequest(order=order, stop_loss=60000, take_profit=70000)
        )

    assert ei.value.primary["data"]["order"]["type"] == "MARKET"
    assert set(ei.value.failed) == {"stop_loss"}
    assert len(http.orders) == 3
