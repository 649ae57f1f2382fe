# trading/models.py
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from trading.enums import Channel, EventKind, OrderType, PositionSide, Side

DEFAULT_DEPTH_LEVEL = "20"
DEFAULT_KLINE_INTERVAL = "1m"


def fmt_num(x: Any) -> str:
    """Render a number for the wire: 0.5 -> "0.5", 2.0 -> "2", strings untouched."""
    if isinstance(x, str):
        return x
    if isinstance(x, bool):
        return "true" if x else "false"
    if isinstance(x, Decimal):
        return format(x, "f")
    if isinstance(x, float):
        return f"{x:.10f}".rstrip("0").rstrip(".")
    return str(x)


@dataclass(frozen=True)
class Credential:
    api_key: str
    api_secret: str = field(repr=False)


@dataclass(frozen=True)
class Order:
    symbol: str
    side: Side
    position_side: PositionSide
    type: OrderType
    quantity: Optional[Any] = None
    price: Optional[Any] = None       # LIMIT
    stop_price: Optional[Any] = None  # STOP_MARKET / TAKE_PROFIT_MARKET trigger

    def to_params(self) -> Dict[str, str]:
        params = {
            "symbol": self.symbol,
            "side": Side(self.side).value,
            "positionSide": PositionSide(self.position_side).value,
            "type": OrderType(self.type).value,
        }
        if self.quantity is not None:
            params["quantity"] = fmt_num(self.quantity)
        if self.price is not None:
            params["price"] = fmt_num(self.price)
        if self.stop_price is not None:
            params["stopPrice"] = fmt_num(self.stop_price)
        return params


@dataclass(frozen=True)
class CompositeOrderRequest:
    order: Order
    stop_loss: Optional[Any] = None
    take_profit: Optional[Any] = None

    @property
    def has_risk_legs(self) -> bool:
        return self.stop_loss is not None or self.take_profit is not None


@dataclass
class LegResult:
    name: str                     # "stop_loss" | "take_profit"
    order: Order
    response: Optional[dict] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CompositeOrderResult:
    primary: Optional[dict]
    legs: Dict[str, LegResult] = field(default_factory=dict)


@dataclass(frozen=True)
class Subscription:
    symbol: str
    channel: Channel
    interval: Optional[str] = None    # kline interval, or depth level for DEPTH

    @classmethod
    def of(cls, symbol: str, channel: Any, interval: Optional[Any] = None) -> "Subscription":
        ch = Channel(channel)
        if ch is Channel.DEPTH:
            interval = str(interval or DEFAULT_DEPTH_LEVEL)
        elif ch is Channel.KLINE:
            interval = str(interval or DEFAULT_KLINE_INTERVAL)
        else:
            interval = None
        return cls(symbol=symbol, channel=ch, interval=interval)

    @property
    def data_type(self) -> str:
        if self.channel is Channel.DEPTH:
            return f"{self.symbol}@depth{self.interval}"
        if self.channel is Channel.KLINE:
            return f"{self.symbol}@kline_{self.interval}"
        return f"{self.symbol}@{self.channel.value}"

    @property
    def id(self) -> str:
        if self.channel is Channel.TRADE:
            return f"{self.symbol}_trades"
        if self.channel is Channel.KLINE:
            return f"{self.symbol}_kline_{self.interval}"
        return f"{self.symbol}_{self.channel.value}"

    def matches(self, data_type: str) -> bool:
        """True when `data_type` occurs anywhere in the subscribe frame, so `BTC-USDT` covers every BTC-USDT stream."""
        return bool(data_type) and data_type in self.message()

    def message(self) -> str:
        return json.dumps({"id": self.id, "dataType": self.data_type})


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    data: Any = None
    data_type: Optional[str] = None

    @property
    def symbol(self) -> Optional[str]:
        if not self.data_type or "@" not in self.data_type:
            return None
        return self.data_type.split("@", 1)[0]

    def to_dict(self) -> Dict[str, Any]:
        data = self.data
        if isinstance(data, BaseException):
            data = str(data)
        return {"type": self.kind.value, "data": data}
