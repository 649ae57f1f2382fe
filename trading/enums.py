# trading/enums.py
from enum import Enum


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def closing_side(self) -> Side:
        """Order side that reduces a position on this side."""
        return Side.SELL if self is PositionSide.LONG else Side.BUY


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_MARKET = "STOP_MARKET"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"


class Channel(str, Enum):
    TRADE = "trade"
    DEPTH = "depth"
    TICKER = "ticker"
    KLINE = "kline"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class EventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    TRADE = "trade"
    DEPTH = "depth"
    TICKER = "ticker"
    KLINE = "kline"
    MESSAGE = "message"
