# trading/services/endpoints.py
from dataclasses import dataclass


@dataclass
class Endpoints:
    rest_base: str
    ws_url: str

    # quote
    quote_price: str = "/openApi/swap/v2/quote/price"
    quote_depth: str = "/openApi/swap/v2/quote/depth"
    quote_trades: str = "/openApi/swap/v2/quote/trades"
    quote_klines: str = "/openApi/swap/v3/quote/klines"
    quote_contracts: str = "/openApi/swap/v2/quote/contracts"
    # user
    user_balance: str = "/openApi/swap/v2/user/balance"
    user_positions: str = "/openApi/swap/v2/user/positions"
    # trade
    trade_order: str = "/openApi/swap/v2/trade/order"
    trade_all_orders: str = "/openApi/swap/v2/trade/allOrders"
    trade_open_orders: str = "/openApi/swap/v2/trade/openOrders"
    trade_leverage: str = "/openApi/swap/v2/trade/leverage"


def make_endpoints_from_cfg(cfg: dict) -> Endpoints:
    try:
        bingx = cfg["bingx"]
        rest_base = bingx["rest_base"].rstrip("/")
        ws_url = bingx["ws_url"]
    except KeyError as e:
        raise ValueError(f"Invalid cfg missing key: {e}") from e

    return Endpoints(rest_base=rest_base, ws_url=ws_url)
