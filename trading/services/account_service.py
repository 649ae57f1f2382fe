# trading/services/account_service.py
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from trading.enums import PositionSide


def _to_decimal_or_none(x) -> Optional[Decimal]:
    if x is None:
        return None
    s = str(x).strip()
    if not s:
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


class AccountService:
    """
    Balance and position queries (signed GET, responses passed through).
    """
    def __init__(self, http_client, endpoints) -> None:
        self._http = http_client
        self._ep = endpoints
        self.log = getattr(http_client, "log", logging.getLogger("AccountService"))

    async def get_balance(self) -> Dict[str, Any]:
        return await self._http.get_private(self._ep.user_balance)

    async def get_account_info(self) -> Dict[str, Any]:
        """Same endpoint as balance; BingX reports available margin there."""
        return await self._http.get_private(self._ep.user_balance)

    async def get_positions(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        params = {"symbol": symbol} if symbol else {}
        return await self._http.get_private(self._ep.user_positions, params=params)

    @staticmethod
    def find_position(resp: Dict[str, Any], position_side: PositionSide) -> Optional[Dict[str, Any]]:
        """Pick the row for `position_side` out of a positions response."""
        rows: List[Dict[str, Any]] = (resp or {}).get("data") or []
        if isinstance(rows, dict):
            rows = [rows]
        side = PositionSide(position_side).value
        for row in rows:
            if str(row.get("positionSide", "")).upper() == side:
                return row
        return None

    @staticmethod
    def position_size(row: Dict[str, Any]) -> Decimal:
        """Absolute size of a position row; 0 when unparsable."""
        amt = _to_decimal_or_none(row.get("positionAmt"))
        return abs(amt).normalize() if amt is not None else Decimal(0)
