# trading/errors.py
from typing import Any, Dict, Optional


class TradingError(Exception):
    """Base trading error."""
    def __init__(self, msg: str = ""):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return self.msg or self.__class__.__name__


class SignatureInputError(TradingError):
    """Parameters cannot be signed (reserved key supplied or no secret)."""


class GatewayError(TradingError):
    """
    The exchange answered with a non-2xx status or an error envelope.
    `status` is the HTTP status (599 for transport failures), `code` the
    BingX envelope code when one was returned.
    """

    def __init__(self, status: int, message: str, payload: Optional[dict] = None, code: Any = None):
        super().__init__(f"HTTP {status}: {message}" if code is None else f"BingX[{code}]: {message}")
        self.status = status
        self.message = message
        self.payload = payload or {}
        self.code = code


class TransportError(GatewayError):
    """Connection could not be established or was severed."""

    def __init__(self, message: str):
        super().__init__(599, message)


class DecodeError(TradingError):
    """Inbound stream frame is not valid JSON."""


class CompositeOrderPartialFailure(GatewayError):
    """
    At least one risk leg of a composite order failed. Legs that succeeded
    (and the primary order, if any) stay on the exchange; the caller must
    reconcile against open orders/positions.
    """

    def __init__(self, legs: Dict[str, Any], primary: Optional[dict] = None):
        self.legs = legs
        self.primary = primary
        failed = ", ".join(f"{name}: {leg.error}" for name, leg in legs.items() if not leg.ok)
        super().__init__(502, f"risk order failed ({failed})")

    @property
    def failed(self) -> Dict[str, Any]:
        return {name: leg for name, leg in self.legs.items() if not leg.ok}

    @property
    def succeeded(self) -> Dict[str, Any]:
        return {name: leg for name, leg in self.legs.items() if leg.ok}
