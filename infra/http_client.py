# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from yarl import URL

from trading.errors import GatewayError, SignatureInputError, TransportError
from trading.models import Credential
from utils.logger import logger
from utils.time import utc_ms

API_KEY_HEADER = "X-BX-APIKEY"


def _stringify(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _pairs(params: Mapping[str, Any]) -> list[tuple[str, str]]:
    return [(str(k), _stringify(v)) for k, v in params.items() if v is not None]


def canonical_query(params: Mapping[str, Any]) -> str:
    """Sorted-key `k=v&...` string; the exact bytes the signature covers."""
    return "&".join(f"{k}={v}" for k, v in sorted(_pairs(params)))


def plain_query(params: Mapping[str, Any]) -> str:
    return "&".join(f"{k}={v}" for k, v in _pairs(params))


def sign(secret: str, query: str) -> str:
    """HMAC-SHA256(secret, query) as lowercase hex."""
    return hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()


def _mask(s: Optional[str]) -> str:
    if not s:
        return ""
    if len(s) <= 8:
        return "*" * len(s)
    return s[:4] + "*" * (len(s) - 8) + s[-4:]


class HttpClient:
    def __init__(self,
                 cfg: Mapping[str, Any],
                 api_key: Optional[str] = None,
                 api_secret: Optional[str] = None,
                 *,
                 timeout_ms: Optional[int] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 log: Optional[logging.Logger] = None,
                 ) -> None:
        self.cfg = cfg
        self.log = log or logger
        self.session = session
        self._owned_session = session is None

        bingx_cfg = cfg.get("bingx", {})
        self.base_url = (bingx_cfg.get("rest_base") or "https://open-api.bingx.com").rstrip("/")

        self.credential = Credential(
            api_key=api_key if api_key is not None else (bingx_cfg.get("api_key") or ""),
            api_secret=api_secret if api_secret is not None else (bingx_cfg.get("api_secret") or ""),
        )

        rest_ms = timeout_ms or (cfg.get("timeouts") or {}).get("rest_ms")
        self.timeout_ms: Optional[int] = int(rest_ms) if rest_ms else None

        self.log.debug(
            f"HttpClient init base_url={self.base_url} key={_mask(self.credential.api_key)} "
            f"timeout_ms={self.timeout_ms}"
        )

    def _new_session(self) -> aiohttp.ClientSession:
        if self.timeout_ms:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
            return aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)
        return aiohttp.ClientSession(raise_for_status=False, trust_env=True)

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        if self._owned_session and (self.session is None or self.session.closed):
            self.session = self._new_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    # ---- signing ------------------------------------------------------------------
    def _now_ms(self) -> int:
        return utc_ms()

    def build_signed_request(
            self, params: Optional[Mapping[str, Any]] = None, timestamp: Optional[int] = None
    ) -> Tuple[str, str]:
        """
        Inject `timestamp`, sort keys, serialize as `k=v&...` and sign it.
        Pure in (params, secret, timestamp): same inputs give the same bytes.
        """
        params = dict(params or {})
        if "timestamp" in params:
            raise SignatureInputError("timestamp is assigned by the signer, do not pass it")
        if not self.credential.api_secret:
            raise SignatureInputError("missing API secret")
        params["timestamp"] = self._now_ms() if timestamp is None else int(timestamp)
        query = canonical_query(params)
        return query, sign(self.credential.api_secret, query)

    def generate_signature(self, query: str) -> str:
        return sign(self.credential.api_secret, query)

    # ---- request ------------------------------------------------------------------
    async def request(
            self,
            method: str,
            path: str,
            params: Optional[Mapping[str, Any]] = None,
            *,
            auth: bool = False,
            timeout_ms: Optional[int] = None,
        ) -> Dict[str, Any]:
        """
        Single entry point for REST calls.
        - auth=True: `?<sorted query>&signature=<hex>`
        - auth=False: plain, unsorted, unsigned query (if any params)
        Exactly one outbound call; failures raise GatewayError / TransportError.
        """
        assert path.startswith("/openApi/"), "path must start with /openApi/"
        method = method.upper()

        if auth:
            query, signature = self.build_signed_request(params)
            url = f"{self.base_url}{path}?{query}&signature={signature}"
        else:
            query = plain_query(params or {})
            url = f"{self.base_url}{path}" + (f"?{query}" if query else "")

        headers = {"Accept": "application/json"}
        if self.credential.api_key:
            headers[API_KEY_HEADER] = self.credential.api_key

        if self.session is None or self.session.closed:
            self.session = self._new_session()
            self._owned_session = True

        kwargs: Dict[str, Any] = {"headers": headers}
        if timeout_ms:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

        self.log.debug(f"{method} {path} auth={auth}")
        try:
            # encoded=True keeps the URL byte-identical to what was signed
            async with self.session.request(method, URL(url, encoded=True), **kwargs) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log.warning(f"Network error: {e!r} when requesting {method} {path}")
            raise TransportError(f"Network error: {e!r}") from e

        payload: Any = None
        if text:
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                payload = None

        if status >= 400:
            self.log.warning(f"{method} {path} failed: HTTP {status} {text[:256]}")
            raise GatewayError(status, text, payload if isinstance(payload, dict) else None)

        if payload is None:
            if not text:
                return {}
            raise GatewayError(status, f"invalid json: {text[:256]}")

        if isinstance(payload, dict):
            code = payload.get("code")
            if code not in (None, 0, "0"):
                self.log.warning(f"{method} {path} rejected: code={code} msg={payload.get('msg')}")
                raise GatewayError(status, str(payload.get("msg", "")), payload, code=code)
        return payload

    # ---- wrappers -----------------------------------------------------------------
    async def get_public(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params, auth=False)

    async def get_private(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params, auth=True)

    async def post_private(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, params, auth=True)

    async def delete_private(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("DELETE", path, params, auth=True)
