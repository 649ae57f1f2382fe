# infra/__init__.py
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol

from infra.http_client import HttpClient
from infra.ws_client import StreamRelay
from trading.app.trade_api import TradeAPI
from trading.event_bus import EventBus
from trading.services.endpoints import Endpoints, make_endpoints_from_cfg
from utils.logger import logger


# ========== 1) Port the services depend on, rather than the concrete HttpClient ==========
class HttpPort(Protocol):
    async def get_public(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]: ...
    async def get_private(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]: ...
    async def post_private(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]: ...
    async def delete_private(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]: ...


# ========== 2) Composition root: explicit construction and shutdown ==========
class GatewayContainer:
    """
    Owns one HttpClient/TradeAPI pair and one StreamRelay with its EventBus.
    The application entry point builds it, hands `api`, `relay` and `bus`
    to whoever needs them, and calls stop() on the way out.
    """
    def __init__(self, http: HttpClient, api: TradeAPI, relay: StreamRelay,
                 bus: EventBus, endpoints: Endpoints) -> None:
        self.http = http
        self.api = api
        self.relay = relay
        self.bus = bus
        self.endpoints = endpoints

    @classmethod
    def build(cls,
              cfg: Mapping[str, Any],
              api_key: Optional[str] = None,
              api_secret: Optional[str] = None,
              *,
              connector=None,
              ) -> "GatewayContainer":
        endpoints = make_endpoints_from_cfg(dict(cfg))
        relay_cfg = cfg.get("relay") or {}

        http = HttpClient(cfg, api_key=api_key, api_secret=api_secret)
        api = TradeAPI.from_http(http, endpoints)
        bus = EventBus(maxsize=int(relay_cfg.get("observer_queue_size", 1024)))
        relay = StreamRelay(
            endpoints.ws_url,
            bus,
            ping_interval=float(relay_cfg.get("ping_interval_s", 30)),
            reconnect_interval=float(relay_cfg.get("reconnect_interval_s", 5)),
            connector=connector,
        )
        return cls(http, api, relay, bus, endpoints)

    @classmethod
    async def start(cls,
                    cfg: Mapping[str, Any],
                    api_key: Optional[str] = None,
                    api_secret: Optional[str] = None,
                    *,
                    connect: bool = True,
                    connector=None,
                    ) -> "GatewayContainer":
        container = cls.build(cfg, api_key, api_secret, connector=connector)
        for sub in (cfg.get("relay") or {}).get("subscriptions") or []:
            await container.relay.subscribe(sub["symbol"], sub["channel"], sub.get("interval"))
        if connect:
            await container.relay.connect()
        logger.info(f"Gateway started rest={container.endpoints.rest_base} ws={container.endpoints.ws_url}")
        return container

    async def stop(self) -> None:
        try:
            await self.relay.disconnect()
        except Exception:
            logger.exception("relay disconnect failed during stop")
        await self.bus.close()
        await self.http.close()
        logger.info("Gateway stopped")
