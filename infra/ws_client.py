# infra/ws_client.py
import asyncio
import contextlib
import gzip
import json
import zlib
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, InvalidStatus

from trading.enums import Channel, ConnectionState, EventKind
from trading.errors import DecodeError, GatewayError, TransportError
from trading.event_bus import EventBus
from trading.models import StreamEvent, Subscription
from utils.logger import logger
from utils.time import utc_ms

Json = Dict[str, Any]

_GZIP_MAGIC = b"\x1f\x8b"


def kind_for_data_type(data_type: str) -> EventKind:
    """`BTC-USDT@trade` -> TRADE, `@depth20` -> DEPTH, `@kline_1m` -> KLINE, else MESSAGE."""
    channel = data_type.split("@", 1)[1] if "@" in data_type else ""
    if channel == Channel.TRADE.value:
        return EventKind.TRADE
    if channel.startswith(Channel.DEPTH.value):
        return EventKind.DEPTH
    if channel == Channel.TICKER.value:
        return EventKind.TICKER
    if channel == Channel.KLINE.value or channel.startswith(Channel.KLINE.value + "_"):
        return EventKind.KLINE
    return EventKind.MESSAGE


def frame_text(frame: Any) -> str:
    """Text of a stream frame; binary frames are gunzipped when compressed."""
    if not isinstance(frame, (bytes, bytearray)):
        return frame
    raw = bytes(frame)
    if raw[:2] == _GZIP_MAGIC:
        try:
            raw = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as e:
            raise DecodeError(f"bad gzip frame: {e}") from e
    return raw.decode("utf-8", errors="replace")


def parse_frame(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"undecodable frame ({e}): {text[:128]}") from e


def decode_message(msg: Any) -> Optional[StreamEvent]:
    """Map one parsed frame to an event; None for acks/pongs/untagged frames."""
    if not isinstance(msg, dict):
        return None
    if "pong" in msg:
        return None

    data_type = msg.get("dataType")
    if not data_type:
        code = msg.get("code")
        if code in (0, "0"):
            if msg.get("msg") == "success":
                logger.info("WS subscription confirmed")
            else:
                logger.debug(f"WS ack: {msg}")
            return None
        if code is not None:
            return StreamEvent(EventKind.ERROR, GatewayError(200, str(msg.get("msg", "")), msg, code=code))
        logger.debug(f"WS untagged frame dropped: {str(msg)[:128]}")
        return None

    kind = kind_for_data_type(data_type)
    if kind is EventKind.MESSAGE:
        return StreamEvent(kind, msg, data_type)
    return StreamEvent(kind, msg.get("data"), data_type)


class StreamRelay:
    """
    One logical connection to the BingX swap-market stream.

    disconnected -> connecting -> connected -> disconnected -> ... until
    disconnect(), which is terminal. The active subscription set is replayed
    in full on every (re)connect. Reconnects use a flat delay.
    """

    def __init__(self,
        url: str,
        bus: Optional[EventBus] = None,
        *,
        ping_interval: float = 30,
        reconnect_interval: float = 5,
        name: str = "bingx",
        connector: Optional[Callable[..., Any]] = None,
    ):
        self.url = url
        self.bus = bus or EventBus()
        self.ping_interval = ping_interval
        self.reconnect_interval = reconnect_interval
        self.name = name
        self._connect = connector or websockets.connect

        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._subs: Dict[Subscription, None] = {}
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._hb: Optional[asyncio.Task] = None
        self._closed = False
        self._connected_evt = asyncio.Event()

        logger.info(f"StreamRelay {name} init url={url} ping_interval={ping_interval}s "
                    f"reconnect_interval={reconnect_interval}s")

    # ---- introspection ----
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subs)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(f"WS {self.name} state {self._state.value} -> {state.value}")
        self._state = state

    def _emit(self, kind: EventKind, data: Any = None, data_type: Optional[str] = None) -> None:
        self.bus.publish(StreamEvent(kind, data, data_type))

    # ---- lifecycle ----
    async def connect(self) -> None:
        if self._closed:
            logger.warning(f"WS {self.name} connect ignored: relay was shut down")
            return
        if self._task and not self._task.done():
            return
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.create_task(self._run_forever(), name=f"relay-{self.name}")

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected_evt.wait(), timeout=timeout)

    async def disconnect(self) -> None:
        self._closed = True
        was = self._state
        # keepalive and the pending reconnect sleep go down together
        task, self._task = self._task, None
        hb, self._hb = self._hb, None
        for t in (hb, task):
            if t:
                t.cancel()
        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        for t in (hb, task):
            if t:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await t
        self._subs.clear()
        self._connected_evt.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        if was is not ConnectionState.DISCONNECTED:
            self._emit(EventKind.DISCONNECTED)
        logger.info(f"WS {self.name} stop: relay shut down")

    async def _run_forever(self) -> None:
        retry = 0
        while not self._closed:
            self._set_state(ConnectionState.CONNECTING)
            logger.info(f"WS {self.name} connect: connecting to {self.url} (retry={retry})")
            try:
                ws = await self._connect(self.url, ping_interval=None, close_timeout=10)
            except asyncio.CancelledError:
                raise
            except InvalidStatus as e:
                code = getattr(getattr(e, "response", None), "status_code", None)
                logger.warning(f"WS {self.name} handshake rejected: HTTP {code}")
                self._emit(EventKind.ERROR, TransportError(f"handshake rejected: HTTP {code}"))
            except Exception as e:
                logger.warning(f"WS {self.name} connect failed: {type(e).__name__} ({e})")
                self._emit(EventKind.ERROR, TransportError(f"connect failed: {e!r}"))
            else:
                retry = 0
                await self._serve(ws)

            if self._closed:
                break
            self._set_state(ConnectionState.DISCONNECTED)
            self._emit(EventKind.DISCONNECTED)
            retry += 1
            logger.info(f"WS {self.name} reconnecting in {self.reconnect_interval}s")
            await asyncio.sleep(self.reconnect_interval)

    async def _serve(self, ws) -> None:
        try:
            async with self._lock:
                self._ws = ws
                self._set_state(ConnectionState.CONNECTED)
                for sub in list(self._subs):
                    await ws.send(sub.message())
                logger.info(f"WS {self.name} connect: connected, replayed {len(self._subs)} subscriptions")
            self._connected_evt.set()
            self._emit(EventKind.CONNECTED)
            self._hb = asyncio.create_task(self._keepalive(ws), name=f"relay-{self.name}-ping")

            async for frame in ws:
                await self._handle_frame(ws, frame)
            logger.warning(f"WS {self.name} connection closed by remote")
        except asyncio.CancelledError:
            raise
        except ConnectionClosedOK as e:
            logger.warning(f"WS {self.name} connection closed: {e}")
        except ConnectionClosedError as e:
            logger.warning(f"WS {self.name} connection lost: {e}")
            self._emit(EventKind.ERROR, TransportError(f"connection lost: {e}"))
        except Exception as e:
            logger.exception(f"WS {self.name} loop: exception")
            self._emit(EventKind.ERROR, TransportError(f"stream error: {e!r}"))
        finally:
            hb, self._hb = self._hb, None
            if hb:
                hb.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await hb
            self._connected_evt.clear()
            if self._ws is ws:
                self._ws = None
            if self._state is ConnectionState.CONNECTED:
                self._set_state(ConnectionState.DISCONNECTED)
            with contextlib.suppress(Exception):
                await ws.close()

    async def _keepalive(self, ws) -> None:
        while not self._closed:
            await asyncio.sleep(self.ping_interval)
            if self._state is not ConnectionState.CONNECTED:
                return
            if not await self._send(ws, json.dumps({"ping": utc_ms()})):
                return

    async def _send(self, ws, payload: str) -> bool:
        async with self._lock:
            if ws is None or self._ws is not ws:
                return False
            try:
                await ws.send(payload)
                return True
            except Exception as e:
                # the read loop sees the close and drives the reconnect
                logger.debug(f"WS {self.name} send failed: {e!r}")
                return False

    # ---- inbound ----
    async def _handle_frame(self, ws, frame: Any) -> None:
        try:
            text = frame_text(frame)
            m = text.strip()
            if m == "Ping":
                await self._send(ws, "Pong")
                return
            if m == "Pong":
                return
            msg = parse_frame(text)
        except DecodeError as e:
            logger.warning(f"WS {self.name} frame dropped: {e}")
            return

        if isinstance(msg, dict) and "ping" in msg and "dataType" not in msg:
            await self._send(ws, json.dumps({"pong": msg["ping"], "time": msg.get("time")}))
            return

        event = decode_message(msg)
        if event is not None:
            self.bus.publish(event)

    # ---- subscriptions ----
    async def subscribe(self, symbol: str, channel: Any, interval: Optional[Any] = None) -> Subscription:
        sub = Subscription.of(symbol, channel, interval)
        async with self._lock:
            if sub in self._subs:
                logger.debug(f"WS {self.name} already subscribed {sub.data_type}")
                return sub
            self._subs[sub] = None
            if self._ws is not None and self._state is ConnectionState.CONNECTED:
                logger.info(f"WS {self.name} subscribe {sub.data_type}")
                try:
                    await self._ws.send(sub.message())
                except Exception as e:
                    logger.debug(f"WS {self.name} subscribe send failed, replay on reconnect: {e!r}")
            else:
                logger.info(f"WS {self.name} subscribe {sub.data_type} deferred until connected")
        return sub

    async def subscribe_trades(self, symbol: str) -> Subscription:
        return await self.subscribe(symbol, Channel.TRADE)

    async def subscribe_depth(self, symbol: str, level: int = 20) -> Subscription:
        return await self.subscribe(symbol, Channel.DEPTH, level)

    async def subscribe_ticker(self, symbol: str) -> Subscription:
        return await self.subscribe(symbol, Channel.TICKER)

    async def subscribe_kline(self, symbol: str, interval: str = "1m") -> Subscription:
        return await self.subscribe(symbol, Channel.KLINE, interval)

    async def unsubscribe(self, data_type: str) -> int:
        """Drop every subscription matching `data_type`; returns how many were removed."""
        async with self._lock:
            if self._ws is not None and self._state is ConnectionState.CONNECTED:
                try:
                    await self._ws.send(json.dumps({"id": "unsub", "dataType": data_type}))
                except Exception as e:
                    logger.debug(f"WS {self.name} unsubscribe send failed: {e!r}")
            removed = [s for s in self._subs if s.matches(data_type)]
            for s in removed:
                del self._subs[s]
        logger.info(f"WS {self.name} unsubscribe {data_type}: removed {len(removed)}")
        return len(removed)
