# trading/event_bus.py
import asyncio
import contextlib
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from trading.enums import EventKind
from trading.models import StreamEvent
from utils.logger import logger

Handler = Callable[[StreamEvent], Any]


class RollingQueue(asyncio.Queue):
    """Bounded queue that evicts the oldest item instead of blocking the producer."""

    def __init__(self, maxsize: int = 0) -> None:
        super().__init__(maxsize)
        self.dropped = 0

    def put_nowait(self, item):
        if self.full():
            try:
                self.get_nowait()
                self.task_done()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        super().put_nowait(item)


class Observer:
    """One registered handler with its own queue and worker task."""

    def __init__(self, kind: EventKind, handler: Handler, maxsize: int) -> None:
        self.kind = kind
        self.handler = handler
        self.queue: RollingQueue = RollingQueue(maxsize)
        self._task: Optional[asyncio.Task] = None

    def _ensure_worker(self) -> None:
        if self._task is None or self._task.done():
            name = getattr(self.handler, "__name__", "handler")
            self._task = asyncio.get_running_loop().create_task(
                self._drain(), name=f"observer-{self.kind.value}-{name}"
            )

    def offer(self, event: StreamEvent) -> None:
        before = self.queue.dropped
        self.queue.put_nowait(event)
        if self.queue.dropped != before:
            logger.warning(f"observer {self.kind.value} queue full, dropped oldest event")
        self._ensure_worker()

    async def _drain(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                res = self.handler(event)
                if inspect.isawaitable(res):
                    await res
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"observer {self.kind.value} handler raised; event dropped")
            finally:
                self.queue.task_done()

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None


class EventBus:
    """
    Fan-out of relay events to local observers, keyed by event kind.
    publish() never blocks: each observer drains its own bounded queue, so a
    slow or failing handler only loses its own oldest events. Events reach a
    given observer in publish order.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self._maxsize = maxsize
        self._subs: Dict[EventKind, List[Observer]] = defaultdict(list)

    def on(self, kind: Any, handler: Handler, *, maxsize: Optional[int] = None) -> Observer:
        """Register a sync or async handler for one event kind."""
        obs = Observer(EventKind(kind), handler, maxsize or self._maxsize)
        self._subs[obs.kind].append(obs)
        return obs

    def off(self, observer: Observer) -> None:
        subs = self._subs.get(observer.kind, [])
        if observer in subs:
            subs.remove(observer)
        if observer._task:
            observer._task.cancel()
            observer._task = None

    def observers(self, kind: Any) -> List[Observer]:
        return list(self._subs.get(EventKind(kind), []))

    def publish(self, event: StreamEvent) -> None:
        for obs in list(self._subs.get(event.kind, [])):
            obs.offer(event)

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for subs in list(self._subs.values()):
            for obs in list(subs):
                await obs.queue.join()

    async def close(self) -> None:
        for subs in self._subs.values():
            for obs in subs:
                await obs.stop()
        self._subs.clear()


# Common topics
TOPIC_MARKET = (EventKind.TRADE, EventKind.DEPTH, EventKind.TICKER, EventKind.KLINE, EventKind.MESSAGE)
TOPIC_LIFECYCLE = (EventKind.CONNECTED, EventKind.DISCONNECTED, EventKind.ERROR)
