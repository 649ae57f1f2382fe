# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import asyncio
import json
import yaml
import pytest
import pytest_asyncio
from infra.http_client import HttpClient

TEST_KEY = "test_api_key"
TEST_SECRET = "test_api_secret"


@pytest.fixture
def test_cfg():
    def load_cfg():
        with open(Path(__file__).resolve().parents[1] / "config.yaml", "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    return load_cfg()


@pytest_asyncio.fixture
async def http_client(test_cfg):
    """
    HttpClient under an async context manager; the session is closed after each test.
    """
    async with HttpClient(test_cfg, api_key=TEST_KEY, api_secret=TEST_SECRET) as client:
        yield client


class FakeConnection:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, payload) -> None:
        if self.closed:
            raise ConnectionError("send on closed fake connection")
        self.sent.append(payload)

    def feed(self, frame) -> None:
        self._inbox.put_nowait(frame)

    def feed_json(self, obj) -> None:
        self.feed(json.dumps(obj))

    def drop(self) -> None:
        """Simulate the remote closing the socket."""
        self._inbox.put_nowait(None)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def sent_json(self) -> list:
        out = []
        for s in self.sent:
            try:
                out.append(json.loads(s))
            except (TypeError, ValueError):
                out.append(s)
        return out

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._inbox.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """Hands out a fresh FakeConnection for every connect attempt."""

    def __init__(self, fail_first: int = 0) -> None:
        self.connections: list[FakeConnection] = []
        self.attempts = 0
        self._fail_first = fail_first

    async def __call__(self, url, **kwargs):
        self.attempts += 1
        if self.attempts <= self._fail_first:
            raise OSError("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn


async def wait_for(pred, timeout: float = 2.0, step: float = 0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not pred():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)


@pytest.fixture
def connector():
    return FakeConnector()
