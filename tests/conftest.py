"""
Shared pytest fixtures for statesync tests.

Provides a virtual-clock scheduler and an in-process fake of the remote
document store, so tests never sleep or touch the network.
"""

import json
import re
from typing import Callable, Optional

import httpx
import pytest

from statesync.config import RemoteEndpoint, SyncConfig
from statesync.kv_store import MemoryKeyValueStore
from statesync.manager import StateManager


class VirtualHandle:
    """Timer handle for VirtualScheduler."""

    def __init__(self, when: float, seq: int, callback: Callable[[], None]):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """
    Deterministic scheduler driven by advance().

    Callbacks fire in (due time, scheduling order) and may schedule
    further callbacks, which fire within the same advance() if due.
    """

    def __init__(self):
        self.now = 0.0
        self._seq = 0
        self._handles: list[VirtualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> VirtualHandle:
        self._seq += 1
        handle = VirtualHandle(self.now + delay, self._seq, callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self._handles = [h for h in self._handles if not h.cancelled]
        self.now = target


class FakeClock:
    """Monotonic ISO timestamps, one second apart per call."""

    def __init__(self, start_day: int = 1):
        self._day = start_day
        self._second = 0

    def __call__(self) -> str:
        self._second += 1
        return f"2024-01-{self._day:02d}T00:00:{self._second:02d}.000Z"


_STATEMENT_RE = re.compile(r"^USE NS (\S+) DB (\S+); (.*)$", re.DOTALL)


class FakeRemoteStore:
    """
    In-process stand-in for the remote document store's /sql endpoint.

    Plug into httpx via ``transport``. Holds at most one document,
    records every request, and can be told to fail.
    """

    def __init__(self, document: Optional[dict] = None, record: str = "state:current"):
        self.record = record
        self.document = dict(document) if document is not None else None
        self.requests: list[httpx.Request] = []
        self.statements: list[str] = []
        self.fail_status: Optional[int] = None
        self.fail_connect = False
        self.error_result: Optional[str] = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def upserts(self) -> list[str]:
        return [s for s in self.statements if s.startswith("UPSERT")]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_connect:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="unavailable")

        body = request.content.decode("utf-8")
        match = _STATEMENT_RE.match(body)
        if match is None:
            return httpx.Response(400, text="bad query")
        statement = match.group(3).strip()
        self.statements.append(statement)

        if self.error_result is not None:
            return self._reply({"status": "ERR", "result": self.error_result})
        return self._reply({"status": "OK", "result": self._run(statement)})

    def _run(self, statement: str) -> list:
        if statement.startswith(f"SELECT lastUpdated FROM {self.record}"):
            if self.document is None:
                return []
            return [{"lastUpdated": self.document.get("lastUpdated")}]
        if statement.startswith(f"SELECT * FROM {self.record}"):
            if self.document is None:
                return []
            return [{**self.document, "id": self.record}]
        if statement.startswith(f"UPSERT {self.record} MERGE "):
            body = statement[len(f"UPSERT {self.record} MERGE "):].rstrip(";")
            fields = body[1:-1].replace("created_at: time::now()", "").rstrip(", ")
            merged = json.loads("{" + fields + "}")
            self.document = {**(self.document or {}), **merged,
                             "created_at": "2024-01-01T00:00:00Z"}
            return [{**self.document, "id": self.record}]
        raise AssertionError(f"Unexpected statement: {statement}")

    @staticmethod
    def _reply(entry: dict) -> httpx.Response:
        use = {"status": "OK", "result": None, "time": "10µs"}
        return httpx.Response(200, json=[use, {**entry, "time": "1ms"}])


ENDPOINT = RemoteEndpoint(
    url="http://localhost:8000",
    username="root",
    password="secret",
)


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def fake_remote():
    return FakeRemoteStore()


@pytest.fixture
def sync_config():
    return SyncConfig(enabled=True, remote=ENDPOINT, save_delay=1.0, sync_delay=5.0,
                      max_entries=100)


@pytest.fixture
def make_manager(scheduler, clock, memory_store, fake_remote):
    """Factory for initialized managers wired to the virtual clock and fake remote."""
    managers = []

    async def factory(config: Optional[SyncConfig] = None, defaults=None, **kwargs):
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("now", clock)
        kwargs.setdefault("transport", fake_remote.transport)
        store = kwargs.pop("store", memory_store)
        manager = await StateManager.create(config or SyncConfig(), store, defaults, **kwargs)
        managers.append(manager)
        return manager

    return factory
