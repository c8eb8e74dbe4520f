import threading
from typing import Any, Dict, List, Optional

import pytest

from qrsec.providers.http_client import ProviderHttp
from qrsec.verdict import OutcomeState, ProviderOutcome

INVALID_JSON = object()


class FakeClock:
    """Monotonic clock whose sleep() only advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self._body = {} if body is None else body
        self.headers = headers or {}

    def json(self):
        if self._body is INVALID_JSON:
            raise ValueError("Expecting value")
        return self._body


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        if not self.replies:
            raise AssertionError(f"unexpected request {method} {url}")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeProvider:
    """Stands in for a ProviderClient: returns a fixed state, counts calls."""

    def __init__(self, name, state=OutcomeState.CLEAN, detail="", display_name=None, block=None, raw=None):
        self.name = name
        self.display_name = display_name or name
        self.state = state
        self.detail = detail
        self.block = block
        self.raw = raw or {}
        self.calls = 0

    def query(self, url):
        self.calls += 1
        if self.block is not None:
            self.block.wait(10)
        return ProviderOutcome(provider=self.name, state=self.state, detail=self.detail, raw_detail=self.raw)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_http(clock):
    def _make(*replies, retries=2):
        session = FakeSession(*replies)
        http = ProviderHttp(retries=retries, session=session, clock=clock, sleep=clock.sleep)
        return http, session

    return _make


@pytest.fixture
def release():
    """Event that unblocks hanging fake providers at teardown."""
    event = threading.Event()
    yield event
    event.set()
