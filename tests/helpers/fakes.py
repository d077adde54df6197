from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from kiosk_api.errors import InvalidCredential
from kiosk_api.identity import Identity

UTC = datetime.timezone.utc


class FakeClock:
    def __init__(self, start: Optional[datetime.datetime] = None):
        self.now = start or datetime.datetime(2026, 10, 17, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += datetime.timedelta(seconds=seconds)


class FakeHandle:
    def __init__(self, due: datetime.datetime, callback: Callable[[], None], seq: int):
        self.due = due
        self.callback = callback
        self.seq = seq
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Deterministic stand-in for an event loop's call_later, driven by FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles: List[FakeHandle] = []
        self._seq = 0

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(self.clock.now + datetime.timedelta(seconds=delay), callback, self._seq)
        self.handles.append(handle)
        return handle

    @property
    def live(self) -> List[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + datetime.timedelta(seconds=seconds)
        while True:
            due = [h for h in self.live if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due, h.seq))
            handle.cancelled = True
            if handle.due > self.clock.now:
                self.clock.now = handle.due
            handle.callback()
        self.clock.now = target


@dataclass
class FakeAuditSink:
    events: List[Any] = field(default_factory=list)
    fail: bool = False

    def log_event(self, event, *_a, **_k) -> None:
        if self.fail:
            raise RuntimeError("audit sink down")
        self.events.append(event)


@dataclass
class FakeVerifier:
    identities: Dict[str, Identity] = field(default_factory=dict)
    calls: List[str] = field(default_factory=list)

    def __call__(self, pin: str) -> Identity:
        self.calls.append(pin)
        if pin not in self.identities:
            raise InvalidCredential()
        return self.identities[pin]


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Optional[dict] = None):
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttp:
    def __init__(self):
        self.routes: Dict[str, Any] = {}
        self.requests: List[Dict[str, Any]] = []

    def post(self, url, **kwargs):
        self.requests.append({"url": url, **kwargs})
        result = self.routes.get(urlparse(url).path)
        if isinstance(result, Exception):
            raise result
        return result or FakeResponse(200, {})
