"""Fakes shared by the tracker discovery tests."""

from __future__ import annotations

import pytest

from udptracker.models import TorrentMetadata

INFO_HASH = bytes(range(20))
PEER_ID = b"-UT0100-abcdefghijkl"


class FakeTimerHandle:
    """Timer handle returned by FakeLoop.call_later."""

    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Virtual-time timer source; timers only fire when advanced."""

    def __init__(self):
        self.time = 0.0
        self.delays: list[float] = []
        self._handles: list[FakeTimerHandle] = []

    def call_later(self, delay: float, callback) -> FakeTimerHandle:
        handle = FakeTimerHandle(self.time + delay, callback)
        self.delays.append(delay)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeTimerHandle]:
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.time + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self.time = handle.when
            handle.callback()
        self.time = target


class FakeClock:
    """Clock reading FakeLoop's virtual time."""

    def __init__(self, loop: FakeLoop):
        self.loop = loop

    def now(self) -> float:
        return self.loop.time


class RecordingTransport:
    """In-memory TrackerTransport recording sent datagrams."""

    def __init__(self, loop: FakeLoop | None = None):
        self.loop = loop
        self.sent: list[bytes] = []
        self.sent_at: list[float] = []
        self.registry: dict = {}
        self.fail_with: Exception | None = None

    def send(self, data: bytes, address: tuple[str, int], session) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(data)
        self.sent_at.append(self.loop.time if self.loop else 0.0)

    def register(self, transaction_id: int, session) -> None:
        self.registry[transaction_id] = session

    def unregister(self, transaction_id: int, session) -> None:
        if self.registry.get(transaction_id) is session:
            del self.registry[transaction_id]


@pytest.fixture
def fake_loop():
    """Virtual-time timer source."""
    return FakeLoop()


@pytest.fixture
def fake_clock(fake_loop):
    """Clock sharing the fake loop's time."""
    return FakeClock(fake_loop)


@pytest.fixture
def transport(fake_loop):
    """Recording transport."""
    return RecordingTransport(fake_loop)


@pytest.fixture
def torrent():
    """Torrent metadata for a 1000-byte torrent."""
    return TorrentMetadata(info_hash=INFO_HASH, total_length=1000, name="test_torrent")
