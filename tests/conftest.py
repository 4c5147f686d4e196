from __future__ import annotations

import os
import sys
from datetime import UTC, datetime, timedelta

import pytest


def _project_root() -> str:
    here = os.path.dirname(__file__)
    return os.path.abspath(os.path.join(here, os.pardir))


# Ensure project root is importable (so `import relay` works in tests)
root = _project_root()
if root not in sys.path:
    sys.path.insert(0, root)

from relay.errors import NotFoundError, UpstreamError  # noqa: E402
from relay.models import ChangeBatch, ChangedItem, Subscription  # noqa: E402
from relay.registry import CursorStore, SubscriptionRegistry  # noqa: E402
from relay.store import FileKVStore  # noqa: E402

SECRET = "s3cret"
CALENDAR_ID = "team@example.com"
CALLBACK_URL = "https://relay.example.com/api/calendar"


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeCalendar:
    """In-memory provider: live channels, scripted diff batches, injectable failures."""

    def __init__(self, clock: Clock, resource_id: str = "res-1") -> None:
        self.clock = clock
        self.resource_id = resource_id
        self.live: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.batches: list[ChangeBatch | Exception] = []
        self.stop_errors: dict[str, Exception] = {}

    def watch(self, calendar_id, *, channel_id, address, token, ttl_seconds):
        self.calls.append(("watch", calendar_id, channel_id, address, token))
        self.live[channel_id] = self.resource_id
        return Subscription(
            channel_id, self.resource_id, self.clock() + timedelta(seconds=ttl_seconds)
        )

    def stop(self, channel_id, resource_id, token):
        self.calls.append(("stop", channel_id, resource_id, token))
        if channel_id in self.stop_errors:
            raise self.stop_errors[channel_id]
        if channel_id not in self.live:
            raise NotFoundError(f"channels.stop: {channel_id} not found")
        del self.live[channel_id]

    def list_changes(self, calendar_id, cursor):
        self.calls.append(("list", calendar_id, cursor))
        nxt = self.batches.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class FakeMessenger:
    def __init__(self) -> None:
        self.delivered: list = []
        self.fail_names: set[str] = set()
        self.reject_names: set[str] = set()
        self.prepare_error: Exception | None = None

    def prepare(self) -> str:
        if self.prepare_error is not None:
            raise self.prepare_error
        return "token"

    def deliver(self, card) -> bool:
        if card.name in self.fail_names:
            raise UpstreamError("lineworks", "HTTP 500")
        if card.name in self.reject_names:
            return False
        self.delivered.append(card)
        return True


def make_item(id_: str, summary: str | None = None, *, status: str = "confirmed", **extra):
    payload = {"id": id_, "status": status, **extra}
    if summary is not None:
        payload["summary"] = summary
    return ChangedItem.parse(payload)


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2024, 5, 1, 0, 0, tzinfo=UTC))


@pytest.fixture
def store(tmp_path, clock) -> FileKVStore:
    return FileKVStore(str(tmp_path / "state.json"), clock=clock)


@pytest.fixture
def registry(store, clock) -> SubscriptionRegistry:
    return SubscriptionRegistry(store, clock=clock)


@pytest.fixture
def cursor(store) -> CursorStore:
    return CursorStore(store)


@pytest.fixture
def calendar(clock) -> FakeCalendar:
    return FakeCalendar(clock)


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()
