"""Typed entities parsed at the service boundary.

Nothing past the provider client, the store and the callback validator touches
untyped payloads: records are parsed here strictly and rejected with
RecordError when a required field is missing or mistyped.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from utils import from_epoch_ms, parse_timestamp, to_epoch_ms

from .errors import RecordError

WATCH_KEY_PREFIX = "watch-"
CANCELLED = "cancelled"


def watch_key(resource_id: str, subscription_id: str) -> str:
    return f"{WATCH_KEY_PREFIX}{resource_id}:{subscription_id}"


def watch_prefix(resource_id: str | None = None) -> str:
    if resource_id is None:
        return WATCH_KEY_PREFIX
    return f"{WATCH_KEY_PREFIX}{resource_id}:"


def _require_str(obj: Mapping[str, Any], name: str) -> str:
    v = obj.get(name)
    if not isinstance(v, str) or not v:
        raise RecordError(f"field {name!r} must be a non-empty string, got {v!r}")
    return v


def _optional_str(obj: Mapping[str, Any], name: str) -> str | None:
    v = obj.get(name)
    if v is None or v == "":
        return None
    if not isinstance(v, str):
        raise RecordError(f"field {name!r} must be a string, got {v!r}")
    return v


# -------------------- Subscription --------------------


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    resource_id: str
    expires_at: datetime

    @property
    def key(self) -> str:
        return watch_key(self.resource_id, self.subscription_id)

    def to_json(self) -> str:
        return json.dumps(
            {
                "channelId": self.subscription_id,
                "resourceId": self.resource_id,
                "expiration": to_epoch_ms(self.expires_at),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> Subscription:
        try:
            obj = json.loads(raw)
        except ValueError as e:
            raise RecordError(f"subscription record is not JSON: {e}") from e
        if not isinstance(obj, dict):
            raise RecordError(f"subscription record must be an object, got {type(obj).__name__}")
        expiration = obj.get("expiration")
        if isinstance(expiration, bool) or not isinstance(expiration, int | float):
            raise RecordError(f"field 'expiration' must be epoch milliseconds, got {expiration!r}")
        try:
            expires_at = from_epoch_ms(int(expiration))
        except (OverflowError, ValueError) as e:
            raise RecordError(f"field 'expiration' is out of range: {expiration!r}") from e
        return cls(
            subscription_id=_require_str(obj, "channelId"),
            resource_id=_require_str(obj, "resourceId"),
            expires_at=expires_at,
        )

    @classmethod
    def from_watch_response(cls, payload: Mapping[str, Any]) -> Subscription:
        """Parse an events.watch response (id, resourceId, expiration as ms string)."""

        raw_exp = payload.get("expiration")
        if raw_exp is None:
            raise RecordError("watch response has no expiration")
        try:
            expires_at = from_epoch_ms(int(raw_exp))
        except (TypeError, ValueError) as e:
            raise RecordError(f"watch response expiration is invalid: {raw_exp!r}") from e
        return cls(
            subscription_id=_require_str(payload, "id"),
            resource_id=_require_str(payload, "resourceId"),
            expires_at=expires_at,
        )


# -------------------- Callback events --------------------


class ResourceState(str, Enum):
    SYNC = "sync"
    EXISTS = "exists"


@dataclass(frozen=True)
class SyncEvent:
    resource_id: str
    channel_id: str
    channel_expiration: datetime

    @property
    def subscription(self) -> Subscription:
        return Subscription(self.channel_id, self.resource_id, self.channel_expiration)


@dataclass(frozen=True)
class ChangedEvent:
    # identifiers are carried for logging only; changes are fetched separately
    resource_id: str = ""
    channel_id: str = ""


# -------------------- Changed items --------------------


@dataclass(frozen=True)
class EventTime:
    date: date | None = None
    date_time: datetime | None = None

    @property
    def all_day(self) -> bool:
        return self.date is not None

    @classmethod
    def parse(cls, payload: Any) -> EventTime | None:
        if payload is None:
            return None
        if not isinstance(payload, Mapping):
            raise RecordError(f"event time must be an object, got {payload!r}")
        try:
            if payload.get("date"):
                return cls(date=date.fromisoformat(str(payload["date"])))
            if payload.get("dateTime"):
                return cls(date_time=parse_timestamp(str(payload["dateTime"])))
        except ValueError as e:
            raise RecordError(f"event time is invalid: {payload!r}") from e
        return None


@dataclass(frozen=True)
class Person:
    display_name: str | None = None
    email: str | None = None

    @classmethod
    def parse(cls, payload: Any) -> Person | None:
        if not isinstance(payload, Mapping):
            return None
        return cls(
            display_name=_optional_str(payload, "displayName"),
            email=_optional_str(payload, "email"),
        )


@dataclass(frozen=True)
class ChangedItem:
    id: str
    status: str
    summary: str | None = None
    description: str | None = None
    start: EventTime | None = None
    end: EventTime | None = None
    creator: Person | None = None
    html_link: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.status == CANCELLED

    @classmethod
    def parse(cls, payload: Any) -> ChangedItem:
        if not isinstance(payload, Mapping):
            raise RecordError(f"event must be an object, got {payload!r}")
        return cls(
            id=_require_str(payload, "id"),
            status=_optional_str(payload, "status") or "confirmed",
            summary=_optional_str(payload, "summary"),
            description=_optional_str(payload, "description"),
            start=EventTime.parse(payload.get("start")),
            end=EventTime.parse(payload.get("end")),
            creator=Person.parse(payload.get("creator")),
            html_link=_optional_str(payload, "htmlLink"),
        )


@dataclass
class ChangeBatch:
    items: list[ChangedItem] = field(default_factory=list)
    next_cursor: str | None = None


# -------------------- Reports --------------------


class CleanupOutcome(str, Enum):
    CLEANED = "cleaned"
    FORCE_CLEANED = "force_cleaned"
    FAILED = "failed"


@dataclass(frozen=True)
class CleanupEntry:
    key: str
    outcome: CleanupOutcome
    channel_id: str | None = None
    resource_id: str | None = None
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "key": self.key,
            "channelId": self.channel_id,
            "resourceId": self.resource_id,
        }
        if self.reason:
            d["reason"] = self.reason
        return d


@dataclass
class CleanupReport:
    cleaned: list[CleanupEntry] = field(default_factory=list)
    force_cleaned: list[CleanupEntry] = field(default_factory=list)
    failed: list[CleanupEntry] = field(default_factory=list)

    def add(self, entry: CleanupEntry) -> None:
        {
            CleanupOutcome.CLEANED: self.cleaned,
            CleanupOutcome.FORCE_CLEANED: self.force_cleaned,
            CleanupOutcome.FAILED: self.failed,
        }[entry.outcome].append(entry)

    def as_dict(self) -> dict[str, Any]:
        return {
            "cleaned": [e.as_dict() for e in self.cleaned],
            "forceCleaned": [e.as_dict() for e in self.force_cleaned],
            "failed": [e.as_dict() for e in self.failed],
        }


@dataclass
class ReconcileResult:
    new_key: str
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class DeliveryReport:
    delivered: int = 0
    failed: int = 0
    next_cursor: str | None = None
    rebaselined: bool = False
