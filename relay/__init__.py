"""Google Calendar → LINE WORKS change relay."""

from __future__ import annotations

from .errors import (
    ConsistencyWarning,
    CursorExpiredError,
    NotFoundError,
    RecordError,
    RelayError,
    StoreError,
    UpstreamError,
    ValidationError,
)
from .models import ChangedEvent, ChangedItem, Subscription, SyncEvent
from .pipeline import DeliveryPipeline
from .registry import CursorStore, SubscriptionRegistry
from .store import BaseKVStore, FileKVStore, SAKVStore, get_store

__all__ = [
    "BaseKVStore",
    "ChangedEvent",
    "ChangedItem",
    "ConsistencyWarning",
    "CursorExpiredError",
    "CursorStore",
    "DeliveryPipeline",
    "FileKVStore",
    "NotFoundError",
    "RecordError",
    "RelayError",
    "SAKVStore",
    "StoreError",
    "Subscription",
    "SubscriptionRegistry",
    "SyncEvent",
    "UpstreamError",
    "ValidationError",
    "get_store",
]
