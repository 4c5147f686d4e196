"""Subscription registry and change cursor on top of the key-value store."""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from utils import utcnow

from .errors import ConsistencyWarning, SubscriptionExpiredError
from .models import Subscription, watch_prefix
from .store import BaseKVStore

EXPIRATION_HEADER = "X-Goog-Channel-Expiration"


def ttl_ms(subscription: Subscription, now: datetime) -> int:
    return int((subscription.expires_at - now).total_seconds() * 1000)


class SubscriptionRegistry:
    """Stores one record per watch channel under ``watch-<resourceId>:<channelId>``.

    Records expire from the store at the channel's own expiration, so a channel
    the service lost track of is forgotten no later than the provider forgets it.
    """

    def __init__(self, store: BaseKVStore, *, clock=utcnow) -> None:
        self.store = store
        self.clock = clock

    def put(self, subscription: Subscription) -> None:
        ttl = ttl_ms(subscription, self.clock())
        if ttl <= 0:
            raise SubscriptionExpiredError(EXPIRATION_HEADER, ttl)
        self.store.set(subscription.key, subscription.to_json(), ttl_ms=ttl)
        logger.debug("Registered {} (ttl {} ms)", subscription.key, ttl)

    def get(self, key: str) -> Subscription | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        return Subscription.from_json(raw)

    def delete(self, key: str) -> bool:
        found = self.store.delete(key)
        if not found:
            logger.bind(category=ConsistencyWarning.__name__).warning(
                "Consistency warning: registry entry {} was already gone when deleting it", key
            )
        return found

    def list_keys(self, resource_id: str | None = None) -> list[str]:
        return self.store.keys(watch_prefix(resource_id))


class CursorStore:
    """Single resumption token; empty or absent means a full resync."""

    def __init__(self, store: BaseKVStore, key: str = "next_sync_token") -> None:
        self.store = store
        self.key = key

    def get(self) -> str | None:
        token = self.store.get(self.key)
        return token or None

    def set(self, token: str | None) -> None:
        self.store.set(self.key, token or "")

    def reset(self) -> None:
        if self.store.delete(self.key):
            logger.info("Cursor {} reset; next batch performs a full resync", self.key)
