"""Watch-channel lifecycle: renew, reconcile on sync, administrative cleanup.

Exactly one channel per watched resource is kept current. Renewal only asks
the provider for a new channel; superseded channels are torn down when the
provider confirms the new one with a ``sync`` callback. Teardown always stops
the provider channel before deleting its registry entry, so an interrupted
teardown leaves a record behind that a later pass can retry.
"""

from __future__ import annotations

import uuid
from typing import Protocol

from loguru import logger

from relay.errors import (
    NotFoundError,
    RecordError,
    StoreError,
    SubscriptionExpiredError,
    UpstreamError,
)
from relay.models import (
    CleanupEntry,
    CleanupOutcome,
    CleanupReport,
    ReconcileResult,
    Subscription,
    SyncEvent,
)
from relay.registry import EXPIRATION_HEADER, SubscriptionRegistry, ttl_ms
from utils import utcnow


class WatchProvider(Protocol):
    def watch(
        self,
        calendar_id: str,
        *,
        channel_id: str,
        address: str,
        token: str,
        ttl_seconds: int,
    ) -> Subscription: ...

    def stop(self, channel_id: str, resource_id: str, token: str) -> None: ...


class WatchChannelManager:
    def __init__(
        self,
        provider: WatchProvider,
        registry: SubscriptionRegistry,
        *,
        calendar_id: str,
        callback_url: str,
        secret: str,
        ttl_seconds: int,
        clock=utcnow,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.calendar_id = calendar_id
        self.callback_url = callback_url
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def renew(self) -> Subscription:
        """Register a brand-new channel; the old ones go away on its sync callback."""

        channel_id = str(uuid.uuid4())
        sub = self.provider.watch(
            self.calendar_id,
            channel_id=channel_id,
            address=self.callback_url,
            token=self.secret,
            ttl_seconds=self.ttl_seconds,
        )
        logger.info(
            "Requested watch channel {} for resource {} (expires {})",
            sub.subscription_id,
            sub.resource_id,
            sub.expires_at.isoformat(),
        )
        return sub

    def _stop(self, sub: Subscription) -> None:
        try:
            self.provider.stop(sub.subscription_id, sub.resource_id, self.secret)
        except NotFoundError:
            logger.info("Channel {} already gone on the provider side", sub.subscription_id)

    def reconcile(self, event: SyncEvent) -> ReconcileResult:
        new = event.subscription
        ttl = ttl_ms(new, self.clock())
        if ttl <= 0:
            # reject before touching anything so the current channel keeps working
            raise SubscriptionExpiredError(EXPIRATION_HEADER, ttl)

        result = ReconcileResult(new_key=new.key)
        for key in self.registry.list_keys(new.resource_id):
            if key == new.key:
                continue
            try:
                old = self.registry.get(key)
            except RecordError as e:
                logger.warning("Unreadable registry entry {}: {}", key, e)
                result.failed.append(key)
                continue
            if old is None:
                continue
            try:
                self._stop(old)
            except UpstreamError as e:
                logger.error("Could not stop superseded channel {}: {}", key, e)
                result.failed.append(key)
                continue
            self.registry.delete(key)
            result.removed.append(key)

        self.registry.put(new)
        logger.info(
            "Channel {} is current for resource {}; removed {}, failed {}",
            new.subscription_id,
            new.resource_id,
            len(result.removed),
            len(result.failed),
        )
        return result

    def _cleanup_one(self, key: str, *, force: bool) -> CleanupEntry | None:
        try:
            sub = self.registry.get(key)
        except RecordError as e:
            return CleanupEntry(key, CleanupOutcome.FAILED, reason=f"unreadable record: {e}")
        if sub is None:
            return None
        try:
            self.provider.stop(sub.subscription_id, sub.resource_id, self.secret)
        except NotFoundError as e:
            if not force:
                return CleanupEntry(
                    key,
                    CleanupOutcome.FAILED,
                    sub.subscription_id,
                    sub.resource_id,
                    reason=f"not found on provider: {e}",
                )
            self.registry.delete(key)
            return CleanupEntry(
                key, CleanupOutcome.FORCE_CLEANED, sub.subscription_id, sub.resource_id
            )
        except UpstreamError as e:
            return CleanupEntry(
                key, CleanupOutcome.FAILED, sub.subscription_id, sub.resource_id, reason=str(e)
            )
        self.registry.delete(key)
        return CleanupEntry(key, CleanupOutcome.CLEANED, sub.subscription_id, sub.resource_id)

    def force_cleanup(self, *, force: bool = False) -> CleanupReport:
        """Tear down every tracked channel, whatever resource it watches.

        With ``force`` a channel the provider no longer knows is dropped from the
        registry anyway; without it the entry is reported failed and kept.
        """

        report = CleanupReport()
        for key in self.registry.list_keys():
            try:
                entry = self._cleanup_one(key, force=force)
            except StoreError as e:
                entry = CleanupEntry(key, CleanupOutcome.FAILED, reason=f"store error: {e}")
            if entry is None:
                logger.debug("Registry entry {} vanished before cleanup", key)
                continue
            if entry.outcome is CleanupOutcome.FAILED:
                logger.warning("Cleanup of {} failed: {}", key, entry.reason)
            report.add(entry)
        logger.info(
            "Cleanup finished (force={}): cleaned {}, force-cleaned {}, failed {}",
            force,
            len(report.cleaned),
            len(report.force_cleaned),
            len(report.failed),
        )
        return report
