"""Change delivery: cursor → incremental diff → ordered messages → cursor advance."""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from .errors import CursorExpiredError, UpstreamError
from .lineworks_bot.formatting import EventCard, format_event, resolve_timezone
from .models import ChangeBatch, ChangedEvent, DeliveryReport
from .registry import CursorStore


class ChangeSource(Protocol):
    def list_changes(self, calendar_id: str, cursor: str | None) -> ChangeBatch: ...


class Messenger(Protocol):
    def prepare(self) -> str: ...

    def deliver(self, card: EventCard) -> bool: ...


class DeliveryPipeline:
    """Delivers every change since the stored cursor, then advances the cursor.

    Items go out one at a time in the order the provider returned them. A failed
    delivery is logged and counted but neither stops the batch nor holds back
    the cursor.
    """

    def __init__(
        self,
        source: ChangeSource,
        messenger: Messenger,
        cursor: CursorStore,
        *,
        calendar_id: str,
        timezone: str = "Asia/Tokyo",
        locale: str = "en",
    ) -> None:
        self.source = source
        self.messenger = messenger
        self.cursor = cursor
        self.calendar_id = calendar_id
        self.timezone = timezone
        self.tz = resolve_timezone(timezone)
        self.locale = locale

    def _rebaseline(self) -> DeliveryReport:
        logger.warning(
            "Sync token for {} expired; re-baselining without delivering", self.calendar_id
        )
        batch = self.source.list_changes(self.calendar_id, None)
        self.cursor.set(batch.next_cursor)
        return DeliveryReport(next_cursor=batch.next_cursor, rebaselined=True)

    def handle(self, event: ChangedEvent) -> DeliveryReport:
        # must run before the diff fetch: a failure here leaves the cursor untouched
        self.messenger.prepare()

        token = self.cursor.get()
        try:
            batch = self.source.list_changes(self.calendar_id, token)
        except CursorExpiredError:
            return self._rebaseline()

        report = DeliveryReport(next_cursor=batch.next_cursor)
        for item in batch.items:
            card = format_event(item, timezone=self.tz, locale=self.locale)
            try:
                ok = self.messenger.deliver(card)
            except UpstreamError as e:
                logger.error("Delivery of event {} failed: {}", item.id, e)
                ok = False
            else:
                if not ok:
                    logger.error("Delivery of event {} was rejected by the chat API", item.id)
            if ok:
                report.delivered += 1
            else:
                report.failed += 1

        self.cursor.set(batch.next_cursor)
        logger.info(
            "Channel {}: {} change(s), delivered {}, failed {}",
            event.channel_id or "-",
            len(batch.items),
            report.delivered,
            report.failed,
        )
        return report
