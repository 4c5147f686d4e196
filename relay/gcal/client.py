"""Google Calendar provider: watch channels, channel stop and sync-token listing."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from loguru import logger

from relay.errors import CursorExpiredError, NotFoundError, RecordError, UpstreamError
from relay.models import ChangeBatch, ChangedItem, Subscription
from utils import to_epoch_ms, utcnow

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
SERVICE = "google-calendar"


def _status(err: HttpError) -> int | None:
    try:
        return int(err.resp.status)
    except (AttributeError, TypeError, ValueError):
        return None


class GoogleCalendarClient:
    """Thin wrapper over the discovery client that returns typed results.

    Library exceptions never escape: 404 becomes NotFoundError, 410 on a listing
    becomes CursorExpiredError and anything else becomes UpstreamError.
    """

    def __init__(self, service: Any, *, clock=utcnow) -> None:
        self.service = service
        self.clock = clock

    @classmethod
    def from_credentials(
        cls,
        client_email: str,
        private_key: str,
        project_number: str,
        *,
        timeout: int = 30,
    ) -> GoogleCalendarClient:
        creds = service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "project_id": project_number,
                "client_email": client_email,
                "private_key": private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=SCOPES,
        )
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
        service = build("calendar", "v3", http=http, cache_discovery=False)
        return cls(service)

    def _execute(self, request: Any, what: str) -> dict[str, Any]:
        try:
            return request.execute()
        except HttpError as e:
            status = _status(e)
            if status == 404:
                raise NotFoundError(f"{what}: not found") from e
            raise UpstreamError(SERVICE, f"{what} failed: {e}", status=status) from e
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as e:
            raise UpstreamError(SERVICE, f"{what} failed: {e}") from e

    # -------------------- Watch channels --------------------

    def watch(
        self,
        calendar_id: str,
        *,
        channel_id: str,
        address: str,
        token: str,
        ttl_seconds: int,
    ) -> Subscription:
        body = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "token": token,
            "expiration": to_epoch_ms(self.clock() + timedelta(seconds=ttl_seconds)),
        }
        res = self._execute(
            self.service.events().watch(calendarId=calendar_id, body=body), "events.watch"
        )
        try:
            return Subscription.from_watch_response(res)
        except RecordError as e:
            raise UpstreamError(SERVICE, f"unexpected watch response: {e}") from e

    def stop(self, channel_id: str, resource_id: str, token: str) -> None:
        self._execute(
            self.service.channels().stop(
                body={"id": channel_id, "resourceId": resource_id, "token": token}
            ),
            "channels.stop",
        )
        logger.info("Stopped watch channel {} ({})", channel_id, resource_id)

    # -------------------- Incremental listing --------------------

    def list_changes(self, calendar_id: str, cursor: str | None) -> ChangeBatch:
        """Return every changed event since ``cursor`` plus the next sync token.

        ``cursor=None`` lists the full current state. Pages are followed until the
        provider hands out ``nextSyncToken``.
        """

        items: list[ChangedItem] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"calendarId": calendar_id, "showDeleted": True}
            if cursor:
                params["syncToken"] = cursor
            if page_token:
                params["pageToken"] = page_token
            try:
                res = self._execute(self.service.events().list(**params), "events.list")
            except UpstreamError as e:
                if e.status == 410:
                    raise CursorExpiredError(SERVICE, "sync token expired", status=410) from e
                raise
            for raw in res.get("items") or []:
                try:
                    items.append(ChangedItem.parse(raw))
                except RecordError as e:
                    raise UpstreamError(SERVICE, f"unexpected event payload: {e}") from e
            page_token = res.get("nextPageToken")
            if not page_token:
                next_cursor = res.get("nextSyncToken")
                break
        logger.debug(
            "events.list returned {} item(s); next cursor present: {}",
            len(items),
            bool(next_cursor),
        )
        return ChangeBatch(items=items, next_cursor=next_cursor)
