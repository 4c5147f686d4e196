"""LINE WORKS core primitives: API client with service-account auth, and the bot."""

from __future__ import annotations

import http.client
import json
import time
import urllib.error as _urlerr
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from google.auth import crypt
from google.auth import jwt as google_jwt
from loguru import logger

from relay.errors import UpstreamError

from .formatting import EventCard, render_flex, render_text

AUTH_URL = "https://auth.worksmobile.com/oauth2/v2.0/token"
API_BASE = "https://www.worksapis.com/v1.0"
SERVICE = "lineworks"

# -------------------- API --------------------


@dataclass
class AccessToken:
    value: str
    expires_at: float

    def valid(self, now: float, *, leeway: float = 60.0) -> bool:
        return now + leeway < self.expires_at


class LineWorksAPI:
    """Thin HTTP wrapper for the LINE WORKS auth and bot APIs using stdlib only."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        private_key: str,
        service_account: str,
        auth_url: str = AUTH_URL,
        api_base: str = API_BASE,
        timeout: int = 30,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.private_key = private_key
        self.service_account = service_account
        self.auth_url = auth_url
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def _open(self, req: urllib.request.Request) -> tuple[int, bytes]:
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return resp.status, resp.read()
        except _urlerr.HTTPError as e:
            txt = e.read().decode("utf-8", errors="ignore")
            raise UpstreamError(SERVICE, f"HTTP {e.code} {e.reason}: {txt}", status=e.code) from e
        except (_urlerr.URLError, http.client.HTTPException, OSError) as e:
            raise UpstreamError(SERVICE, f"request failed: {e}") from e

    def assertion(self, now: int | None = None) -> str:
        """Service-account JWT (RS256) exchanged for an access token."""

        iat = int(time.time()) if now is None else now
        try:
            signer = crypt.RSASigner.from_string(self.private_key)
        except ValueError as e:
            raise UpstreamError(SERVICE, f"invalid private key: {e}") from e
        payload = {
            "iss": self.client_id,
            "sub": self.service_account,
            "iat": iat,
            "exp": iat + 60 * 60,
        }
        return google_jwt.encode(signer, payload).decode("ascii")

    def fetch_token(self) -> AccessToken:
        params = urllib.parse.urlencode(
            {
                "assertion": self.assertion(),
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": "bot",
            }
        ).encode("ascii")
        req = urllib.request.Request(
            self.auth_url,
            data=params,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        _, body = self._open(req)
        try:
            data = json.loads(body)
            value = data["access_token"]
            expires_in = int(data.get("expires_in") or 3600)
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError(SERVICE, f"unexpected token response: {body[:200]!r}") from e
        return AccessToken(value=value, expires_at=time.time() + expires_in)

    def post_message(
        self, bot_id: str, channel_id: str, access_token: str, content: dict[str, Any]
    ) -> bool:
        url = f"{self.api_base}/bots/{bot_id}/channels/{channel_id}/messages"
        req = urllib.request.Request(
            url,
            data=json.dumps({"content": content}).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {access_token}",
            },
            method="POST",
        )
        status, _ = self._open(req)
        return status == 201


# -------------------- Bot --------------------


class LineWorksBot:
    """Posts event cards to one channel, caching the access token between posts."""

    def __init__(
        self,
        api: LineWorksAPI,
        *,
        bot_id: str,
        channel_id: str,
        message_format: str = "text",
    ) -> None:
        self.api = api
        self.bot_id = bot_id
        self.channel_id = channel_id
        self.message_format = message_format
        self._token: AccessToken | None = None

    def prepare(self) -> str:
        """Return a usable access token, fetching one if needed; raises UpstreamError."""

        if self._token is None or not self._token.valid(time.time()):
            self._token = self.api.fetch_token()
            logger.debug("LINE WORKS access token refreshed")
        return self._token.value

    def content_for(self, card: EventCard) -> dict[str, Any]:
        if self.message_format == "flex":
            return render_flex(card)
        return {"type": "text", "text": render_text(card)}

    def deliver(self, card: EventCard) -> bool:
        token = self.prepare()
        return self.api.post_message(self.bot_id, self.channel_id, token, self.content_for(card))
