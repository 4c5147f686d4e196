"""HTTP surface: Google push callback, renewal trigger and administrative cleanup.

Endpoints (under ``/api``):
- POST /api/calendar          → push callback (X-Goog-* headers)
- GET  /api/cron              → register a fresh watch channel
- GET  /api/cleanup?force=1   → stop and forget every tracked channel (JSON report)
- GET  /api/reset-cursor      → forget the sync token; next change does a full resync
- GET  /api/, /healthz        → liveness

A validated and processed callback is acknowledged with 200 even when some
deliveries failed; the provider retries on any non-2xx answer.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import cast
from urllib.parse import parse_qs, urlparse

from loguru import logger

from relay.errors import RecordError, StoreError, UpstreamError, ValidationError
from relay.gcal.client import GoogleCalendarClient
from relay.gcal.validator import validate_callback
from relay.gcal.watch import WatchChannelManager
from relay.lineworks_bot.core import LineWorksAPI, LineWorksBot
from relay.models import SyncEvent
from relay.pipeline import DeliveryPipeline
from relay.registry import CursorStore, SubscriptionRegistry
from relay.store import get_store
from utils.config import AppConfig

TEXT = "text/plain; charset=utf-8"
TRUTHY = {"1", "true", "yes", "y", "on"}


@dataclass
class Response:
    status: int
    body: bytes
    content_type: str = TEXT

    @classmethod
    def text(cls, status: int, text: str) -> Response:
        return cls(status, text.encode("utf-8"))

    @classmethod
    def json(cls, status: int, obj) -> Response:
        return cls(status, json.dumps(obj, ensure_ascii=False).encode("utf-8"), "application/json")


class RelayApp:
    def __init__(
        self,
        *,
        manager: WatchChannelManager,
        pipeline: DeliveryPipeline,
        secret: str,
        admin_token: str | None = None,
        base_path: str = "/api",
    ) -> None:
        self.manager = manager
        self.pipeline = pipeline
        self.secret = secret
        self.admin_token = admin_token
        self.base_path = base_path.rstrip("/")

    @classmethod
    def from_config(cls, cfg: AppConfig) -> RelayApp:
        store = get_store(cfg.database_url, cfg.state_path)
        calendar = GoogleCalendarClient.from_credentials(
            cfg.google_client_email,
            cfg.google_private_key,
            cfg.google_project_number,
            timeout=cfg.http_timeout_seconds,
        )
        bot = LineWorksBot(
            LineWorksAPI(
                client_id=cfg.lineworks_client_id,
                client_secret=cfg.lineworks_client_secret,
                private_key=cfg.lineworks_private_key,
                service_account=cfg.lineworks_service_account,
                timeout=cfg.http_timeout_seconds,
            ),
            bot_id=cfg.lineworks_bot_id,
            channel_id=cfg.lineworks_channel_id,
            message_format=cfg.lineworks_message_format,
        )
        manager = WatchChannelManager(
            calendar,
            SubscriptionRegistry(store),
            calendar_id=cfg.google_calendar_id,
            callback_url=cfg.callback_url,
            secret=cfg.webhook_token,
            ttl_seconds=cfg.watch_ttl_seconds,
        )
        pipeline = DeliveryPipeline(
            calendar,
            bot,
            CursorStore(store, cfg.cursor_key),
            calendar_id=cfg.google_calendar_id,
            timezone=cfg.display_timezone,
            locale=cfg.locale,
        )
        return cls(
            manager=manager,
            pipeline=pipeline,
            secret=cfg.webhook_token,
            admin_token=cfg.admin_token,
        )

    # -------------------- Routing --------------------

    def dispatch(self, method: str, raw_path: str, headers) -> Response:
        try:
            return self._route(method, raw_path, headers)
        except Exception as e:
            logger.exception("Unhandled error while serving {} {}: {}", method, raw_path, e)
            return Response.text(500, "internal error")

    def _route(self, method: str, raw_path: str, headers) -> Response:
        parsed = urlparse(raw_path)
        path = parsed.path.rstrip("/") or "/"
        if path in ("/healthz", "/readyz"):
            return Response.text(200, "ok")
        if path == (self.base_path or "/"):
            return Response.text(200, "Hello!")
        route = path[len(self.base_path) :] if path.startswith(self.base_path + "/") else None
        if method == "POST" and route == "/calendar":
            return self.handle_callback(headers)
        if method == "GET" and route in ("/cron", "/cleanup", "/reset-cursor"):
            if not self._authorized(headers):
                logger.warning("Rejected unauthorized request to {}", path)
                return Response.text(401, "unauthorized")
            if route == "/cron":
                return self.handle_cron()
            if route == "/cleanup":
                return self.handle_cleanup(parse_qs(parsed.query))
            return self.handle_reset_cursor()
        return Response.text(404, "not found")

    def _authorized(self, headers) -> bool:
        if not self.admin_token:
            return True
        return (headers.get("Authorization") or "").strip() == f"Bearer {self.admin_token}"

    # -------------------- Handlers --------------------

    def handle_callback(self, headers) -> Response:
        try:
            event = validate_callback(headers, secret=self.secret)
        except ValidationError as e:
            logger.warning("Rejected callback: {}", e.message)
            return Response.text(e.status, e.message)

        try:
            if isinstance(event, SyncEvent):
                self.manager.reconcile(event)
            else:
                self.pipeline.handle(event)
        except ValidationError as e:
            logger.warning("Rejected callback: {}", e.message)
            return Response.text(e.status, e.message)
        except UpstreamError as e:
            logger.error("Callback processing failed upstream: {}", e)
            return Response.text(502, str(e))
        except (StoreError, RecordError) as e:
            logger.exception("Callback processing failed: {}", e)
            return Response.text(500, str(e))
        return Response.text(200, "ok")

    def handle_cron(self) -> Response:
        try:
            self.manager.renew()
        except UpstreamError as e:
            logger.error("Watch renewal failed: {}", e)
            return Response.text(502, str(e))
        return Response.text(200, "ok")

    def handle_cleanup(self, query: dict[str, list[str]]) -> Response:
        force = any(v.strip().lower() in TRUTHY for v in query.get("force", []))
        try:
            report = self.manager.force_cleanup(force=force)
        except StoreError as e:
            logger.exception("Cleanup could not enumerate the registry: {}", e)
            return Response.text(500, str(e))
        return Response.json(200, report.as_dict())

    def handle_reset_cursor(self) -> Response:
        try:
            self.pipeline.cursor.reset()
        except StoreError as e:
            logger.exception("Cursor reset failed: {}", e)
            return Response.text(500, str(e))
        return Response.text(200, "ok")


# -------------------- HTTP server --------------------


class _RelayHandler(BaseHTTPRequestHandler):
    """Class attribute ``app`` is assigned per server by make_server."""

    app: RelayApp

    def log_message(self, format: str, *args) -> None:  # noqa: A003
        logger.debug("HTTP: " + format, *args)

    def _send(self, res: Response) -> None:
        self.send_response(res.status)
        self.send_header("Content-Type", res.content_type)
        self.send_header("Content-Length", str(len(res.body)))
        self.end_headers()
        self.wfile.write(res.body)

    def _drain(self) -> None:
        try:
            length = int(self.headers.get("Content-Length", "0") or "0")
        except ValueError:
            length = 0
        if length > 0:
            self.rfile.read(length)

    def do_GET(self) -> None:  # noqa: N802
        self._send(self.app.dispatch("GET", self.path, self.headers))

    def do_POST(self) -> None:  # noqa: N802
        self._drain()
        self._send(self.app.dispatch("POST", self.path, self.headers))


def make_server(app: RelayApp, host: str, port: int) -> ThreadingHTTPServer:
    class Handler(_RelayHandler):
        pass

    Handler.app = app
    return ThreadingHTTPServer((host, port), cast(type[BaseHTTPRequestHandler], Handler))


def start_server_background(app: RelayApp, *, host: str, port: int) -> threading.Thread:
    httpd = make_server(app, host, port)

    def _run():
        logger.info("Relay server listening on http://{}:{}{}", host, port, app.base_path)
        try:
            httpd.serve_forever(poll_interval=0.5)
        finally:
            httpd.server_close()

    t = threading.Thread(target=_run, name="relay-http", daemon=True)
    t.start()
    return t
