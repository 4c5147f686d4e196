"""Key-value storage with per-entry expiry.

If DATABASE_URL is provided, uses SQLAlchemy (PostgreSQL or SQLite). Otherwise,
falls back to a JSON file on disk. Both backends hide expired entries from
every operation and purge them lazily.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

from loguru import logger
from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    or_,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from utils import read_json, to_epoch_ms, utcnow, write_json

from .errors import StoreError


class BaseKVStore:
    def get(self, key: str) -> str | None:  # pragma: no cover - interface
        raise NotImplementedError

    def set(self, key: str, value: str, *, ttl_ms: int | None = None) -> None:  # pragma: no cover
        raise NotImplementedError

    def delete(self, key: str) -> bool:  # returns True if existed
        raise NotImplementedError

    def keys(self, prefix: str = "") -> list[str]:  # pragma: no cover - interface
        raise NotImplementedError


class FileKVStore(BaseKVStore):
    """JSON file store: {"entries": {key: {"value": str, "expiresAt": ms | null}}}."""

    def __init__(self, path: str, *, clock=utcnow) -> None:
        self.path = path
        self.clock = clock
        self._lock = threading.Lock()

    def _load(self) -> dict[str, dict]:
        raw = read_json(self.path, {"entries": {}})
        entries = raw.get("entries") if isinstance(raw, dict) else None
        return entries if isinstance(entries, dict) else {}

    def _live(self, entries: dict[str, dict]) -> dict[str, dict]:
        now_ms = to_epoch_ms(self.clock())
        return {
            k: e
            for k, e in entries.items()
            if isinstance(e, dict) and (e.get("expiresAt") is None or e["expiresAt"] > now_ms)
        }

    def _save(self, entries: dict[str, dict]) -> None:
        try:
            write_json(self.path, {"entries": entries})
        except OSError as e:
            raise StoreError(f"could not write {self.path}: {e}") from e

    def get(self, key: str) -> str | None:
        entry = self._live(self._load()).get(key)
        return None if entry is None else str(entry.get("value", ""))

    def set(self, key: str, value: str, *, ttl_ms: int | None = None) -> None:
        with self._lock:
            entries = self._live(self._load())
            expires_at = None
            if ttl_ms is not None:
                expires_at = to_epoch_ms(self.clock()) + int(ttl_ms)
            entries[key] = {"value": value, "expiresAt": expires_at}
            self._save(entries)

    def delete(self, key: str) -> bool:
        with self._lock:
            entries = self._load()
            live = self._live(entries)
            existed = key in live
            live.pop(key, None)
            if existed or len(live) != len(entries):
                self._save(live)
            return existed

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._live(self._load()) if k.startswith(prefix))


class SAKVStore(BaseKVStore):
    """SQLAlchemy-based store (PostgreSQL in production, SQLite in tests)."""

    def __init__(self, database_url: str, *, clock=utcnow) -> None:
        self.database_url = self._normalize_url(database_url)
        self.clock = clock
        self.engine: Engine = create_engine(self.database_url, future=True, pool_pre_ping=True)
        self.meta = MetaData()
        self.kv = Table(
            "kv_entries",
            self.meta,
            Column("key", String, primary_key=True),
            Column("value", Text, nullable=False),
            Column("expires_at", DateTime(timezone=True), nullable=True),
        )
        self._ensure_schema()

    @staticmethod
    def _normalize_url(url: str) -> str:
        # If driver not specified, default to pg8000 to avoid psycopg dependency
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://") :]
        if url.startswith("postgresql://") and "+" not in url.split("://", 1)[1].split(":", 1)[0]:
            return url.replace("postgresql://", "postgresql+pg8000://", 1)
        return url

    def _ensure_schema(self) -> None:
        try:
            self.meta.create_all(self.engine, tables=[self.kv])
        except SQLAlchemyError as e:
            raise StoreError(f"could not create kv_entries: {e}") from e

    def _now(self) -> datetime:
        now = self.clock()
        if self.engine.dialect.name == "sqlite":
            # SQLite stores naive timestamps; compare in naive UTC
            return now.astimezone(UTC).replace(tzinfo=None)
        return now

    def _not_expired(self):
        return or_(self.kv.c.expires_at.is_(None), self.kv.c.expires_at > self._now())

    def get(self, key: str) -> str | None:
        try:
            with self.engine.connect() as conn:
                stmt = select(self.kv.c.value).where(self.kv.c.key == key, self._not_expired())
                row = conn.execute(stmt).fetchone()
                return row[0] if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"get {key!r} failed: {e}") from e

    def set(self, key: str, value: str, *, ttl_ms: int | None = None) -> None:
        expires_at = None
        if ttl_ms is not None:
            expires_at = self._now() + timedelta(milliseconds=int(ttl_ms))
        values = {"key": key, "value": value, "expires_at": expires_at}
        update = {"value": value, "expires_at": expires_at}
        dialect = self.engine.dialect.name
        try:
            with self.engine.begin() as conn:
                if dialect == "postgresql":
                    stmt = pg_insert(self.kv).values(**values)
                    conn.execute(
                        stmt.on_conflict_do_update(index_elements=[self.kv.c.key], set_=update)
                    )
                elif dialect == "sqlite":
                    stmt = sqlite_insert(self.kv).values(**values)
                    conn.execute(
                        stmt.on_conflict_do_update(index_elements=[self.kv.c.key], set_=update)
                    )
                else:
                    conn.execute(delete(self.kv).where(self.kv.c.key == key))
                    conn.execute(insert(self.kv).values(**values))
        except SQLAlchemyError as e:
            raise StoreError(f"set {key!r} failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            with self.engine.begin() as conn:
                res = conn.execute(
                    delete(self.kv).where(self.kv.c.key == key, self._not_expired())
                )
                # purge the key even when it had already expired
                conn.execute(delete(self.kv).where(self.kv.c.key == key))
                return (res.rowcount or 0) > 0
        except SQLAlchemyError as e:
            raise StoreError(f"delete {key!r} failed: {e}") from e

    def keys(self, prefix: str = "") -> list[str]:
        try:
            with self.engine.connect() as conn:
                stmt = (
                    select(self.kv.c.key)
                    .where(self.kv.c.key.startswith(prefix, autoescape=True), self._not_expired())
                    .order_by(self.kv.c.key)
                )
                return [r[0] for r in conn.execute(stmt).fetchall()]
        except SQLAlchemyError as e:
            raise StoreError(f"keys {prefix!r} failed: {e}") from e


def get_store(database_url: str | None, state_path: str, *, clock=utcnow) -> BaseKVStore:
    if database_url:
        logger.debug("Using SQLAlchemy key-value store")
        return SAKVStore(database_url, clock=clock)
    logger.debug("Using file key-value store at {}", state_path)
    return FileKVStore(state_path, clock=clock)
