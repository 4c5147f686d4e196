from __future__ import annotations

import pytest

from relay.store import FileKVStore, SAKVStore, get_store


@pytest.fixture(params=["file", "sqlite"])
def kv(request, tmp_path, clock):
    if request.param == "file":
        return FileKVStore(str(tmp_path / "kv.json"), clock=clock)
    return SAKVStore(f"sqlite:///{tmp_path / 'kv.db'}", clock=clock)


def test_set_get_overwrite(kv):
    assert kv.get("a") is None
    kv.set("a", "1")
    kv.set("a", "2")
    assert kv.get("a") == "2"


def test_ttl_hides_expired_entries(kv, clock):
    kv.set("short", "x", ttl_ms=1_000)
    kv.set("long", "y", ttl_ms=60_000)
    clock.advance(seconds=2)
    assert kv.get("short") is None
    assert kv.get("long") == "y"
    assert kv.keys() == ["long"]
    assert kv.delete("short") is False


def test_delete_reports_whether_key_existed(kv):
    kv.set("k", "v")
    assert kv.delete("k") is True
    assert kv.delete("k") is False
    assert kv.get("k") is None


def test_prefix_scan(kv):
    kv.set("watch-r1:a", "1")
    kv.set("watch-r1:b", "2")
    kv.set("watch-r2:c", "3")
    kv.set("next_sync_token", "tok")
    assert kv.keys("watch-r1:") == ["watch-r1:a", "watch-r1:b"]
    assert kv.keys("watch-") == ["watch-r1:a", "watch-r1:b", "watch-r2:c"]


def test_prefix_scan_does_not_treat_underscore_as_wildcard(kv):
    kv.set("watch-r_1:a", "1")
    kv.set("watch-rx1:b", "2")
    assert kv.keys("watch-r_1:") == ["watch-r_1:a"]


def test_file_store_persists_across_instances(tmp_path, clock):
    path = str(tmp_path / "kv.json")
    FileKVStore(path, clock=clock).set("k", "v", ttl_ms=10_000)
    assert FileKVStore(path, clock=clock).get("k") == "v"


def test_normalize_postgres_url_defaults_to_pg8000():
    assert (
        SAKVStore._normalize_url("postgres://u:p@db/relay") == "postgresql+pg8000://u:p@db/relay"
    )
    assert (
        SAKVStore._normalize_url("postgresql+psycopg://u:p@db/relay")
        == "postgresql+psycopg://u:p@db/relay"
    )


def test_get_store_picks_backend(tmp_path):
    assert isinstance(get_store(None, str(tmp_path / "s.json")), FileKVStore)
    assert isinstance(get_store(f"sqlite:///{tmp_path / 's.db'}", "unused"), SAKVStore)
