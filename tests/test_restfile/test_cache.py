import threading

import pytest

from restfile.parsing import Headers
from restfile.variables import RequestRecord, RequestVariableCache, ResponseRecord, ResponseStore


def _record(status=200, body="{}"):
    return ResponseRecord(
        status_code=status,
        headers=Headers([("Content-Type", "application/json")]),
        body=body,
        request=RequestRecord(method="GET", url="https://example.com", headers=Headers()),
    )


@pytest.fixture
def cache():
    return RequestVariableCache()


def test_cache_satisfies_store_protocol(cache):
    assert isinstance(cache, ResponseStore)


def test_add_and_get_are_scoped_per_document(cache):
    rec = _record()
    cache.add("a.http", "login", rec)

    assert cache.get("a.http", "login") is rec
    assert cache.get("b.http", "login") is None
    assert cache.get("a.http", "other") is None


def test_last_write_wins(cache):
    cache.add("a.http", "login", _record(status=401))
    cache.add("a.http", "login", _record(status=200))

    assert cache.get("a.http", "login").status_code == 200
    assert len(cache) == 1


def test_snapshot_is_read_only_and_detached(cache):
    cache.add("a.http", "login", _record())
    cache.add("b.http", "feed", _record())

    snap = cache.snapshot("a.http")
    assert set(snap) == {"login"}

    with pytest.raises(TypeError):
        snap["x"] = _record()  # type: ignore[index]

    cache.add("a.http", "later", _record())
    assert "later" not in snap


def test_clear_one_document_or_everything(cache):
    cache.add("a.http", "one", _record())
    cache.add("b.http", "two", _record())

    cache.clear("a.http")
    assert cache.get("a.http", "one") is None
    assert cache.get("b.http", "two") is not None

    cache.clear()
    assert len(cache) == 0


def test_concurrent_writers_do_not_lose_entries(cache):
    def writer(i):
        for j in range(50):
            cache.add("doc", f"r{i}-{j}", _record())

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache.snapshot("doc")) == 400
