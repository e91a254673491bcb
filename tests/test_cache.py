import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import cbor2
import pytest

from imagematrix.cache import ResolutionCache, TagCacheStore, TagQuery, cache_key
from imagematrix.errors import ReproducibilityError, VersionError, VersionErrorKind


class CountingFetcher:
    def __init__(self, names: tuple[str, ...] = ("21.0.1", "21.0.2"), *, release: threading.Event | None = None):
        self.names = names
        self.release = release
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def __call__(self, org: str, project: str, mode: str) -> tuple[str, ...]:
        with self._lock:
            self.calls.append((org, project, mode))
        if self.release is not None:
            self.release.wait(timeout=5)
        return self.names


def test_concurrent_requests_for_one_key_fetch_once() -> None:
    release = threading.Event()
    fetcher = CountingFetcher(release=release)
    cache = ResolutionCache(fetcher)

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(cache.get_or_fetch, "adoptium", "jdk21u", "tags") for _ in range(16)]
        time.sleep(0.05)
        release.set()
        results = [future.result() for future in futures]

    assert fetcher.calls == [("adoptium", "jdk21u", "tags")]
    assert {result.names for result in results} == {("21.0.1", "21.0.2")}


def test_distinct_keys_fetch_separately() -> None:
    fetcher = CountingFetcher()
    cache = ResolutionCache(fetcher)

    cache.get_or_fetch("adoptium", "jdk21u", "tags")
    cache.get_or_fetch("adoptium", "jdk21u", "branches")
    cache.get_or_fetch("adoptium", "jdk21u", "tags")

    assert fetcher.calls == [("adoptium", "jdk21u", "tags"), ("adoptium", "jdk21u", "branches")]


def test_failed_fetch_is_not_memoized() -> None:
    attempts: list[int] = []

    def flaky(org: str, project: str, mode: str) -> tuple[str, ...]:
        attempts.append(1)
        if len(attempts) == 1:
            raise VersionError("boom", kind=VersionErrorKind.NETWORK_FAILURE)
        return ("1.0.0",)

    cache = ResolutionCache(flaky)

    with pytest.raises(VersionError):
        cache.get_or_fetch("org", "project", "tags")
    assert cache.get_or_fetch("org", "project", "tags").names == ("1.0.0",)
    assert len(attempts) == 2


def test_store_is_consulted_before_fetching(tmp_path: Path) -> None:
    store = TagCacheStore(tmp_path / "cache")
    first = ResolutionCache(CountingFetcher(), store=store).get_or_fetch("org", "project", "tags")

    fetcher = CountingFetcher(names=("other",))
    second = ResolutionCache(fetcher, store=store).get_or_fetch("org", "project", "tags")

    assert first.source == "fetch"
    assert second.source == "store"
    assert second.names == first.names
    assert fetcher.calls == []


def test_expired_store_entries_are_refetched(tmp_path: Path) -> None:
    store = TagCacheStore(tmp_path / "cache")
    ResolutionCache(CountingFetcher(), store=store, clock=lambda: 1000.0).get_or_fetch("org", "project", "tags")

    fetcher = CountingFetcher(names=("2.0.0",))
    cache = ResolutionCache(fetcher, store=store, max_age=60, clock=lambda: 2000.0)
    result = cache.get_or_fetch("org", "project", "tags")

    assert result.source == "fetch"
    assert result.names == ("2.0.0",)
    assert store.load(TagQuery("org", "project", "tags")).fetched_at == 2000.0


def test_store_detects_tampered_entries(tmp_path: Path) -> None:
    store = TagCacheStore(tmp_path / "cache")
    query = TagQuery("org", "project", "tags")
    store.save(query, ("1.0.0",), fetched_at=1.0)

    path = store.path_for(query)
    entry = cbor2.loads(path.read_bytes())
    entry["names"] = ["9.9.9"]
    path.write_bytes(cbor2.dumps(entry, canonical=True))

    with pytest.raises(ReproducibilityError, match="digest mismatch"):
        store.load(query)

    path.write_bytes(path.read_bytes()[:5])
    with pytest.raises(ReproducibilityError):
        store.load(query)


def test_cache_key_is_stable_per_query() -> None:
    assert cache_key(TagQuery("a", "b", "tags")) == cache_key(TagQuery("a", "b", "tags"))
    assert cache_key(TagQuery("a", "b", "tags")) != cache_key(TagQuery("a", "b", "branches"))
