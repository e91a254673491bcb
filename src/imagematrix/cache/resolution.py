"""Run-scoped tag cache with per-key request coalescing."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Literal

from imagematrix.cache.keys import TagQuery
from imagematrix.cache.store import TagCacheStore
from imagematrix.config.model import VersionFrom
from imagematrix.observability import StructuredLogger

RefFetcher = Callable[[str, str, VersionFrom], tuple[str, ...]]
CacheSource = Literal["fetch", "store"]


@dataclass(frozen=True, slots=True)
class CachedResult:
    query: TagQuery
    names: tuple[str, ...]
    source: CacheSource


class ResolutionCache:
    """Memoizes ref listings keyed by ``(org, project, mode)``.

    Entries never expire within one instance, so a resolution pass sees one
    consistent snapshot. Concurrent callers asking for the same key share a
    single in-flight fetch; distinct keys fetch in parallel. A failed fetch is
    forgotten so the caller's retry policy can try again.

    When a persistent ``store`` is given it is consulted before the network;
    entries older than ``max_age`` seconds are refetched.
    """

    def __init__(
        self,
        fetcher: RefFetcher,
        *,
        store: TagCacheStore | None = None,
        max_age: float | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._max_age = max_age
        self._logger = logger
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[TagQuery, Future[CachedResult]] = {}

    def get_or_fetch(self, org: str, project: str, mode: VersionFrom) -> CachedResult:
        query = TagQuery(org=org, project=project, mode=mode)
        with self._lock:
            pending = self._entries.get(query)
            owner = pending is None
            if pending is None:
                pending = Future()
                self._entries[query] = pending
        if not owner:
            return pending.result()

        try:
            result = self._load_or_fetch(query)
        except BaseException as exc:
            with self._lock:
                self._entries.pop(query, None)
            pending.set_exception(exc)
            raise
        pending.set_result(result)
        return result

    def _load_or_fetch(self, query: TagQuery) -> CachedResult:
        if self._store is not None:
            stored = self._store.load(query)
            if stored is not None and not self._expired(stored.fetched_at):
                self._log("Using cached refs", query)
                return CachedResult(query=query, names=stored.names, source="store")

        self._log("Fetching refs", query)
        names = self._fetcher(query.org, query.project, query.mode)
        if self._store is not None:
            self._store.save(query, names, fetched_at=self._clock())
        return CachedResult(query=query, names=names, source="fetch")

    def _expired(self, fetched_at: float) -> bool:
        if self._max_age is None:
            return False
        return self._clock() - fetched_at > self._max_age

    def _log(self, message: str, query: TagQuery) -> None:
        if self._logger is not None:
            self._logger.debug(operation="resolution_cache", message=message, subject=query.label())
