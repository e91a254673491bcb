"""Persistent tag-list store with canonical CBOR entries and digest verification."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import cbor2

from imagematrix.cache.keys import TagQuery, _to_payload, cache_key
from imagematrix.errors import ReproducibilityError


@dataclass(frozen=True, slots=True)
class StoredEntry:
    names: tuple[str, ...]
    fetched_at: float


class TagCacheStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, query: TagQuery) -> Path:
        return self.root / f"{cache_key(query)}.cbor"

    def load(self, query: TagQuery) -> StoredEntry | None:
        key = cache_key(query)
        entry_path = self.path_for(query)
        if not entry_path.exists():
            return None

        entry = self._read_entry(entry_path)
        if entry.get("key") != key or entry.get("inputs") != _to_payload(query):
            raise ReproducibilityError(
                "Cache entry inputs do not match the requested repository.",
                hint="Delete the cache entry and resolve again.",
                context={"operation": "cache_load", "key": key, "path": str(entry_path)},
            )
        names = entry.get("names")
        if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
            raise ReproducibilityError(
                "Cache entry has an invalid name list.",
                hint="Delete the cache entry and resolve again.",
                context={"operation": "cache_load", "key": key, "path": str(entry_path)},
            )
        if entry.get("names_sha256") != _names_digest(names):
            raise ReproducibilityError(
                "Cache entry digest mismatch.",
                hint="Delete the cache entry and resolve again.",
                context={"operation": "cache_load", "key": key, "path": str(entry_path)},
            )
        fetched_at = entry.get("fetched_at")
        if not isinstance(fetched_at, (int, float)):
            raise ReproducibilityError(
                "Cache entry has no fetch timestamp.",
                hint="Delete the cache entry and resolve again.",
                context={"operation": "cache_load", "key": key, "path": str(entry_path)},
            )
        return StoredEntry(names=tuple(names), fetched_at=float(fetched_at))

    def save(self, query: TagQuery, names: tuple[str, ...], *, fetched_at: float) -> str:
        key = cache_key(query)
        entry = {
            "key": key,
            "inputs": _to_payload(query),
            "names": list(names),
            "names_sha256": _names_digest(list(names)),
            "fetched_at": fetched_at,
        }
        entry_path = self.path_for(query)
        temp_path = entry_path.with_suffix(".tmp")
        temp_path.write_bytes(cbor2.dumps(entry, canonical=True))
        os.replace(temp_path, entry_path)
        return key

    def _read_entry(self, path: Path) -> dict[str, Any]:
        try:
            parsed = cbor2.loads(path.read_bytes())
        except cbor2.CBORDecodeError as exc:
            raise ReproducibilityError(
                "Cache entry is not valid CBOR.",
                hint="Delete the cache entry and resolve again.",
                context={"operation": "cache_load", "path": str(path)},
            ) from exc
        if not isinstance(parsed, dict):
            raise ReproducibilityError(
                "Cache entry has invalid structure.",
                hint="Delete the cache entry and resolve again.",
                context={"operation": "cache_load", "path": str(path)},
            )
        return parsed


def _names_digest(names: list[str]) -> str:
    return hashlib.sha256(cbor2.dumps(names, canonical=True)).hexdigest()
