"""Cache key derivation."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from imagematrix.config.model import VersionFrom


@dataclass(frozen=True, slots=True)
class TagQuery:
    org: str
    project: str
    mode: VersionFrom

    def label(self) -> str:
        return f"{self.org}/{self.project} ({self.mode})"


def cache_key(query: TagQuery) -> str:
    canonical = json.dumps(_to_payload(query), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(query: TagQuery) -> dict[str, Any]:
    return {
        "org": query.org,
        "project": query.project,
        "mode": query.mode,
    }
