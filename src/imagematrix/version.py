"""Version decomposition, wildcard matching, and newest-first ordering."""

from __future__ import annotations

import re
from collections.abc import Iterable

LATEST = "latest"
WILDCARD = "*"

_FIELD = re.compile(r"[\w*]+")
_LEADING_V = re.compile(r"^[vV](?=\d)")


def split_version(version: str) -> tuple[str, ...]:
    """Split a raw version string into its fields.

    Fields are runs of word characters (or ``*``); dots, spaces, parentheses,
    dashes and plus signs all act as separators::

        >>> split_version("OpenJDK 21.0.3 (build 9)")
        ('OpenJDK', '21', '0', '3', 'build', '9')
    """
    return tuple(_FIELD.findall(version))


def is_wildcard(placeholder: str) -> bool:
    return placeholder == LATEST or WILDCARD in placeholder


def version_match(pattern: str, candidate: str) -> bool:
    """Return whether *candidate* matches *pattern* field by field.

    A ``*`` field matches any single field; the candidate may carry extra
    trailing fields (``21.*`` matches ``21.0.3``).
    """
    if pattern == LATEST:
        return True
    wanted = split_version(pattern)
    actual = split_version(candidate)
    if len(actual) < len(wanted):
        return False
    return all(w == WILDCARD or a == w for w, a in zip(wanted, actual))


def version_key(raw: str) -> tuple[tuple[int, ...], int, tuple[str, ...], str]:
    """Best-effort semantic ordering key.

    The key is the run of numeric fields (compared as integers, leading
    non-numeric prefixes such as ``jdk-`` skipped), then a release flag that
    ranks ``1.0.0`` above ``1.0.0-rc1``, then the remaining fields, and the raw
    string as a lexical tie-breaker.
    """
    fields = split_version(_LEADING_V.sub("", raw))
    start = next((i for i, item in enumerate(fields) if item.isdigit()), len(fields))
    numeric: list[int] = []
    rest: tuple[str, ...] = ()
    for offset, item in enumerate(fields[start:]):
        if not item.isdigit():
            rest = fields[start + offset :]
            break
        numeric.append(int(item))
    is_release = 0 if rest else 1
    return (tuple(numeric), is_release, rest, raw)


def newest(candidates: Iterable[str]) -> str | None:
    ordered = sorted(candidates, key=version_key, reverse=True)
    return ordered[0] if ordered else None


def find_version(pattern: str, candidates: Iterable[str]) -> str | None:
    """Pick the newest candidate matching *pattern*, or ``None``."""
    return newest(candidate for candidate in candidates if version_match(pattern, candidate))
