"""Lockfile model, serialization, and diffing."""

from .diff import LockChanges, diff_locks
from .io import parse_lockfile, read_lockfile, serialize_lockfile, write_lockfile
from .model import ImageIdentifier, LockedBase, LockedBuild, LockedFeature, Lockfile, VersionRef

__all__ = [
    "ImageIdentifier",
    "LockChanges",
    "LockedBase",
    "LockedBuild",
    "LockedFeature",
    "Lockfile",
    "VersionRef",
    "diff_locks",
    "parse_lockfile",
    "read_lockfile",
    "serialize_lockfile",
    "write_lockfile",
]
