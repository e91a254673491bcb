"""Change summary between two locks."""

from __future__ import annotations

from dataclasses import dataclass

from imagematrix.lockfile.model import Lockfile, VersionRef


@dataclass(frozen=True, slots=True)
class LockChanges:
    added_bases: tuple[VersionRef, ...] = ()
    removed_bases: tuple[VersionRef, ...] = ()
    added_features: tuple[VersionRef, ...] = ()
    removed_features: tuple[VersionRef, ...] = ()
    added_targets: tuple[str, ...] = ()
    removed_targets: tuple[str, ...] = ()
    unchanged: int = 0
    registry_changed: bool = False

    @property
    def empty(self) -> bool:
        return not (
            self.added_bases
            or self.removed_bases
            or self.added_features
            or self.removed_features
            or self.added_targets
            or self.removed_targets
            or self.registry_changed
        )

    def summary(self) -> str:
        if self.empty:
            return "no changes"
        parts = []
        for label, refs in (
            ("+base", self.added_bases),
            ("-base", self.removed_bases),
            ("+feature", self.added_features),
            ("-feature", self.removed_features),
        ):
            parts.extend(f"{label} {ref}" for ref in refs)
        parts.extend(f"+target {target}" for target in self.added_targets)
        parts.extend(f"-target {target}" for target in self.removed_targets)
        if self.registry_changed:
            parts.append("registry changed")
        return ", ".join(parts)


def diff_locks(old: Lockfile, new: Lockfile) -> LockChanges:
    old_bases = [base.ref for base in old.bases]
    new_bases = [base.ref for base in new.bases]
    old_features = [feature.ref for feature in old.features]
    new_features = [feature.ref for feature in new.features]
    old_targets = [build.target for build in old.builds]
    new_targets = [build.target for build in new.builds]
    return LockChanges(
        added_bases=_missing(new_bases, old_bases),
        removed_bases=_missing(old_bases, new_bases),
        added_features=_missing(new_features, old_features),
        removed_features=_missing(old_features, new_features),
        added_targets=_missing(new_targets, old_targets),
        removed_targets=_missing(old_targets, new_targets),
        unchanged=len(set(old_bases + old_features) & set(new_bases + new_features)),
        registry_changed=old.registry != new.registry,
    )


def _missing(items, reference) -> tuple:
    present = set(reference)
    return tuple(item for item in items if item not in present)
