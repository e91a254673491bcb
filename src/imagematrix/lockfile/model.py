"""Lockfile typed model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from imagematrix.config.model import InstallStep
from imagematrix.fetch.docker import split_image

IdentifierType = Literal["Digest", "Tag"]


@dataclass(frozen=True, slots=True)
class VersionRef:
    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass(frozen=True, slots=True)
class ImageIdentifier:
    type: IdentifierType
    value: str


@dataclass(frozen=True, slots=True)
class LockedBase:
    name: str
    requested: str
    version: str
    versions: tuple[str, ...]
    package_manager: str
    image: str
    tag: str
    identifier: ImageIdentifier | None = None

    @property
    def ref(self) -> VersionRef:
        return VersionRef(self.name, self.version)

    def source_image(self) -> str:
        """Image reference for the base stage, preferring the pinned digest."""
        if self.identifier is not None and self.identifier.type == "Digest":
            repository, _ = split_image(self.image)
            return f"{repository}@{self.identifier.value}"
        return self.image


@dataclass(frozen=True, slots=True)
class LockedFeature:
    name: str
    requested: str
    version: str
    versions: tuple[str, ...]
    tag: str | None = None
    steps: tuple[InstallStep, ...] = ()

    @property
    def ref(self) -> VersionRef:
        return VersionRef(self.name, self.version)


@dataclass(frozen=True, slots=True)
class LockedBuild:
    target: str
    image_name: str
    image_tag: str
    base: VersionRef
    features: tuple[VersionRef, ...] = ()

    def __str__(self) -> str:
        return " ".join(str(ref) for ref in (self.base, *self.features))


@dataclass(frozen=True, slots=True)
class Lockfile:
    bases: tuple[LockedBase, ...] = ()
    features: tuple[LockedFeature, ...] = ()
    builds: tuple[LockedBuild, ...] = ()
    registry: str | None = None
    _index: dict[tuple[str, str, str], LockedBase | LockedFeature] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: dict[tuple[str, str, str], LockedBase | LockedFeature] = {}
        for base in self.bases:
            index[("base", base.name, base.version)] = base
        for feature in self.features:
            index[("feature", feature.name, feature.version)] = feature
        object.__setattr__(self, "_index", index)

    def base(self, ref: VersionRef) -> LockedBase | None:
        found = self._index.get(("base", ref.name, ref.version))
        return found if isinstance(found, LockedBase) else None

    def feature(self, ref: VersionRef) -> LockedFeature | None:
        found = self._index.get(("feature", ref.name, ref.version))
        return found if isinstance(found, LockedFeature) else None
