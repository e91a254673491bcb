"""Typed config model: bases, features, builds, and their closed variants."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal, Union

VersionFrom = Literal["tags", "branches"]
# A `build` step runs in a throwaway stage; its `copy` table maps paths there to
# paths in the stages that follow it.
StepKind = Literal["actual", "build"]


@dataclass(frozen=True, slots=True)
class ExecFetch:
    """Run ``command`` inside a container of ``image`` and read the version from stdout."""

    image: str
    command: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SourceTagsFetch:
    """Pick the newest matching tag or branch of a GitHub repository."""

    org: str
    project: str
    mode: VersionFrom = "tags"


FetchStrategy = Union[ExecFetch, SourceTagsFetch]


@dataclass(frozen=True, slots=True)
class PackageManagerStep:
    method: str
    scripts: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    kind: StepKind = "actual"
    copy: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DirectStep:
    commands: tuple[str, ...]
    dependencies: tuple[str, ...] = ()
    kind: StepKind = "actual"
    copy: Mapping[str, str] = field(default_factory=dict)


InstallStep = Union[PackageManagerStep, DirectStep]

DIRECT_METHOD = "docker"


@dataclass(frozen=True, slots=True)
class BaseSpec:
    name: str
    versions: tuple[str, ...]
    package_manager: str
    version_tag: str
    image: str
    fetch: FetchStrategy | None = None


@dataclass(frozen=True, slots=True)
class FeatureSpec:
    name: str
    versions: tuple[str, ...]
    steps: tuple[InstallStep, ...] = ()
    version_tag: str | None = None
    fetch: FetchStrategy | None = None


@dataclass(frozen=True, slots=True)
class BuildRef:
    """A base or feature selected by a matrix build.

    ``versions`` restricts the axis to a subset of the declared placeholders;
    an empty tuple selects every declared placeholder.
    """

    name: str
    versions: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Pin:
    name: str
    version: str


@dataclass(frozen=True, slots=True)
class MatrixBuild:
    bases: tuple[BuildRef, ...]
    features: tuple[tuple[BuildRef, ...], ...]
    image_name: str
    image_tag: str


@dataclass(frozen=True, slots=True)
class PinnedBuild:
    base: Pin
    features: tuple[Pin, ...]
    image_name: str
    image_tag: str


BuildSpec = Union[MatrixBuild, PinnedBuild]


@dataclass(frozen=True, slots=True)
class MatrixConfig:
    bases: tuple[BaseSpec, ...] = ()
    features: tuple[FeatureSpec, ...] = ()
    builds: tuple[BuildSpec, ...] = ()
    registry: str | None = None

    def feature_order(self) -> dict[str, int]:
        """Declaration index of each logical feature (first entry wins)."""
        order: dict[str, int] = {}
        for spec in self.features:
            order.setdefault(spec.name, len(order))
        return order

    def base_versions(self, name: str) -> tuple[str, ...]:
        return tuple(v for spec in self.bases if spec.name == name for v in spec.versions)

    def feature_versions(self, name: str) -> tuple[str, ...]:
        return tuple(v for spec in self.features if spec.name == name for v in spec.versions)


def build_label(build: BuildSpec) -> str:
    """Human-readable identity of a build spec for error attribution."""
    if isinstance(build, PinnedBuild):
        pins = [f"{build.base.name}@{build.base.version}"]
        pins.extend(f"{pin.name}@{pin.version}" for pin in build.features)
        return " ".join(pins)
    groups = ["|".join(ref.name for ref in group) for group in build.features]
    bases = "|".join(ref.name for ref in build.bases)
    return " x ".join([bases, *groups])
