"""Build-matrix expansion over resolved bases and features."""

from __future__ import annotations

import itertools
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from imagematrix.config.model import BuildRef, BuildSpec, MatrixBuild, PinnedBuild, build_label
from imagematrix.errors import ConfigError, DuplicateTargetError, TemplateError, UnresolvedPinError
from imagematrix.lockfile.model import LockedBase, LockedBuild, LockedFeature
from imagematrix.template import ContextValue, render


@dataclass(frozen=True, slots=True)
class Catalog:
    """Resolved bases and features, keyed by name, in placeholder declaration order."""

    bases: Mapping[str, tuple[LockedBase, ...]] = field(default_factory=dict)
    features: Mapping[str, tuple[LockedFeature, ...]] = field(default_factory=dict)
    feature_order: Mapping[str, int] = field(default_factory=dict)

    def select_bases(self, ref: BuildRef, *, build: str) -> tuple[LockedBase, ...]:
        return _select(self.bases.get(ref.name, ()), ref, kind="base", build=build)

    def select_features(self, ref: BuildRef, *, build: str) -> tuple[LockedFeature, ...]:
        return _select(self.features.get(ref.name, ()), ref, kind="feature", build=build)


def expand_builds(builds: Sequence[BuildSpec], catalog: Catalog, *, date: str) -> tuple[LockedBuild, ...]:
    """Expand every build spec and check target uniqueness across the whole batch.

    Identical builds produced by different specs are kept once; two different
    builds rendering the same target raise ``DuplicateTargetError``.
    """
    accepted: dict[str, tuple[LockedBuild, str]] = {}
    for spec in builds:
        label = build_label(spec)
        for build in _expand_one(spec, catalog, date=date, label=label):
            existing = accepted.get(build.target)
            if existing is None:
                accepted[build.target] = (build, label)
                continue
            if existing[0] == build:
                continue
            raise DuplicateTargetError(
                f"Two builds render the same target `{build.target}`.",
                hint="Make version-tag templates distinguish every selected version.",
                context={
                    "target": build.target,
                    "first": str(existing[0]),
                    "second": str(build),
                    "build": label,
                },
            )
    return tuple(build for build, _ in accepted.values())


def matrix_size(spec: MatrixBuild, catalog: Catalog) -> int:
    """Number of builds *spec* expands to, before deduplication."""
    label = build_label(spec)
    bases = sum(len(catalog.select_bases(ref, build=label)) for ref in spec.bases)
    size = bases
    for group in spec.features:
        size *= sum(len(catalog.select_features(ref, build=label)) for ref in group)
    return size


def _expand_one(spec: BuildSpec, catalog: Catalog, *, date: str, label: str) -> Iterator[LockedBuild]:
    if isinstance(spec, PinnedBuild):
        base = _pinned(catalog.bases.get(spec.base.name, ()), spec.base.name, spec.base.version, kind="base", build=label)
        features = tuple(
            _pinned(catalog.features.get(pin.name, ()), pin.name, pin.version, kind="feature", build=label)
            for pin in spec.features
        )
        yield _single_build(spec, base, features, catalog, date=date, label=label)
        return

    groups = [
        [feature for ref in group for feature in catalog.select_features(ref, build=label)]
        for group in spec.features
    ]
    for base_ref in spec.bases:
        for base in catalog.select_bases(base_ref, build=label):
            for combo in itertools.product(*groups):
                yield _single_build(spec, base, combo, catalog, date=date, label=label)


def _single_build(
    spec: BuildSpec,
    base: LockedBase,
    selected: Sequence[LockedFeature],
    catalog: Catalog,
    *,
    date: str,
    label: str,
) -> LockedBuild:
    features = sorted(selected, key=lambda feature: catalog.feature_order.get(feature.name, len(catalog.feature_order)))
    context = _name_context(base, features)
    try:
        image_name = render(spec.image_name, context, date=date)
        image_tag = render(spec.image_tag, context, date=date)
    except TemplateError as exc:
        exc.with_context(build=label, base=str(base.ref), features=" ".join(str(f.ref) for f in features))
        raise

    target = "-".join(tag for tag in (base.tag, *(feature.tag for feature in features)) if tag)
    if not target:
        raise ConfigError(
            "Build has an empty target name.",
            hint="Give the base a non-empty `version-tag`.",
            context={"build": label, "base": str(base.ref)},
        )
    return LockedBuild(
        target=target,
        image_name=image_name,
        image_tag=image_tag,
        base=base.ref,
        features=tuple(feature.ref for feature in features),
    )


def _name_context(base: LockedBase, features: Sequence[LockedFeature]) -> dict[str, ContextValue]:
    context: dict[str, ContextValue] = {}
    for feature in features:
        entry: dict[str, ContextValue] = {
            "name": feature.name,
            "version": feature.version,
            "versions": feature.versions,
        }
        if feature.tag:
            entry["tag"] = feature.tag
        context[feature.name] = entry
    context[base.name] = {"name": base.name, "version": base.version, "versions": base.versions, "tag": base.tag}
    context["base"] = {
        "name": base.name,
        "version": base.version,
        "versions": base.versions,
        "tag": base.tag,
        "v": {"version": base.version, "versions": base.versions},
    }
    return context


def _select(
    entries: tuple[LockedBase, ...] | tuple[LockedFeature, ...],
    ref: BuildRef,
    *,
    kind: str,
    build: str,
) -> tuple:
    if not ref.versions:
        return entries
    return tuple(_pinned(entries, ref.name, version, kind=kind, build=build) for version in ref.versions)


def _pinned(
    entries: tuple[LockedBase, ...] | tuple[LockedFeature, ...],
    name: str,
    version: str,
    *,
    kind: str,
    build: str,
):
    for entry in entries:
        if entry.requested == version:
            return entry
    raise UnresolvedPinError(
        f"Pinned {kind} version is not declared.",
        hint=f"Declared versions: {', '.join(entry.requested for entry in entries) or 'none'}.",
        context={kind: name, "placeholder": version, "build": build},
    )
