"""Config loader: TOML text into the typed model, with structural validation."""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from imagematrix.config.model import (
    DIRECT_METHOD,
    BaseSpec,
    BuildRef,
    BuildSpec,
    DirectStep,
    ExecFetch,
    FeatureSpec,
    FetchStrategy,
    InstallStep,
    MatrixBuild,
    MatrixConfig,
    PackageManagerStep,
    Pin,
    PinnedBuild,
    SourceTagsFetch,
    StepKind,
    VersionFrom,
)
from imagematrix.errors import ConfigError

_VERSION_FROM: dict[str, VersionFrom] = {
    "tags": "tags",
    "tag": "tags",
    "branches": "branches",
    "branch": "branches",
}

_STEP_KINDS: dict[str, StepKind] = {"actual": "actual", "build": "build"}
_STEP_KEYS = frozenset({"method", "type", "copy"})


def parse_config(raw: str) -> MatrixConfig:
    try:
        payload = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError("Invalid config TOML.", hint=str(exc)) from exc

    registry = payload.get("registry")
    if registry is not None and not isinstance(registry, str):
        raise ConfigError("Invalid config `registry` value.")

    bases = tuple(_parse_base(item) for item in _tables(payload, "base", where="config"))
    features = tuple(_parse_feature(item) for item in _tables(payload, "feature", where="config"))
    builds = tuple(
        _parse_build(item, index) for index, item in enumerate(_tables(payload, "build", where="config"))
    )
    config = MatrixConfig(bases=bases, features=features, builds=builds, registry=registry)
    validate_config(config)
    return config


def read_config(path: str | Path) -> MatrixConfig:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(
            "Config file does not exist.",
            context={"path": str(config_path)},
        ) from exc
    return parse_config(raw)


def validate_config(config: MatrixConfig) -> None:
    """Check cross-entry invariants that single-table parsing cannot see."""
    seen_bases: set[str] = set()
    for base in config.bases:
        if base.name in seen_bases:
            raise ConfigError(
                "Base names must be unique.",
                context={"base": base.name},
            )
        seen_bases.add(base.name)
        _check_unique_versions(base.versions, kind="base", name=base.name)

    claimed: dict[str, set[str]] = {}
    for feature in config.features:
        _check_unique_versions(feature.versions, kind="feature", name=feature.name)
        owned = claimed.setdefault(feature.name, set())
        overlap = owned.intersection(feature.versions)
        if overlap:
            raise ConfigError(
                "Feature entries sharing a name claim the same version placeholder.",
                hint="Partition placeholders so each belongs to exactly one entry.",
                context={"feature": feature.name, "placeholder": sorted(overlap)[0]},
            )
        owned.update(feature.versions)

    for build in config.builds:
        if isinstance(build, PinnedBuild):
            base_names = [build.base.name]
            feature_names = [pin.name for pin in build.features]
        else:
            base_names = [ref.name for ref in build.bases]
            feature_names = [ref.name for group in build.features for ref in group]
        for name in base_names:
            if name not in seen_bases:
                raise ConfigError("Build references an unknown base.", context={"base": name})
        for name in feature_names:
            if name not in claimed:
                raise ConfigError("Build references an unknown feature.", context={"feature": name})
        if len(set(feature_names)) != len(feature_names):
            raise ConfigError(
                "A feature may appear at most once per build.",
                context={"build": ", ".join(feature_names)},
            )


def _check_unique_versions(versions: tuple[str, ...], *, kind: str, name: str) -> None:
    if len(set(versions)) != len(versions):
        raise ConfigError(f"Duplicate version placeholder in {kind}.", context={kind: name})


def _parse_base(item: Mapping[str, Any]) -> BaseSpec:
    name = _required_str(item, "name", where="base")
    where = f"base `{name}`"
    return BaseSpec(
        name=name,
        versions=_required_str_list(item, "versions", where=where),
        package_manager=_required_str(item, "package-manager", where=where),
        version_tag=_required_str(item, "version-tag", where=where),
        image=_required_str(item, "image", where=where),
        fetch=_parse_fetch(item.get("fetch-version"), where=where),
    )


def _parse_feature(item: Mapping[str, Any]) -> FeatureSpec:
    name = _required_str(item, "name", where="feature")
    where = f"feature `{name}`"
    return FeatureSpec(
        name=name,
        versions=_required_str_list(item, "versions", where=where),
        steps=tuple(_parse_step(step, where=where) for step in _tables(item, "step", where=where)),
        version_tag=_optional_str(item, "version-tag", where=where),
        fetch=_parse_fetch(item.get("fetch-version"), where=where),
    )


def _parse_fetch(raw: Any, *, where: str) -> FetchStrategy | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid `fetch-version` in {where}.")
    kind = raw.get("type")
    if kind == "docker":
        return ExecFetch(
            image=_required_str(raw, "image", where=where),
            command=_required_str_list(raw, "command", where=where),
        )
    if kind == "github":
        version_from = raw.get("version-from", "tags")
        if version_from not in _VERSION_FROM:
            raise ConfigError(
                f"Unsupported `version-from` in {where}.",
                hint="Use `tags` or `branches`.",
                context={"version-from": str(version_from)},
            )
        return SourceTagsFetch(
            org=_required_str(raw, "org", where=where),
            project=_required_str(raw, "project", where=where),
            mode=_VERSION_FROM[version_from],
        )
    raise ConfigError(
        f"Unsupported `fetch-version.type` in {where}.",
        hint="Use `docker` or `github`.",
        context={"type": str(kind)},
    )


def _parse_step(raw: Mapping[str, Any], *, where: str) -> InstallStep:
    method = _required_str(raw, "method", where=f"step of {where}")
    kind = raw.get("type", "actual")
    if not isinstance(kind, str) or kind not in _STEP_KINDS:
        raise ConfigError(
            f"Unsupported step `type` in {where}.",
            hint="Use `actual` or `build`.",
            context={"type": str(kind)},
        )
    copy = _parse_copy(raw.get("copy", {}), where=where)
    if copy and kind != "build":
        raise ConfigError(
            f"Only `build` steps may declare a `copy` table in {where}.",
            hint="Files installed by an `actual` step are already part of the image.",
        )
    if method == DIRECT_METHOD:
        return DirectStep(
            commands=_required_str_list(raw, "commands", where=where),
            dependencies=_optional_str_list(raw, "dependencies", where=where),
            kind=_STEP_KINDS[kind],
            copy=copy,
        )
    scripts: dict[str, tuple[str, ...]] = {}
    for key, value in raw.items():
        if key in _STEP_KEYS:
            continue
        if isinstance(value, dict):
            scripts[key] = _required_str_list(value, "script", where=f"{where} step `{key}`")
        elif isinstance(value, list):
            scripts[key] = _str_list(value, key=key, where=where)
        else:
            raise ConfigError(
                f"Invalid package manager script table `{key}` in {where}.",
                hint="Use `[feature.step.<package-manager>] script = [...]`.",
            )
    if not scripts:
        raise ConfigError(f"Step `{method}` in {where} defines no package manager scripts.")
    return PackageManagerStep(method=method, scripts=scripts, kind=_STEP_KINDS[kind], copy=copy)


def _parse_copy(raw: Any, *, where: str) -> dict[str, str]:
    if not isinstance(raw, dict) or not all(
        isinstance(src, str) and src and isinstance(dest, str) and dest for src, dest in raw.items()
    ):
        raise ConfigError(
            f"Invalid step `copy` table in {where}.",
            hint="Use `copy = { \"/path/in/build/stage\" = \"/path/in/image\" }`.",
        )
    return dict(raw)


def _parse_build(item: Mapping[str, Any], index: int) -> BuildSpec:
    where = f"build #{index}"
    image_name = _required_str(item, "image-name", where=where)
    image_tag = _required_str(item, "image-tag", where=where)
    if "base" in item:
        if "bases" in item:
            raise ConfigError(f"{where} mixes pinned `base` with matrix `bases`.")
        return PinnedBuild(
            base=_parse_pin(item["base"], where=where),
            features=tuple(_parse_pin(pin, where=where) for pin in _list(item, "features", where=where)),
            image_name=image_name,
            image_tag=image_tag,
        )
    bases = tuple(_parse_ref(ref, where=where) for ref in _list(item, "bases", where=where, required=True))
    groups: list[tuple[BuildRef, ...]] = []
    for group in _list(item, "features", where=where):
        if not isinstance(group, list) or not group:
            raise ConfigError(f"Feature groups in {where} must be non-empty lists.")
        groups.append(tuple(_parse_ref(ref, where=where) for ref in group))
    if not bases:
        raise ConfigError(f"{where} selects no bases.")
    return MatrixBuild(bases=bases, features=tuple(groups), image_name=image_name, image_tag=image_tag)


def _parse_ref(raw: Any, *, where: str) -> BuildRef:
    if isinstance(raw, str):
        return BuildRef(name=raw)
    if isinstance(raw, dict):
        return BuildRef(
            name=_required_str(raw, "name", where=where),
            versions=_required_str_list(raw, "versions", where=where),
        )
    raise ConfigError(f"Invalid base/feature reference in {where}.")


def _parse_pin(raw: Any, *, where: str) -> Pin:
    if not isinstance(raw, dict):
        raise ConfigError(f"Pinned entries in {where} must be `{{name, version}}` tables.")
    return Pin(name=_required_str(raw, "name", where=where), version=_required_str(raw, "version", where=where))


def _tables(payload: Mapping[str, Any], key: str, *, where: str) -> list[Mapping[str, Any]]:
    value = payload.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ConfigError(f"Invalid `{key}` tables in {where}.", hint=f"Use `[[{key}]]` arrays of tables.")
    return value


def _list(payload: Mapping[str, Any], key: str, *, where: str, required: bool = False) -> list[Any]:
    if required and key not in payload:
        raise ConfigError(f"Missing `{key}` in {where}.")
    value = payload.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"Invalid `{key}` value in {where}.")
    return value


def _required_str(payload: Mapping[str, Any], key: str, *, where: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Missing or invalid `{key}` in {where}.")
    return value


def _optional_str(payload: Mapping[str, Any], key: str, *, where: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"Invalid `{key}` in {where}.")
    return value


def _required_str_list(payload: Mapping[str, Any], key: str, *, where: str) -> tuple[str, ...]:
    if key not in payload:
        raise ConfigError(f"Missing `{key}` in {where}.")
    result = _str_list(payload[key], key=key, where=where)
    if not result:
        raise ConfigError(f"`{key}` in {where} must not be empty.")
    return result


def _optional_str_list(payload: Mapping[str, Any], key: str, *, where: str) -> tuple[str, ...]:
    return _str_list(payload.get(key, []), key=key, where=where)


def _str_list(value: Any, *, key: str, where: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"`{key}` in {where} must be a list of strings.")
    return tuple(value)
