"""Lockfile parser and serializer."""

from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Any

import toml

from imagematrix.config.model import DIRECT_METHOD, DirectStep, InstallStep, PackageManagerStep
from imagematrix.errors import LockfileError
from imagematrix.lockfile.model import (
    ImageIdentifier,
    LockedBase,
    LockedBuild,
    LockedFeature,
    Lockfile,
    VersionRef,
)

HEADER = "# Generated by imagematrix. Do not edit; run `imagematrix update` instead.\n\n"
STEP_KEYS = frozenset({"method", "type", "copy"})

# Non-printable characters the TOML writer cannot escape faithfully.
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\xa0\xad]")


def serialize_lockfile(lockfile: Lockfile) -> str:
    payload: dict[str, Any] = {}
    if lockfile.registry is not None:
        payload["registry"] = lockfile.registry
    payload["base"] = [_base_payload(base) for base in lockfile.bases]
    payload["feature"] = [_feature_payload(feature) for feature in lockfile.features]
    payload["build"] = [_build_payload(build) for build in lockfile.builds]
    _check_text(payload, "lock")
    text = toml.dumps(payload)
    try:
        written = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise LockfileError("Lock values do not survive TOML encoding.", hint=str(exc)) from exc
    if written != payload:
        raise LockfileError(
            "Lock values do not survive TOML encoding.",
            hint="Backslash escapes such as `\\x` in commands are not written faithfully.",
        )
    return HEADER + text


def parse_lockfile(raw: str) -> Lockfile:
    try:
        payload = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise LockfileError("Invalid lockfile TOML.", hint=str(exc)) from exc

    registry = payload.get("registry")
    if registry is not None and not isinstance(registry, str):
        raise LockfileError("Invalid lockfile `registry` value.")
    return Lockfile(
        bases=tuple(_parse_base(item) for item in _tables(payload, "base")),
        features=tuple(_parse_feature(item) for item in _tables(payload, "feature")),
        builds=tuple(_parse_build(item) for item in _tables(payload, "build")),
        registry=registry,
    )


def read_lockfile(path: str | Path) -> Lockfile:
    lock_path = Path(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise LockfileError(
            "Lockfile does not exist.",
            hint="Run `imagematrix update` to resolve the config first.",
            context={"path": str(lock_path)},
        ) from exc
    return parse_lockfile(raw)


def write_lockfile(lockfile: Lockfile, path: str | Path) -> Path:
    """Write the lock and a sibling ``.txt`` listing one build target per line."""
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(serialize_lockfile(lockfile), encoding="utf-8")
    targets = "\n".join(build.target for build in lockfile.builds)
    lock_path.with_suffix(".txt").write_text(targets + "\n" if targets else "", encoding="utf-8")
    return lock_path


def _base_payload(base: LockedBase) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": base.name,
        "requested": base.requested,
        "version": base.version,
        "versions": list(base.versions),
        "package_manager": base.package_manager,
        "image": base.image,
        "tag": base.tag,
    }
    if base.identifier is not None:
        key = "digest" if base.identifier.type == "Digest" else "tag"
        payload["identifier"] = {"type": base.identifier.type, key: base.identifier.value}
    return payload


def _feature_payload(feature: LockedFeature) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": feature.name,
        "requested": feature.requested,
        "version": feature.version,
        "versions": list(feature.versions),
    }
    if feature.tag is not None:
        payload["tag"] = feature.tag
    payload["step"] = [_step_payload(step) for step in feature.steps]
    return payload


def _step_payload(step: InstallStep) -> dict[str, Any]:
    if isinstance(step, DirectStep):
        payload: dict[str, Any] = {
            "method": DIRECT_METHOD,
            "commands": list(step.commands),
            "dependencies": list(step.dependencies),
        }
    else:
        payload = {"method": step.method}
        for package_manager in sorted(step.scripts):
            payload[package_manager] = {"script": list(step.scripts[package_manager])}
    if step.kind != "actual":
        payload["type"] = step.kind
    if step.copy:
        payload["copy"] = dict(step.copy)
    return payload


def _build_payload(build: LockedBuild) -> dict[str, Any]:
    return {
        "target": build.target,
        "image_name": build.image_name,
        "image_tag": build.image_tag,
        "base": {"name": build.base.name, "version": build.base.version},
        "features": [{"name": ref.name, "version": ref.version} for ref in build.features],
    }


def _parse_base(item: dict[str, Any]) -> LockedBase:
    return LockedBase(
        name=_required_str(item, "name"),
        requested=_required_str(item, "requested"),
        version=_required_str(item, "version"),
        versions=_str_list(item, "versions"),
        package_manager=_required_str(item, "package_manager"),
        image=_required_str(item, "image"),
        tag=_required_str(item, "tag"),
        identifier=_parse_identifier(item.get("identifier")),
    )


def _parse_identifier(raw: Any) -> ImageIdentifier | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise LockfileError("Invalid lockfile base `identifier` value.")
    kind = raw.get("type")
    if kind == "Digest":
        return ImageIdentifier(type="Digest", value=_required_str(raw, "digest"))
    if kind == "Tag":
        return ImageIdentifier(type="Tag", value=_required_str(raw, "tag"))
    raise LockfileError("Unsupported lockfile identifier type.", context={"type": str(kind)})


def _parse_feature(item: dict[str, Any]) -> LockedFeature:
    tag = item.get("tag")
    if tag is not None and not isinstance(tag, str):
        raise LockfileError("Invalid lockfile feature `tag` value.")
    return LockedFeature(
        name=_required_str(item, "name"),
        requested=_required_str(item, "requested"),
        version=_required_str(item, "version"),
        versions=_str_list(item, "versions"),
        tag=tag,
        steps=tuple(_parse_step(step) for step in _tables(item, "step")),
    )


def _parse_step(item: dict[str, Any]) -> InstallStep:
    method = _required_str(item, "method")
    kind = item.get("type", "actual")
    if kind not in ("actual", "build"):
        raise LockfileError("Invalid lockfile step `type` value.", context={"type": str(kind)})
    copy = item.get("copy", {})
    if not isinstance(copy, dict) or not all(isinstance(dest, str) for dest in copy.values()):
        raise LockfileError("Invalid lockfile step `copy` value.")
    if method == DIRECT_METHOD:
        return DirectStep(
            commands=_str_list(item, "commands"),
            dependencies=_str_list(item, "dependencies"),
            kind=kind,
            copy=copy,
        )
    scripts: dict[str, tuple[str, ...]] = {}
    for key, value in item.items():
        if key in STEP_KEYS:
            continue
        if not isinstance(value, dict):
            raise LockfileError("Invalid lockfile package manager script.", context={"package_manager": key})
        scripts[key] = _str_list(value, "script")
    return PackageManagerStep(method=method, scripts=scripts, kind=kind, copy=copy)


def _parse_build(item: dict[str, Any]) -> LockedBuild:
    return LockedBuild(
        target=_required_str(item, "target"),
        image_name=_required_str(item, "image_name"),
        image_tag=_required_str(item, "image_tag"),
        base=_parse_ref(item.get("base")),
        features=tuple(_parse_ref(ref) for ref in _tables(item, "features")),
    )


def _parse_ref(raw: Any) -> VersionRef:
    if not isinstance(raw, dict):
        raise LockfileError("Invalid lockfile build reference.")
    return VersionRef(name=_required_str(raw, "name"), version=_required_str(raw, "version"))


def _tables(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = payload.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value


def _str_list(payload: dict[str, Any], key: str) -> tuple[str, ...]:
    value = payload.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return tuple(value)


def _check_text(value: Any, path: str) -> None:
    if isinstance(value, str):
        match = _CONTROL.search(value)
        if match is not None:
            raise LockfileError(
                "Lockfile values may not contain control characters.",
                hint="Remove the character from the config or from the fetched version.",
                context={"field": path, "character": f"U+{ord(match.group()):04X}"},
            )
    elif isinstance(value, dict):
        for key, item in value.items():
            _check_text(key, path)
            _check_text(item, f"{path}.{key}")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _check_text(item, f"{path}[{index}]")
