"""Multi-stage Dockerfile emission from a lock.

Layout:
- one ``FROM <image> AS <base tag>`` stage per base used by a build, in lock order
- per build, the throwaway stages of its features' ``build`` steps, named
  ``<base tag>-<feature>-<version>-build-<i>`` and chained from the base stage
- one ``FROM <base tag> AS <target>`` stage per build, followed by the ``actual``
  install steps of its features in the order recorded on the build, with
  ``COPY --from=`` lines for files exported by earlier ``build`` steps
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from imagematrix.config.model import DirectStep, InstallStep
from imagematrix.errors import (
    DuplicateTargetError,
    LockfileError,
    MissingDependencyError,
    NoScriptForPackageManagerError,
)
from imagematrix.lockfile.model import LockedBase, LockedBuild, LockedFeature, Lockfile

DOCKERFILE_NAME = "Dockerfile"
LINE_JOIN = " && \\\n"


@dataclass(frozen=True, slots=True)
class DockerfileEmission:
    text: str
    dependencies: tuple[str, ...] = ()
    stages: tuple[str, ...] = ()


@dataclass(slots=True)
class _Emitter:
    context_root: Path
    blocks: list[list[str]] = field(default_factory=list)
    stages: list[str] = field(default_factory=list)
    dependencies: dict[str, None] = field(default_factory=dict)
    step_stages: set[str] = field(default_factory=set)

    def stage(self, name: str, lines: list[str], *, owner: str) -> None:
        if name in self.stages:
            raise DuplicateTargetError(
                f"Stage name `{name}` is used twice.",
                hint="Base tags, build step stages and build targets share one namespace in the Dockerfile.",
                context={"stage": name, "owner": owner},
            )
        self.stages.append(name)
        self.blocks.append(lines)

    def feature_lines(self, feature: LockedFeature, *, base: LockedBase, build: LockedBuild) -> list[str]:
        """Lines for the build stage; ``build`` steps are emitted as their own stages first."""
        lines: list[str] = []
        exports: list[str] = []
        pending: list[str] = []
        previous = base.tag
        prefix = f"{base.tag}-{feature.name}-{feature.version}".lower()
        for index, step in enumerate(feature.steps):
            body = self.step_lines(step, base=base, feature=feature, build=build)
            if step.kind == "build":
                name = f"{prefix}-build-{index}"
                # Shared by every build over the same base and feature version.
                if name not in self.step_stages:
                    self.step_stages.add(name)
                    self.stage(name, [f"FROM {previous} AS {name}", *exports, *body], owner=f"feature {feature.ref}")
                previous = name
                copies = _copy_lines(name, step.copy)
                exports.extend(copies)
                pending.extend(copies)
            else:
                lines.extend(pending)
                pending.clear()
                lines.extend(body)
        lines.extend(pending)
        return lines

    def step_lines(
        self,
        step: InstallStep,
        *,
        base: LockedBase,
        feature: LockedFeature,
        build: LockedBuild,
    ) -> list[str]:
        if isinstance(step, DirectStep):
            for dependency in step.dependencies:
                _check_dependency(self.context_root, dependency, feature=feature)
                self.dependencies.setdefault(dependency, None)
            return list(step.commands)
        script = step.scripts.get(base.package_manager)
        if script is None:
            raise NoScriptForPackageManagerError(
                f"No `{base.package_manager}` script for feature `{feature.ref}`.",
                hint=f"Available package managers: {', '.join(sorted(step.scripts)) or 'none'}.",
                context={
                    "feature": str(feature.ref),
                    "base": str(base.ref),
                    "package_manager": base.package_manager,
                    "build": build.target,
                },
            )
        if not script:
            return []
        return ["RUN " + LINE_JOIN.join(script)]


def generate_dockerfile(lock: Lockfile, *, context_dir: str | Path = ".") -> DockerfileEmission:
    emitter = _Emitter(context_root=Path(context_dir))

    for base in _used_bases(lock):
        emitter.stage(base.tag, [f"FROM {base.source_image()} AS {base.tag}"], owner=f"base {base.ref}")

    for build in lock.builds:
        base = _base_for(lock, build)
        if not build.features and build.target == base.tag:
            # The base stage already carries this name.
            continue
        lines = [f"FROM {base.tag} AS {build.target}"]
        for ref in build.features:
            feature = lock.feature(ref)
            if feature is None:
                raise LockfileError(
                    "Build references a feature missing from the lock.",
                    context={"build": str(build), "feature": str(ref)},
                )
            lines.extend(emitter.feature_lines(feature, base=base, build=build))
        emitter.stage(build.target, lines, owner=f"build {build}")

    text = "\n\n".join("\n".join(block) for block in emitter.blocks)
    return DockerfileEmission(
        text=text + "\n" if text else "",
        dependencies=tuple(emitter.dependencies),
        stages=tuple(emitter.stages),
    )


def write_dockerfile(lock: Lockfile, out_dir: str | Path, *, context_dir: str | Path = ".") -> Path:
    emission = generate_dockerfile(lock, context_dir=context_dir)
    destination = Path(out_dir)
    destination.mkdir(parents=True, exist_ok=True)
    path = destination / DOCKERFILE_NAME
    path.write_text(emission.text, encoding="utf-8")
    return path


def _used_bases(lock: Lockfile) -> list[LockedBase]:
    used = {(build.base.name, build.base.version) for build in lock.builds}
    return [base for base in lock.bases if (base.name, base.version) in used]


def _base_for(lock: Lockfile, build: LockedBuild) -> LockedBase:
    base = lock.base(build.base)
    if base is None:
        raise LockfileError(
            "Build references a base missing from the lock.",
            context={"build": str(build), "base": str(build.base)},
        )
    return base


def _copy_lines(stage: str, copy: Mapping[str, str]) -> list[str]:
    return [f"COPY --from={stage} {src} {dest}" for src, dest in copy.items()]


def _check_dependency(context_root: Path, dependency: str, *, feature: LockedFeature) -> None:
    if not (context_root / dependency).exists():
        raise MissingDependencyError(
            f"Dependency `{dependency}` does not exist in the build context.",
            context={
                "feature": str(feature.ref),
                "path": dependency,
                "context_dir": str(context_root),
            },
        )
