"""Lock Model Builder: config in, fully pinned lock out."""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from functools import partial
from typing import Protocol, TypeVar

from imagematrix.config.io import validate_config
from imagematrix.config.model import (
    BaseSpec,
    DirectStep,
    FeatureSpec,
    InstallStep,
    MatrixConfig,
    PackageManagerStep,
)
from imagematrix.errors import ConfigError, ImageMatrixError, VersionError
from imagematrix.fetch.docker import split_image
from imagematrix.lockfile.model import ImageIdentifier, LockedBase, LockedFeature, Lockfile
from imagematrix.matrix import Catalog, expand_builds
from imagematrix.observability import StructuredLogger
from imagematrix.resolve import VersionResolver, VersionResult
from imagematrix.template import Context, render, render_all, resolution_date

T = TypeVar("T")

DEFAULT_WORKERS = 8

Task = Callable[[threading.Event], T]


class DigestInspector(Protocol):
    def digest(self, image: str) -> str:
        """Return the manifest digest of *image*."""


class LockBuilder:
    """Resolves a config into a ``Lockfile``.

    All placeholders resolve in a bounded thread pool. The first failure
    cancels queued work, stops retries in flight and propagates; no partial
    lock is ever returned.
    """

    def __init__(
        self,
        resolver: VersionResolver,
        *,
        inspector: DigestInspector | None = None,
        max_workers: int = DEFAULT_WORKERS,
        logger: StructuredLogger | None = None,
        date: str | None = None,
    ) -> None:
        self._resolver = resolver
        self._inspector = inspector
        self._max_workers = max(1, max_workers)
        self._logger = logger or StructuredLogger()
        self._date = date

    def build(self, config: MatrixConfig) -> Lockfile:
        validate_config(config)
        date = self._date or resolution_date()

        base_jobs = [(spec, placeholder) for spec in config.bases for placeholder in spec.versions]
        feature_jobs = [(spec, placeholder) for spec in config.features for placeholder in spec.versions]
        tasks: list[Task[VersionResult]] = [
            partial(self._resolve, "base", spec, placeholder, date) for spec, placeholder in base_jobs
        ]
        tasks.extend(partial(self._resolve, "feature", spec, placeholder, date) for spec, placeholder in feature_jobs)
        results = self._run_all(tasks)

        bases = [
            self._lock_base(spec, placeholder, result, date=date)
            for (spec, placeholder), result in zip(base_jobs, results[: len(base_jobs)])
        ]
        features = [
            self._lock_feature(spec, placeholder, result, date=date)
            for (spec, placeholder), result in zip(feature_jobs, results[len(base_jobs) :])
        ]
        bases = self._attach_digests(bases)

        catalog = Catalog(
            bases=_group(bases),
            features=_group(features),
            feature_order=config.feature_order(),
        )
        builds = expand_builds(config.builds, catalog, date=date)
        self._logger.info(
            operation="lock_build",
            message=f"Locked {len(builds)} builds over {len(bases)} base and {len(features)} feature versions",
        )
        return Lockfile(
            bases=_unique(bases),
            features=_unique(features),
            builds=builds,
            registry=config.registry,
        )

    def _resolve(
        self,
        kind: str,
        spec: BaseSpec | FeatureSpec,
        placeholder: str,
        date: str,
        cancel: threading.Event,
    ) -> VersionResult:
        try:
            result = self._resolver.resolve(placeholder, spec.fetch, date=date, cancel=cancel)
        except ImageMatrixError as exc:
            exc.with_context(**{kind: spec.name, "placeholder": placeholder})
            raise
        self._logger.info(
            operation="resolve",
            message=f"Resolved `{placeholder}` to `{result.version}`",
            subject=spec.name,
            version=result.version,
        )
        return result

    def _lock_base(self, spec: BaseSpec, placeholder: str, result: VersionResult, *, date: str) -> LockedBase:
        context = _version_context(spec.name, result)
        try:
            tag = render(spec.version_tag, context, date=date)
            image = render(spec.image, context, date=date)
        except ImageMatrixError as exc:
            exc.with_context(base=spec.name, placeholder=placeholder)
            raise
        for key, value in (("version-tag", tag), ("image", image)):
            if not value.strip():
                raise ConfigError(
                    f"Base `{key}` renders to an empty string.",
                    hint="The base tag names a Dockerfile stage and the image is its source.",
                    context={"base": spec.name, "placeholder": placeholder, "field": key},
                )
        return LockedBase(
            name=spec.name,
            requested=placeholder,
            version=result.version,
            versions=result.fields,
            package_manager=spec.package_manager,
            image=image,
            tag=tag,
        )

    def _lock_feature(
        self, spec: FeatureSpec, placeholder: str, result: VersionResult, *, date: str
    ) -> LockedFeature:
        context = _version_context(spec.name, result)
        try:
            tag = render(spec.version_tag, context, date=date) if spec.version_tag is not None else None
            steps = tuple(_render_step(step, context, date=date) for step in spec.steps)
        except ImageMatrixError as exc:
            exc.with_context(feature=spec.name, placeholder=placeholder)
            raise
        return LockedFeature(
            name=spec.name,
            requested=placeholder,
            version=result.version,
            versions=result.fields,
            tag=tag,
            steps=steps,
        )

    def _attach_digests(self, bases: list[LockedBase]) -> list[LockedBase]:
        inspector = self._inspector
        if inspector is None:
            return bases
        images = list(dict.fromkeys(base.image for base in bases))
        identifiers = self._run_all([partial(self._identify, inspector, image) for image in images])
        by_image = dict(zip(images, identifiers))
        return [
            LockedBase(
                name=base.name,
                requested=base.requested,
                version=base.version,
                versions=base.versions,
                package_manager=base.package_manager,
                image=base.image,
                tag=base.tag,
                identifier=by_image[base.image],
            )
            for base in bases
        ]

    def _identify(
        self, inspector: DigestInspector, image: str, cancel: threading.Event
    ) -> ImageIdentifier | None:
        try:
            return ImageIdentifier(type="Digest", value=inspector.digest(image))
        except VersionError as exc:
            _, tag = split_image(image)
            self._logger.warning(
                operation="digest",
                message=f"Could not capture digest, falling back to tag: {exc.args[0]}",
                subject=image,
            )
            return ImageIdentifier(type="Tag", value=tag) if tag else None

    def _run_all(self, tasks: Sequence[Task[T]]) -> list[T]:
        if not tasks:
            return []
        cancel = threading.Event()
        executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="imagematrix")
        try:
            futures = [executor.submit(task, cancel) for task in tasks]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for future in futures:
                error = future.exception() if future in done else None
                if error is not None:
                    raise error
            return [future.result() for future in futures]
        finally:
            # Running tasks see the event and stop retrying.
            cancel.set()
            executor.shutdown(wait=True, cancel_futures=True)


def _version_context(name: str, result: VersionResult) -> Context:
    return {"name": name, "version": result.version, "versions": result.fields}


def _render_step(step: InstallStep, context: Context, *, date: str) -> InstallStep:
    copy = {
        render(src, context, date=date): render(dest, context, date=date) for src, dest in step.copy.items()
    }
    if isinstance(step, DirectStep):
        return DirectStep(
            commands=render_all(step.commands, context, date=date),
            dependencies=render_all(step.dependencies, context, date=date),
            kind=step.kind,
            copy=copy,
        )
    return PackageManagerStep(
        method=step.method,
        scripts={pm: render_all(lines, context, date=date) for pm, lines in step.scripts.items()},
        kind=step.kind,
        copy=copy,
    )


def _group(entries: Sequence[LockedBase] | Sequence[LockedFeature]) -> dict[str, tuple]:
    grouped: dict[str, list] = {}
    for entry in entries:
        grouped.setdefault(entry.name, []).append(entry)
    return {name: tuple(items) for name, items in grouped.items()}


def _unique(entries: Sequence[LockedBase] | Sequence[LockedFeature]) -> tuple:
    """Keep the first entry per ``(name, version)``; several placeholders may resolve alike."""
    seen: dict[tuple[str, str], LockedBase | LockedFeature] = {}
    for entry in entries:
        seen.setdefault((entry.name, entry.version), entry)
    return tuple(seen.values())
