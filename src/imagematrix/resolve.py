"""Version resolution over the closed set of fetch strategies."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from imagematrix.cache import ResolutionCache
from imagematrix.config.model import ExecFetch, FetchStrategy, SourceTagsFetch
from imagematrix.errors import VersionError, VersionErrorKind
from imagematrix.fetch.docker import last_line
from imagematrix.observability import StructuredLogger
from imagematrix.template import Context, render, render_all
from imagematrix.version import find_version, is_wildcard, split_version

T = TypeVar("T")


class CommandRunner(Protocol):
    def run_command(self, image: str, command: tuple[str, ...]) -> str:
        """Run *command* in a fresh container of *image* and return stdout."""


@dataclass(frozen=True, slots=True)
class VersionResult:
    placeholder: str
    version: str
    fields: tuple[str, ...]

    @classmethod
    def of(cls, placeholder: str, version: str) -> VersionResult:
        return cls(placeholder=placeholder, version=version, fields=split_version(version))


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff for retryable version errors.

    ``attempts`` counts retries after the first call; delays are
    ``base_delay * 2**n`` seconds. With a ``cancel`` event the delay waits on
    it instead, and the last error is raised as soon as the event is set.
    """

    attempts: int = 0
    base_delay: float = 1.0

    def call(
        self,
        operation: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        cancel: threading.Event | None = None,
    ) -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except VersionError as exc:
                if not exc.retryable or attempt >= self.attempts:
                    raise
                delay = self.base_delay * 2**attempt
                if cancel is None:
                    sleep(delay)
                elif cancel.wait(delay):
                    raise
            attempt += 1


def placeholder_context(placeholder: str) -> Context:
    return {"version": placeholder, "versions": split_version(placeholder)}


class VersionResolver:
    """Turns a version placeholder into a concrete version string.

    Without a strategy the placeholder is already final. ``ExecFetch`` asks a
    container for its version; ``SourceTagsFetch`` picks the newest matching
    ref from the resolution cache.
    """

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        cache: ResolutionCache | None = None,
        retry: RetryPolicy | None = None,
        logger: StructuredLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._cache = cache
        self._retry = retry or RetryPolicy()
        self._logger = logger or StructuredLogger()
        self._sleep = sleep

    def resolve(
        self,
        placeholder: str,
        strategy: FetchStrategy | None,
        *,
        date: str | None = None,
        cancel: threading.Event | None = None,
    ) -> VersionResult:
        """Resolve *placeholder*; ``date`` binds `{{date}}` in the fetch templates."""
        if strategy is None:
            return VersionResult.of(placeholder, placeholder)
        if isinstance(strategy, ExecFetch):
            return self._retry.call(
                lambda: self._resolve_exec(placeholder, strategy, date=date),
                sleep=self._sleep,
                cancel=cancel,
            )
        return self._retry.call(
            lambda: self._resolve_tags(placeholder, strategy, date=date),
            sleep=self._sleep,
            cancel=cancel,
        )

    def _resolve_exec(self, placeholder: str, strategy: ExecFetch, *, date: str | None) -> VersionResult:
        if self._runner is None:
            raise VersionError(
                "No command runner is configured for docker version fetches.",
                kind=VersionErrorKind.NOT_FOUND,
                context={"placeholder": placeholder},
            )
        context = placeholder_context(placeholder)
        image = render(strategy.image, context, date=date)
        command = render_all(strategy.command, context, date=date)
        self._logger.info(operation="exec_version", message=f"Fetching version from `{image}`", version=placeholder)
        output = self._runner.run_command(image, command)
        version = last_line(output)
        if version is None:
            raise VersionError(
                "Version command produced no output.",
                kind=VersionErrorKind.AMBIGUOUS_OUTPUT,
                hint="The last non-empty stdout line is used as the version.",
                context={"placeholder": placeholder, "image": image, "command": " ".join(command)},
            )
        return VersionResult.of(placeholder, version)

    def _resolve_tags(self, placeholder: str, strategy: SourceTagsFetch, *, date: str | None) -> VersionResult:
        if not is_wildcard(placeholder):
            return VersionResult.of(placeholder, placeholder)
        if self._cache is None:
            raise VersionError(
                "No resolution cache is configured for GitHub version fetches.",
                kind=VersionErrorKind.NOT_FOUND,
                context={"placeholder": placeholder},
            )
        context = placeholder_context(placeholder)
        org = render(strategy.org, context, date=date)
        project = render(strategy.project, context, date=date)
        cached = self._cache.get_or_fetch(org, project, strategy.mode)
        version = find_version(placeholder, cached.names)
        if version is None:
            raise VersionError(
                f"No {strategy.mode} match the placeholder.",
                kind=VersionErrorKind.NOT_FOUND,
                context={
                    "placeholder": placeholder,
                    "repository": f"{org}/{project}",
                    "candidates": str(len(cached.names)),
                },
            )
        self._logger.debug(
            operation="source_tags",
            message=f"Selected `{version}` from {org}/{project}",
            version=placeholder,
        )
        return VersionResult.of(placeholder, version)
