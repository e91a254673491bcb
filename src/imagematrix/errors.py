"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across resolution and generation."""

    CONFIG = "E_CONFIG"
    LOCKFILE = "E_LOCKFILE"
    TEMPLATE = "E_TEMPLATE"
    VERSION = "E_VERSION"
    DUPLICATE_TARGET = "E_DUPLICATE_TARGET"
    UNRESOLVED_PIN = "E_UNRESOLVED_PIN"
    NO_SCRIPT = "E_NO_SCRIPT"
    MISSING_DEPENDENCY = "E_MISSING_DEPENDENCY"
    REPRODUCIBILITY = "E_REPRODUCIBILITY"


class TemplateErrorKind(StrEnum):
    UNKNOWN_FIELD = "unknown-field"
    INDEX_OUT_OF_RANGE = "index-out-of-range"
    MALFORMED_EXPRESSION = "malformed-expression"


class VersionErrorKind(StrEnum):
    NOT_FOUND = "not-found"
    AMBIGUOUS_OUTPUT = "ambiguous-output"
    NETWORK_FAILURE = "network-failure"
    RATE_LIMITED = "rate-limited"


RETRYABLE_VERSION_ERRORS = frozenset({VersionErrorKind.NETWORK_FAILURE, VersionErrorKind.RATE_LIMITED})


class ImageMatrixError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload

    def with_context(self, **extra: str) -> ImageMatrixError:
        """Attach attribution (base/feature/build names) without replacing existing keys."""
        for key, value in extra.items():
            self.context.setdefault(key, value)
        return self


class ConfigError(ImageMatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIG, hint=hint, context=context)


class LockfileError(ImageMatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.LOCKFILE, hint=hint, context=context)


class TemplateError(ImageMatrixError):
    """Raised when a template cannot be parsed or a lookup cannot be resolved."""

    kind: TemplateErrorKind
    path: str

    def __init__(
        self,
        message: str,
        *,
        kind: TemplateErrorKind,
        path: str = "",
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"kind": kind.value, "path": path, **dict(context or {})}
        super().__init__(message, code=ErrorCode.TEMPLATE, hint=hint, context=merged)
        self.kind = kind
        self.path = path


class VersionError(ImageMatrixError):
    """Raised when a concrete version cannot be fetched for a placeholder."""

    kind: VersionErrorKind

    def __init__(
        self,
        message: str,
        *,
        kind: VersionErrorKind,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"kind": kind.value, **dict(context or {})}
        super().__init__(message, code=ErrorCode.VERSION, hint=hint, context=merged)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_VERSION_ERRORS


class DuplicateTargetError(ImageMatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DUPLICATE_TARGET, hint=hint, context=context)


class UnresolvedPinError(ImageMatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.UNRESOLVED_PIN, hint=hint, context=context)


class NoScriptForPackageManagerError(ImageMatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.NO_SCRIPT, hint=hint, context=context)


class MissingDependencyError(ImageMatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MISSING_DEPENDENCY, hint=hint, context=context)


class ReproducibilityError(ImageMatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.REPRODUCIBILITY, hint=hint, context=context)


__all__ = [
    "ConfigError",
    "DuplicateTargetError",
    "ErrorCode",
    "ImageMatrixError",
    "LockfileError",
    "MissingDependencyError",
    "NoScriptForPackageManagerError",
    "RETRYABLE_VERSION_ERRORS",
    "ReproducibilityError",
    "TemplateError",
    "TemplateErrorKind",
    "UnresolvedPinError",
    "VersionError",
    "VersionErrorKind",
]
