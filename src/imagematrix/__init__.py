"""Public package entrypoint for imagematrix."""

from .compiler import DockerfileEmission, generate_dockerfile, write_dockerfile
from .config import MatrixConfig, parse_config, read_config, validate_config
from .errors import (
    ConfigError,
    DuplicateTargetError,
    ImageMatrixError,
    LockfileError,
    MissingDependencyError,
    NoScriptForPackageManagerError,
    ReproducibilityError,
    TemplateError,
    UnresolvedPinError,
    VersionError,
)
from .lockfile import LockChanges, Lockfile, diff_locks, parse_lockfile, read_lockfile, write_lockfile
from .lockfile.builder import LockBuilder
from .matrix import Catalog, expand_builds
from .resolve import RetryPolicy, VersionResolver, VersionResult
from .template import render

__all__ = [
    "Catalog",
    "ConfigError",
    "DockerfileEmission",
    "DuplicateTargetError",
    "ImageMatrixError",
    "LockBuilder",
    "LockChanges",
    "Lockfile",
    "LockfileError",
    "MatrixConfig",
    "MissingDependencyError",
    "NoScriptForPackageManagerError",
    "ReproducibilityError",
    "RetryPolicy",
    "TemplateError",
    "UnresolvedPinError",
    "VersionError",
    "VersionResolver",
    "VersionResult",
    "diff_locks",
    "expand_builds",
    "generate_dockerfile",
    "parse_config",
    "parse_lockfile",
    "read_config",
    "read_lockfile",
    "render",
    "validate_config",
    "write_dockerfile",
    "write_lockfile",
]
