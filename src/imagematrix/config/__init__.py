"""Config model and loader."""

from .io import parse_config, read_config, validate_config
from .model import (
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
    build_label,
)

__all__ = [
    "BaseSpec",
    "BuildRef",
    "BuildSpec",
    "DirectStep",
    "ExecFetch",
    "FeatureSpec",
    "FetchStrategy",
    "InstallStep",
    "MatrixBuild",
    "MatrixConfig",
    "PackageManagerStep",
    "Pin",
    "PinnedBuild",
    "SourceTagsFetch",
    "StepKind",
    "build_label",
    "parse_config",
    "read_config",
    "validate_config",
]
