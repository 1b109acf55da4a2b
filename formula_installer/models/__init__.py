"""
Data models for the formula installer.
"""

from .formula import (
    CopyArtifact,
    FetchKind,
    Formula,
    InstallStep,
    RunCommand,
    SetEnv,
    SourceLocator,
    ToolchainRequirement,
    validate_formula,
)
from .host import ChildEnvironment, HostEnvironment
from .installation import (
    ConstraintVerdict,
    FetchResult,
    InstallOutcome,
    InstallRecord,
    InstallStage,
)

__all__ = [
    "CopyArtifact",
    "FetchKind",
    "Formula",
    "InstallStep",
    "RunCommand",
    "SetEnv",
    "SourceLocator",
    "ToolchainRequirement",
    "validate_formula",
    "ChildEnvironment",
    "HostEnvironment",
    "ConstraintVerdict",
    "FetchResult",
    "InstallOutcome",
    "InstallRecord",
    "InstallStage",
]
