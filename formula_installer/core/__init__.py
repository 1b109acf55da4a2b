"""
Core engine of the formula installer.

Component classes live in their modules (orchestrator, executor, fetcher,
records); only the error taxonomy is re-exported here so that the models
can import it without pulling in the engine.
"""

from .errors import (
    ConstraintError,
    FetchError,
    FetchErrorKind,
    FormulaInstallerError,
    FormulaNotFoundError,
    InstallError,
    InstallErrorKind,
    RecordStoreError,
    ValidationError,
    ValidationErrorKind,
)

__all__ = [
    "ConstraintError",
    "FetchError",
    "FetchErrorKind",
    "FormulaInstallerError",
    "FormulaNotFoundError",
    "InstallError",
    "InstallErrorKind",
    "RecordStoreError",
    "ValidationError",
    "ValidationErrorKind",
]
