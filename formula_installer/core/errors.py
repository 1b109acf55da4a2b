"""
Error taxonomy for the formula installer.

Every failure the engine reports is a FormulaInstallerError carrying a stable
code. The orchestrator wraps none of them: the original error object travels
unchanged into the terminal FAILED outcome together with the stage name.
"""

from enum import Enum
from typing import Optional


class ValidationErrorKind(str, Enum):
    """Why a formula was rejected."""
    MISSING_FIELD = "missing_field"
    MALFORMED_VERSION = "malformed_version"
    UNSUPPORTED_LOCATOR_KIND = "unsupported_locator_kind"
    INVALID_NAME = "invalid_name"
    MALFORMED_LOCATOR = "malformed_locator"
    MALFORMED_FIELD = "malformed_field"


class FetchErrorKind(str, Enum):
    """Why a source fetch failed."""
    NOT_FOUND = "not_found"
    NETWORK_FAILURE = "network_failure"
    TAG_RESOLUTION_FAILURE = "tag_resolution_failure"


class InstallErrorKind(str, Enum):
    """Why an install procedure failed."""
    STEP_FAILED = "step_failed"
    ARTIFACT_COPY_FAILED = "artifact_copy_failed"
    INSTALL_ROOT_UNWRITABLE = "install_root_unwritable"


class FormulaInstallerError(Exception):
    """Base exception for all installer errors."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(FormulaInstallerError):
    """Formula is malformed. Never retried."""

    def __init__(self, kind: ValidationErrorKind, message: str, field: Optional[str] = None):
        super().__init__(message, kind.value)
        self.kind = kind
        self.field = field


class ConstraintError(FormulaInstallerError):
    """Host tool-chain does not satisfy the formula's requirement."""

    def __init__(self, tool: str, required_version: str, found_version: Optional[str] = None):
        found = found_version if found_version is not None else "not installed"
        super().__init__(
            f"{tool} >= {required_version} is required (found: {found})",
            "constraint_unsatisfied",
        )
        self.tool = tool
        self.required_version = required_version
        self.found_version = found_version


class FetchError(FormulaInstallerError):
    """Source could not be fetched."""

    def __init__(self, kind: FetchErrorKind, message: str):
        super().__init__(message, kind.value)
        self.kind = kind

    @property
    def transient(self) -> bool:
        """NOT_FOUND is terminal; everything else is worth another attempt."""
        return self.kind != FetchErrorKind.NOT_FOUND


class InstallError(FormulaInstallerError):
    """Install procedure failed. Never retried; the attempt is rolled back."""

    def __init__(self,
                 kind: InstallErrorKind,
                 message: str,
                 step_index: Optional[int] = None,
                 exit_code: Optional[int] = None):
        super().__init__(message, kind.value)
        self.kind = kind
        self.step_index = step_index
        self.exit_code = exit_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(step_index=self.step_index, exit_code=self.exit_code)
        return data


class FormulaNotFoundError(FormulaInstallerError):
    """No descriptor exists for the requested formula."""

    def __init__(self, reference: str):
        super().__init__(f"No formula found for '{reference}'", "formula_not_found")
        self.reference = reference


class RecordStoreError(FormulaInstallerError):
    """InstallRecord store could not be read or written."""

    def __init__(self, message: str):
        super().__init__(message, "record_store_failure")
