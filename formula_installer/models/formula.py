"""
Formula data models.

A formula is the declarative description of one installable package: where
its source lives, which tool-chain it needs and the ordered install steps
that turn a working copy into installed artifacts.
"""

import re
import shlex
from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError, ValidationErrorKind
from ..core.versioning import is_valid_version

NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._+-]*$")
SCP_LIKE_GIT_URL = re.compile(r"^[\w.-]+@[\w.-]+:[\w./~-]+$")
ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class FetchKind(str, Enum):
    """How a source locator is fetched."""
    GIT = "git"
    HTTP = "http"
    ARCHIVE = "archive"


SUPPORTED_SCHEMES = {
    FetchKind.GIT.value: {"https", "http", "ssh", "git", "file"},
    FetchKind.HTTP.value: {"https", "http", "file"},
    FetchKind.ARCHIVE.value: {"https", "http", "file"},
}


class SourceLocator(BaseModel):
    """Where the formula's source comes from."""
    url: str = Field(..., description="Source URL")
    kind: str = Field(default=FetchKind.GIT.value, description="Fetch kind: git, http or archive")
    tag_template: Optional[str] = Field(
        None, description="Template for the source tag, e.g. 'v{version}'"
    )


class ToolchainRequirement(BaseModel):
    """Named build tool plus the minimum acceptable version."""
    name: str = Field(..., description="Tool name as reported by the host, e.g. 'xcode'")
    min_version: str = Field(..., description="Inclusive minimum version")
    bindings: Dict[str, str] = Field(
        default_factory=lambda: {"CC": "cc"},
        description="Environment variables resolved from host capabilities",
    )


class RunCommand(BaseModel):
    """Run a command inside the working copy."""
    kind: Literal["run_command"] = "run_command"
    argv: List[str] = Field(..., min_length=1)
    cwd: Optional[str] = Field(None, description="Directory relative to the working copy")

    @field_validator("argv", mode="before")
    @classmethod
    def split_command_string(cls, v):
        if isinstance(v, str):
            return shlex.split(v)
        return v


class CopyArtifact(BaseModel):
    """Place a file from the working copy into the install prefix."""
    kind: Literal["copy_artifact"] = "copy_artifact"
    source: str = Field(..., description="Path relative to the working copy")
    destination: Optional[str] = Field(None, description="Path relative to the install prefix")
    mode: Optional[int] = Field(None, description="File mode; defaults to the source's mode")

    @property
    def target(self) -> str:
        return self.destination or PurePosixPath(self.source).name


class SetEnv(BaseModel):
    """Set an environment variable for the remaining steps."""
    kind: Literal["set_env"] = "set_env"
    name: str
    value: str


InstallStep = Annotated[Union[RunCommand, CopyArtifact, SetEnv], Field(discriminator="kind")]


class Formula(BaseModel):
    """One package's metadata and install procedure."""
    name: str = Field(..., frozen=True, description="Unique formula name")
    version: str = Field(..., frozen=True, description="Package version")
    description: Optional[str] = Field(None, description="Free-text description")
    homepage: Optional[str] = Field(None, description="Project homepage")
    source: SourceLocator
    source_tag: Optional[str] = Field(None, description="Explicit tag; defaults to the version")
    toolchain: Optional[ToolchainRequirement] = None
    environment: Dict[str, str] = Field(default_factory=dict)
    steps: List[InstallStep] = Field(default_factory=list)

    @property
    def install_steps(self) -> List[Union[RunCommand, CopyArtifact, SetEnv]]:
        return self.steps

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.version)

    @property
    def tag(self) -> str:
        """Source tag: explicit tag, else the template applied to the version, else the version."""
        if self.source_tag:
            return self.source_tag
        if self.source.tag_template:
            return self.source.tag_template.format(version=self.version)
        return self.version

    @classmethod
    def from_descriptor(cls, data: Dict[str, Any]) -> "Formula":
        """Build a formula from a parsed descriptor document."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            kind = (ValidationErrorKind.MISSING_FIELD if first["type"] == "missing"
                    else ValidationErrorKind.MALFORMED_FIELD)
            raise ValidationError(kind, f"Invalid formula descriptor at '{field}': {first['msg']}",
                                  field=field) from e

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "swift-lambda",
            "description": "Shortcuts for creating and packaging AWS Lambda Swift functions",
            "homepage": "https://github.com/asensei/homebrew-swift-lambda",
            "version": "0.2.0",
            "source": {"kind": "git", "url": "https://github.com/asensei/homebrew-swift-lambda.git"},
            "toolchain": {"name": "xcode", "min_version": "10.2"},
            "steps": [{"kind": "copy_artifact", "source": "swift-lambda"}],
        }
    })


def _require(value: Optional[str], field: str) -> None:
    if value is None or not value.strip():
        raise ValidationError(ValidationErrorKind.MISSING_FIELD, f"Missing required field '{field}'",
                              field=field)


def _is_contained(path: str) -> bool:
    pure = PurePosixPath(path)
    return bool(path) and not pure.is_absolute() and ".." not in pure.parts


def _check_variable_name(name: str, field: str) -> None:
    if not ENV_NAME_PATTERN.match(name):
        raise ValidationError(ValidationErrorKind.MALFORMED_FIELD,
                              f"Invalid environment variable name '{name}'", field=field)


def _validate_locator(source: SourceLocator) -> None:
    _require(source.url, "source.url")
    if source.kind not in SUPPORTED_SCHEMES:
        raise ValidationError(
            ValidationErrorKind.UNSUPPORTED_LOCATOR_KIND,
            f"Unsupported source kind '{source.kind}' (expected one of {sorted(SUPPORTED_SCHEMES)})",
            field="source.kind",
        )
    if source.kind == FetchKind.GIT.value and SCP_LIKE_GIT_URL.match(source.url):
        return
    parsed = urlparse(source.url)
    if parsed.scheme not in SUPPORTED_SCHEMES[source.kind]:
        raise ValidationError(
            ValidationErrorKind.MALFORMED_LOCATOR,
            f"URL scheme '{parsed.scheme}' is not supported for {source.kind} sources: {source.url}",
            field="source.url",
        )
    if not (parsed.netloc or parsed.path):
        raise ValidationError(ValidationErrorKind.MALFORMED_LOCATOR,
                              f"Malformed source URL: {source.url}", field="source.url")


def validate_formula(formula: Formula) -> None:
    """
    Check a formula's semantic constraints.

    Raises:
        ValidationError: the first violated constraint. No side effects.
    """
    _require(formula.name, "name")
    if not NAME_PATTERN.match(formula.name):
        raise ValidationError(ValidationErrorKind.INVALID_NAME,
                              f"Invalid formula name '{formula.name}'", field="name")

    _require(formula.version, "version")
    if not is_valid_version(formula.version):
        raise ValidationError(ValidationErrorKind.MALFORMED_VERSION,
                              f"Version '{formula.version}' is not comparable", field="version")

    _validate_locator(formula.source)
    try:
        tag = formula.tag
    except (KeyError, IndexError, ValueError) as e:
        raise ValidationError(ValidationErrorKind.MALFORMED_LOCATOR,
                              f"Bad tag template '{formula.source.tag_template}': {e}",
                              field="source.tag_template") from e
    _require(tag, "source_tag")

    if formula.toolchain is not None:
        _require(formula.toolchain.name, "toolchain.name")
        if not is_valid_version(formula.toolchain.min_version):
            raise ValidationError(
                ValidationErrorKind.MALFORMED_VERSION,
                f"Tool-chain minimum version '{formula.toolchain.min_version}' is not comparable",
                field="toolchain.min_version",
            )
        for variable in formula.toolchain.bindings:
            _check_variable_name(variable, "toolchain.bindings")

    for variable in formula.environment:
        _check_variable_name(variable, "environment")

    if not formula.steps:
        raise ValidationError(ValidationErrorKind.MISSING_FIELD,
                              "Formula must declare at least one install step", field="steps")

    for index, step in enumerate(formula.steps):
        if isinstance(step, CopyArtifact):
            if not _is_contained(step.source) or not _is_contained(step.target):
                raise ValidationError(
                    ValidationErrorKind.MALFORMED_FIELD,
                    f"Step {index}: artifact paths must be relative and stay inside their root",
                    field=f"steps.{index}",
                )
        elif isinstance(step, RunCommand) and step.cwd is not None and not _is_contained(step.cwd):
            raise ValidationError(ValidationErrorKind.MALFORMED_FIELD,
                                  f"Step {index}: cwd must stay inside the working copy",
                                  field=f"steps.{index}.cwd")
        elif isinstance(step, SetEnv):
            _check_variable_name(step.name, f"steps.{index}.name")
