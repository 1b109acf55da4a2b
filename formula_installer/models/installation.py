"""
Install lifecycle models: fetch results, records, stages and outcomes.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class InstallStage(str, Enum):
    """Orchestrator states."""
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING_CONSTRAINTS = "checking_constraints"
    FETCHING = "fetching"
    BUILDING_ENV = "building_env"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STAGES = {InstallStage.DONE, InstallStage.FAILED}

# Process exit codes for a FAILED outcome, keyed by the stage that failed.
STAGE_EXIT_CODES = {
    InstallStage.VALIDATING: 2,
    InstallStage.CHECKING_CONSTRAINTS: 3,
    InstallStage.FETCHING: 4,
    InstallStage.BUILDING_ENV: 5,
    InstallStage.EXECUTING: 6,
    InstallStage.FINALIZING: 7,
}


class ConstraintVerdict(BaseModel):
    """Result of checking a tool-chain requirement against the host."""
    satisfied: bool
    tool: Optional[str] = None
    found_version: Optional[str] = None
    required_version: Optional[str] = None

    @classmethod
    def ok(cls, tool: Optional[str] = None, found_version: Optional[str] = None,
           required_version: Optional[str] = None) -> "ConstraintVerdict":
        return cls(satisfied=True, tool=tool, found_version=found_version,
                   required_version=required_version)

    @classmethod
    def unsatisfied(cls, tool: str, found_version: Optional[str],
                    required_version: str) -> "ConstraintVerdict":
        return cls(satisfied=False, tool=tool, found_version=found_version,
                   required_version=required_version)


@dataclass(frozen=True)
class FetchResult:
    """A local working copy of one source revision, owned by a single install attempt."""
    workdir: Path
    source_path: Path
    revision: str
    url: str
    tag: str

    def cleanup(self) -> None:
        """Remove the working directory."""
        if not self.workdir.exists():
            return
        try:
            shutil.rmtree(self.workdir)
            logger.debug(f"Removed working directory {self.workdir}")
        except OSError as e:
            logger.warning(f"Could not remove working directory {self.workdir}: {e}")


class InstallRecord(BaseModel):
    """Durable record of a completed install."""
    name: str = Field(..., description="Formula name")
    version: str = Field(..., description="Formula version")
    revision: str = Field(..., description="Resolved source revision")
    source_tag: str = Field(..., description="Tag the revision was resolved from")
    location: str = Field(..., description="Install prefix path")
    artifacts: List[str] = Field(default_factory=list, description="Artifacts relative to the prefix")
    installed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.version)

    def artifact_paths(self) -> List[Path]:
        return [Path(self.location) / artifact for artifact in self.artifacts]

    def is_intact(self) -> bool:
        """All recorded artifacts are still present."""
        return all(path.is_file() for path in self.artifact_paths())

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "swift-lambda",
            "version": "0.2.0",
            "revision": "3f1c2a9e0d4b",
            "source_tag": "0.2.0",
            "location": "/opt/formulae/swift-lambda/0.2.0",
            "artifacts": ["swift-lambda"],
        }
    })


@dataclass
class InstallOutcome:
    """Terminal result of one install request."""
    formula_name: str
    version: str
    state: InstallStage = InstallStage.IDLE
    record: Optional[InstallRecord] = None
    failed_stage: Optional[InstallStage] = None
    error: Optional[BaseException] = None
    already_installed: bool = False
    stages: List[InstallStage] = field(default_factory=lambda: [InstallStage.IDLE])

    @property
    def succeeded(self) -> bool:
        return self.state == InstallStage.DONE

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        return STAGE_EXIT_CODES.get(self.failed_stage, 1)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.formula_name,
            "version": self.version,
            "state": self.state.value,
            "already_installed": self.already_installed,
            "stages": [stage.value for stage in self.stages],
        }
        if self.record is not None:
            data["record"] = self.record.model_dump(mode="json")
        if self.failed_stage is not None:
            data["failed_stage"] = self.failed_stage.value
        if self.error is not None:
            to_dict = getattr(self.error, "to_dict", None)
            data["error"] = to_dict() if to_dict else {"message": str(self.error)}
        return data
