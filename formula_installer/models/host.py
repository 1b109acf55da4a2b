"""
Host and child-process environment models.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class HostEnvironment(BaseModel):
    """Read-only snapshot of the host tool-chain at install time."""
    model_config = ConfigDict(frozen=True)

    tools: Dict[str, str] = Field(default_factory=dict, description="Tool name -> version")
    capabilities: Dict[str, str] = Field(
        default_factory=dict, description="Capability (e.g. 'cc') -> absolute binary path"
    )
    variables: Dict[str, str] = Field(default_factory=dict, description="Process environment")

    def tool_version(self, name: str) -> Optional[str]:
        return self.tools.get(name)

    def resolve(self, capability: str) -> Optional[str]:
        """Look up the concrete binary providing a capability."""
        return self.capabilities.get(capability)


@dataclass(frozen=True)
class ChildEnvironment:
    """Environment an install procedure runs under. Derived, never mutated."""
    variables: Mapping[str, str] = field(default_factory=dict)

    def with_variable(self, name: str, value: str) -> "ChildEnvironment":
        updated = dict(self.variables)
        updated[name] = value
        return ChildEnvironment(variables=updated)

    def get(self, name: str) -> Optional[str]:
        return self.variables.get(name)

    def as_dict(self) -> Dict[str, str]:
        return dict(self.variables)
