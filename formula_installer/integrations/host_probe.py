"""
Host tool-chain probing.

Builds a HostEnvironment snapshot by running each tool's version command and
resolving capabilities (such as the active C compiler) to concrete binaries.
"""

import logging
import os
import shutil
import subprocess
from typing import Dict, List, Mapping, Optional

from ..core.versioning import extract_version
from ..models.host import HostEnvironment

DEFAULT_TOOL_PROBES: Dict[str, List[str]] = {
    "xcode": ["xcodebuild", "-version"],
    "swift": ["swift", "--version"],
    "git": ["git", "--version"],
    "cc": ["cc", "--version"],
}

DEFAULT_CAPABILITY_CANDIDATES: Dict[str, List[str]] = {
    "cc": ["cc", "clang", "gcc"],
    "cxx": ["c++", "clang++", "g++"],
    "swift": ["swift"],
}

# A capability honours the binary already selected through this variable.
DEFAULT_CAPABILITY_VARIABLES: Dict[str, str] = {
    "cc": "CC",
    "cxx": "CXX",
}


class HostProbe:
    """Takes read-only snapshots of the host tool-chain."""

    def __init__(self,
                 tool_probes: Optional[Dict[str, List[str]]] = None,
                 capability_candidates: Optional[Dict[str, List[str]]] = None,
                 capability_variables: Optional[Dict[str, str]] = None,
                 timeout_seconds: float = 10.0,
                 environ: Optional[Mapping[str, str]] = None):
        self.logger = logging.getLogger(__name__)
        self.tool_probes = tool_probes if tool_probes is not None else DEFAULT_TOOL_PROBES
        self.capability_candidates = (capability_candidates if capability_candidates is not None
                                      else DEFAULT_CAPABILITY_CANDIDATES)
        self.capability_variables = (capability_variables if capability_variables is not None
                                     else DEFAULT_CAPABILITY_VARIABLES)
        self.timeout_seconds = timeout_seconds
        self.environ = dict(environ) if environ is not None else dict(os.environ)

    def snapshot(self, tool_overrides: Optional[Dict[str, str]] = None) -> HostEnvironment:
        """
        Probe the host.

        Args:
            tool_overrides: Tool versions that replace probed ones

        Returns:
            HostEnvironment snapshot
        """
        tools: Dict[str, str] = {}
        for tool, command in self.tool_probes.items():
            version = self.probe_version(command)
            if version:
                tools[tool] = version
        tools.update(tool_overrides or {})

        capabilities: Dict[str, str] = {}
        for capability in self.capability_candidates:
            path = self.resolve_capability(capability)
            if path:
                capabilities[capability] = path

        self.logger.info(f"Host tools: {tools or 'none detected'}")
        return HostEnvironment(tools=tools, capabilities=capabilities, variables=dict(self.environ))

    def probe_version(self, command: List[str]) -> Optional[str]:
        """Run a version command and extract the first dotted version from its output."""
        if not command or not shutil.which(command[0], path=self.environ.get("PATH")):
            return None
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                env=self.environ,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"Probe {' '.join(command)} failed: {e}")
            return None
        if result.returncode != 0:
            return None
        return extract_version(result.stdout or result.stderr)

    def resolve_capability(self, capability: str) -> Optional[str]:
        """Resolve a capability to an absolute binary path, preferring the one the environment selects."""
        candidates = list(self.capability_candidates.get(capability, []))
        variable = self.capability_variables.get(capability)
        if variable and self.environ.get(variable):
            candidates.insert(0, self.environ[variable])

        for candidate in candidates:
            path = shutil.which(candidate, path=self.environ.get("PATH"))
            if path:
                return os.path.abspath(path)
        return None
