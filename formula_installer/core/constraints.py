"""
Tool-chain constraint checks.
"""

import logging
from typing import Optional

from packaging.version import InvalidVersion

from ..models.formula import ToolchainRequirement
from ..models.host import HostEnvironment
from ..models.installation import ConstraintVerdict
from .versioning import version_at_least

logger = logging.getLogger(__name__)


def check(requirement: Optional[ToolchainRequirement], host_env: HostEnvironment) -> ConstraintVerdict:
    """
    Check a tool-chain requirement against the host.

    Formulas declare minimums: the host passes iff its version of the named
    tool is greater than or equal to the required one. Pure function.

    Args:
        requirement: Formula's tool-chain requirement, or None
        host_env: Host snapshot

    Returns:
        Satisfied or Unsatisfied verdict
    """
    if requirement is None:
        return ConstraintVerdict.ok()

    found = host_env.tool_version(requirement.name)
    if found is None:
        logger.debug(f"{requirement.name} not found on host")
        return ConstraintVerdict.unsatisfied(requirement.name, None, requirement.min_version)

    try:
        passed = version_at_least(found, requirement.min_version)
    except InvalidVersion:
        logger.warning(f"Host reports an unparseable {requirement.name} version: {found!r}")
        passed = False

    if passed:
        return ConstraintVerdict.ok(requirement.name, found, requirement.min_version)
    return ConstraintVerdict.unsatisfied(requirement.name, found, requirement.min_version)
