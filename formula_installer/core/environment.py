"""
Install environment construction.
"""

import logging
from typing import Dict

from ..models.formula import Formula
from ..models.host import ChildEnvironment, HostEnvironment

logger = logging.getLogger(__name__)

DEFAULT_BINDINGS = {"CC": "cc"}


def build(host_env: HostEnvironment, formula: Formula) -> ChildEnvironment:
    """
    Derive the process environment for a formula's install procedure.

    Starts from the host variables, binds tool-chain variables (such as CC)
    to the host's active binaries, then overlays the formula's own
    variables. Nothing outside the returned value is touched.
    """
    variables: Dict[str, str] = dict(host_env.variables)

    bindings = formula.toolchain.bindings if formula.toolchain is not None else DEFAULT_BINDINGS
    for variable, capability in bindings.items():
        resolved = host_env.resolve(capability)
        if resolved is None:
            logger.debug(f"No host binary for capability '{capability}'; leaving {variable} unset")
            continue
        variables[variable] = resolved

    variables.update(formula.environment)
    variables["FORMULA_NAME"] = formula.name
    variables["FORMULA_VERSION"] = formula.version

    return ChildEnvironment(variables=variables)
