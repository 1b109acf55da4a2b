"""
Formula installer: installs packages described by declarative formulas.
"""

from .core.orchestrator import InstallerOrchestrator
from .models import Formula, HostEnvironment, InstallOutcome, InstallRecord, InstallStage

__version__ = "0.1.0"

__all__ = [
    "InstallerOrchestrator",
    "Formula",
    "HostEnvironment",
    "InstallOutcome",
    "InstallRecord",
    "InstallStage",
]
