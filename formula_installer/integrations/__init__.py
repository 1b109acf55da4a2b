"""
Default implementations of the installer's external collaborators.
"""

from .command_runner import SubprocessRunner
from .fetchers import FetcherRegistry, GitFetcher, HttpFetcher
from .formula_loader import FormulaLoader
from .host_probe import HostProbe

__all__ = [
    "SubprocessRunner",
    "FetcherRegistry",
    "GitFetcher",
    "HttpFetcher",
    "FormulaLoader",
    "HostProbe",
]
