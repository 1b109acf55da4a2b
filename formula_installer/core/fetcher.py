"""
Source fetcher adapter.

Wraps an external fetch service: allocates a scratch directory per attempt,
bounds the call with a timeout, maps failures onto FetchError and checks
that a tag keeps resolving to the same revision.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Protocol, Tuple

from ..models.formula import SourceLocator
from ..models.installation import FetchResult
from .errors import FetchError, FetchErrorKind


class SourceFetcher(Protocol):
    """External fetch service."""

    async def fetch(self, url: str, kind: str, tag: str, workdir: Path) -> Tuple[Path, str]:
        """Materialize url@tag inside workdir; return (local_path, resolved_revision)."""
        ...


class SourceFetcherAdapter:
    """Resolves a source locator and tag to a local working copy."""

    def __init__(self, fetcher: SourceFetcher, work_root: Path, timeout_seconds: float = 600.0):
        """
        Initialize the adapter.

        Args:
            fetcher: Fetch service implementation
            work_root: Directory under which working copies are created
            timeout_seconds: Upper bound for one fetch call
        """
        self.logger = logging.getLogger(__name__)
        self.fetcher = fetcher
        self.work_root = Path(work_root)
        self.timeout_seconds = timeout_seconds
        self._revisions: Dict[Tuple[str, str], str] = {}

    async def fetch(self, locator: SourceLocator, tag: str) -> FetchResult:
        """
        Fetch one source revision.

        Returns:
            FetchResult owning a fresh working directory

        Raises:
            FetchError: NOT_FOUND, NETWORK_FAILURE (including timeouts) or
                TAG_RESOLUTION_FAILURE. The scratch directory is removed first.
        """
        self.work_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="fetch-", dir=self.work_root))
        self.logger.info(f"Fetching {locator.url}@{tag} ({locator.kind}) into {workdir}")

        try:
            local_path, revision = await asyncio.wait_for(
                self.fetcher.fetch(locator.url, locator.kind, tag, workdir),
                timeout=self.timeout_seconds,
            )
            local_path = Path(local_path)
            if not local_path.exists():
                raise FetchError(FetchErrorKind.TAG_RESOLUTION_FAILURE,
                                 f"Fetcher reported {local_path} but it does not exist")
            self._verify_revision(locator.url, tag, revision)
        except asyncio.TimeoutError as e:
            self._discard(workdir)
            raise FetchError(
                FetchErrorKind.NETWORK_FAILURE,
                f"Fetching {locator.url}@{tag} timed out after {self.timeout_seconds}s",
            ) from e
        except FetchError:
            self._discard(workdir)
            raise
        except OSError as e:
            self._discard(workdir)
            raise FetchError(FetchErrorKind.NETWORK_FAILURE,
                             f"Fetching {locator.url}@{tag} failed: {e}") from e
        except BaseException:
            self._discard(workdir)
            raise

        self.logger.info(f"Fetched {locator.url}@{tag} at revision {revision}")
        return FetchResult(workdir=workdir, source_path=local_path, revision=revision,
                           url=locator.url, tag=tag)

    def known_revision(self, url: str, tag: str):
        return self._revisions.get((url, tag))

    def _verify_revision(self, url: str, tag: str, revision: str) -> None:
        if not revision:
            raise FetchError(FetchErrorKind.TAG_RESOLUTION_FAILURE,
                             f"Tag {tag} of {url} did not resolve to a revision")
        known = self._revisions.get((url, tag))
        if known is not None and known != revision:
            raise FetchError(
                FetchErrorKind.TAG_RESOLUTION_FAILURE,
                f"Tag {tag} of {url} moved: previously {known}, now {revision}",
            )
        self._revisions[(url, tag)] = revision

    def _discard(self, workdir: Path) -> None:
        shutil.rmtree(workdir, ignore_errors=True)
        self.logger.debug(f"Discarded scratch directory {workdir}")
