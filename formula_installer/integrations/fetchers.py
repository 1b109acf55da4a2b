"""
Source fetchers: git checkouts and http/archive downloads.
"""

import asyncio
import hashlib
import logging
import os
import shutil
import tarfile
import urllib.error
import urllib.request
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from ..core.errors import FetchError, FetchErrorKind
from ..models.formula import FetchKind


class GitFetcher:
    """Shallow-clones one tag of a git repository."""

    def __init__(self, git_binary: str = "git"):
        self.logger = logging.getLogger(__name__)
        self.git_binary = git_binary

    async def fetch(self, url: str, kind: str, tag: str, workdir: Path) -> Tuple[Path, str]:
        checkout = Path(workdir) / "src"
        code, output = await self._git(
            "clone", "--quiet", "--depth", "1", "--branch", tag, "--", url, str(checkout)
        )
        if code != 0:
            raise self._classify(output, url, tag)

        code, output = await self._git("-C", str(checkout), "rev-parse", "HEAD")
        if code != 0 or not output.strip():
            raise FetchError(FetchErrorKind.TAG_RESOLUTION_FAILURE,
                             f"Could not resolve HEAD of {url}@{tag}: {output.strip()}")
        return checkout, output.strip()

    async def _git(self, *args: str) -> Tuple[int, str]:
        self.logger.debug(f"git {' '.join(args)}")
        process = await asyncio.create_subprocess_exec(
            self.git_binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=dict(os.environ, GIT_TERMINAL_PROMPT="0"),
        )
        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise
        return process.returncode, stdout.decode(errors="replace") if stdout else ""

    def _classify(self, output: str, url: str, tag: str) -> FetchError:
        lowered = output.lower()
        if "remote branch" in lowered and "not found" in lowered:
            return FetchError(FetchErrorKind.TAG_RESOLUTION_FAILURE,
                              f"Tag {tag} not found in {url}")
        if ("repository not found" in lowered
                or "does not exist" in lowered
                or "does not appear to be a git repository" in lowered):
            return FetchError(FetchErrorKind.NOT_FOUND, f"Repository not found: {url}")
        return FetchError(FetchErrorKind.NETWORK_FAILURE,
                          f"git clone of {url}@{tag} failed: {output.strip()[:500]}")


class HttpFetcher:
    """Downloads a file (http) or an archive that is unpacked (archive)."""

    def __init__(self, user_agent: str = "formula-installer/1.0", chunk_size: int = 64 * 1024,
                 request_timeout: float = 60.0):
        self.logger = logging.getLogger(__name__)
        self.user_agent = user_agent
        self.chunk_size = chunk_size
        self.request_timeout = request_timeout

    async def fetch(self, url: str, kind: str, tag: str, workdir: Path) -> Tuple[Path, str]:
        resolved_url = url.replace("{tag}", tag)
        payload, digest = await asyncio.to_thread(self._download, resolved_url, Path(workdir))
        if kind == FetchKind.ARCHIVE.value:
            source = await asyncio.to_thread(self._unpack, payload, Path(workdir) / "src")
            return source, digest
        return payload.parent, digest

    def _download(self, url: str, workdir: Path) -> Tuple[Path, str]:
        filename = Path(urlparse(url).path).name or "download"
        target_dir = workdir / "download"
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / filename

        request = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        digest = hashlib.sha256()
        try:
            with urllib.request.urlopen(request, timeout=self.request_timeout) as response, \
                    open(target, "wb") as out:
                for chunk in iter(lambda: response.read(self.chunk_size), b""):
                    digest.update(chunk)
                    out.write(chunk)
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise FetchError(FetchErrorKind.NOT_FOUND, f"{url} returned 404") from e
            raise FetchError(FetchErrorKind.NETWORK_FAILURE, f"{url} returned {e.code}") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, FileNotFoundError):
                raise FetchError(FetchErrorKind.NOT_FOUND, f"{url} does not exist") from e
            raise FetchError(FetchErrorKind.NETWORK_FAILURE, f"Could not reach {url}: {e.reason}") from e

        self.logger.info(f"Downloaded {url} ({target.stat().st_size} bytes)")
        return target, digest.hexdigest()

    def _unpack(self, archive: Path, extract_dir: Path) -> Path:
        extract_dir.mkdir(parents=True, exist_ok=True)
        try:
            if tarfile.is_tarfile(archive):
                self._extract_tar(archive, extract_dir)
            else:
                shutil.unpack_archive(str(archive), str(extract_dir))
        except (ValueError, shutil.ReadError, tarfile.TarError) as e:
            raise FetchError(FetchErrorKind.NETWORK_FAILURE,
                             f"Could not unpack {archive.name}: {e}") from e

        entries = list(extract_dir.iterdir())
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return extract_dir

    def _extract_tar(self, archive: Path, extract_dir: Path) -> None:
        root = extract_dir.resolve()
        with tarfile.open(archive) as tar:
            members = tar.getmembers()
            for member in members:
                target = (root / member.name).resolve()
                if not _within(target, root):
                    raise FetchError(FetchErrorKind.NETWORK_FAILURE,
                                     f"{archive.name} has an unsafe member: {member.name}")
                if member.issym():
                    link = (target.parent / member.linkname).resolve()
                elif member.islnk():
                    link = (root / member.linkname).resolve()
                else:
                    continue
                if not _within(link, root):
                    raise FetchError(FetchErrorKind.NETWORK_FAILURE,
                                     f"{archive.name} links outside the archive: "
                                     f"{member.name} -> {member.linkname}")
            if hasattr(tarfile, "data_filter"):
                tar.extractall(extract_dir, members=members, filter="data")
            else:
                tar.extractall(extract_dir, members=members)


def _within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


class FetcherRegistry:
    """Dispatches a fetch to the fetcher registered for its kind."""

    def __init__(self, fetchers: Optional[Dict[str, object]] = None):
        if fetchers is None:
            http = HttpFetcher()
            fetchers = {
                FetchKind.GIT.value: GitFetcher(),
                FetchKind.HTTP.value: http,
                FetchKind.ARCHIVE.value: http,
            }
        self.fetchers = fetchers

    async def fetch(self, url: str, kind: str, tag: str, workdir: Path) -> Tuple[Path, str]:
        fetcher = self.fetchers.get(kind)
        if fetcher is None:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"No fetcher registered for kind '{kind}'")
        return await fetcher.fetch(url, kind, tag, workdir)
