"""
Install step execution and artifact placement.
"""

import asyncio
import logging
import os
import shutil
import stat
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Protocol, Sequence

from ..models.formula import CopyArtifact, Formula, RunCommand, SetEnv
from ..models.host import ChildEnvironment
from ..models.installation import FetchResult, InstallRecord
from .errors import InstallError, InstallErrorKind


class CommandRunner(Protocol):
    """External command execution service."""

    async def run(self,
                  argv: Sequence[str],
                  env: Mapping[str, str],
                  cwd: Path,
                  timeout: Optional[float] = None) -> int:
        ...


@dataclass
class _Placement:
    """An artifact written during the current attempt."""
    relative: str
    path: Path
    displaced: Optional[Path] = None


@dataclass
class StagedInstall:
    """
    Artifacts placed by one attempt, not yet committed.

    Files the placements replaced are kept aside until commit() so a failed
    finalize can put the previous install back.
    """
    name: str
    version: str
    prefix: Path
    placements: List[_Placement] = field(default_factory=list)
    created_dirs: List[Path] = field(default_factory=list)
    record: Optional[InstallRecord] = None


class InstallExecutor:
    """Runs a formula's install steps against a working copy."""

    def __init__(self, runner: CommandRunner, command_timeout: Optional[float] = None):
        """
        Initialize the executor.

        Args:
            runner: Command execution service
            command_timeout: Per-command timeout in seconds, None for no limit
        """
        self.logger = logging.getLogger(__name__)
        self.runner = runner
        self.command_timeout = command_timeout

    async def execute(self,
                      formula: Formula,
                      fetch_result: FetchResult,
                      child_env: ChildEnvironment,
                      install_root: Path) -> StagedInstall:
        """
        Execute every install step in order and place artifacts under
        <install_root>/<name>/<version>.

        Steps are not retried. Any failure, including cancellation, removes
        the artifacts this attempt placed and restores files they displaced.
        On success the caller must commit() or rollback() the result.

        Returns:
            StagedInstall whose record describes the placed artifacts

        Raises:
            InstallError: STEP_FAILED, ARTIFACT_COPY_FAILED or INSTALL_ROOT_UNWRITABLE
        """
        prefix = Path(install_root) / formula.name / formula.version
        staged = StagedInstall(name=formula.name, version=formula.version, prefix=prefix)
        self._prepare_prefix(prefix, staged.created_dirs)

        workdir = fetch_result.source_path
        placeholders = {
            "{prefix}": str(prefix),
            "{name}": formula.name,
            "{version}": formula.version,
            "{workdir}": str(workdir),
        }
        env = child_env.with_variable("FORMULA_PREFIX", str(prefix))

        try:
            for index, step in enumerate(formula.steps):
                if isinstance(step, SetEnv):
                    env = env.with_variable(step.name, _expand(step.value, placeholders))
                elif isinstance(step, RunCommand):
                    argv = [_expand(arg, placeholders) for arg in step.argv]
                    cwd = workdir / step.cwd if step.cwd else workdir
                    await self._run_command(index, argv, env, cwd)
                elif isinstance(step, CopyArtifact):
                    staged.placements.append(
                        self._copy_artifact(index, step, workdir, prefix, staged.created_dirs)
                    )
        except BaseException:
            self.rollback(staged)
            raise

        artifacts = list(dict.fromkeys(p.relative for p in staged.placements))
        self.logger.info(f"Placed {len(artifacts)} artifacts of {formula.name} {formula.version} "
                         f"into {prefix}")
        staged.record = InstallRecord(
            name=formula.name,
            version=formula.version,
            revision=fetch_result.revision,
            source_tag=fetch_result.tag,
            location=str(prefix),
            artifacts=artifacts,
        )
        return staged

    def commit(self, staged: StagedInstall) -> None:
        """Drop the files the staged placements replaced."""
        for placement in staged.placements:
            if placement.displaced is not None:
                placement.displaced.unlink(missing_ok=True)

    def rollback(self, staged: StagedInstall) -> None:
        """Remove staged artifacts, restore what they replaced and drop directories created for them."""
        self.logger.warning(f"Rolling back {len(staged.placements)} artifacts of "
                            f"{staged.name} {staged.version}")
        for placement in reversed(staged.placements):
            try:
                placement.path.unlink(missing_ok=True)
                if placement.displaced is not None:
                    os.replace(placement.displaced, placement.path)
            except OSError as e:
                self.logger.error(f"Rollback could not restore {placement.path}: {e}")
        for directory in reversed(staged.created_dirs):
            remove_if_empty(directory)

    def _prepare_prefix(self, prefix: Path, created_dirs: List[Path]) -> None:
        try:
            _ensure_dir(prefix, created_dirs)
            if not os.access(prefix, os.W_OK):
                raise PermissionError(f"{prefix} is not writable")
        except OSError as e:
            for directory in reversed(created_dirs):
                remove_if_empty(directory)
            raise InstallError(InstallErrorKind.INSTALL_ROOT_UNWRITABLE,
                               f"Cannot write install prefix {prefix}: {e}") from e

    async def _run_command(self, index: int, argv: List[str], env: ChildEnvironment, cwd: Path) -> None:
        self.logger.info(f"Step {index}: run {' '.join(argv)}")
        try:
            exit_code = await self.runner.run(argv, env.as_dict(), cwd, timeout=self.command_timeout)
        except asyncio.TimeoutError as e:
            raise InstallError(InstallErrorKind.STEP_FAILED,
                               f"Step {index} timed out after {self.command_timeout}s",
                               step_index=index) from e
        except FileNotFoundError as e:
            raise InstallError(InstallErrorKind.STEP_FAILED,
                               f"Step {index}: command not found: {argv[0]}",
                               step_index=index, exit_code=127) from e
        except PermissionError as e:
            raise InstallError(InstallErrorKind.STEP_FAILED,
                               f"Step {index}: command not executable: {argv[0]}",
                               step_index=index, exit_code=126) from e
        except OSError as e:
            raise InstallError(InstallErrorKind.STEP_FAILED,
                               f"Step {index}: could not start {argv[0]}: {e}",
                               step_index=index) from e
        except ValueError as e:
            # e.g. an environment variable name containing "="
            raise InstallError(InstallErrorKind.STEP_FAILED,
                               f"Step {index}: invalid command or environment: {e}",
                               step_index=index) from e

        if exit_code != 0:
            raise InstallError(InstallErrorKind.STEP_FAILED,
                               f"Step {index} ({' '.join(argv)}) exited with {exit_code}",
                               step_index=index, exit_code=exit_code)

    def _copy_artifact(self,
                       index: int,
                       step: CopyArtifact,
                       workdir: Path,
                       prefix: Path,
                       created_dirs: List[Path]) -> _Placement:
        source = workdir / step.source
        target = prefix / step.target
        self.logger.info(f"Step {index}: copy {step.source} -> {target}")

        if not source.is_file():
            raise InstallError(InstallErrorKind.ARTIFACT_COPY_FAILED,
                               f"Step {index}: artifact {step.source} not found in working copy",
                               step_index=index)

        tmp_path: Optional[Path] = None
        displaced: Optional[Path] = None
        try:
            _ensure_dir(target.parent, created_dirs)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".partial",
                                            dir=target.parent)
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as out, open(source, "rb") as src:
                shutil.copyfileobj(src, out)
                out.flush()
                os.fsync(out.fileno())
            mode = step.mode if step.mode is not None else stat.S_IMODE(source.stat().st_mode)
            os.chmod(tmp_path, mode)

            if target.exists():
                displaced = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.previous")
                os.replace(target, displaced)
            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            if displaced is not None and not target.exists():
                os.replace(displaced, target)
            raise InstallError(InstallErrorKind.ARTIFACT_COPY_FAILED,
                               f"Step {index}: could not place {step.target}: {e}",
                               step_index=index) from e

        return _Placement(relative=step.target, path=target, displaced=displaced)


def _expand(value: str, placeholders: Mapping[str, str]) -> str:
    for placeholder, replacement in placeholders.items():
        value = value.replace(placeholder, replacement)
    return value


def _ensure_dir(path: Path, created: List[Path]) -> None:
    """mkdir -p, remembering which directories were created (outermost first)."""
    missing = []
    current = path
    while not current.exists():
        missing.append(current)
        current = current.parent
    for directory in reversed(missing):
        try:
            directory.mkdir()
        except FileExistsError:
            # created concurrently by an install of another version
            continue
        created.append(directory)


def remove_if_empty(directory: Path) -> None:
    try:
        directory.rmdir()
    except OSError:
        pass
