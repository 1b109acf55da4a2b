"""
Installer orchestrator: validate -> check constraints -> fetch -> build
environment -> execute -> finalize, with FAILED reachable from every stage.
"""

import asyncio
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..models.formula import Formula, validate_formula
from ..models.host import HostEnvironment
from ..models.installation import (
    TERMINAL_STAGES,
    FetchResult,
    InstallOutcome,
    InstallRecord,
    InstallStage,
)
from ..utils.logging import setup_logger
from . import constraints, environment
from .errors import (
    ConstraintError,
    FetchError,
    FormulaInstallerError,
    RecordStoreError,
    ValidationError,
)
from .executor import InstallExecutor, StagedInstall, remove_if_empty
from .fetcher import SourceFetcherAdapter
from .locks import KeyedLock
from .records import InstallRecordStore


class InstallerOrchestrator:
    """Sequences one formula install and reports a single terminal outcome."""

    def __init__(self,
                 fetcher: SourceFetcherAdapter,
                 executor: InstallExecutor,
                 record_store: InstallRecordStore,
                 install_root: Path,
                 fetch_retry_attempts: int = 3,
                 retry_delay_seconds: float = 1.0,
                 max_retry_delay_seconds: float = 30.0,
                 retry_jitter: float = 0.25,
                 max_concurrent_installs: int = 4):
        """
        Initialize the orchestrator.

        Args:
            fetcher: Source fetcher adapter
            executor: Install step executor
            record_store: Durable InstallRecord store
            install_root: Root of the install location
            fetch_retry_attempts: Retries after the first failed fetch (transient errors only)
            retry_delay_seconds: Initial backoff delay
            max_retry_delay_seconds: Backoff ceiling
            retry_jitter: Relative jitter applied to each delay (0.25 = +/-25%)
            max_concurrent_installs: Bound for install_many
        """
        self.logger = setup_logger(__name__)
        self.fetcher = fetcher
        self.executor = executor
        self.record_store = record_store
        self.install_root = Path(install_root)
        self.fetch_retry_attempts = fetch_retry_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.max_retry_delay_seconds = max_retry_delay_seconds
        self.retry_jitter = retry_jitter
        self.max_concurrent_installs = max_concurrent_installs

        # At most one install per (name, version) between fetching and finalizing
        self.locks = KeyedLock()

    async def install(self, formula: Formula, host_env: HostEnvironment,
                      force: bool = False) -> InstallOutcome:
        """
        Install one formula.

        Args:
            formula: Formula to install
            host_env: Host snapshot the constraint check and environment are derived from
            force: Reinstall even if an intact record exists

        Returns:
            Terminal outcome: DONE (with record) or FAILED (with stage and error)
        """
        outcome = InstallOutcome(formula_name=formula.name, version=formula.version)
        stage = InstallStage.IDLE
        fetch_result: Optional[FetchResult] = None

        try:
            stage = self._enter(outcome, InstallStage.VALIDATING)
            validate_formula(formula)

            stage = self._enter(outcome, InstallStage.CHECKING_CONSTRAINTS)
            self._check_constraints(formula, host_env)

            async with self.locks.hold(formula.identity):
                try:
                    existing = None if force else self._installed_record(formula)
                except RecordStoreError:
                    # record lookup failures are reported under FETCHING
                    stage = self._enter(outcome, InstallStage.FETCHING)
                    raise
                if existing is not None:
                    self.logger.info(f"{formula.name} {formula.version} already installed "
                                     f"at {existing.location}")
                    outcome.already_installed = True
                    outcome.record = existing
                    self._enter(outcome, InstallStage.DONE)
                    return outcome

                stage = self._enter(outcome, InstallStage.FETCHING)
                fetch_result = await self._fetch_with_retry(formula)

                stage = self._enter(outcome, InstallStage.BUILDING_ENV)
                child_env = environment.build(host_env, formula)

                stage = self._enter(outcome, InstallStage.EXECUTING)
                staged = await self.executor.execute(formula, fetch_result, child_env,
                                                     self.install_root)

                stage = self._enter(outcome, InstallStage.FINALIZING)
                record = self._finalize(staged)
                fetch_result.cleanup()
                fetch_result = None

                outcome.record = record
                self._enter(outcome, InstallStage.DONE)
                self.logger.info(f"Installed {formula.name} {formula.version} "
                                 f"({record.revision}) at {record.location}")

        except FormulaInstallerError as e:
            self._fail(outcome, stage, e)
        except Exception as e:
            self.logger.error(f"Unexpected error while {stage.value} {formula.name}: {e}",
                              exc_info=True)
            self._fail(outcome, stage, e)
        finally:
            if fetch_result is not None:
                fetch_result.cleanup()

        return outcome

    async def install_descriptor(self, data: Dict[str, Any], host_env: HostEnvironment,
                                 force: bool = False) -> InstallOutcome:
        """Build a formula from a raw descriptor and install it."""
        try:
            formula = Formula.from_descriptor(data)
        except ValidationError as e:
            outcome = InstallOutcome(formula_name=str(data.get("name") or "<unnamed>"),
                                     version=str(data.get("version") or ""))
            self._enter(outcome, InstallStage.VALIDATING)
            self._fail(outcome, InstallStage.VALIDATING, e)
            return outcome
        return await self.install(formula, host_env, force=force)

    async def install_many(self, formulas: Sequence[Formula], host_env: HostEnvironment,
                           force: bool = False) -> Dict[str, Any]:
        """
        Install several formulas concurrently.

        Returns:
            Summary of results
        """
        start_time = datetime.now(timezone.utc)
        semaphore = asyncio.Semaphore(self.max_concurrent_installs)

        async def _bounded(formula: Formula) -> InstallOutcome:
            async with semaphore:
                return await self.install(formula, host_env, force=force)

        results = await asyncio.gather(*[_bounded(f) for f in formulas], return_exceptions=True)

        outcomes = [r for r in results if isinstance(r, InstallOutcome)]
        errors = [r for r in results if isinstance(r, BaseException)]
        for error in errors:
            if isinstance(error, asyncio.CancelledError):
                raise error
        summary = {
            "total": len(formulas),
            "successful": sum(1 for o in outcomes if o.succeeded),
            "already_installed": sum(1 for o in outcomes if o.already_installed),
            "failed": sum(1 for o in outcomes if not o.succeeded) + len(errors),
            "duration_seconds": (datetime.now(timezone.utc) - start_time).total_seconds(),
            "outcomes": [o.to_dict() for o in outcomes],
        }
        self.logger.info(f"Batch install complete: {summary['successful']} succeeded, "
                         f"{summary['failed']} failed")
        return summary

    async def uninstall(self, name: str, version: Optional[str] = None) -> List[InstallRecord]:
        """
        Remove installed versions of a formula and their records.

        Args:
            name: Formula name
            version: Version to remove; all recorded versions when None

        Returns:
            Records that were removed
        """
        if version is not None:
            candidates = [r for r in [self.record_store.get(name, version)] if r is not None]
        else:
            candidates = self.record_store.list(name)

        removed: List[InstallRecord] = []
        for record in candidates:
            async with self.locks.hold(record.key):
                self._remove_artifacts(record)
                if self.record_store.remove(record.name, record.version) is not None:
                    removed.append(record)
                    self.logger.info(f"Uninstalled {record.name} {record.version}")
        return removed

    def _check_constraints(self, formula: Formula, host_env: HostEnvironment) -> None:
        verdict = constraints.check(formula.toolchain, host_env)
        if not verdict.satisfied:
            raise ConstraintError(verdict.tool, verdict.required_version, verdict.found_version)
        if verdict.tool:
            self.logger.info(f"{verdict.tool} {verdict.found_version} satisfies "
                             f">= {verdict.required_version}")

    def _installed_record(self, formula: Formula) -> Optional[InstallRecord]:
        record = self.record_store.get(formula.name, formula.version)
        if record is None:
            return None
        if not record.is_intact():
            self.logger.warning(f"Record for {formula.name} {formula.version} exists but "
                                f"artifacts are missing; reinstalling")
            return None
        return record

    async def _fetch_with_retry(self, formula: Formula) -> FetchResult:
        for attempt in range(self.fetch_retry_attempts + 1):
            try:
                return await self.fetcher.fetch(formula.source, formula.tag)
            except FetchError as e:
                if not e.transient or attempt >= self.fetch_retry_attempts:
                    raise
                delay = self._backoff_delay(attempt)
                self.logger.warning(
                    f"Fetch of {formula.name} failed ({e.code}): {e.message}; retrying in "
                    f"{delay:.2f}s ({attempt + 1}/{self.fetch_retry_attempts})"
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    def _backoff_delay(self, attempt: int) -> float:
        delay = min(self.retry_delay_seconds * (2 ** attempt), self.max_retry_delay_seconds)
        if self.retry_jitter:
            delay *= 1 + random.uniform(-self.retry_jitter, self.retry_jitter)
        return max(delay, 0.0)

    def _finalize(self, staged: StagedInstall) -> InstallRecord:
        record = staged.record
        try:
            self.record_store.put(record)
        except BaseException:
            self.logger.error(f"Could not record {record.name} {record.version}; "
                              f"restoring the previous state")
            self.executor.rollback(staged)
            raise
        self.executor.commit(staged)
        return record

    def _remove_artifacts(self, record: InstallRecord) -> None:
        prefix = Path(record.location)
        for path in record.artifact_paths():
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                self.logger.error(f"Could not remove {path}: {e}")
                continue
            parent = path.parent
            while parent != prefix and prefix in parent.parents:
                remove_if_empty(parent)
                parent = parent.parent
        remove_if_empty(prefix)
        remove_if_empty(prefix.parent)

    def _enter(self, outcome: InstallOutcome, stage: InstallStage) -> InstallStage:
        if outcome.state in TERMINAL_STAGES:
            raise RuntimeError(f"{outcome.formula_name} {outcome.version} is already "
                               f"{outcome.state.value}; cannot move to {stage.value}")
        self.logger.debug(f"{outcome.formula_name} {outcome.version}: {outcome.state.value} -> {stage.value}")
        outcome.stages.append(stage)
        outcome.state = stage
        return stage

    def _fail(self, outcome: InstallOutcome, stage: InstallStage, error: BaseException) -> None:
        outcome.failed_stage = stage
        outcome.error = error
        self._enter(outcome, InstallStage.FAILED)
        self.logger.error(f"Install of {outcome.formula_name} {outcome.version} failed "
                          f"while {stage.value}: {error}")
