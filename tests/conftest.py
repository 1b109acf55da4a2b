"""Shared fixtures: install locations, host snapshots, orchestrators."""

from pathlib import Path

import pytest

from formula_installer.core.executor import InstallExecutor
from formula_installer.core.fetcher import SourceFetcherAdapter
from formula_installer.core.orchestrator import InstallerOrchestrator
from formula_installer.core.records import InstallRecordStore
from formula_installer.models.formula import Formula
from formula_installer.models.host import HostEnvironment

from tests.fakes import FakeFetcher, FakeRunner, make_formula


@pytest.fixture
def install_root(tmp_path) -> Path:
    return tmp_path / "Cellar"


@pytest.fixture
def work_root(tmp_path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def host_env() -> HostEnvironment:
    return HostEnvironment(
        tools={"xcode": "10.2"},
        capabilities={"cc": "/usr/bin/clang"},
        variables={"PATH": "/usr/bin:/bin", "HOME": "/home/builder"},
    )


@pytest.fixture
def formula() -> Formula:
    return make_formula()


@pytest.fixture
def record_store(install_root) -> InstallRecordStore:
    return InstallRecordStore(install_root / ".install_records.json")


@pytest.fixture
def make_orchestrator(install_root, work_root, record_store):
    """Factory wiring an orchestrator around fakes, with retry delays disabled."""
    def _make(fetcher=None, runner=None, store=None, **kwargs) -> InstallerOrchestrator:
        options = {
            "fetch_retry_attempts": 3,
            "retry_delay_seconds": 0.0,
            "retry_jitter": 0.0,
        }
        options.update(kwargs)
        return InstallerOrchestrator(
            fetcher=SourceFetcherAdapter(fetcher or FakeFetcher(), work_root, timeout_seconds=5.0),
            executor=InstallExecutor(runner or FakeRunner(), command_timeout=5.0),
            record_store=store or record_store,
            install_root=install_root,
            **options,
        )
    return _make
