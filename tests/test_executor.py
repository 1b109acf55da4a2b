"""InstallExecutor: step execution, atomic artifact placement and rollback."""

import asyncio
import errno
import shutil
import stat
from pathlib import Path

import pytest

from formula_installer.core import environment
from formula_installer.core.errors import InstallError, InstallErrorKind
from formula_installer.core.executor import InstallExecutor
from formula_installer.integrations.command_runner import SubprocessRunner
from formula_installer.models.installation import FetchResult

from tests.fakes import SWIFT_LAMBDA_SCRIPT, FakeRunner, make_formula, visible_files


@pytest.fixture
def fetch_result(tmp_path) -> FetchResult:
    workdir = tmp_path / "work" / "fetch-test"
    checkout = workdir / "src"
    checkout.mkdir(parents=True)
    artifact = checkout / "swift-lambda"
    artifact.write_text(SWIFT_LAMBDA_SCRIPT)
    artifact.chmod(0o755)
    return FetchResult(workdir=workdir, source_path=checkout, revision="3f1c2a9e",
                       url="https://github.com/asensei/homebrew-swift-lambda.git", tag="0.2.0")


async def _execute(formula, fetch_result, host_env, install_root, runner=None, executor=None):
    executor = executor or InstallExecutor(runner or FakeRunner(), command_timeout=5.0)
    child_env = environment.build(host_env, formula)
    return await executor.execute(formula, fetch_result, child_env, install_root)


def _leftovers(directory: Path):
    if not directory.exists():
        return []
    return [p.name for p in directory.iterdir() if p.name.endswith((".partial", ".previous"))]


async def test_steps_run_in_order_and_artifact_is_placed(formula, fetch_result, host_env, install_root):
    runner = FakeRunner()
    record = (await _execute(formula, fetch_result, host_env, install_root, runner)).record

    prefix = install_root / "swift-lambda" / "0.2.0"
    argv, env, cwd = runner.calls[0]
    assert argv == ["echo", "build"]
    assert cwd == fetch_result.source_path
    assert env["CC"] == "/usr/bin/clang"
    assert env["FORMULA_PREFIX"] == str(prefix)

    artifact = prefix / "swift-lambda"
    assert artifact.read_text() == SWIFT_LAMBDA_SCRIPT
    assert stat.S_IMODE(artifact.stat().st_mode) == 0o755
    assert record.location == str(prefix)
    assert record.artifacts == ["swift-lambda"]
    assert record.revision == "3f1c2a9e"
    assert record.source_tag == "0.2.0"
    assert record.is_intact()


async def test_real_commands_build_the_artifact(fetch_result, host_env, install_root):
    formula = make_formula(steps=[
        {"kind": "run_command", "argv": ["sh", "-c", "printf built > out.bin"]},
        {"kind": "copy_artifact", "source": "out.bin", "destination": "bin/out.bin", "mode": 0o700},
    ])
    env_host = host_env.model_copy(update={"variables": {"PATH": "/usr/bin:/bin"}})
    record = (await _execute(formula, fetch_result, env_host, install_root, SubprocessRunner())).record

    artifact = install_root / "swift-lambda" / "0.2.0" / "bin" / "out.bin"
    assert artifact.read_text() == "built"
    assert stat.S_IMODE(artifact.stat().st_mode) == 0o700
    assert record.artifacts == ["bin/out.bin"]


async def test_placeholders_and_set_env_reach_later_steps(fetch_result, host_env, install_root):
    formula = make_formula(steps=[
        {"kind": "set_env", "name": "LIBDIR", "value": "{prefix}/lib"},
        {"kind": "run_command", "argv": "swift build --prefix {prefix} --product {name}-{version}"},
        {"kind": "copy_artifact", "source": "swift-lambda"},
    ])
    runner = FakeRunner()
    await _execute(formula, fetch_result, host_env, install_root, runner)

    prefix = str(install_root / "swift-lambda" / "0.2.0")
    argv, env, _ = runner.calls[0]
    assert argv == ["swift", "build", "--prefix", prefix, "--product", "swift-lambda-0.2.0"]
    assert env["LIBDIR"] == f"{prefix}/lib"


async def test_failing_step_rolls_back_earlier_artifacts(fetch_result, host_env, install_root):
    formula = make_formula(steps=[
        {"kind": "copy_artifact", "source": "swift-lambda", "destination": "bin/swift-lambda"},
        {"kind": "run_command", "argv": "make check"},
        {"kind": "copy_artifact", "source": "swift-lambda"},
    ])
    runner = FakeRunner(exit_codes={"make check": 2})

    with pytest.raises(InstallError) as excinfo:
        await _execute(formula, fetch_result, host_env, install_root, runner)

    error = excinfo.value
    assert error.kind == InstallErrorKind.STEP_FAILED
    assert error.step_index == 1
    assert error.exit_code == 2
    assert visible_files(install_root) == []
    assert not (install_root / "swift-lambda").exists()


async def test_steps_after_a_failure_do_not_run(fetch_result, host_env, install_root):
    formula = make_formula(steps=[
        {"kind": "run_command", "argv": "false"},
        {"kind": "run_command", "argv": "echo never"},
    ])
    runner = FakeRunner(exit_codes={"false": 1})

    with pytest.raises(InstallError):
        await _execute(formula, fetch_result, host_env, install_root, runner)
    assert [call[0] for call in runner.calls] == [["false"]]


async def test_missing_artifact_fails_the_copy(fetch_result, host_env, install_root):
    formula = make_formula(steps=[{"kind": "copy_artifact", "source": "not-built"}])
    with pytest.raises(InstallError) as excinfo:
        await _execute(formula, fetch_result, host_env, install_root)
    assert excinfo.value.kind == InstallErrorKind.ARTIFACT_COPY_FAILED
    assert excinfo.value.step_index == 0


async def test_crash_mid_copy_leaves_no_partial_artifact(formula, fetch_result, host_env,
                                                         install_root, monkeypatch):
    def _disk_full(src, dst, *args, **kwargs):
        dst.write(src.read(4))
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(shutil, "copyfileobj", _disk_full)

    with pytest.raises(InstallError) as excinfo:
        await _execute(formula, fetch_result, host_env, install_root)

    assert excinfo.value.kind == InstallErrorKind.ARTIFACT_COPY_FAILED
    assert visible_files(install_root) == []


async def test_failed_reinstall_restores_the_previous_artifact(fetch_result, host_env, install_root):
    prefix = install_root / "swift-lambda" / "0.2.0"
    prefix.mkdir(parents=True)
    (prefix / "swift-lambda").write_text("previous build")

    formula = make_formula(steps=[
        {"kind": "copy_artifact", "source": "swift-lambda"},
        {"kind": "run_command", "argv": "make check"},
    ])
    with pytest.raises(InstallError):
        await _execute(formula, fetch_result, host_env, install_root,
                       FakeRunner(exit_codes={"make check": 1}))

    assert (prefix / "swift-lambda").read_text() == "previous build"
    assert _leftovers(prefix) == []


async def test_successful_reinstall_replaces_the_artifact(formula, fetch_result, host_env, install_root):
    prefix = install_root / "swift-lambda" / "0.2.0"
    prefix.mkdir(parents=True)
    (prefix / "swift-lambda").write_text("previous build")

    executor = InstallExecutor(FakeRunner(), command_timeout=5.0)
    staged = await _execute(formula, fetch_result, host_env, install_root, executor=executor)

    assert (prefix / "swift-lambda").read_text() == SWIFT_LAMBDA_SCRIPT
    assert len(_leftovers(prefix)) == 1
    assert _leftovers(prefix)[0].endswith(".previous")

    executor.commit(staged)
    assert _leftovers(prefix) == []


async def test_rollback_after_success_restores_the_previous_artifact(formula, fetch_result, host_env,
                                                                     install_root):
    prefix = install_root / "swift-lambda" / "0.2.0"
    prefix.mkdir(parents=True)
    (prefix / "swift-lambda").write_text("previous build")

    executor = InstallExecutor(FakeRunner(), command_timeout=5.0)
    staged = await _execute(formula, fetch_result, host_env, install_root, executor=executor)
    executor.rollback(staged)

    assert (prefix / "swift-lambda").read_text() == "previous build"
    assert _leftovers(prefix) == []


async def test_rollback_of_a_fresh_install_removes_its_directories(formula, fetch_result, host_env,
                                                                   install_root):
    executor = InstallExecutor(FakeRunner(), command_timeout=5.0)
    staged = await _execute(formula, fetch_result, host_env, install_root, executor=executor)
    executor.rollback(staged)

    assert visible_files(install_root) == []
    assert not (install_root / "swift-lambda").exists()


async def test_unwritable_install_root(formula, fetch_result, host_env, tmp_path):
    install_root = tmp_path / "not-a-directory"
    install_root.write_text("")
    runner = FakeRunner()

    with pytest.raises(InstallError) as excinfo:
        await _execute(formula, fetch_result, host_env, install_root, runner)

    assert excinfo.value.kind == InstallErrorKind.INSTALL_ROOT_UNWRITABLE
    assert runner.calls == []


@pytest.mark.parametrize("error,exit_code", [
    (asyncio.TimeoutError(), None),
    (FileNotFoundError("swift"), 127),
    (PermissionError("swift"), 126),
    (OSError(errno.ENOEXEC, "Exec format error"), None),
    (NotADirectoryError(errno.ENOTDIR, "Not a directory"), None),
    (ValueError("illegal environment variable name"), None),
])
async def test_runner_errors_become_step_failures(formula, fetch_result, host_env, install_root,
                                                  error, exit_code):
    with pytest.raises(InstallError) as excinfo:
        await _execute(formula, fetch_result, host_env, install_root, FakeRunner(error=error))

    assert excinfo.value.kind == InstallErrorKind.STEP_FAILED
    assert excinfo.value.step_index == 0
    assert excinfo.value.exit_code == exit_code


async def test_cancellation_rolls_back(fetch_result, host_env, install_root):
    formula = make_formula(steps=[
        {"kind": "copy_artifact", "source": "swift-lambda"},
        {"kind": "run_command", "argv": "swift build"},
    ])
    task = asyncio.create_task(
        _execute(formula, fetch_result, host_env, install_root, FakeRunner(delay=5.0))
    )
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert visible_files(install_root) == []
