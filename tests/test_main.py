"""Command line entry point, driven end to end over file:// sources."""

import json
import logging

import pytest

from main import main, parse_tool_overrides


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def formula_dir(tmp_path):
    served = tmp_path / "served"
    served.mkdir()
    (served / "hello-1.0.0.sh").write_text("#!/bin/sh\necho hello\n")

    directory = tmp_path / "Formula"
    directory.mkdir()
    (directory / "hello.json").write_text(json.dumps({
        "name": "hello",
        "version": "1.0.0",
        "source": {"kind": "http", "url": f"file://{served}/hello-{{tag}}.sh"},
        "steps": [
            {"kind": "copy_artifact", "source": "hello-1.0.0.sh", "destination": "bin/hello", "mode": 493},
        ],
    }))
    (directory / "needs-xcode.json").write_text(json.dumps({
        "name": "needs-xcode",
        "version": "1.0.0",
        "source": {"kind": "http", "url": f"file://{served}/hello-1.0.0.sh"},
        "toolchain": {"name": "xcode", "min_version": "10.2"},
        "steps": [{"kind": "copy_artifact", "source": "hello-1.0.0.sh"}],
    }))
    return directory


def _args(tmp_path, formula_dir, *command):
    return ["--install-root", str(tmp_path / "Cellar"), "--formula-dir", str(formula_dir),
            "--log-level", "DEBUG", *command]


def test_parse_tool_overrides():
    assert parse_tool_overrides(["xcode=10.2", "swift = 5.0"]) == {"xcode": "10.2", "swift": "5.0"}
    with pytest.raises(ValueError):
        parse_tool_overrides(["xcode"])


async def test_install_list_uninstall(tmp_path, formula_dir, capsys):
    assert await main(_args(tmp_path, formula_dir, "install", "hello")) == 0
    installed = tmp_path / "Cellar" / "hello" / "1.0.0" / "bin" / "hello"
    assert installed.read_text() == "#!/bin/sh\necho hello\n"
    assert (tmp_path / "logs" / "formula_installer.log").is_file()

    # Second run is a no-op
    assert await main(_args(tmp_path, formula_dir, "install", "hello")) == 0

    capsys.readouterr()
    assert await main(_args(tmp_path, formula_dir, "list")) == 0
    assert capsys.readouterr().out.startswith("hello\t1.0.0\t")

    assert await main(_args(tmp_path, formula_dir, "uninstall", "hello")) == 0
    assert not installed.exists()
    assert await main(_args(tmp_path, formula_dir, "uninstall", "hello")) == 1


async def test_unknown_formula_exits_with_validation_code(tmp_path, formula_dir):
    assert await main(_args(tmp_path, formula_dir, "install", "swiftlint")) == 2


async def test_tool_override_fails_constraint(tmp_path, formula_dir):
    code = await main(_args(tmp_path, formula_dir, "install", "needs-xcode", "--tool", "xcode=9.0"))
    assert code == 3
    assert not (tmp_path / "Cellar" / "needs-xcode").exists()


async def test_tool_override_satisfies_constraint(tmp_path, formula_dir):
    code = await main(_args(tmp_path, formula_dir, "install", "needs-xcode", "--tool", "xcode=10.2"))
    assert code == 0
    assert (tmp_path / "Cellar" / "needs-xcode" / "1.0.0" / "hello-1.0.0.sh").is_file()
