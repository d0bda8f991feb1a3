"""Tests for the CLI entrypoint: configuration failures exit non-zero."""

import sys

import pytest
from click.testing import CliRunner

from liverun import config as config_module
from liverun.cli import cli


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Editor and watch utility that exist; clean working directory."""
    for name in config_module.ENV_KEYS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("VISUAL", sys.executable)
    monkeypatch.setenv("LIVERUN_WATCH_COMMAND", sys.executable)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestConfigurationErrors:
    """Every startup validation failure exits with status 1."""

    def test_missing_interpreter(self, env):
        result = CliRunner().invoke(cli, ["definitely-not-a-language"])

        assert result.exit_code == 1
        assert "is not in PATH" in result.output

    def test_invalid_directory(self, env):
        result = CliRunner().invoke(cli, ["-d", str(env / "missing"), sys.executable, "x.py"])

        assert result.exit_code == 1
        assert "was not a directory" in result.output

    def test_editor_not_found(self, env, monkeypatch):
        monkeypatch.setenv("VISUAL", "no-such-editor-anywhere")

        result = CliRunner().invoke(cli, [sys.executable])

        assert result.exit_code == 1
        assert "'no-such-editor-anywhere' is not in PATH" in result.output

    def test_watch_utility_not_found(self, env, monkeypatch):
        monkeypatch.setenv("LIVERUN_WATCH_COMMAND", "no-such-watcher -p")

        result = CliRunner().invoke(cli, [sys.executable])

        assert result.exit_code == 1
        assert "watch utility" in result.output

    def test_missing_target_file(self, env):
        result = CliRunner().invoke(cli, [sys.executable, str(env / "missing.py")])

        assert result.exit_code == 1
        assert "file not found" in result.output

    def test_bad_config_file(self, env):
        (env / "liverun.yaml").write_text("nonsense: true\n")

        result = CliRunner().invoke(cli, [sys.executable])

        assert result.exit_code == 1
        assert "Unknown keys" in result.output


def test_help():
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "--directory" in result.output
    assert "LANG" in result.output
