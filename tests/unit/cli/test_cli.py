"""Unit tests for the skillbox CLI."""

import json

import pytest
import typer
from typer.testing import CliRunner

from skillbox import __version__
from skillbox.cli.app import app
from tests.helpers.builders import build_manifest, write_skill_dir
from tests.helpers.wat import echo_guest, foreign_import_guest

pytestmark = [pytest.mark.unit, pytest.mark.cli]


@pytest.fixture
def cli_env(clean_skillbox_env, monkeypatch, tmp_path):
    """Point skills, registry and workspace into tmp_path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SKILLBOX_SKILLS_DIR", str(tmp_path / "skills"))
    monkeypatch.setenv("SKILLBOX_REGISTRY_PATH", str(tmp_path / "registry.json"))
    return tmp_path


@pytest.fixture
def echo_dir(tmp_path):
    return write_skill_dir(tmp_path / "src", build_manifest("echo", description="Echo the input back"), echo_guest())


class TestCLIFramework:
    """Tests for CLI framework and structure."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_app_is_typer_instance(self):
        assert isinstance(app, typer.Typer)

    def test_version(self):
        result = self.runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_help(self):
        result = self.runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "skill" in result.stdout
        assert "tools" in result.stdout


class TestSkillCommands:
    """Tests for the skill command group."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_list_empty(self, cli_env):
        result = self.runner.invoke(app, ["skill", "list"])
        assert result.exit_code == 0
        assert "No skills installed" in result.stdout

    def test_install_and_list(self, cli_env, echo_dir):
        result = self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        assert result.exit_code == 0, result.stdout
        assert "Installed echo@1.0.0" in result.stdout
        assert "Verified echo@1.0.0" in result.stdout
        assert (cli_env / "skills" / "echo" / "1.0.0" / "SKILL.md").exists()

        stored = json.loads((cli_env / "registry.json").read_text())
        assert [row["name"] for row in stored["skills"]] == ["echo"]

        listing = self.runner.invoke(app, ["skill", "list"])
        assert "echo" in listing.stdout
        assert "1.0.0" in listing.stdout

    def test_install_duplicate_fails(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir)])
        result = self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        assert result.exit_code == 1
        assert "already installed" in result.stdout

    def test_install_missing_manifest(self, cli_env, tmp_path):
        (tmp_path / "empty").mkdir()
        result = self.runner.invoke(app, ["skill", "install", str(tmp_path / "empty")])
        assert result.exit_code == 1
        assert "Error installing skill" in result.stdout

    def test_install_reports_rejected_module(self, cli_env, tmp_path):
        skill_dir = write_skill_dir(tmp_path / "src", build_manifest("wasi"), foreign_import_guest())

        result = self.runner.invoke(app, ["skill", "install", str(skill_dir)])

        assert result.exit_code == 0
        assert "Verification failed" in result.stdout
        assert "unknown import" in result.stdout

    def test_info(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        result = self.runner.invoke(app, ["skill", "info", "echo"])

        assert result.exit_code == 0
        assert "Echo the input back" in result.stdout
        assert "Fuel budget: 50000000" in result.stdout

    def test_info_unknown(self, cli_env):
        result = self.runner.invoke(app, ["skill", "info", "nope"])
        assert result.exit_code == 1
        assert "not installed" in result.stdout

    def test_disable_and_enable(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        disabled = self.runner.invoke(app, ["skill", "disable", "echo"])
        assert disabled.exit_code == 0
        assert "Disabled echo@1.0.0" in disabled.stdout

        enabled = self.runner.invoke(app, ["skill", "enable", "echo"])
        assert "Enabled echo@1.0.0" in enabled.stdout

    def test_enable_unknown(self, cli_env):
        result = self.runner.invoke(app, ["skill", "enable", "nope"])
        assert result.exit_code == 1

    def test_remove_confirmed_by_flag(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        result = self.runner.invoke(app, ["skill", "remove", "echo", "--yes"])

        assert result.exit_code == 0
        assert "Removed echo@1.0.0" in result.stdout
        assert not (cli_env / "skills" / "echo").exists()

    def test_remove_cancelled(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        result = self.runner.invoke(app, ["skill", "remove", "echo"], input="n\n")

        assert "Cancelled" in result.stdout
        assert (cli_env / "skills" / "echo" / "1.0.0").exists()

    def test_verify(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir), "--no-verify"])
        result = self.runner.invoke(app, ["skill", "verify", "echo"])
        assert result.exit_code == 0
        assert "echo@1.0.0 verified" in result.stdout


class TestToolCommands:
    """Tests for tools and run."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_prompt_summary(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        result = self.runner.invoke(app, ["tools", "--prompt"])

        assert result.exit_code == 0
        assert "## Available Tools" in result.stdout
        assert "- read_file:" in result.stdout
        assert "- echo: Echo the input back" in result.stdout

    def test_run_skill(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir)])

        result = self.runner.invoke(app, ["run", "echo", "--args", '{"city": "Oslo"}'])

        assert result.exit_code == 0
        assert '{"city": "Oslo"}' in result.stdout

    def test_run_disabled_skill(self, cli_env, echo_dir):
        self.runner.invoke(app, ["skill", "install", str(echo_dir), "--disabled"])

        result = self.runner.invoke(app, ["run", "echo"])

        assert result.exit_code == 2
        assert "skill is disabled" in result.stdout

    def test_run_unknown_tool(self, cli_env):
        result = self.runner.invoke(app, ["run", "nope"])
        assert result.exit_code == 2
        assert "tool_not_found" in result.stdout

    def test_run_invalid_json(self, cli_env):
        result = self.runner.invoke(app, ["run", "echo", "--args", "{not json"])
        assert result.exit_code == 1
        assert "Invalid --args JSON" in result.stdout
