"""
Tests for the command line interface.
"""

import json
import os
import shlex
import sys

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from autofix.cli import cli, EXIT_SUCCESS, EXIT_EXHAUSTED, EXIT_CONFIG_ERROR, EXIT_REJECTED
from autofix.policy import DESTRUCTIVE_RULE
from autofix.loop import LoopResult, LoopStatus


def python_command(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def log_dir(temp_dir):
    return os.path.join(temp_dir, "logs")


class TestRun:
    """Tests for the run command."""

    def test_success(self, runner, log_dir, temp_dir):
        result = runner.invoke(cli, [
            "run", "--log-dir", log_dir, "--cwd", temp_dir, python_command("print('all good')")
        ])

        assert result.exit_code == EXIT_SUCCESS
        assert "Attempt 1/3: exit 0" in result.output
        assert "all good" in result.output

    def test_rejected(self, runner, log_dir):
        result = runner.invoke(cli, ["run", "--log-dir", log_dir, "rm -rf /"])

        assert result.exit_code == EXIT_REJECTED
        assert "rejected by policy" in result.output
        assert "--override-policy" in result.output

    def test_exhausted(self, runner, log_dir, temp_dir):
        result = runner.invoke(cli, [
            "run", "--log-dir", log_dir, "--cwd", temp_dir, "--max-attempts", "1",
            python_command("import sys; sys.exit(5)")
        ])

        assert result.exit_code == EXIT_EXHAUSTED
        assert "Command failed after 1 attempt(s)." in result.output
        assert "Suggested next steps:" in result.output

    def test_json_output(self, runner, log_dir, temp_dir):
        result = runner.invoke(cli, [
            "run", "--log-dir", log_dir, "--cwd", temp_dir, "--json", python_command("print(1)")
        ])

        data = json.loads(result.output)
        assert data["status"] == "success"
        assert len(data["attempts"]) == 1

    @patch("autofix.cli.SelfHealingLoop")
    def test_command_flags_are_not_taken_as_options(self, mock_loop, runner):
        """Options that look like autofix's own flags stay part of COMMAND."""
        mock_loop.return_value.run.return_value = LoopResult(success=True, status=LoopStatus.SUCCESS)

        result = runner.invoke(cli, ["run", "python", "-v", "script.py", "--json"])

        assert result.exit_code == EXIT_SUCCESS
        assert mock_loop.return_value.run.call_args[0][0] == "python -v script.py --json"
        assert mock_loop.call_args[0][0].logging.verbose is False

    def test_invalid_config(self, runner, log_dir, temp_dir):
        config_path = os.path.join(temp_dir, "bad.json")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("{not json")

        result = runner.invoke(cli, ["run", "--config", config_path, "--log-dir", log_dir, "echo hi"])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Configuration error" in result.output


class TestCheck:
    """Tests for the check command."""

    def test_blocked(self, runner):
        result = runner.invoke(cli, ["check", "rm -rf /"])

        assert result.exit_code == EXIT_REJECTED
        assert f"[critical] {DESTRUCTIVE_RULE}" in result.output

    def test_clean(self, runner):
        result = runner.invoke(cli, ["check", "ls -la"])

        assert result.exit_code == EXIT_SUCCESS
        assert "No policy violations." in result.output

    def test_command_flags_are_not_taken_as_options(self, runner):
        result = runner.invoke(cli, ["check", "ls", "-la", "--json"])

        assert result.exit_code == EXIT_SUCCESS
        assert "No policy violations." in result.output

    def test_compound_command_blocked(self, runner):
        result = runner.invoke(cli, ["check", "echo ok && rm -rf /"])

        assert result.exit_code == EXIT_REJECTED

    def test_json(self, runner):
        result = runner.invoke(cli, ["check", "--json", "curl https://example.com"])

        data = json.loads(result.output)
        assert data["blocked"] is False
        assert data["violations"][0]["severity"] == "warning"


class TestClassify:
    """Tests for the classify command."""

    def test_argument(self, runner):
        result = runner.invoke(cli, ["classify", "Error: Cannot find module 'lodash'"])

        assert result.exit_code == 0
        assert "Category:   dependency" in result.output
        assert "npm install lodash" in result.output

    def test_stdin(self, runner):
        result = runner.invoke(cli, ["classify"], input="zsh: command not found: tsx\n")

        assert "Category:   environment" in result.output
        assert "tsx" in result.output

    def test_json(self, runner):
        result = runner.invoke(cli, ["classify", "--json", "connect ECONNREFUSED 127.0.0.1:80"])

        assert json.loads(result.output)["category"] == "network"


class TestStats:
    """Tests for the stats command."""

    def test_stats_after_run(self, runner, log_dir):
        runner.invoke(cli, ["run", "--log-dir", log_dir, "rm -rf /"])

        result = runner.invoke(cli, ["stats", "--log-dir", log_dir, "--json"])

        data = json.loads(result.output)
        assert data["policy_rejections"] == 1
        assert data["total_runs"] == 0

    def test_empty_stats(self, runner, log_dir):
        result = runner.invoke(cli, ["stats", "--log-dir", log_dir])

        assert result.exit_code == 0
        assert "total_runs: 0" in result.output
