"""
test_cli.py - Tests for the command-line interface
"""

import json
import os

import pytest
import yaml
from click.testing import CliRunner

from wflint.cli import cli
from wflint.core import RULE_IDS
from wflint.utils.version import __version__


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def isolated(temp_dir, monkeypatch):
    """Run without picking up a config file from the working or home directory."""
    monkeypatch.chdir(temp_dir)
    monkeypatch.setenv("HOME", temp_dir)
    return temp_dir


@pytest.fixture
def clean_file(isolated, clean_workflow_content):
    path = os.path.join(isolated, "clean.yml")
    with open(path, "w") as f:
        f.write(clean_workflow_content)
    return path


@pytest.fixture
def injection_file(isolated, injection_workflow_content):
    path = os.path.join(isolated, "triage.yml")
    with open(path, "w") as f:
        f.write(injection_workflow_content)
    return path


def test_cli_version(cli_runner):
    """Test getting the version with --version."""
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_help(cli_runner):
    """Test getting help with --help."""
    result = cli_runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "wflint - static analysis" in result.output
    for command in ("lint", "config", "rules"):
        assert command in result.output


def test_cli_lint_help(cli_runner):
    result = cli_runner.invoke(cli, ["lint", "--help"])
    assert result.exit_code == 0
    assert "Lint workflow files" in result.output


def test_cli_lint_clean_file(cli_runner, clean_file):
    result = cli_runner.invoke(cli, ["lint", clean_file])
    assert result.exit_code == 0
    assert "No problems found in 1 file(s)" in result.output


def test_cli_lint_findings(cli_runner, injection_file):
    """Test that findings are printed and change the exit code."""
    result = cli_runner.invoke(cli, ["lint", "--no-color", injection_file])
    assert result.exit_code == 1
    assert f"{injection_file}:9:9: CRITICAL" in result.output
    assert "[code-injection-critical]" in result.output
    assert "Remediation:" in result.output
    assert "Lint Summary" in result.output


def test_cli_lint_repository(cli_runner, workflow_repo, monkeypatch):
    monkeypatch.setenv("HOME", workflow_repo)
    monkeypatch.chdir(workflow_repo)
    result = cli_runner.invoke(cli, ["lint", "--no-color"])
    assert result.exit_code == 1
    assert "triage.yaml:9:9:" in result.output
    assert "Files linted: 2" in result.output


def test_cli_lint_nonexistent_path(cli_runner, isolated):
    result = cli_runner.invoke(cli, ["lint", os.path.join(isolated, "missing.yml")])
    assert result.exit_code == 2
    assert "Error:" in result.output
    assert "does not exist" in result.output


def test_cli_lint_no_workflow_files(cli_runner, isolated):
    empty = os.path.join(isolated, "empty")
    os.mkdir(empty)
    result = cli_runner.invoke(cli, ["lint", empty])
    assert result.exit_code == 2
    assert "no workflow files found" in result.output


def test_cli_lint_json(cli_runner, injection_file):
    result = cli_runner.invoke(cli, ["lint", "--format", "json", injection_file])
    assert result.exit_code == 1
    data = json.loads(result.output)
    assert len(data) == 1
    assert data[0]["filename"] == injection_file
    assert data[0]["success"] is False
    assert "code-injection-critical" in [error["rule"] for error in data[0]["errors"]]


def test_cli_lint_json_clean(cli_runner, clean_file):
    result = cli_runner.invoke(cli, ["lint", "--format", "json", clean_file])
    assert result.exit_code == 0
    assert json.loads(result.output) == [{"filename": clean_file, "success": True, "errors": []}]


def test_cli_lint_disable(cli_runner, injection_file):
    result = cli_runner.invoke(
        cli, ["lint", "--format", "json", "--disable", "code-injection-critical", injection_file]
    )
    rules = [error["rule"] for error in json.loads(result.output)[0]["errors"]]
    assert "code-injection-critical" not in rules


def test_cli_lint_only(cli_runner, injection_file):
    result = cli_runner.invoke(cli, ["lint", "--format", "json", "--only", "job-needs", injection_file])
    assert result.exit_code == 0
    assert json.loads(result.output)[0]["errors"] == []


def test_cli_lint_unknown_rule(cli_runner, injection_file):
    result = cli_runner.invoke(cli, ["lint", "--only", "nope", injection_file])
    assert result.exit_code == 2
    assert "Unknown rule(s): nope" in result.output

    result = cli_runner.invoke(cli, ["lint", "--disable", "nope", injection_file])
    assert result.exit_code == 2


def test_cli_lint_output_file(cli_runner, injection_file, isolated):
    output = os.path.join(isolated, "report.txt")
    result = cli_runner.invoke(cli, ["lint", "--output-file", output, injection_file])
    assert result.exit_code == 1
    assert f"Results written to {output}" in result.output
    with open(output) as f:
        text = f.read()
    assert "[code-injection-critical]" in text
    assert "\x1b[" not in text


def test_cli_lint_with_config(cli_runner, injection_file, isolated):
    path = os.path.join(isolated, "custom.yml")
    with open(path, "w") as f:
        yaml.dump({"report": {"summary": False, "include_remediation": False}}, f)
    result = cli_runner.invoke(cli, ["lint", "--no-color", "--config", path, injection_file])
    assert result.exit_code == 1
    assert "Lint Summary" not in result.output
    assert "Remediation:" not in result.output


def test_cli_rules(cli_runner):
    """Test listing rules."""
    result = cli_runner.invoke(cli, ["rules"])
    assert result.exit_code == 0
    assert result.output.startswith("wflint supports the following rules:")
    assert "SECURITY:" in result.output
    assert " - job-needs:" in result.output


def test_cli_rules_json(cli_runner):
    result = cli_runner.invoke(cli, ["rules", "--format", "json"])
    assert result.exit_code == 0
    assert [rule["id"] for rule in json.loads(result.output)] == RULE_IDS


def test_cli_config(cli_runner, isolated):
    result = cli_runner.invoke(cli, ["config"])
    assert result.exit_code == 0
    assert "Config loaded and valid." in result.output
    assert " - commit-sha: enabled [" in result.output


def test_cli_config_file(cli_runner, isolated):
    path = os.path.join(isolated, "wflint.yml")
    with open(path, "w") as f:
        yaml.dump({"commit-sha": False, "severity_thresholds": {"job-needs": "critical"}}, f)
    result = cli_runner.invoke(cli, ["config", "--config", path])
    assert result.exit_code == 0
    assert " - commit-sha: disabled" in result.output
    assert " - job-needs: enabled [CRITICAL]" in result.output


def test_cli_config_invalid(cli_runner, isolated):
    path = os.path.join(isolated, "bad.yml")
    with open(path, "w") as f:
        f.write("no-such-option: true\n")
    result = cli_runner.invoke(cli, ["config", "--config", path])
    assert result.exit_code == 2
    assert "Config validation failed" in result.output


def test_cli_config_generate(cli_runner, isolated):
    result = cli_runner.invoke(cli, ["config", "--generate"])
    assert result.exit_code == 0
    assert yaml.safe_load(result.output)["code-injection-critical"] is True

    output = os.path.join(isolated, "generated.yml")
    result = cli_runner.invoke(cli, ["config", "--generate", "--output", output])
    assert result.exit_code == 0
    assert f"Default config written to {output}" in result.output
    assert os.path.exists(output)
