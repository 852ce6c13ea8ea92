"""
conftest.py - Pytest fixtures for wflint tests
"""

import tempfile
from pathlib import Path

import pytest

from wflint.core import lint, parse


@pytest.fixture
def temp_dir():
    """Create a temporary directory that is removed after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clean_workflow_content():
    """Workflow that no rule reports anything for."""
    return """name: CI
on: push
permissions:
  contents: read
jobs:
  build:
    runs-on: ubuntu-latest
    timeout-minutes: 10
    steps:
      - run: echo hello
      - name: Test
        run: echo testing
"""


@pytest.fixture
def injection_workflow_content():
    """Workflow interpolating an issue body into a script."""
    return """on: issues
permissions:
  contents: read
jobs:
  triage:
    runs-on: ubuntu-latest
    timeout-minutes: 5
    steps:
      - run: echo "${{ github.event.issue.body }}"
"""


@pytest.fixture
def insecure_workflow_content():
    """Workflow with a number of security issues."""
    return """name: Insecure Workflow

on:
  pull_request_target:
    branches: [ main ]

jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v4
        with:
          ref: ${{ github.event.pull_request.head.ref }}
      - name: Run command
        run: |
          echo "Running with input ${{ github.event.pull_request.title }}"
      - name: Set environment variable
        run: echo "MY_VAR=${{ github.event.pull_request.body }}" >> $GITHUB_ENV
"""


@pytest.fixture
def parse_workflow():
    """Parse workflow text, asserting that a tree was produced."""

    def _parse(content):
        workflow, diagnostics = parse(content)
        assert workflow is not None, diagnostics
        return workflow, diagnostics

    return _parse


@pytest.fixture
def diagnostics_for():
    """Lint workflow text and return the diagnostics of one rule."""

    def _diagnostics_for(content, rule_id, **kwargs):
        result = lint(content, "workflow.yml", **kwargs)
        return [d for d in result.diagnostics if d.rule_id == rule_id]

    return _diagnostics_for


@pytest.fixture
def workflow_repo(temp_dir, clean_workflow_content, injection_workflow_content):
    """Repository with one clean and one vulnerable workflow."""
    workflows_dir = Path(temp_dir) / ".github" / "workflows"
    workflows_dir.mkdir(parents=True, exist_ok=True)
    (workflows_dir / "clean.yml").write_text(clean_workflow_content)
    (workflows_dir / "triage.yaml").write_text(injection_workflow_content)
    return temp_dir


@pytest.fixture
def clean_repo(temp_dir, clean_workflow_content):
    """Repository whose only workflow is clean."""
    workflows_dir = Path(temp_dir) / ".github" / "workflows"
    workflows_dir.mkdir(parents=True, exist_ok=True)
    (workflows_dir / "ci.yml").write_text(clean_workflow_content)
    return temp_dir
