"""
test_json_report.py - Tests for JSON reporting functionality
"""

import json
import os

import pytest

from wflint.core import Diagnostic, LintResult, summarize
from wflint.reports.json import generate_json_report, save_json_report
from wflint.utils.version import __version__


@pytest.fixture
def results():
    return [
        LintResult("clean.yml"),
        LintResult(
            "triage.yml",
            [
                Diagnostic(9, 9, "untrusted input", "code-injection-critical", "CRITICAL"),
                Diagnostic(3, 3, "no timeout", "missing-timeout-minutes", "LOW"),
            ],
        ),
    ]


def test_generate_json_report(results):
    """Test that the plain report is the list of result records."""
    data = json.loads(generate_json_report(results))

    assert isinstance(data, list)
    assert data[0] == {"filename": "clean.yml", "success": True, "errors": []}
    assert data[1]["success"] is False
    assert data[1]["errors"][0] == {
        "line": 9,
        "column": 9,
        "message": "untrusted input",
        "rule": "code-injection-critical",
    }


def test_generate_json_report_with_stats(results):
    """Test that the full report wraps results with version and statistics."""
    stats = summarize(results)
    stats["not_serializable"] = object()

    data = json.loads(generate_json_report(results, stats, include_stats=True))

    assert data["wflint_version"] == __version__
    assert "generated_at" in data
    assert len(data["results"]) == 2
    assert data["stats"]["total_files"] == 2
    assert data["stats"]["total_diagnostics"] == 2
    assert data["stats"]["severity_counts"]["CRITICAL"] == 1
    assert "not_serializable" not in data["stats"]


def test_generate_json_report_empty():
    assert json.loads(generate_json_report([])) == []
    assert json.loads(generate_json_report([], include_stats=True))["stats"] == {}


def test_save_json_report(results, temp_dir):
    """Test saving a JSON report to a file."""
    path = os.path.join(temp_dir, "report.json")

    save_json_report(results, path)
    with open(path) as f:
        assert len(json.load(f)) == 2

    save_json_report(results, path, summarize(results), include_stats=True)
    with open(path) as f:
        data = json.load(f)
    assert "results" in data
    assert "stats" in data


def test_save_json_report_bad_path(results, temp_dir):
    with pytest.raises(OSError):
        save_json_report(results, os.path.join(temp_dir, "missing", "report.json"))
