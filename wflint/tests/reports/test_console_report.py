"""
test_console_report.py - Tests for console output formatting
"""

import io
import os
from unittest.mock import patch

import click
import pytest

from wflint.core import Diagnostic, LintResult, summarize
from wflint.reports.console import (
    colorize,
    format_console_report,
    format_diagnostic,
    format_result,
    format_summary,
    print_console_report,
)


@pytest.fixture
def results():
    return [
        LintResult(
            "ci.yml",
            [
                Diagnostic(3, 3, "job 'build' has no timeout", "missing-timeout-minutes", "LOW"),
                Diagnostic(9, 9, "untrusted input", "code-injection-critical", "CRITICAL"),
            ],
        ),
        LintResult("clean.yml"),
    ]


def test_colorize():
    """Test colorizing text."""
    with patch.dict(os.environ, {"NO_COLOR": ""}):
        colored = colorize("Test", "red")
        assert colored == click.style("Test", fg="red")
        assert colored != "Test"
        assert colorize("Test", "red", enabled=False) == "Test"

    with patch.dict(os.environ, {"NO_COLOR": "1"}):
        assert colorize("Test", "red") == "Test"


def test_format_diagnostic():
    """Test formatting a single diagnostic."""
    diagnostic = Diagnostic(9, 9, "untrusted input", "code-injection-critical", "CRITICAL")

    assert (
        format_diagnostic("ci.yml", diagnostic, color=False)
        == "ci.yml:9:9: CRITICAL untrusted input [code-injection-critical]\n"
    )

    formatted = format_diagnostic("ci.yml", diagnostic, "Pass it through env", color=False)
    assert formatted.endswith("    Remediation: Pass it through env\n")


def test_format_result(results):
    remediations = {"missing-timeout-minutes": "Set timeout-minutes"}
    formatted = format_result(results[0], remediations, color=False)
    lines = formatted.splitlines()
    assert lines[0].startswith("ci.yml:3:3: LOW")
    assert lines[1] == "    Remediation: Set timeout-minutes"
    assert lines[2].startswith("ci.yml:9:9: CRITICAL")
    assert format_result(results[1], color=False) == ""


def test_format_summary_without_problems():
    summary = summarize([LintResult("a.yml"), LintResult("b.yml")])
    assert format_summary(summary, color=False) == "\nNo problems found in 2 file(s)\n"


def test_format_summary(results):
    summary = summarize(results)
    summary["start_time"] = "2026-01-01T10:00:00"
    summary["end_time"] = "2026-01-01T10:00:01.500000"

    formatted = format_summary(summary, color=False)

    assert "Lint Summary" in formatted
    assert "Files linted: 2" in formatted
    assert "Files with problems: 1" in formatted
    assert "Total problems: 2" in formatted
    assert "  CRITICAL: 1" in formatted
    assert "  MEDIUM" not in formatted
    assert formatted.index("CRITICAL: 1") < formatted.index("LOW: 1")
    assert "  code-injection-critical: 1" in formatted
    assert "Lint duration: 1.50 seconds" in formatted


def test_format_console_report(results):
    summary = summarize(results)
    report = format_console_report(results, summary, color=False)
    assert report.startswith("ci.yml:3:3:")
    assert "Lint Summary" in report
    assert "Remediation" not in report

    assert "Lint Summary" not in format_console_report(results, summary, show_summary=False, color=False)


def test_print_console_report(results):
    """Test printing the report to a stream."""
    stream = io.StringIO()
    print_console_report(results, summarize(results), color=False, output_stream=stream)
    output = stream.getvalue()
    assert "ci.yml:9:9: CRITICAL untrusted input [code-injection-critical]" in output
    assert "Total problems: 2" in output
