"""
console.py - Console/terminal reporting for wflint

This module formats lint results for terminal output, one line per
diagnostic in the familiar ``file:line:column: message [rule]`` shape.
"""

import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, TextIO

import click

from ..core import SEVERITY_LEVELS, Diagnostic, LintResult

COLORS = {
    "CRITICAL": "bright_red",
    "HIGH": "red",
    "MEDIUM": "yellow",
    "LOW": "blue",
}


def colorize(text: str, color: Optional[str] = None, bold: bool = False, enabled: bool = True) -> str:
    """
    Apply color to text if color output is enabled

    Args:
        text: Text to colorize
        color: Foreground color name understood by click
        bold: Whether to render the text in bold
        enabled: Whether color output is enabled at all

    Returns:
        Colorized text or original text if color is disabled
    """
    if not enabled or os.environ.get("NO_COLOR"):
        return text

    return click.style(text, fg=color, bold=bold)


def format_diagnostic(
    filename: str,
    diagnostic: Diagnostic,
    remediation: Optional[str] = None,
    color: bool = True,
) -> str:
    """
    Format a single diagnostic for console output

    Args:
        filename: File the diagnostic belongs to
        diagnostic: Diagnostic to format
        remediation: Remediation advice to print under the message
        color: Whether to colorize the output

    Returns:
        Formatted diagnostic as string
    """
    location = colorize(f"{filename}:{diagnostic.line}:{diagnostic.column}:", bold=True, enabled=color)
    severity = colorize(diagnostic.severity, COLORS.get(diagnostic.severity), enabled=color)
    rule = colorize(f"[{diagnostic.rule_id}]", "cyan", enabled=color)

    formatted = f"{location} {severity} {diagnostic.message} {rule}\n"
    if remediation:
        formatted += f"    Remediation: {remediation}\n"
    return formatted


def format_result(
    result: LintResult,
    remediations: Optional[Dict[str, str]] = None,
    color: bool = True,
) -> str:
    """
    Format all diagnostics of one file

    Args:
        result: Lint result of the file
        remediations: Remediation advice by rule ID, or None to omit it
        color: Whether to colorize the output

    Returns:
        Formatted result as string
    """
    remediations = remediations or {}
    return "".join(
        format_diagnostic(result.filename, d, remediations.get(d.rule_id), color)
        for d in result.diagnostics
    )


def format_summary(summary: Dict[str, Any], color: bool = True) -> str:
    """
    Format summary statistics

    Args:
        summary: Statistics dictionary
        color: Whether to colorize the output

    Returns:
        Formatted summary as string
    """
    total = summary.get("total_diagnostics", 0)
    files = summary.get("total_files", 0)
    if total == 0:
        return colorize(f"\nNo problems found in {files} file(s)\n", "green", enabled=color)

    output = f"\n{colorize('Lint Summary', bold=True, enabled=color)}\n"
    output += "=" * 50 + "\n"
    output += f"Files linted: {files}\n"
    output += f"Files with problems: {summary.get('failed_files', 0)}\n"
    output += f"Total problems: {total}\n"

    output += "\nProblems by severity:\n"
    for level in reversed(SEVERITY_LEVELS):
        count = summary.get("severity_counts", {}).get(level, 0)
        if count > 0:
            output += f"  {colorize(level, COLORS.get(level), enabled=color)}: {count}\n"

    if summary.get("rule_counts"):
        output += "\nProblems by rule:\n"
        for rule, count in sorted(summary["rule_counts"].items(), key=lambda x: (-x[1], x[0])):
            output += f"  {rule}: {count}\n"

    start_time = summary.get("start_time")
    end_time = summary.get("end_time")
    if start_time and end_time:
        try:
            duration = (datetime.fromisoformat(end_time) - datetime.fromisoformat(start_time)).total_seconds()
            output += f"\nLint duration: {duration:.2f} seconds\n"
        except (ValueError, TypeError):
            pass

    return output


def format_console_report(
    results: List[LintResult],
    summary: Dict[str, Any],
    remediations: Optional[Dict[str, str]] = None,
    show_summary: bool = True,
    color: bool = True,
) -> str:
    """
    Generate a complete console report

    Args:
        results: Lint results
        summary: Statistics dictionary
        remediations: Remediation advice by rule ID, or None to omit it
        show_summary: Whether to include summary statistics
        color: Whether to colorize the output

    Returns:
        Complete formatted report as string
    """
    output = "".join(format_result(result, remediations, color) for result in results)
    if show_summary:
        output += format_summary(summary, color)
    return output


def print_console_report(
    results: List[LintResult],
    summary: Dict[str, Any],
    remediations: Optional[Dict[str, str]] = None,
    show_summary: bool = True,
    color: bool = True,
    output_stream: Optional[TextIO] = None,
) -> None:
    """
    Print console report to output stream

    Args:
        results: Lint results
        summary: Statistics dictionary
        remediations: Remediation advice by rule ID, or None to omit it
        show_summary: Whether to include summary statistics
        color: Whether to colorize the output
        output_stream: Output stream to write to (defaults to sys.stdout)
    """
    report = format_console_report(results, summary, remediations, show_summary, color)

    if output_stream is None:
        output_stream = sys.stdout

    output_stream.write(report)
    output_stream.flush()
