"""
reports package for wflint

This package presents lint results as JSON or as console output.
"""

from .console import (
    format_console_report,
    format_diagnostic,
    format_result,
    format_summary,
    print_console_report,
)
from .json import generate_json_report, save_json_report

__all__ = [
    "format_console_report",
    "format_diagnostic",
    "format_result",
    "format_summary",
    "print_console_report",
    "generate_json_report",
    "save_json_report",
]
