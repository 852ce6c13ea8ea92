"""
json.py - JSON reporting for wflint

This module formats lint results as JSON. The plain report is the list of
per-file result records; the full report wraps it with version and
statistics for archiving.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core import LintResult
from ..utils.version import __version__


def generate_json_report(
    results: List[LintResult],
    stats: Optional[Dict[str, Any]] = None,
    include_stats: bool = False,
) -> str:
    """
    Generate a JSON report of lint results

    Args:
        results: Lint results, one per file
        stats: Statistics dictionary
        include_stats: Whether to wrap the results with version and statistics

    Returns:
        JSON string representation of the report
    """
    records = [result.to_dict() for result in results]
    if not include_stats:
        return json.dumps(records, indent=2)

    report: Dict[str, Any] = {
        "wflint_version": __version__,
        "generated_at": datetime.now().isoformat(),
        "results": records,
    }

    clean_stats: Dict[str, Any] = {}
    for key, value in (stats or {}).items():
        if isinstance(value, (str, int, float, bool, list, dict)) or value is None:
            clean_stats[key] = value
    report["stats"] = clean_stats

    return json.dumps(report, indent=2)


def save_json_report(
    results: List[LintResult],
    output_path: str,
    stats: Optional[Dict[str, Any]] = None,
    include_stats: bool = False,
) -> None:
    """
    Generate a JSON report and save it to a file

    Args:
        results: Lint results
        output_path: Path to save the report to
        stats: Statistics dictionary
        include_stats: Whether to include statistics in the output

    Raises:
        OSError: If the file cannot be written
    """
    report = generate_json_report(results, stats, include_stats)

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(report)
