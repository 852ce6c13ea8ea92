"""
linter.py - Lint entry points for wflint

This module ties the parser and the rule engine together. ``lint`` is the
boundary of the core: whatever happens inside, the caller gets a LintResult
back.
"""

import copy
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..rules.engine import DispatchError, create_rule_engine
from ..utils.yaml_handler import find_github_workflow_files
from .config import validate_config
from .diagnostic import (
    INTERNAL_ERROR_RULE_ID,
    SEVERITY_LEVELS,
    Diagnostic,
    LintResult,
    Position,
    Severity,
    sort_diagnostics,
)
from .errors import ConfigurationError
from .parser import parse
from .policy import LintPolicy

logger = logging.getLogger(__name__)


def _internal_error(message: str) -> Diagnostic:
    return Diagnostic.at(Position(1, 1), message, INTERNAL_ERROR_RULE_ID, Severity.LOW)


def _finish(filename: str, diagnostics: List[Diagnostic]) -> LintResult:
    result = LintResult(filename=filename, diagnostics=sort_diagnostics(diagnostics))
    logger.info("%s: %d diagnostic(s)", filename, len(result.diagnostics))
    return result


def lint(
    text: Union[str, bytes],
    filename: str = "<input>",
    rule_selection: Optional[Iterable[Any]] = None,
    config: Optional[Dict[str, Any]] = None,
    capabilities: Iterable[Any] = (),
) -> LintResult:
    """
    Lint a single workflow document

    Args:
        text: Workflow document as text or UTF-8 bytes
        filename: Name reported back in the result
        rule_selection: Rule IDs or Rule instances to run, or None for all
        config: Configuration dictionary (rule switches, severities, policy)
        capabilities: Capabilities the host offers, e.g. Capability.NETWORK

    Returns:
        LintResult whose diagnostics are sorted by (line, column)
    """
    diagnostics: List[Diagnostic] = []
    try:
        workflow, diagnostics = parse(text)
        if workflow is not None:
            if config is not None:
                config = copy.deepcopy(config)
                try:
                    validate_config(config)
                except ConfigurationError as e:
                    logger.error("invalid configuration for %s: %s", filename, e)
                    return _finish(filename, diagnostics + [_internal_error(f"invalid configuration: {e}")])
            policy = LintPolicy.from_config(config)
            engine = create_rule_engine(config, rule_selection, capabilities, policy)
            diagnostics = diagnostics + engine.run(workflow, filename)
    except ConfigurationError as e:
        logger.error("invalid rule selection for %s: %s", filename, e)
        diagnostics = diagnostics + [_internal_error(f"invalid rule selection: {e}")]
    except DispatchError as e:
        logger.error("rule dispatch failed for %s: %s", filename, e)
        diagnostics = diagnostics + [_internal_error(str(e))]
    except Exception as e:
        logger.exception("unexpected failure while linting %s", filename)
        diagnostics = diagnostics + [
            _internal_error(f"unexpected failure while linting: {type(e).__name__}: {e}")
        ]

    return _finish(filename, diagnostics)


def lint_file(
    path: Union[str, Path],
    rule_selection: Optional[Iterable[Any]] = None,
    config: Optional[Dict[str, Any]] = None,
    capabilities: Iterable[Any] = (),
) -> LintResult:
    """
    Read and lint a workflow file

    Args:
        path: Path to the workflow file
        rule_selection: Rule IDs to run, or None for all
        config: Configuration dictionary
        capabilities: Capabilities the host offers

    Returns:
        LintResult for the file

    Raises:
        OSError: If the file cannot be read
    """
    path = Path(path)
    logger.debug("linting %s", path)
    return lint(path.read_bytes(), str(path), rule_selection, config, capabilities)


def lint_repository(
    repo_path: str,
    rule_selection: Optional[Iterable[Any]] = None,
    config: Optional[Dict[str, Any]] = None,
    capabilities: Iterable[Any] = (),
) -> Tuple[List[LintResult], Dict[str, Any]]:
    """
    Lint every workflow under a repository's .github/workflows directory

    Args:
        repo_path: Path to the repository
        rule_selection: Rule IDs to run, or None for all
        config: Configuration dictionary
        capabilities: Capabilities the host offers

    Returns:
        Tuple of (results, stats)
    """
    start_time = datetime.now().isoformat()
    results = [
        lint_file(workflow_file, rule_selection, config, capabilities)
        for workflow_file in find_github_workflow_files(repo_path)
    ]

    stats: Dict[str, Any] = {"start_time": start_time, "repo_path": repo_path}
    stats.update(summarize(results))
    stats["end_time"] = datetime.now().isoformat()
    return results, stats


def summarize(results: List[LintResult]) -> Dict[str, Any]:
    """
    Count diagnostics across results

    Args:
        results: Lint results

    Returns:
        Dictionary with file, diagnostic, severity and rule counts
    """
    summary: Dict[str, Any] = {
        "total_files": len(results),
        "failed_files": sum(1 for r in results if not r.success),
        "total_diagnostics": 0,
        "severity_counts": {level: 0 for level in SEVERITY_LEVELS},
        "rule_counts": {},
    }
    for result in results:
        for diagnostic in result.diagnostics:
            summary["total_diagnostics"] += 1
            summary["severity_counts"][diagnostic.severity] += 1
            summary["rule_counts"][diagnostic.rule_id] = summary["rule_counts"].get(diagnostic.rule_id, 0) + 1
    return summary
