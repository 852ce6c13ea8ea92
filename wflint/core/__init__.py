"""
core package for wflint

This package contains the workflow model, the parsers and the lint entry points.
"""

from .diagnostic import (
    SEVERITY_LEVELS,
    Diagnostic,
    LintResult,
    Position,
    Severity,
    sort_diagnostics,
)
from .config import (
    ConfigurationError,
    DEFAULT_CONFIG,
    RULE_IDS,
    disable_rules,
    generate_default_config,
    load_config,
)
from .expressions import ExpressionError, extract_expressions, parse_expression
from .parser import parse
from .policy import LintPolicy
from .linter import lint, lint_file, lint_repository, summarize

__all__ = [
    "SEVERITY_LEVELS",
    "Diagnostic",
    "LintResult",
    "Position",
    "Severity",
    "sort_diagnostics",
    "ConfigurationError",
    "DEFAULT_CONFIG",
    "RULE_IDS",
    "disable_rules",
    "generate_default_config",
    "load_config",
    "ExpressionError",
    "extract_expressions",
    "parse_expression",
    "parse",
    "LintPolicy",
    "lint",
    "lint_file",
    "lint_repository",
    "summarize",
]
