"""
wflint - static analysis for GitHub Actions workflows

Parses workflow files into a position-annotated tree and runs a set of
structural and security rules over it in a single traversal.
"""

from .core import (
    SEVERITY_LEVELS,
    ConfigurationError,
    Diagnostic,
    LintPolicy,
    LintResult,
    Position,
    Severity,
    generate_default_config,
    lint,
    lint_file,
    lint_repository,
    load_config,
    parse,
)
from .reports import generate_json_report, print_console_report
from .rules import Capability, Rule, RuleEngine, create_rule_engine, list_rules, select_rules
from .utils.version import __version__, get_version, get_version_info

__all__ = [
    "__version__",
    "get_version",
    "get_version_info",
    "SEVERITY_LEVELS",
    "ConfigurationError",
    "Diagnostic",
    "LintPolicy",
    "LintResult",
    "Position",
    "Severity",
    "generate_default_config",
    "lint",
    "lint_file",
    "lint_repository",
    "load_config",
    "parse",
    "generate_json_report",
    "print_console_report",
    "Capability",
    "Rule",
    "RuleEngine",
    "create_rule_engine",
    "list_rules",
    "select_rules",
]
