"""
diagnostic.py - Diagnostic model for wflint

Parser problems, rule findings and internal faults all share the same
Diagnostic shape so that callers can handle them uniformly.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class Severity(Enum):
    """Enumeration of diagnostic severity levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_LEVELS = [level.value for level in Severity]

SYNTAX_RULE_ID = "syntax-check"
EXPRESSION_RULE_ID = "expression"
INTERNAL_ERROR_RULE_ID = "internal-error"
INTERNAL_ERROR_SUFFIX = ":internal-error"


@dataclass(frozen=True, order=True)
class Position:
    """1-based line/column location inside a workflow document"""

    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


@dataclass
class Diagnostic:
    """A single parse problem, rule finding or internal fault"""

    line: int
    column: int
    message: str
    rule_id: str
    severity: Union[str, Severity] = Severity.MEDIUM

    def __post_init__(self) -> None:
        """Validate severity level"""
        if isinstance(self.severity, Severity):
            self.severity = self.severity.value
        if self.severity not in SEVERITY_LEVELS:
            raise ValueError(f"Invalid severity level: {self.severity}")

    @classmethod
    def at(
        cls,
        pos: Optional[Position],
        message: str,
        rule_id: str,
        severity: Union[str, Severity] = Severity.MEDIUM,
    ) -> "Diagnostic":
        """Build a diagnostic from a Position (missing positions map to 1:1)"""
        if pos is None:
            pos = Position(1, 1)
        return cls(
            line=pos.line, column=pos.column, message=message, rule_id=rule_id, severity=severity
        )

    @property
    def position(self) -> Position:
        return Position(self.line, self.column)

    @property
    def is_internal(self) -> bool:
        return self.rule_id == INTERNAL_ERROR_RULE_ID or self.rule_id.endswith(
            INTERNAL_ERROR_SUFFIX
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation of the diagnostic"""
        return {
            "line": self.line,
            "column": self.column,
            "message": self.message,
            "rule": self.rule_id,
        }

    def __str__(self) -> str:
        return f"{self.line}:{self.column}: {self.message} [{self.rule_id}]"


def sort_diagnostics(diagnostics: List[Diagnostic]) -> List[Diagnostic]:
    """
    Order diagnostics by position

    The sort is stable, so diagnostics at the same position keep the order
    in which they were produced (parser first, then rules in registration order).

    Args:
        diagnostics: Diagnostics in production order

    Returns:
        New list sorted by (line, column)
    """
    return sorted(diagnostics, key=lambda d: (d.line, d.column))


@dataclass
class LintResult:
    """Outcome of linting a single document"""

    filename: str
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.diagnostics

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the serialized result record

        Returns:
            Dictionary with the stable ``filename``/``success``/``errors`` keys
        """
        return {
            "filename": self.filename,
            "success": self.success,
            "errors": [d.to_dict() for d in self.diagnostics],
        }

    def to_json(self, **kwargs: Any) -> str:
        """Serialize to JSON"""
        return json.dumps(self.to_dict(), **kwargs)
