"""
base.py - Base class for workflow lint rules

This module provides the foundation for implementing rules in wflint.
Rules are visitors: the engine walks the workflow once and calls the hooks a
rule overrides, and the rule accumulates diagnostics that the engine collects
at the end of the traversal.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterator, List, Optional, Tuple, Union

from ..core.ast import EmbeddedExpression, Env, Job, Step, String, Workflow
from ..core.diagnostic import Diagnostic, Position, Severity
from ..core.policy import LintPolicy

HOOKS = (
    "visit_workflow_pre",
    "visit_job_pre",
    "visit_step",
    "visit_job_post",
    "visit_workflow_post",
)


class Capability(Enum):
    """Host facilities a rule may need beyond the parsed workflow"""

    NETWORK = "network"
    FILESYSTEM = "filesystem"


@dataclass
class TraversalContext:
    """Nodes enclosing the one currently being visited"""

    workflow: Workflow
    job: Optional[Job] = None
    step: Optional[Step] = None
    # Path of the workflow file when it was read from disk
    filename: Optional[str] = None


class Rule:
    """Base class for all wflint rules"""

    requires: FrozenSet[Capability] = frozenset()

    def __init__(
        self,
        rule_id: str,
        severity: Union[str, Severity],
        description: str,
        remediation: str,
        category: str = "security",
        policy: Optional[LintPolicy] = None,
    ):
        """
        Initialize a rule

        Args:
            rule_id: Unique identifier for the rule, used as the diagnostic tag
            severity: Severity level (CRITICAL, HIGH, MEDIUM, LOW)
            description: Human-readable description of the rule
            remediation: Generic remediation advice for this rule
            category: Category of the rule (security, best-practice, etc.)
            policy: Analysis policy of the current lint call
        """
        self.rule_id = rule_id
        self.severity = severity.value if isinstance(severity, Severity) else severity
        self.description = description
        self.remediation = remediation
        self.category = category
        self.policy = policy or LintPolicy()
        self.enabled = True
        self.context: Optional[TraversalContext] = None
        self._diagnostics: List[Diagnostic] = []

    # Visit hooks. The engine only calls the ones a subclass overrides.

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        pass

    def visit_job_pre(self, job: Job) -> None:
        pass

    def visit_step(self, step: Step) -> None:
        pass

    def visit_job_post(self, job: Job) -> None:
        pass

    def visit_workflow_post(self, workflow: Workflow) -> None:
        pass

    @classmethod
    def handles(cls, hook: str) -> bool:
        """True if this rule class overrides the given visit hook"""
        if hook not in HOOKS:
            return False
        return getattr(cls, hook) is not getattr(Rule, hook)

    def error(
        self,
        pos: Optional[Position],
        message: str,
        severity: Optional[Union[str, Severity]] = None,
    ) -> None:
        """
        Record a diagnostic for this rule

        Args:
            pos: Position of the offending node
            message: Message describing the issue
            severity: Overrides the rule's default severity
        """
        self._diagnostics.append(
            Diagnostic.at(pos, message, self.rule_id, severity or self.severity)
        )

    def errors(self) -> List[Diagnostic]:
        """Diagnostics recorded so far, in the order they were found"""
        return list(self._diagnostics)

    @property
    def workflow(self) -> Optional[Workflow]:
        return self.context.workflow if self.context else None

    @property
    def job(self) -> Optional[Job]:
        return self.context.job if self.context else None

    @property
    def filename(self) -> Optional[str]:
        return self.context.filename if self.context else None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.rule_id}>"


def step_strings(step: Step) -> Iterator[Tuple[str, String]]:
    """Yield (label, value) for every string of a step that may embed expressions"""
    run = step.run
    if run is not None:
        yield "run", run
    action = step.action
    if action is not None:
        for name, item in action.inputs.items():
            yield f"with.{name}", item.value
    if step.env is not None:
        for name, var in step.env.vars.items():
            yield f"env.{name}", var.value
    if step.if_cond is not None:
        yield "if", step.if_cond


def env_strings(env: Optional[Env]) -> Iterator[Tuple[str, String]]:
    if env is None:
        return
    for name, var in env.vars.items():
        yield name, var.value


def expressions_of(value: Optional[String]) -> List[EmbeddedExpression]:
    return list(value.expressions) if value is not None else []
