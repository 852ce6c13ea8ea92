"""
injection.py - Script and environment injection rules

Untrusted event data interpolated with ${{ }} is pasted into scripts before
the shell ever sees it. These rules report such interpolations into run
scripts, into $GITHUB_ENV and into $GITHUB_PATH. Each sink has a critical
rule for direct interpolation and a medium rule for values that arrive
through a hand-off (a tainted env var, a tainted step output or a tainted
shell variable). Untrusted input handed to a reusable workflow is reported
at the calling job.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, NamedTuple, Optional, Tuple

from ..core.analysis import (
    GITHUB_ENV,
    GITHUB_PATH,
    GITHUB_SCRIPT_ACTION,
    JobTriggerAnalyzer,
    TaintTracker,
    file_write_ranges,
    in_ranges,
    shell_variables,
    tainted_env,
    untrusted_in_string,
)
from ..core.ast import EmbeddedExpression, Job, Step, Workflow
from ..core.diagnostic import Position
from ..core.policy import LintPolicy
from .base import Rule

logger = logging.getLogger(__name__)

CRITICAL = "critical"
MEDIUM = "medium"

EVAL_PATTERN = re.compile(r"(?:^|[\s;&|(])(?:eval|(?:ba|z)?sh\s+-c|source|\.)\s")

class Finding(NamedTuple):
    tier: str
    message: str
    # Defaults to the position of the step
    pos: Optional[Position] = None


class InjectionRule(Rule, ABC):
    """Common machinery of the injection rules"""

    tier = CRITICAL

    def __init__(
        self,
        rule_id: str,
        severity: str,
        description: str,
        remediation: str,
        policy: Optional[LintPolicy] = None,
    ):
        super().__init__(
            rule_id=rule_id,
            severity=severity,
            description=description,
            remediation=remediation,
            category="security",
            policy=policy,
        )
        self.tracker = TaintTracker(self.policy.untrusted, self.policy.sanitizers)
        self.analyzer = JobTriggerAnalyzer([])
        self.job_privileged = False

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self.analyzer = JobTriggerAnalyzer(workflow.event_names())

    def visit_job_pre(self, job: Job) -> None:
        self.tracker.reset()
        self.job_privileged = self.analyzer.has_privileged_trigger(job)
        logger.debug("%s: job %s privileged=%s", self.rule_id, job.id.value, self.job_privileged)

    def visit_step(self, step: Step) -> None:
        workflow, job = self.workflow, self.job
        env_taint = tainted_env(
            [workflow.env if workflow else None, job.env if job else None, step.env],
            self.policy.untrusted,
            self.policy.sanitizers,
        )
        for finding in self.findings(step, env_taint):
            if finding.tier == self.tier:
                self.error(finding.pos or step.pos, finding.message)
        self.tracker.analyze_step(step, env_taint)

    @abstractmethod
    def findings(self, step: Step, env_taint: Dict[str, List[str]]) -> List[Finding]:
        """Return the findings of every tier for one step"""
        pass

    def classify(
        self, expr: EmbeddedExpression, env_taint: Dict[str, List[str]]
    ) -> Optional[Tuple[str, List[str], bool]]:
        """
        Decide the tier of an interpolated expression

        Returns:
            (tier, untrusted paths, direct) or None when the value is trusted
        """
        direct = self.policy.untrusted.find_untrusted(expr.node, self.policy.sanitizers)
        if direct:
            demote = self.policy.critical_requires_privileged_trigger and not self.job_privileged
            return (MEDIUM if demote else CRITICAL), direct, True
        indirect = self.tracker.indirect_sources(expr.node, env_taint)
        if indirect:
            return MEDIUM, indirect, False
        return None


def _quoted(paths: List[str]) -> str:
    return ", ".join(f'"{p}"' for p in paths)


class CodeInjectionRule(InjectionRule):
    """Untrusted input interpolated into scripts"""

    def findings(self, step: Step, env_taint: Dict[str, List[str]]) -> List[Finding]:
        found: List[Finding] = []
        sinks = []
        if step.run is not None:
            sinks.append(("script", step.run))
        action = step.action
        if action is not None and action.action_name == GITHUB_SCRIPT_ACTION:
            script = action.input_value("script")
            if script is not None:
                sinks.append(("'script' input", script))

        for label, value in sinks:
            for expr in value.expressions:
                result = self.classify(expr, env_taint)
                if result is None:
                    continue
                tier, paths, direct = result
                if direct:
                    message = (
                        f"{_quoted(paths)} is potentially untrusted and is interpolated directly into "
                        f"the {label} of {step.describe()}; pass it through an environment variable"
                    )
                else:
                    message = (
                        f"'${{{{ {expr.source} }}}}' carries untrusted input ({_quoted(paths)}) into "
                        f"the {label} of {step.describe()}; pass it through an environment variable"
                    )
                found.append(Finding(tier, message))

        run = step.run
        if run is not None and env_taint:
            shell_taint = {name.upper(): sources for name, sources in env_taint.items()}
            for line in run.value.splitlines():
                if not EVAL_PATTERN.search(line):
                    continue
                for var in shell_variables(line):
                    sources = shell_taint.get(var.upper())
                    if sources:
                        found.append(
                            Finding(
                                MEDIUM,
                                f"${var} holds untrusted input ({_quoted(sources)}) and is executed "
                                f"as code in {step.describe()}",
                            )
                        )
        return found


class CodeInjectionCriticalRule(CodeInjectionRule):
    """Rule for untrusted input interpolated straight into scripts"""

    tier = CRITICAL

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="code-injection-critical",
            severity="CRITICAL",
            description="Untrusted input must not be interpolated into run scripts",
            remediation="Assign the expression to an env variable and reference it as \"$VAR\" in the script",
            policy=policy,
        )


class CodeInjectionMediumRule(CodeInjectionRule):
    """Rule for untrusted input reaching scripts through a hand-off"""

    tier = MEDIUM

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="code-injection-medium",
            severity="MEDIUM",
            description="Values derived from untrusted input must not be interpolated or evaluated in scripts",
            remediation="Reference tainted values as quoted shell variables and never eval them",
            policy=policy,
        )


class RunnerFileInjectionRule(InjectionRule):
    """Untrusted input written into a runner file such as $GITHUB_ENV"""

    target = GITHUB_ENV
    effect = "defines environment variables for all following steps"

    def findings(self, step: Step, env_taint: Dict[str, List[str]]) -> List[Finding]:
        found: List[Finding] = []
        run = step.run
        if run is None:
            return found
        ranges = file_write_ranges(run.value, self.target)
        if not ranges:
            return found

        for expr in run.expressions:
            if not in_ranges(expr.offset, ranges):
                continue
            result = self.classify(expr, env_taint)
            if result is None:
                continue
            tier, paths, _ = result
            found.append(
                Finding(
                    tier,
                    f"{_quoted(paths)} is potentially untrusted and is written to ${self.target} in "
                    f"{step.describe()}, which {self.effect}",
                )
            )

        shell_taint = {name.upper(): sources for name, sources in env_taint.items()}
        for start, end in ranges:
            for var in shell_variables(run.value[start:end]):
                sources = shell_taint.get(var.upper())
                if sources:
                    found.append(
                        Finding(
                            MEDIUM,
                            f"${var} holds untrusted input ({_quoted(sources)}) and is written to "
                            f"${self.target} in {step.describe()}, which {self.effect}",
                        )
                    )
        return found


class EnvVarInjectionCriticalRule(RunnerFileInjectionRule):
    """Rule for untrusted input written directly to $GITHUB_ENV"""

    tier = CRITICAL

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="envvar-injection-critical",
            severity="CRITICAL",
            description="Untrusted input must not be written to $GITHUB_ENV",
            remediation="Validate or sanitize the value, or keep it in a step-local env variable",
            policy=policy,
        )


class EnvVarInjectionMediumRule(RunnerFileInjectionRule):
    """Rule for tainted values written to $GITHUB_ENV"""

    tier = MEDIUM

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="envvar-injection-medium",
            severity="MEDIUM",
            description="Values derived from untrusted input must not be written to $GITHUB_ENV",
            remediation="Strip newlines from the value or use a random heredoc delimiter",
            policy=policy,
        )


class EnvPathInjectionCriticalRule(RunnerFileInjectionRule):
    """Rule for untrusted input written directly to $GITHUB_PATH"""

    tier = CRITICAL
    target = GITHUB_PATH
    effect = "changes which executables all following steps run"

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="envpath-injection-critical",
            severity="CRITICAL",
            description="Untrusted input must not be written to $GITHUB_PATH",
            remediation="Only add fixed, trusted directories to $GITHUB_PATH",
            policy=policy,
        )


class EnvPathInjectionMediumRule(RunnerFileInjectionRule):
    """Rule for tainted values written to $GITHUB_PATH"""

    tier = MEDIUM
    target = GITHUB_PATH
    effect = "changes which executables all following steps run"

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="envpath-injection-medium",
            severity="MEDIUM",
            description="Values derived from untrusted input must not be written to $GITHUB_PATH",
            remediation="Resolve the directory to an absolute, trusted path before adding it",
            policy=policy,
        )


class ReusableWorkflowTaintRule(Rule):
    """
    Rule for untrusted input passed to a reusable workflow

    The called workflow sees the value as ``inputs.<name>``, which it may
    interpolate into its own scripts without knowing where it came from.
    """

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="reusable-workflow-taint",
            severity="MEDIUM",
            description="Untrusted input should not be passed to reusable workflows",
            remediation="Validate the value before passing it, and make sure the called workflow reads its inputs through env variables",
            category="security",
            policy=policy,
        )
        self.analyzer = JobTriggerAnalyzer([])

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self.analyzer = JobTriggerAnalyzer(workflow.event_names())

    def visit_job_pre(self, job: Job) -> None:
        if job.uses is None or not job.with_inputs:
            return
        severity = "CRITICAL" if self.analyzer.has_privileged_trigger(job) else None
        for name, item in job.with_inputs.items():
            sources = untrusted_in_string(item.value, self.policy.untrusted, self.policy.sanitizers)
            if sources:
                self.error(
                    item.value.pos,
                    f"input {name!r} of reusable workflow {job.uses.value!r} receives "
                    f"potentially untrusted {_quoted(sources)}",
                    severity,
                )
