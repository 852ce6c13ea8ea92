"""
access.py - Access control rules

This module provides rules for conditions and trigger setups that let
outsiders reach privileged jobs: spoofable actor checks, substring matches
on identities, self-hosted runners exposed to forks and privileged
triggers without mitigations.
"""

import logging
import re
from typing import Iterator, List, Optional, Set

from ..core.analysis import (
    JobTriggerAnalyzer,
    checkout_ref,
    is_mutable_ref,
    is_privileged_trigger,
    is_untrusted_trigger,
)
from ..core.ast import Job, Permissions, Step, String, Workflow
from ..core.expressions import CompareOpNode, FuncCallNode, StringNode, path_string, walk
from ..core.policy import LintPolicy
from .base import Rule

logger = logging.getLogger(__name__)

ACTOR_PATHS = {
    "github.actor",
    "github.triggering_actor",
    "github.event.sender.login",
    "github.event.pull_request.user.login",
    "github.event.comment.user.login",
    "github.event.issue.user.login",
}

# Values an outside contributor can choose, beyond the untrusted context table.
ATTACKER_CONTROLLED_PATHS = ACTOR_PATHS | {
    "github.ref",
    "github.ref_name",
    "github.head_ref",
    "github.base_ref",
}

SUBSTRING_FUNCTIONS = ("contains", "startswith", "endswith")

WRITE_NEEDING_PATTERN = re.compile(
    r"\bgit\s+push\b|\bgh\s+(?:pr|issue|release|api|label|repo|workflow)\b|api\.github\.com|\bnpm\s+publish\b"
)


def _conditions(workflow: Workflow) -> Iterator[String]:
    for job in workflow.jobs.values():
        if job.if_cond is not None:
            yield job.if_cond
        for step in job.steps:
            if step.if_cond is not None:
                yield step.if_cond


def _is_restricted(permissions: Optional[Permissions]) -> bool:
    if permissions is None:
        return False
    if permissions.all is not None:
        return permissions.all.value.strip().lower() in ("read-all", "{}", "none")
    return True


class ImproperAccessControlRule(Rule):
    """Rule for write access that untrusted runs can abuse or that is never used"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="improper-access-control",
            severity="HIGH",
            description="Jobs must not hold write access they do not need or that outsiders can reach",
            remediation="Grant write scopes only to jobs that use them and pin label-approved checkouts by SHA",
            category="security",
            policy=policy,
        )
        self.label_gated = False
        self.has_target = False
        self.writes: List[str] = []
        self.needs_write = False

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self.has_target = "pull_request_target" in workflow.event_names()

    def visit_job_pre(self, job: Job) -> None:
        workflow = self.workflow
        permissions = job.permissions or (workflow.permissions if workflow else None)
        self.writes = permissions.write_scopes() if permissions is not None else ["default"]
        cond = job.if_cond.value.lower() if job.if_cond is not None else ""
        self.label_gated = self.has_target and "label" in cond
        self.needs_write = False

    def visit_step(self, step: Step) -> None:
        action = step.action
        if action is not None and action.action_name != "actions/checkout":
            self.needs_write = True
        run = step.run
        if run is not None and WRITE_NEEDING_PATTERN.search(run.value):
            self.needs_write = True

        if not self.label_gated or not self.writes:
            return
        ref = checkout_ref(step)
        if ref is None or not is_mutable_ref(ref.value):
            return
        self.error(
            step.pos,
            f"label-gated pull_request_target job checks out mutable ref {ref.value!r} with write "
            f"permissions ({', '.join(self.writes)}); the branch can change after the label is applied",
        )

    def visit_job_post(self, job: Job) -> None:
        permissions = job.permissions
        if permissions is None or not job.steps or self.needs_write:
            return
        writes = permissions.write_scopes()
        if writes:
            self.error(
                permissions.pos,
                f"job {job.id.value!r} is granted write access ({', '.join(writes)}) but none of its "
                "steps appear to need it",
                severity="MEDIUM",
            )


class BotConditionsRule(Rule):
    """Rule for conditions trusting an actor name that ends with [bot]"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="bot-conditions",
            severity="HIGH",
            description="Bot actor checks can be spoofed in workflows with untrusted triggers",
            remediation="Check github.event.pull_request.user.login or the app's ID instead of github.actor",
            category="security",
            policy=policy,
        )
        self.untrusted = False

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self.untrusted = any(is_untrusted_trigger(t) for t in workflow.event_names())

    def _check(self, cond: Optional[String]) -> None:
        if not self.untrusted or cond is None:
            return
        for expr in cond.expressions:
            for node in walk(expr.node):
                if not isinstance(node, CompareOpNode) or node.kind not in ("==", "!="):
                    continue
                for side, other in ((node.left, node.right), (node.right, node.left)):
                    if side is None or other is None:
                        continue
                    path = path_string(side)
                    if path in ("github.actor", "github.triggering_actor") and isinstance(other, StringNode):
                        if other.value.lower().endswith("[bot]"):
                            self.error(
                                cond.pos,
                                f"condition compares {path} with {other.value!r}; the bot can be made "
                                "to trigger runs on attacker-controlled content",
                            )

    def visit_job_pre(self, job: Job) -> None:
        self._check(job.if_cond)

    def visit_step(self, step: Step) -> None:
        self._check(step.if_cond)


class UnsoundContainsRule(Rule):
    """Rule for substring checks used as identity or allow-list checks"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="unsound-contains",
            severity="MEDIUM",
            description="Substring functions are not a sound way to check identities or allow-lists",
            remediation="Compare with == or use contains(fromJSON('[...]'), value) with an exact list",
            category="security",
            policy=policy,
        )

    def _controlled(self, path: Optional[str]) -> bool:
        if path is None:
            return False
        return path in ATTACKER_CONTROLLED_PATHS or self.policy.untrusted.is_untrusted_path(path)

    def _check(self, cond: Optional[String]) -> None:
        if cond is None:
            return
        for expr in cond.expressions:
            for node in walk(expr.node):
                if not isinstance(node, FuncCallNode) or node.callee.lower() not in SUBSTRING_FUNCTIONS:
                    continue
                if len(node.args) != 2:
                    continue
                haystack, needle = node.args
                haystack_path = path_string(haystack)
                if haystack_path in ACTOR_PATHS and isinstance(needle, StringNode):
                    self.error(
                        cond.pos,
                        f"{node.callee}({haystack_path}, {needle.value!r}) matches any actor whose "
                        "name merely contains the text; compare identities with ==",
                    )
                elif isinstance(haystack, StringNode) and self._controlled(path_string(needle)):
                    self.error(
                        cond.pos,
                        f"{node.callee}({haystack.value!r}, {path_string(needle)}) checks an "
                        "attacker-controlled value against a string, so any substring passes; use "
                        "contains(fromJSON(...), value) with an exact list",
                    )

    def visit_job_pre(self, job: Job) -> None:
        self._check(job.if_cond)

    def visit_step(self, step: Step) -> None:
        self._check(step.if_cond)


class SelfHostedRunnersRule(Rule):
    """Rule for self-hosted runners reachable from untrusted triggers"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="self-hosted-runners",
            severity="HIGH",
            description="Self-hosted runners must not run jobs that outsiders can trigger",
            remediation="Use GitHub-hosted or ephemeral, isolated runners for untrusted triggers",
            category="security",
            policy=policy,
        )
        self.analyzer = JobTriggerAnalyzer([])

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self.analyzer = JobTriggerAnalyzer(workflow.event_names())

    def visit_job_pre(self, job: Job) -> None:
        runner = job.runs_on
        if runner is None:
            return
        triggers = [t for t in self.analyzer.effective_triggers(job) if is_untrusted_trigger(t)]
        if not triggers:
            return
        via_matrix = any(v.value.lower() == "self-hosted" for v in job.matrix_values)
        if not runner.is_self_hosted and not via_matrix:
            return
        where = f"runner group {runner.group.value!r}" if runner.group is not None else "self-hosted runner"
        self.error(
            runner.pos,
            f"job {job.id.value!r} runs on a {where} and can be triggered by {', '.join(triggers)}; "
            "untrusted code can persist on the runner",
        )


class DangerousTriggersRule(Rule):
    """Scores privileged triggers by the mitigations present in the workflow"""

    tier = "critical"

    def __init__(self, policy: Optional[LintPolicy] = None, **kwargs):
        super().__init__(category="security", policy=policy, **kwargs)

    @staticmethod
    def mitigations(workflow: Workflow) -> List[str]:
        found: List[str] = []
        if _is_restricted(workflow.permissions) or any(
            _is_restricted(job.permissions) for job in workflow.jobs.values()
        ):
            found.append("permissions restriction")
        if any(job.environment is not None for job in workflow.jobs.values()):
            found.append("environment protection")

        seen: Set[str] = set()
        for cond in _conditions(workflow):
            text = cond.value.lower()
            if "labels" in text or "github.event.label" in text:
                seen.add("label condition")
            if "github.actor" in text or "github.triggering_actor" in text:
                seen.add("actor restriction")
            if "fork" in text:
                seen.add("fork check")
        found.extend(m for m in ("label condition", "actor restriction", "fork check") if m in seen)
        return found

    @staticmethod
    def score(mitigations: List[str]) -> int:
        weights = {"permissions restriction": 3, "environment protection": 2}
        return sum(weights.get(m, 1) for m in mitigations)

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        events = [e for e in workflow.on if is_privileged_trigger(e.event_name)]
        if not events:
            return
        found = self.mitigations(workflow)
        score = self.score(found)
        tier = "critical" if score == 0 else "medium" if score <= 2 else None
        logger.debug("privileged trigger mitigation score %d (%s)", score, found)
        if tier != self.tier:
            return
        for event in events:
            if tier == "critical":
                message = (
                    f"privileged trigger {event.event_name!r} is used without any mitigation; "
                    "restrict permissions, require an environment or guard jobs with conditions"
                )
            else:
                message = (
                    f"privileged trigger {event.event_name!r} has weak mitigations "
                    f"({', '.join(found)}); restrict permissions as well"
                )
            self.error(event.pos, message)


class DangerousTriggersCriticalRule(DangerousTriggersRule):
    """Rule for privileged triggers without mitigations"""

    tier = "critical"

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="dangerous-triggers-critical",
            severity="CRITICAL",
            description="Privileged triggers must be mitigated",
            remediation="Add 'permissions:', an 'environment:' or actor/label/fork conditions",
            policy=policy,
        )


class DangerousTriggersMediumRule(DangerousTriggersRule):
    """Rule for privileged triggers with only weak mitigations"""

    tier = "medium"

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="dangerous-triggers-medium",
            severity="MEDIUM",
            description="Privileged triggers should be mitigated by restricted permissions",
            remediation="Add a restrictive 'permissions:' block to the workflow or its jobs",
            policy=policy,
        )
