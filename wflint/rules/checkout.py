"""
checkout.py - Untrusted checkout and TOCTOU rules

Privileged triggers run with secrets and a write token. Checking out the
pull request's code there and then running anything from the workspace
hands both to the pull request author. Mutable refs additionally let the
author swap the code after a maintainer approved it.
"""

import logging
from typing import Dict, List, Optional

from ..core.analysis import (
    JobTriggerAnalyzer,
    checkout_ref,
    executes_workspace_code,
    is_checkout,
    is_mutable_ref,
    is_privileged_trigger,
    is_untrusted_checkout,
)
from ..core.ast import Job, Step, Workflow
from ..core.diagnostic import Position
from ..core.policy import LintPolicy
from .base import Rule

logger = logging.getLogger(__name__)

LABELED_TRIGGERS = ("pull_request_target", "pull_request")


class CheckoutRule(Rule):
    """Tracks which triggers each job is reachable from"""

    def __init__(self, policy: Optional[LintPolicy] = None, **kwargs):
        super().__init__(category="security", policy=policy, **kwargs)
        self.analyzer = JobTriggerAnalyzer([])
        self.job_triggers: List[str] = []
        self.labeled: Dict[str, Position] = {}

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self.analyzer = JobTriggerAnalyzer(workflow.event_names())
        self.labeled = {}
        for event in workflow.on:
            if event.event_name not in LABELED_TRIGGERS:
                continue
            for event_type in event.types:
                if event_type.value == "labeled":
                    self.labeled[event.event_name] = event_type.pos
                    break

    def visit_job_pre(self, job: Job) -> None:
        self.job_triggers = self.analyzer.effective_triggers(job)

    def privileged(self) -> List[str]:
        return [t for t in self.job_triggers if is_privileged_trigger(t)]

    def labeled_trigger(self) -> Optional[str]:
        for trigger in self.job_triggers:
            if trigger in self.labeled:
                return trigger
        return None


class UntrustedCheckoutRule(CheckoutRule):
    """Steps that consume an untrusted checkout under a privileged trigger"""

    executes = True

    def visit_job_pre(self, job: Job) -> None:
        super().visit_job_pre(job)
        self.checkout: Optional[Step] = None

    def visit_step(self, step: Step) -> None:
        if not self.privileged():
            return
        if is_checkout(step):
            # A later checkout of trusted code replaces the workspace.
            self.checkout = step if is_untrusted_checkout(step) else None
            return
        if self.checkout is None:
            return

        action = step.action
        if self.executes:
            if not executes_workspace_code(step):
                return
            what = "runs code from"
        else:
            if action is None or action.is_local:
                return
            what = f"runs action {action.uses.value!r} on"

        ref = checkout_ref(self.checkout)
        self.error(
            step.pos,
            f"{step.describe()} {what} the untrusted checkout of "
            f"{ref.value if ref else 'the pull request'!r} at line {self.checkout.pos.line} "
            f"while the job runs on privileged trigger(s) {', '.join(self.privileged())}",
        )
        logger.debug("%s: reported %s", self.rule_id, step.describe())
        # One report per untrusted checkout.
        self.checkout = None


class UntrustedCheckoutCriticalRule(UntrustedCheckoutRule):
    """Rule for workspace code executed after an untrusted checkout"""

    executes = True

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="untrusted-checkout-critical",
            severity="CRITICAL",
            description="Code from an untrusted checkout must not run under privileged triggers",
            remediation="Use the pull_request trigger, or check out the base ref before running code",
            policy=policy,
        )


class UntrustedCheckoutHighRule(UntrustedCheckoutRule):
    """Rule for third-party actions consuming an untrusted checkout"""

    executes = False

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="untrusted-checkout-high",
            severity="HIGH",
            description="Actions should not process an untrusted checkout under privileged triggers",
            remediation="Process untrusted code in an unprivileged pull_request workflow instead",
            policy=policy,
        )


class UntrustedCheckoutToctouCriticalRule(CheckoutRule):
    """Rule for label-approved runs that check out a mutable ref"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="untrusted-checkout-toctou-critical",
            severity="CRITICAL",
            description="Label-gated workflows must check out the approved commit, not a branch",
            remediation="Check out ${{ github.event.pull_request.head.sha }} instead of the head ref",
            policy=policy,
        )

    def visit_step(self, step: Step) -> None:
        trigger = self.labeled_trigger()
        if trigger is None:
            return
        ref = checkout_ref(step)
        if ref is None or not is_mutable_ref(ref.value):
            return
        self.error(
            step.pos,
            f"checkout uses mutable reference {ref.value!r} with 'labeled' event type on {trigger!r} "
            f"trigger (line {self.labeled[trigger].line}); the code can change after the label "
            "is applied",
        )


class UntrustedCheckoutToctouHighRule(CheckoutRule):
    """Rule for environment-approved runs that check out a mutable ref"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="untrusted-checkout-toctou-high",
            severity="HIGH",
            description="Deployment approvals must pin the commit that was reviewed",
            remediation="Check out ${{ github.event.pull_request.head.sha }} in jobs gated by an environment",
            policy=policy,
        )
        self.environment: Optional[str] = None

    def visit_job_pre(self, job: Job) -> None:
        super().visit_job_pre(job)
        self.environment = job.environment.value if job.environment is not None else None

    def visit_step(self, step: Step) -> None:
        if self.environment is None or not self.privileged() or self.labeled_trigger() is not None:
            return
        ref = checkout_ref(step)
        if ref is None or not is_mutable_ref(ref.value):
            return
        self.error(
            step.pos,
            f"checkout uses mutable reference {ref.value!r} after approval through environment "
            f"{self.environment!r}; the code can change between approval and checkout",
        )
