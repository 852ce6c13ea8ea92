"""
engine.py - Rule engine for wflint

This module provides the rule registry and the engine that walks a parsed
workflow once, dispatching each node to the rules that handle it.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Type, Union

from ..core.ast import Workflow
from ..core.errors import ConfigurationError
from ..core.diagnostic import INTERNAL_ERROR_SUFFIX, Diagnostic, Position, Severity
from ..core.policy import LintPolicy
from .access import (
    BotConditionsRule,
    DangerousTriggersCriticalRule,
    DangerousTriggersMediumRule,
    ImproperAccessControlRule,
    SelfHostedRunnersRule,
    UnsoundContainsRule,
)
from .base import HOOKS, Capability, Rule, TraversalContext
from .best_practices import (
    CommitShaRule,
    ConditionalRule,
    DeprecatedCommandsRule,
    EnvVarRule,
    IdRule,
    JobNeedsRule,
    PermissionsRule,
    TimeoutRule,
)
from .checkout import (
    UntrustedCheckoutCriticalRule,
    UntrustedCheckoutHighRule,
    UntrustedCheckoutToctouCriticalRule,
    UntrustedCheckoutToctouHighRule,
)
from .commands import (
    ArgumentInjectionCriticalRule,
    ArgumentInjectionMediumRule,
    OutputClobberingCriticalRule,
    OutputClobberingMediumRule,
    RequestForgeryCriticalRule,
    RequestForgeryMediumRule,
)
from .dependabot import DependabotGitHubActionsRule
from .injection import (
    CodeInjectionCriticalRule,
    CodeInjectionMediumRule,
    EnvPathInjectionCriticalRule,
    EnvPathInjectionMediumRule,
    EnvVarInjectionCriticalRule,
    EnvVarInjectionMediumRule,
    ReusableWorkflowTaintRule,
)
from .poisoning import (
    ArtifactPoisoningCriticalRule,
    ArtifactPoisoningMediumRule,
    ArtipackedRule,
    CachePoisoningPoisonableStepRule,
    CachePoisoningRule,
)
from .secrets import (
    CredentialsRule,
    SecretExfiltrationRule,
    SecretExposureRule,
    SecretsInheritRule,
    UnmaskedSecretExposureRule,
)

logger = logging.getLogger(__name__)

# Registration order is the order diagnostics at the same position appear in.
RULE_CLASSES: Sequence[Type[Rule]] = (
    JobNeedsRule,
    EnvVarRule,
    IdRule,
    PermissionsRule,
    DeprecatedCommandsRule,
    ConditionalRule,
    TimeoutRule,
    CommitShaRule,
    CredentialsRule,
    SecretExposureRule,
    UnmaskedSecretExposureRule,
    SecretExfiltrationRule,
    SecretsInheritRule,
    CodeInjectionCriticalRule,
    CodeInjectionMediumRule,
    EnvVarInjectionCriticalRule,
    EnvVarInjectionMediumRule,
    EnvPathInjectionCriticalRule,
    EnvPathInjectionMediumRule,
    ArgumentInjectionCriticalRule,
    ArgumentInjectionMediumRule,
    OutputClobberingCriticalRule,
    OutputClobberingMediumRule,
    RequestForgeryCriticalRule,
    RequestForgeryMediumRule,
    ReusableWorkflowTaintRule,
    UntrustedCheckoutCriticalRule,
    UntrustedCheckoutHighRule,
    UntrustedCheckoutToctouCriticalRule,
    UntrustedCheckoutToctouHighRule,
    CachePoisoningRule,
    CachePoisoningPoisonableStepRule,
    ArtifactPoisoningCriticalRule,
    ArtifactPoisoningMediumRule,
    ArtipackedRule,
    ImproperAccessControlRule,
    BotConditionsRule,
    UnsoundContainsRule,
    SelfHostedRunnersRule,
    DangerousTriggersCriticalRule,
    DangerousTriggersMediumRule,
    DependabotGitHubActionsRule,
)

RuleSelection = Iterable[Union[str, Rule]]


class DispatchError(Exception):
    """Raised when the engine itself fails while walking a workflow"""

    pass


class RuleEngine:
    """Walks a workflow once and dispatches nodes to rules"""

    def __init__(self, rules: Iterable[Rule]) -> None:
        """
        Initialize the rule engine

        Args:
            rules: Rule instances in registration order; they must be fresh
                for every workflow
        """
        self.rules: List[Rule] = [rule for rule in rules if rule.enabled]
        self._failed: Dict[int, Diagnostic] = {}
        self._dispatch_table: Dict[str, List[Rule]] = {
            hook: [rule for rule in self.rules if type(rule).handles(hook)] for hook in HOOKS
        }

    def get_rule_by_id(self, rule_id: str) -> Optional[Rule]:
        """
        Get a rule by its ID

        Args:
            rule_id: Rule ID to look for

        Returns:
            Rule instance or None if not found
        """
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    def _fail(self, rule: Rule, pos: Position, what: str, e: Exception) -> None:
        self._failed[id(rule)] = Diagnostic.at(
            pos,
            f"rule {rule.rule_id!r} failed while {what}: {type(e).__name__}: {e}",
            rule.rule_id + INTERNAL_ERROR_SUFFIX,
            Severity.LOW,
        )

    def _dispatch(self, hook: str, node: Any, pos: Position) -> None:
        for rule in self._dispatch_table[hook]:
            if id(rule) in self._failed:
                continue
            try:
                getattr(rule, hook)(node)
            except Exception as e:
                logger.debug("rule %s failed in %s", rule.rule_id, hook, exc_info=True)
                self._fail(rule, pos, "checking this node", e)

    def run(self, workflow: Workflow, filename: Optional[str] = None) -> List[Diagnostic]:
        """
        Run all rules over a workflow

        Args:
            workflow: Parsed workflow
            filename: Path the workflow was read from, if any

        Returns:
            Diagnostics grouped by rule in registration order; a failed
            rule's internal-error diagnostic follows its earlier findings

        Raises:
            DispatchError: If the traversal itself fails
        """
        try:
            context = TraversalContext(workflow=workflow, filename=filename)
            for rule in self.rules:
                rule.context = context

            self._dispatch("visit_workflow_pre", workflow, workflow.pos)
            for job in workflow.jobs.values():
                context.job = job
                self._dispatch("visit_job_pre", job, job.pos)
                for step in job.steps:
                    context.step = step
                    self._dispatch("visit_step", step, step.pos)
                context.step = None
                self._dispatch("visit_job_post", job, job.pos)
            context.job = None
            self._dispatch("visit_workflow_post", workflow, workflow.pos)
        except Exception as e:
            raise DispatchError(f"rule engine failed: {type(e).__name__}: {e}") from e

        diagnostics: List[Diagnostic] = []
        for rule in self.rules:
            try:
                diagnostics.extend(rule.errors())
            except Exception as e:
                logger.debug("rule %s failed collecting errors", rule.rule_id, exc_info=True)
                if id(rule) not in self._failed:
                    self._fail(rule, workflow.pos, "reporting its findings", e)
            if id(rule) in self._failed:
                diagnostics.append(self._failed[id(rule)])

        logger.debug("%d rule(s) produced %d diagnostic(s)", len(self.rules), len(diagnostics))
        return diagnostics


def select_rules(
    rule_ids: Optional[RuleSelection] = None,
    capabilities: Iterable[Capability] = (),
    config: Optional[Dict[str, Any]] = None,
    policy: Optional[LintPolicy] = None,
) -> List[Rule]:
    """
    Instantiate fresh rules for one lint call

    Args:
        rule_ids: Rule IDs (or ready rule instances) to run; None means all
        capabilities: Host capabilities; rules requiring others are dropped
        config: Configuration with per-rule switches and severity overrides
        policy: Analysis policy; built from config when omitted

    Returns:
        Rule instances in registration order

    Raises:
        ConfigurationError: If a requested rule ID is unknown
    """
    policy = policy or LintPolicy.from_config(config)
    available: FrozenSet[Capability] = frozenset(capabilities)
    config = config or {}
    thresholds = config.get("severity_thresholds") or {}

    wanted: Optional[Set[str]] = None
    extra: List[Rule] = []
    if rule_ids is not None:
        wanted = set()
        for item in rule_ids:
            if isinstance(item, Rule):
                extra.append(item)
            else:
                wanted.add(item)
        known = {cls(policy).rule_id for cls in RULE_CLASSES}
        unknown = sorted(wanted - known)
        if unknown:
            raise ConfigurationError(f"Unknown rule(s): {', '.join(unknown)}")

    rules: List[Rule] = []
    for cls in RULE_CLASSES:
        rule = cls(policy)
        if wanted is not None and rule.rule_id not in wanted:
            continue
        if not config.get(rule.rule_id, True):
            continue
        if not rule.requires <= available:
            logger.debug("skipping %s: requires %s", rule.rule_id, sorted(c.value for c in rule.requires))
            continue
        if rule.rule_id in thresholds:
            value = thresholds[rule.rule_id]
            rule.severity = value.value if isinstance(value, Severity) else str(value).upper()
        rules.append(rule)

    rules.extend(rule for rule in extra if rule.requires <= available)
    return rules


def list_rules() -> List[Dict[str, Any]]:
    """
    Get information about all registered rules

    Returns:
        List of rule information dictionaries
    """
    rule_info_list = []
    for cls in RULE_CLASSES:
        rule = cls()
        rule_info_list.append(
            {
                "id": rule.rule_id,
                "severity": rule.severity,
                "description": rule.description,
                "remediation": rule.remediation,
                "category": rule.category,
                "requires": sorted(c.value for c in rule.requires),
            }
        )
    return rule_info_list


def create_rule_engine(
    config: Optional[Dict[str, Any]] = None,
    rule_ids: Optional[RuleSelection] = None,
    capabilities: Iterable[Capability] = (),
    policy: Optional[LintPolicy] = None,
) -> RuleEngine:
    """
    Create a rule engine with fresh rules

    Args:
        config: Configuration dictionary
        rule_ids: Rule IDs to run, or None for all
        capabilities: Host capabilities
        policy: Analysis policy

    Returns:
        Configured RuleEngine instance
    """
    return RuleEngine(select_rules(rule_ids, capabilities, config, policy))
