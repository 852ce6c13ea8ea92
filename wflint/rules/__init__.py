"""
rules package for wflint

This package contains the lint rules and the rule engine that dispatches a
parsed workflow to them.
"""

from .base import Capability, Rule, TraversalContext
from .engine import (
    RULE_CLASSES,
    DispatchError,
    RuleEngine,
    create_rule_engine,
    list_rules,
    select_rules,
)
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
from .secrets import (
    CredentialsRule,
    SecretExfiltrationRule,
    SecretExposureRule,
    SecretsInheritRule,
    UnmaskedSecretExposureRule,
)
from .injection import (
    CodeInjectionCriticalRule,
    CodeInjectionMediumRule,
    EnvPathInjectionCriticalRule,
    EnvPathInjectionMediumRule,
    EnvVarInjectionCriticalRule,
    EnvVarInjectionMediumRule,
    ReusableWorkflowTaintRule,
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
from .poisoning import (
    ArtifactPoisoningCriticalRule,
    ArtifactPoisoningMediumRule,
    ArtipackedRule,
    CachePoisoningPoisonableStepRule,
    CachePoisoningRule,
)
from .access import (
    BotConditionsRule,
    DangerousTriggersCriticalRule,
    DangerousTriggersMediumRule,
    ImproperAccessControlRule,
    SelfHostedRunnersRule,
    UnsoundContainsRule,
)

__all__ = [
    # Base classes
    "Rule",
    "Capability",
    "TraversalContext",
    # Rule engine
    "RULE_CLASSES",
    "DispatchError",
    "RuleEngine",
    "create_rule_engine",
    "list_rules",
    "select_rules",
    # Structural rules
    "JobNeedsRule",
    "EnvVarRule",
    "IdRule",
    "PermissionsRule",
    "DeprecatedCommandsRule",
    "ConditionalRule",
    "TimeoutRule",
    "CommitShaRule",
    # Secret rules
    "CredentialsRule",
    "SecretExposureRule",
    "UnmaskedSecretExposureRule",
    "SecretExfiltrationRule",
    "SecretsInheritRule",
    # Injection rules
    "CodeInjectionCriticalRule",
    "CodeInjectionMediumRule",
    "EnvVarInjectionCriticalRule",
    "EnvVarInjectionMediumRule",
    "EnvPathInjectionCriticalRule",
    "EnvPathInjectionMediumRule",
    "ReusableWorkflowTaintRule",
    # Command rules
    "ArgumentInjectionCriticalRule",
    "ArgumentInjectionMediumRule",
    "OutputClobberingCriticalRule",
    "OutputClobberingMediumRule",
    "RequestForgeryCriticalRule",
    "RequestForgeryMediumRule",
    # Checkout rules
    "UntrustedCheckoutCriticalRule",
    "UntrustedCheckoutHighRule",
    "UntrustedCheckoutToctouCriticalRule",
    "UntrustedCheckoutToctouHighRule",
    # Poisoning rules
    "CachePoisoningRule",
    "CachePoisoningPoisonableStepRule",
    "ArtifactPoisoningCriticalRule",
    "ArtifactPoisoningMediumRule",
    "ArtipackedRule",
    # Access control rules
    "ImproperAccessControlRule",
    "BotConditionsRule",
    "UnsoundContainsRule",
    "SelfHostedRunnersRule",
    "DangerousTriggersCriticalRule",
    "DangerousTriggersMediumRule",
    # Repository rules
    "DependabotGitHubActionsRule",
]
