"""
policy.py - Per-invocation analysis policy

A LintPolicy is built from configuration for every lint call and handed to
rule constructors. It is frozen; rules never write to it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .untrusted import DEFAULT_SANITIZING_FUNCTIONS, UntrustedContextTable, build_untrusted_table

DEFAULT_POLICY: Dict[str, Any] = {
    "critical_requires_privileged_trigger": False,
    "timeout_min_steps": 1,
    "untrusted_paths": [],
    "sanitizing_functions": [],
    "allowed_hosts": [],
}

DEFAULT_ALLOWED_HOSTS: Tuple[str, ...] = (
    "github.com",
    "api.github.com",
    "uploads.github.com",
    "ghcr.io",
    "objects.githubusercontent.com",
    "raw.githubusercontent.com",
    "registry.npmjs.org",
    "pypi.org",
    "upload.pypi.org",
    "test.pypi.org",
    "rubygems.org",
    "crates.io",
    "hub.docker.com",
    "registry-1.docker.io",
    "codecov.io",
    "coveralls.io",
    "sonarcloud.io",
)


@dataclass(frozen=True)
class LintPolicy:
    """Read-only settings shared by all rules of one lint call"""

    untrusted: UntrustedContextTable = field(default_factory=build_untrusted_table)
    sanitizers: FrozenSet[str] = DEFAULT_SANITIZING_FUNCTIONS
    critical_requires_privileged_trigger: bool = False
    timeout_min_steps: int = 1
    allowed_hosts: Tuple[str, ...] = DEFAULT_ALLOWED_HOSTS

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "LintPolicy":
        """
        Build a policy from the ``policy`` section of a configuration

        Args:
            config: Full configuration dictionary, or None for defaults

        Returns:
            Frozen policy
        """
        section = dict(DEFAULT_POLICY)
        if config and isinstance(config.get("policy"), dict):
            section.update(config["policy"])

        return cls(
            untrusted=build_untrusted_table(section.get("untrusted_paths") or ()),
            sanitizers=DEFAULT_SANITIZING_FUNCTIONS
            | frozenset(f.lower() for f in section.get("sanitizing_functions") or ()),
            critical_requires_privileged_trigger=bool(
                section.get("critical_requires_privileged_trigger", False)
            ),
            timeout_min_steps=int(section.get("timeout_min_steps", 1)),
            allowed_hosts=DEFAULT_ALLOWED_HOSTS
            + tuple(h.lower() for h in section.get("allowed_hosts") or ()),
        )
