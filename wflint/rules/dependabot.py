"""
dependabot.py - Rule checking that Dependabot keeps actions up to date

Actions pinned to a tag or branch only receive fixes when someone bumps
them. This rule reads the repository's Dependabot configuration from disk,
so it only runs when the host grants filesystem access.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from ..core.ast import Job, Step, String, Workflow
from ..core.diagnostic import Position
from ..core.policy import LintPolicy
from .base import Capability, Rule
from .best_practices import SHA_PATTERN

logger = logging.getLogger(__name__)

DEPENDABOT_FILES = ("dependabot.yaml", "dependabot.yml")
GITHUB_ACTIONS_ECOSYSTEM = "github-actions"


def find_repository_root(filename: str) -> Optional[Path]:
    """Closest directory above a workflow file that contains a .github directory"""
    path = Path(filename)
    if not path.is_file():
        return None
    for parent in path.resolve().parents:
        if (parent / ".github").is_dir():
            return parent
    return None


def find_dependabot_config(root: Path) -> Optional[Path]:
    for name in DEPENDABOT_FILES:
        candidate = root / ".github" / name
        if candidate.is_file():
            return candidate
    return None


def covers_github_actions(config: Any) -> bool:
    """True if a loaded dependabot.yaml has an update entry for github-actions"""
    if not isinstance(config, dict):
        return False
    updates = config.get("updates")
    if not isinstance(updates, list):
        return False
    return any(
        isinstance(update, dict) and update.get("package-ecosystem") == GITHUB_ACTIONS_ECOSYSTEM
        for update in updates
    )


class DependabotGitHubActionsRule(Rule):
    """Rule for unpinned actions without Dependabot version updates"""

    requires = frozenset({Capability.FILESYSTEM})

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="dependabot-github-actions",
            severity="LOW",
            description="Repositories using actions by tag should let Dependabot update them",
            remediation="Add an updates entry with package-ecosystem: github-actions to .github/dependabot.yaml",
            category="best-practice",
            policy=policy,
        )
        # Position of the first action that is not pinned to a commit SHA
        self.unpinned: Optional[Position] = None

    def _note(self, uses: String) -> None:
        value = uses.value
        if self.unpinned is not None or value.startswith("./") or "${{" in value:
            return
        ref = value.rsplit("@", 1)[1] if "@" in value else ""
        if not SHA_PATTERN.match(ref):
            self.unpinned = uses.pos

    def visit_job_pre(self, job: Job) -> None:
        if job.uses is not None:
            self._note(job.uses)

    def visit_step(self, step: Step) -> None:
        action = step.action
        if action is None or action.is_local or action.is_docker:
            return
        self._note(action.uses)

    def visit_workflow_post(self, workflow: Workflow) -> None:
        if self.unpinned is None or self.filename is None:
            return
        root = find_repository_root(self.filename)
        if root is None:
            logger.debug("no repository root above %s", self.filename)
            return

        path = find_dependabot_config(root)
        if path is None:
            self.error(
                self.unpinned,
                "actions are not pinned to commit SHAs and .github/dependabot.yaml does not exist; "
                "Dependabot cannot keep them up to date",
            )
            return

        try:
            with open(path) as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.debug("cannot read %s: %s", path, e)
            return
        if not covers_github_actions(config):
            self.error(
                self.unpinned,
                f"actions are not pinned to commit SHAs and {path.name} does not configure the "
                f"{GITHUB_ACTIONS_ECOSYSTEM!r} package ecosystem",
            )
