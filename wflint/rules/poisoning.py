"""
poisoning.py - Cache and artifact poisoning rules

Caches and artifacts outlive the job that wrote them. When untrusted code
can write them, every later consumer runs or ships what the attacker put
there.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from ..core.analysis import (
    CACHE_ACTION,
    DOWNLOAD_ARTIFACT_ACTIONS,
    UPLOAD_ARTIFACT_ACTION,
    JobTriggerAnalyzer,
    executes_workspace_code,
    is_cache_action,
    is_checkout,
    is_untrusted_checkout,
    is_untrusted_trigger,
)
from ..core.ast import Job, Step, String, Workflow
from ..core.diagnostic import Position
from ..core.policy import LintPolicy
from .base import Rule

logger = logging.getLogger(__name__)

CACHE_EVICTION_THRESHOLD = 5
WORKSPACE_PATHS = {"", ".", "./", "${{ github.workspace }}", "${{github.workspace}}", "$GITHUB_WORKSPACE"}
VERIFY_PATTERN = re.compile(
    r"sha(?:256|512)sum\s+(?:-c|--check)|shasum\s.*(?:-c|--check)|gh\s+attestation\s+verify|cosign\s+verify|gpg\s+--verify"
)


def _is_workspace_path(value: Optional[String]) -> bool:
    if value is None:
        return True
    lines = [line.strip() for line in value.value.splitlines() if line.strip()]
    if not lines:
        return True
    return any(line.rstrip("/") in WORKSPACE_PATHS or line in WORKSPACE_PATHS for line in lines)


class PoisoningRule(Rule):
    """Tracks untrusted triggers and checkouts per job"""

    def __init__(self, policy: Optional[LintPolicy] = None, **kwargs):
        super().__init__(category="security", policy=policy, **kwargs)
        self.analyzer = JobTriggerAnalyzer([])
        self.job_untrusted: List[str] = []
        self.unsafe_checkout: Optional[Step] = None

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self.analyzer = JobTriggerAnalyzer(workflow.event_names())

    def visit_job_pre(self, job: Job) -> None:
        self.job_untrusted = [t for t in self.analyzer.effective_triggers(job) if is_untrusted_trigger(t)]
        self.unsafe_checkout = None

    def track_checkout(self, step: Step) -> bool:
        """Update checkout state; True if the step was a checkout"""
        if not is_checkout(step):
            return False
        if self.job_untrusted and is_untrusted_checkout(step):
            self.unsafe_checkout = step
        else:
            self.unsafe_checkout = None
        return True


class CachePoisoningRule(PoisoningRule):
    """Rule for caches that untrusted code or input can write"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="cache-poisoning",
            severity="HIGH",
            description="Caches must not be keyed by or written from untrusted input",
            remediation="Use trusted cache keys (github.sha, hashFiles()) and do not cache after untrusted checkout",
            policy=policy,
        )
        self.cache_count = 0
        self.poisoned_keys: Dict[str, str] = {}

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        super().visit_workflow_pre(workflow)
        self.cache_count = 0
        self.poisoned_keys = {}

    def _check_inputs(self, step: Step) -> None:
        action = step.action
        if action is None:
            return
        for name in ("key", "restore-keys", "path"):
            value = action.input_value(name)
            if value is None:
                continue
            for expr in value.expressions:
                paths = self.policy.untrusted.find_untrusted(expr.node, self.policy.sanitizers)
                if paths:
                    self.error(
                        expr.pos,
                        f"cache {name!r} uses potentially untrusted input "
                        + ", ".join(f'"{p}"' for p in paths)
                        + "; an attacker can choose the cache entry to poison",
                    )

    def visit_step(self, step: Step) -> None:
        action = step.action
        if action is None or self.track_checkout(step):
            return
        if action.action_name.startswith(CACHE_ACTION):
            self._check_inputs(step)
        if not is_cache_action(action):
            return

        self.cache_count += 1
        job = self.job
        key = action.input_value("key")
        if self.unsafe_checkout is not None:
            self.error(
                step.pos,
                f"cache poisoning risk: {action.uses.value!r} is used after checking out untrusted "
                f"code (triggers: {', '.join(self.job_untrusted)}); the saved cache can be poisoned",
            )
            if key is not None and job is not None:
                self.poisoned_keys.setdefault(key.value, job.id.value)
            return

        if key is not None and key.value in self.poisoned_keys and job is not None:
            writer = self.poisoned_keys[key.value]
            if writer != job.id.value:
                self.error(
                    step.pos,
                    f"cache key {key.value!r} restored here is written by job {writer!r} after an "
                    "untrusted checkout",
                )

    def visit_workflow_post(self, workflow: Workflow) -> None:
        if self.cache_count < CACHE_EVICTION_THRESHOLD:
            return
        pos = workflow.name.pos if workflow.name is not None else Position(1, 1)
        self.error(
            pos,
            f"cache eviction risk: workflow uses {self.cache_count} cache actions; attackers can "
            "flood the repository cache limit to evict legitimate entries",
            severity="LOW",
        )


class CachePoisoningPoisonableStepRule(PoisoningRule):
    """Rule for steps that can poison a cache saved later in the job"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="cache-poisoning-poisonable-step",
            severity="HIGH",
            description="Untrusted code must not run in a job that saves a cache",
            remediation="Split untrusted builds into a job without cache writes",
            policy=policy,
        )
        self.candidates: List[Tuple[Step, Step]] = []
        self.saves_cache = False

    def visit_job_pre(self, job: Job) -> None:
        super().visit_job_pre(job)
        self.candidates = []
        self.saves_cache = False

    def visit_step(self, step: Step) -> None:
        if self.track_checkout(step):
            return
        action = step.action
        if action is not None and is_cache_action(action):
            self.saves_cache = True
        if self.unsafe_checkout is not None and executes_workspace_code(step):
            self.candidates.append((step, self.unsafe_checkout))

    def visit_job_post(self, job: Job) -> None:
        if not self.saves_cache:
            return
        for step, checkout in self.candidates:
            self.error(
                step.pos,
                f"{step.describe()} runs untrusted code checked out at line {checkout.pos.line} "
                f"in job {job.id.value!r}, which saves a cache; the code can poison the cache",
            )


class ArtifactPoisoningRule(PoisoningRule):
    """Tracks artifacts uploaded from untrusted checkouts"""

    def __init__(self, policy: Optional[LintPolicy] = None, **kwargs):
        super().__init__(policy=policy, **kwargs)
        self.tainted_artifacts: Dict[str, str] = {}
        self.from_workflow_run = False

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        super().visit_workflow_pre(workflow)
        self.tainted_artifacts = {}

    def visit_job_pre(self, job: Job) -> None:
        super().visit_job_pre(job)
        self.from_workflow_run = "workflow_run" in self.analyzer.effective_triggers(job)

    def untrusted_download(self, step: Step) -> Optional[str]:
        """Describe why a downloaded artifact is untrusted, or None"""
        action = step.action
        if action is None or action.action_name not in DOWNLOAD_ARTIFACT_ACTIONS:
            return None
        if self.from_workflow_run:
            return "an artifact produced by the triggering workflow run"
        name = action.input_value("name")
        key = name.value if name is not None else "*"
        for artifact, writer in self.tainted_artifacts.items():
            if key == "*" or artifact in ("*", key):
                return f"artifact {artifact!r} uploaded after an untrusted checkout in job {writer!r}"
        return None

    def record_upload(self, step: Step) -> None:
        action = step.action
        if action is None or action.action_name != UPLOAD_ARTIFACT_ACTION or self.unsafe_checkout is None:
            return
        name = action.input_value("name")
        job = self.job
        self.tainted_artifacts[name.value if name is not None else "*"] = job.id.value if job else ""


class ArtifactPoisoningCriticalRule(ArtifactPoisoningRule):
    """Rule for untrusted artifacts extracted into the workspace"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="artifact-poisoning-critical",
            severity="CRITICAL",
            description="Untrusted artifacts must not be extracted into the workspace",
            remediation="Download untrusted artifacts to an isolated path such as ${{ runner.temp }}/artifacts",
            policy=policy,
        )

    def visit_step(self, step: Step) -> None:
        self.track_checkout(step)
        self.record_upload(step)
        action = step.action
        reason = self.untrusted_download(step)
        if reason is None or action is None:
            return
        if _is_workspace_path(action.input_value("path")):
            self.error(
                step.pos,
                f"{step.describe()} extracts {reason} into the workspace; it can overwrite "
                "files that later steps execute",
            )


class ArtifactPoisoningMediumRule(ArtifactPoisoningRule):
    """Rule for untrusted artifacts consumed without verification"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="artifact-poisoning-medium",
            severity="MEDIUM",
            description="Untrusted artifacts should be verified before use",
            remediation="Verify checksums or attestations of downloaded artifacts before using them",
            policy=policy,
        )
        self.pending: List[Tuple[Step, str]] = []
        self.verified = False

    def visit_job_pre(self, job: Job) -> None:
        super().visit_job_pre(job)
        self.pending = []
        self.verified = False

    def visit_step(self, step: Step) -> None:
        self.track_checkout(step)
        self.record_upload(step)
        run = step.run
        if run is not None and self.pending and VERIFY_PATTERN.search(run.value):
            self.verified = True
        action = step.action
        reason = self.untrusted_download(step)
        if reason is None or action is None:
            return
        if not _is_workspace_path(action.input_value("path")):
            self.pending.append((step, reason))

    def visit_job_post(self, job: Job) -> None:
        if self.verified:
            return
        for step, reason in self.pending:
            self.error(
                step.pos,
                f"{step.describe()} downloads {reason} to an isolated path but nothing verifies "
                "its integrity before use",
            )


class ArtipackedRule(Rule):
    """Rule for persisted git credentials uploaded with the workspace"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="artipacked",
            severity="HIGH",
            description="Artifacts must not include the checkout's persisted credentials",
            remediation="Set 'persist-credentials: false' on actions/checkout or upload specific paths only",
            category="security",
            policy=policy,
        )
        self.persisting: Optional[Step] = None

    def visit_job_pre(self, job: Job) -> None:
        self.persisting = None

    def visit_step(self, step: Step) -> None:
        action = step.action
        if action is None:
            return
        if is_checkout(step):
            persist = action.input_value("persist-credentials")
            if persist is None or persist.value.strip().lower() != "false":
                self.persisting = step
            return
        if self.persisting is None or action.action_name != UPLOAD_ARTIFACT_ACTION:
            return
        path = action.input_value("path")
        if path is None:
            return
        lines = [line.strip() for line in path.value.splitlines() if line.strip()]
        if _is_workspace_path(path) or any(".git" in line.split("/") for line in lines):
            self.error(
                step.pos,
                f"{step.describe()} uploads the workspace, which includes the git credentials "
                f"persisted by the checkout at line {self.persisting.pos.line}",
            )
            logger.debug("artipacked upload in %s", step.describe())
