"""
best_practices.py - Structural and best practice rules

This module provides rules focused on workflow correctness and hygiene rather
than strict security issues.
"""

import re
from typing import Dict, List, Optional, Set

from ..core.ast import Env, Job, Step, String, Workflow
from ..core.policy import LintPolicy
from .base import Rule


ID_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
SHA_PATTERN = re.compile(r"^[0-9a-f]{40}$")
DEPRECATED_COMMAND_PATTERN = re.compile(r"::(set-output|save-state|set-env|add-path)[\s:]")

PERMISSION_SCOPES = {
    "actions": ("read", "write", "none"),
    "attestations": ("read", "write", "none"),
    "checks": ("read", "write", "none"),
    "contents": ("read", "write", "none"),
    "deployments": ("read", "write", "none"),
    "discussions": ("read", "write", "none"),
    "id-token": ("write", "none"),
    "issues": ("read", "write", "none"),
    "models": ("read", "none"),
    "packages": ("read", "write", "none"),
    "pages": ("read", "write", "none"),
    "pull-requests": ("read", "write", "none"),
    "repository-projects": ("read", "write", "none"),
    "security-events": ("read", "write", "none"),
    "statuses": ("read", "write", "none"),
}

DEPRECATED_COMMANDS = {
    "set-output": 'echo "{name}={value}" >> "$GITHUB_OUTPUT"',
    "save-state": 'echo "{name}={value}" >> "$GITHUB_STATE"',
    "set-env": 'echo "{name}={value}" >> "$GITHUB_ENV"',
    "add-path": 'echo "{path}" >> "$GITHUB_PATH"',
}


class JobNeedsRule(Rule):
    """Rule for checking dependencies between jobs"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="job-needs",
            severity="HIGH",
            description="Jobs must only depend on jobs that exist, without cycles",
            remediation="Fix the job IDs listed in 'needs' and break dependency cycles",
            category="best-practice",
            policy=policy,
        )

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        job_ids = {job_id.lower(): job_id for job_id in workflow.jobs}
        graph: Dict[str, List[str]] = {}

        for job_id, job in workflow.jobs.items():
            seen: Set[str] = set()
            edges: List[str] = []
            for need in job.needs:
                target = need.value.lower()
                if target in seen:
                    self.error(need.pos, f"job {need.value!r} is listed more than once in 'needs' of job {job_id!r}")
                    continue
                seen.add(target)
                if target == job_id.lower():
                    self.error(need.pos, f"job {job_id!r} cannot depend on itself")
                    continue
                if target not in job_ids:
                    self.error(
                        need.pos,
                        f"job {job_id!r} needs job {need.value!r} which does not exist in this workflow",
                    )
                    continue
                edges.append(target)
            graph[job_id.lower()] = edges

        self._check_cycles(workflow, graph, job_ids)

    def _check_cycles(self, workflow: Workflow, graph: Dict[str, List[str]], names: Dict[str, str]) -> None:
        visited: Set[str] = set()
        for start in graph:
            if start in visited:
                continue
            stack = [(start, iter(graph[start]))]
            path = [start]
            on_path = {start}
            visited.add(start)
            while stack:
                node, edges = stack[-1]
                nxt = next(edges, None)
                if nxt is None:
                    stack.pop()
                    on_path.discard(path.pop())
                    continue
                if nxt in on_path:
                    cycle = path[path.index(nxt):] + [nxt]
                    job = workflow.jobs[names[nxt]]
                    self.error(
                        job.pos,
                        "cyclic dependency in 'needs': " + " -> ".join(names[c] for c in cycle),
                    )
                    continue
                if nxt not in visited:
                    visited.add(nxt)
                    on_path.add(nxt)
                    path.append(nxt)
                    stack.append((nxt, iter(graph.get(nxt, []))))


class EnvVarRule(Rule):
    """Rule for checking environment variable names"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="env-var",
            severity="MEDIUM",
            description="Environment variable names must not contain '=', '&' or spaces",
            remediation="Rename the variable using letters, digits and underscores",
            category="best-practice",
            policy=policy,
        )

    def _check_env(self, env: Optional[Env]) -> None:
        if env is None:
            return
        for var in env.vars.values():
            name = var.name
            if "${{" in name.value:
                continue
            if not name.value or re.search(r"[=&\s]", name.value):
                self.error(
                    name.pos,
                    f"environment variable name {name.value!r} is invalid; "
                    "'&', '=' and spaces are not allowed",
                )

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self._check_env(workflow.env)

    def visit_job_pre(self, job: Job) -> None:
        self._check_env(job.env)
        if job.container is not None:
            self._check_env(job.container.env)
        for service in job.services.values():
            self._check_env(service.env)

    def visit_step(self, step: Step) -> None:
        self._check_env(step.env)


class IdRule(Rule):
    """Rule for checking job and step IDs"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="id",
            severity="MEDIUM",
            description="Job and step IDs must be valid and step IDs unique within a job",
            remediation="IDs must start with a letter or '_' and contain only alphanumerics, '-' and '_'",
            category="best-practice",
            policy=policy,
        )
        self.step_ids: Dict[str, String] = {}

    def _check_id(self, value: String, kind: str) -> None:
        if "${{" in value.value:
            return
        if not ID_PATTERN.match(value.value):
            self.error(
                value.pos,
                f"invalid {kind} ID {value.value!r}; {kind} IDs must start with a letter or '_' "
                "and contain only alphanumeric characters, '-' or '_'",
            )

    def visit_job_pre(self, job: Job) -> None:
        self.step_ids = {}
        self._check_id(job.id, "job")

    def visit_step(self, step: Step) -> None:
        if step.id is None:
            return
        self._check_id(step.id, "step")
        key = step.id.value.lower()
        if key in self.step_ids:
            previous = self.step_ids[key]
            self.error(
                step.id.pos,
                f"step ID {step.id.value!r} duplicates the step ID at line {previous.pos.line}, "
                f"column {previous.pos.column}; step IDs must be unique within a job",
            )
        else:
            self.step_ids[key] = step.id


class PermissionsRule(Rule):
    """Rule for checking permissions blocks"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="permissions",
            severity="MEDIUM",
            description="Permissions must use known scopes and values, and avoid write-all",
            remediation="Grant only the scopes a job needs, e.g. 'contents: read'",
            category="security",
            policy=policy,
        )

    def _check(self, permissions, where: str) -> None:
        if permissions is None:
            return
        if permissions.all is not None:
            value = permissions.all.value
            if "${{" in value:
                return
            if value == "write-all":
                self.error(
                    permissions.all.pos,
                    f"'write-all' at {where} grants write access to every scope; "
                    "list only the scopes that need write access",
                    severity="HIGH",
                )
            elif value != "read-all":
                self.error(
                    permissions.all.pos,
                    f"{value!r} is not a valid value for permissions at {where}; "
                    "use 'read-all', 'write-all' or a mapping of scopes",
                )
            return

        for name, scope in permissions.scopes.items():
            allowed = PERMISSION_SCOPES.get(name)
            if allowed is None:
                self.error(
                    scope.name.pos,
                    f"unknown permission scope {name!r} at {where}; available scopes are "
                    + ", ".join(repr(s) for s in sorted(PERMISSION_SCOPES)),
                )
                continue
            if scope.value.value not in allowed:
                self.error(
                    scope.value.pos,
                    f"{scope.value.value!r} is not a valid value for permission scope {name!r}; "
                    "valid values are " + ", ".join(repr(v) for v in allowed),
                )

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self._check(workflow.permissions, "workflow level")

    def visit_job_pre(self, job: Job) -> None:
        self._check(job.permissions, f"job {job.id.value!r}")


class DeprecatedCommandsRule(Rule):
    """Rule for workflow commands that the runner no longer supports"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="deprecated-commands",
            severity="MEDIUM",
            description="Workflow commands set-output, save-state, set-env and add-path are disabled",
            remediation="Write to the $GITHUB_OUTPUT, $GITHUB_STATE, $GITHUB_ENV or $GITHUB_PATH files",
            category="best-practice",
            policy=policy,
        )

    def visit_step(self, step: Step) -> None:
        run = step.run
        if run is None:
            return
        for match in DEPRECATED_COMMAND_PATTERN.finditer(run.value):
            command = match.group(1)
            self.error(
                run.pos,
                f"workflow command {command!r} was deprecated; use "
                f"`{DEPRECATED_COMMANDS[command]}` instead",
            )


class ConditionalRule(Rule):
    """Rule for ``if:`` conditions that are always true"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="conditional",
            severity="HIGH",
            description="Conditions mixing ${{ }} with other text always evaluate to true",
            remediation="Wrap the whole condition in a single ${{ }} or remove the braces",
            category="best-practice",
            policy=policy,
        )

    def _check(self, cond: Optional[String]) -> None:
        if cond is None or not cond.contains_expression or cond.is_expression_only:
            return
        self.error(
            cond.pos,
            f"condition {cond.value.strip()!r} is always evaluated to true because extra "
            "characters surround the ${{ }}",
        )

    def visit_job_pre(self, job: Job) -> None:
        self._check(job.if_cond)

    def visit_step(self, step: Step) -> None:
        self._check(step.if_cond)


class TimeoutRule(Rule):
    """Rule for checking job timeouts"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="missing-timeout-minutes",
            severity="LOW",
            description="Jobs should have a timeout set to prevent hanging",
            remediation="Add timeout-minutes to jobs",
            category="best-practice",
            policy=policy,
        )
        self.min_steps = self.policy.timeout_min_steps

    def visit_job_pre(self, job: Job) -> None:
        if job.is_reusable_call or job.timeout_pos is not None:
            return
        if len(job.steps) < self.min_steps:
            return
        self.error(
            job.pos,
            f"job {job.id.value!r} has no 'timeout-minutes'; it can run for up to 6 hours",
        )


class CommitShaRule(Rule):
    """Rule for checking that actions are pinned to full commit SHAs"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="commit-sha",
            severity="MEDIUM",
            description="Actions should be pinned to a full-length commit SHA",
            remediation="Replace the tag or branch with the commit SHA, e.g. actions/checkout@<sha> # v4",
            category="security",
            policy=policy,
        )

    def _check_ref(self, uses: String, kind: str) -> None:
        value = uses.value
        if value.startswith("./") or value.startswith("docker://") or "${{" in value:
            return
        ref = value.rsplit("@", 1)[1] if "@" in value else ""
        if not SHA_PATTERN.match(ref):
            name = value.split("@", 1)[0]
            self.error(
                uses.pos,
                f"{kind} {name!r} is not pinned to a full-length commit SHA"
                + (f" (ref {ref!r})" if ref else ""),
            )

    def visit_job_pre(self, job: Job) -> None:
        if job.uses is not None:
            self._check_ref(job.uses, "reusable workflow")

    def visit_step(self, step: Step) -> None:
        action = step.action
        if action is None or action.is_local or action.is_docker:
            return
        self._check_ref(action.uses, "action")
