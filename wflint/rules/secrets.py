"""
secrets.py - Rules for credential and secret exposure

This module provides rules that find hard-coded credentials and secrets that
leak through logs, transformations, network commands or blanket inheritance.
"""

import logging
import re
from typing import Dict, Iterator, List, Optional, Tuple

from ..core.analysis import line_at, shell_variables
from ..core.ast import Env, Job, Step, String, Workflow
from ..core.expressions import (
    FuncCallNode,
    IndexAccessNode,
    StringNode,
    VariableNode,
    access_path,
    context_reads,
    walk,
)
from ..core.policy import LintPolicy
from .base import Rule, env_strings, step_strings

logger = logging.getLogger(__name__)

TOKEN_PATTERNS = (
    ("GitHub token", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b")),
    ("GitHub fine-grained token", re.compile(r"\bgithub_pat_[A-Za-z0-9_]{22,}\b")),
    ("AWS access key", re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b")),
    ("Slack token", re.compile(r"\bxox[abposr]-[A-Za-z0-9-]{10,}")),
    ("private key", re.compile(r"-----BEGIN (?:[A-Z]+ )?PRIVATE KEY-----")),
    ("npm token", re.compile(r"\bnpm_[A-Za-z0-9]{36}\b")),
)

TRANSFORM_COMMANDS = ("base64", "base32", "rev", "xxd", "od", "hexdump", "gzip", "openssl")

NETWORK_COMMANDS = ("curl", "wget", "nc", "netcat", "ncat", "telnet", "socat", "Invoke-WebRequest", "iwr")
DNS_COMMANDS = ("dig", "nslookup", "host")

ECHO_PATTERN = re.compile(r"(?:^|[;&|(]\s*|\s)(?:echo|printf|cat\s+<<)\b")
URL_HOST_PATTERN = re.compile(r"""(?:https?|ftp)://(?:[^@/\s"']+@)?([A-Za-z0-9.-]+)""")


def _command_pattern(names) -> "re.Pattern[str]":
    return re.compile(r"(?:^|[\s;&|(`])(" + "|".join(re.escape(n) for n in names) + r")(?=\s)")


NETWORK_PATTERN = _command_pattern(NETWORK_COMMANDS)
DNS_PATTERN = _command_pattern(DNS_COMMANDS)
TRANSFORM_PATTERN = re.compile(r"\|\s*(" + "|".join(TRANSFORM_COMMANDS) + r")\b")


def secret_reads(value: Optional[String]) -> List[Tuple[int, str]]:
    """(offset, secret name) for every ``secrets.X`` or ``github.token`` read in a string"""
    found: List[Tuple[int, str]] = []
    if value is None:
        return found
    for expr in value.expressions:
        for _, path in context_reads(expr.node):
            if path[0] == "secrets" and len(path) > 1:
                found.append((expr.offset, path[1]))
            elif path[:2] == ["github", "token"]:
                found.append((expr.offset, "github.token"))
    return found


def secret_env_vars(*envs: Optional[Env]) -> Dict[str, str]:
    """Environment variable name (upper-case) -> secret it is bound to"""
    result: Dict[str, str] = {}
    for env in envs:
        if env is None:
            continue
        for name, var in env.vars.items():
            reads = secret_reads(var.value)
            if reads:
                result[name.upper()] = reads[0][1]
            else:
                result.pop(name.upper(), None)
    return result


class CredentialsRule(Rule):
    """Rule for hard-coded credentials"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="credentials",
            severity="CRITICAL",
            description="Credentials must not be hard-coded in workflow files",
            remediation="Store the value as a repository secret and reference it with ${{ secrets.NAME }}",
            category="security",
            policy=policy,
        )

    def _check_literal(self, value: String, where: str) -> None:
        for label, pattern in TOKEN_PATTERNS:
            if pattern.search(value.value):
                self.error(value.pos, f"{label} is hard-coded in {where}; use a secret instead")
                return

    def _check_env(self, env: Optional[Env], where: str) -> None:
        for name, value in env_strings(env):
            self._check_literal(value, f"env {name!r} of {where}")

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        self._check_env(workflow.env, "workflow")

    def visit_job_pre(self, job: Job) -> None:
        where = f"job {job.id.value!r}"
        self._check_env(job.env, where)
        containers = [("container", job.container)] + [
            (f"service {name!r}", service) for name, service in job.services.items()
        ]
        for label, container in containers:
            if container is None:
                continue
            password = container.password
            if password is not None and password.value and not password.contains_expression:
                self.error(
                    password.pos,
                    f"password of {label} in {where} is hard-coded; use a secret instead",
                )
            self._check_env(container.env, f"{label} in {where}")
        for name, item in job.with_inputs.items():
            self._check_literal(item.value, f"input {name!r} of {where}")

    def visit_step(self, step: Step) -> None:
        where = step.describe()
        self._check_env(step.env, where)
        action = step.action
        if action is not None:
            for name, item in action.inputs.items():
                self._check_literal(item.value, f"input {name!r} of {where}")


class SecretExposureRule(Rule):
    """Rule for secrets that are printed or exposed wholesale"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="secret-exposure",
            severity="HIGH",
            description="Secrets must not be exposed through toJSON, dynamic access, conditions or logs",
            remediation="Reference each secret explicitly by name and never print it",
            category="security",
            policy=policy,
        )

    def _check_value(self, label: str, value: String, where: str) -> None:
        for expr in value.expressions:
            for node in walk(expr.node):
                if (
                    isinstance(node, FuncCallNode)
                    and node.callee.lower() == "tojson"
                    and len(node.args) == 1
                    and isinstance(node.args[0], VariableNode)
                    and node.args[0].name.lower() == "secrets"
                ):
                    self.error(
                        expr.pos,
                        f"'toJSON(secrets)' in {label} of {where} exposes every secret of the repository",
                    )
                elif (
                    isinstance(node, IndexAccessNode)
                    and isinstance(node.operand, VariableNode)
                    and node.operand.name.lower() == "secrets"
                    and not isinstance(node.index, StringNode)
                ):
                    self.error(
                        expr.pos,
                        f"secrets are accessed with a dynamic index in {label} of {where}; "
                        "any secret may be exposed",
                    )

        if label == "if":
            for _, name in secret_reads(value):
                self.error(
                    value.pos,
                    f"secret {name!r} is used in the condition of {where}; conditions are logged "
                    "and can reveal the secret one comparison at a time",
                )
                break

    def _check_run(self, step: Step, env_secrets: Dict[str, str]) -> None:
        run = step.run
        if run is None:
            return
        reported = set()
        for offset, name in secret_reads(run):
            line = line_at(run.value, offset)
            if ECHO_PATTERN.search(line) and name not in reported:
                reported.add(name)
                self.error(run.pos, f"secret {name!r} is printed by the script of {step.describe()}")
        for line in run.value.splitlines():
            if not ECHO_PATTERN.search(line) or ">>" in line:
                continue
            for var in shell_variables(line):
                secret = env_secrets.get(var.upper())
                if secret and secret not in reported:
                    reported.add(secret)
                    self.error(
                        run.pos,
                        f"secret {secret!r} is printed through ${var} by the script of {step.describe()}",
                    )

    def visit_workflow_pre(self, workflow: Workflow) -> None:
        for name, value in env_strings(workflow.env):
            self._check_value(f"env {name!r}", value, "workflow")

    def visit_job_pre(self, job: Job) -> None:
        where = f"job {job.id.value!r}"
        for name, value in env_strings(job.env):
            self._check_value(f"env {name!r}", value, where)
        if job.if_cond is not None:
            self._check_value("if", job.if_cond, where)
        for name, item in job.with_inputs.items():
            self._check_value(f"with.{name}", item.value, where)
        for name, item in job.secrets.items():
            self._check_value(f"secrets.{name}", item.value, where)

    def visit_step(self, step: Step) -> None:
        for label, value in step_strings(step):
            self._check_value(label, value, step.describe())
        workflow, job = self.workflow, self.job
        env_secrets = secret_env_vars(
            workflow.env if workflow else None, job.env if job else None, step.env
        )
        self._check_run(step, env_secrets)


class UnmaskedSecretExposureRule(Rule):
    """Rule for secrets derived into values the runner does not mask"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="unmasked-secret-exposure",
            severity="HIGH",
            description="Values derived from secrets are not masked in logs",
            remediation="Register derived values with '::add-mask::' or avoid transforming secrets",
            category="security",
            policy=policy,
        )

    def _from_json(self, value: String, where: str) -> None:
        for expr in value.expressions:
            for node in walk(expr.node):
                if isinstance(node, FuncCallNode) and node.callee.lower() == "fromjson" and node.args:
                    path = access_path(node.args[0])
                    if path and path[0] == "secrets":
                        self.error(
                            expr.pos,
                            f"'fromJSON({'.'.join(path)})' in {where} produces values that are not "
                            "masked in logs",
                        )

    def visit_job_pre(self, job: Job) -> None:
        for name, value in env_strings(job.env):
            self._from_json(value, f"env {name!r} of job {job.id.value!r}")

    def visit_step(self, step: Step) -> None:
        for label, value in step_strings(step):
            self._from_json(value, f"{label} of {step.describe()}")

        run = step.run
        if run is None:
            return
        workflow, job = self.workflow, self.job
        env_secrets = secret_env_vars(
            workflow.env if workflow else None, job.env if job else None, step.env
        )
        reads = secret_reads(run)
        for line, start in _lines_with_offsets(run.value):
            transform = TRANSFORM_PATTERN.search(line)
            if transform is None or "add-mask" in line:
                continue
            names = [name for offset, name in reads if start <= offset < start + len(line)]
            names += [env_secrets[v.upper()] for v in shell_variables(line) if v.upper() in env_secrets]
            if names:
                self.error(
                    run.pos,
                    f"secret {names[0]!r} is transformed with {transform.group(1)!r} in "
                    f"{step.describe()}; the result is not masked in logs",
                )


class SecretExfiltrationRule(Rule):
    """Rule for secrets sent to external hosts"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="secret-exfiltration",
            severity="CRITICAL",
            description="Secrets must not be sent to unknown hosts with network commands",
            remediation="Use official actions or CLIs of the service instead of raw network commands",
            category="security",
            policy=policy,
        )

    def _allowed(self, host: str) -> bool:
        host = host.lower().rstrip(".")
        return any(host == h or host.endswith("." + h) for h in self.policy.allowed_hosts)

    def visit_step(self, step: Step) -> None:
        run = step.run
        if run is None:
            return
        workflow, job = self.workflow, self.job
        env_secrets = secret_env_vars(
            workflow.env if workflow else None, job.env if job else None, step.env
        )
        reads = secret_reads(run)

        for line, start in _lines_with_offsets(run.value):
            names = [name for offset, name in reads if start <= offset < start + len(line)]
            names += [env_secrets[v.upper()] for v in shell_variables(line) if v.upper() in env_secrets]
            if not names:
                continue

            dns = DNS_PATTERN.search(line)
            if dns is not None:
                self.error(
                    run.pos,
                    f"secret {names[0]!r} is embedded in a DNS lookup with {dns.group(1)!r} in "
                    f"{step.describe()}; DNS queries can exfiltrate data",
                )
                continue

            network = NETWORK_PATTERN.search(line)
            if network is None:
                continue
            hosts = URL_HOST_PATTERN.findall(line)
            unknown = [h for h in hosts if not self._allowed(h)]
            if hosts and not unknown:
                continue
            target = f"host {unknown[0]!r}" if unknown else "an unknown destination"
            logger.debug("network command %s with secret in %s", network.group(1), step.describe())
            self.error(
                run.pos,
                f"secret {names[0]!r} is sent to {target} with {network.group(1)!r} in {step.describe()}",
            )


class SecretsInheritRule(Rule):
    """Rule for reusable workflow calls that inherit every secret"""

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="secrets-inherit",
            severity="MEDIUM",
            description="Reusable workflows should receive only the secrets they need",
            remediation="Replace 'secrets: inherit' with an explicit mapping of required secrets",
            category="security",
            policy=policy,
        )

    def visit_job_pre(self, job: Job) -> None:
        if job.inherit_secrets is None:
            return
        called = job.uses.value if job.uses is not None else "reusable workflow"
        self.error(
            job.inherit_secrets.pos,
            f"job {job.id.value!r} passes all secrets to {called!r} with 'secrets: inherit'; "
            "pass only the secrets the called workflow needs",
        )


def _lines_with_offsets(text: str) -> Iterator[Tuple[str, int]]:
    offset = 0
    for line in text.splitlines(keepends=True):
        yield line, offset
        offset += len(line)
