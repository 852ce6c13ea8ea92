"""
commands.py - Rules for untrusted input reaching commands of a script

Even when untrusted input reaches a script through an environment variable it
can still do damage: as an option to a command line tool, as a line written
to $GITHUB_OUTPUT or as the target of a network request. The tier of these
rules follows the trigger of the job: critical when a privileged trigger can
start it, medium otherwise.
"""

import re
from typing import Dict, Iterator, List, Optional, Tuple

from ..core.analysis import GITHUB_OUTPUT, GITHUB_SCRIPT_ACTION, file_write_ranges
from ..core.ast import EmbeddedExpression, Step, String
from ..core.policy import LintPolicy
from .injection import CRITICAL, MEDIUM, Finding, InjectionRule, _quoted

_COMMAND_RE = re.compile(
    r"^\s*(?:(?:sudo|nohup|time|nice|strace)(?:\s+-\S+)*\s+|timeout(?:\s+-\S+)*\s+\d\S*\s+)*"
    r"([A-Za-z0-9_][A-Za-z0-9_-]*)"
)
_END_OF_OPTIONS_RE = re.compile(r"(?:^|\s)--(?:\s|$)")
_VARIABLE_RE = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?")
_EXPR_SPAN_RE = re.compile(r"\$\{\{.*?\}\}")

# Tools that interpret a leading dash in any argument as an option.
ARGUMENT_COMMANDS = frozenset(
    """
    git curl wget tar zip unzip rsync scp ssh npm yarn pip python python3 node
    ruby perl php go cargo docker kubectl helm aws az gcloud gh jq sed awk grep
    find xargs env bash sh zsh pwsh make cmake mvn gradle ant
    """.split()
)

_MULTILINE_OUTPUT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*<<([A-Za-z0-9_-]+)")

_NETWORK_CALL_RE = re.compile(
    r"(?:^|[\s;&|(`])(?:curl|wget|nc|netcat|iwr|irm|Invoke-WebRequest|Invoke-RestMethod)(?:\s|$)"
    r"|\b(?:fetch|axios|got|request|urlopen)\s*\("
    r"|\b(?:axios|requests|http|https)\.(?:get|post|put|patch|delete|head|request)\s*\(",
)
_HOST_PREFIX_RE = re.compile(r"https?://$")
_URL_PREFIX_RE = re.compile(
    r"""(?:(?:^|[\s;&|(`])(?:curl|wget|iwr|irm)\s+(?:-{1,2}[\w-]+\s+)*|\(\s*)["'`]?$"""
)

# Instance metadata services of the major clouds.
CLOUD_METADATA_HOSTS = (
    "169.254.169.254",
    "169.254.170.2",
    "metadata.google.internal",
    "fd00:ec2::254",
    "100.100.100.200",
    "192.0.0.192",
)


def script_lines(script: str) -> Iterator[Tuple[int, str]]:
    """Yield (offset, line) for every line of a script, without line breaks"""
    offset = 0
    for line in script.splitlines(keepends=True):
        yield offset, line.rstrip("\r\n")
        offset += len(line)


def expressions_in(value: String, start: int, end: int) -> List[EmbeddedExpression]:
    return [expr for expr in value.expressions if start <= expr.offset < end]


def variables_in(line: str) -> Iterator[Tuple[int, str]]:
    """Yield (column, name) of the shell variables in a line, skipping ${{ }} spans"""
    masked = _EXPR_SPAN_RE.sub(lambda m: " " * len(m.group(0)), line)
    for match in _VARIABLE_RE.finditer(masked):
        yield match.start(), match.group(1)


class CommandRule(InjectionRule):
    """Untrusted input handed to a command inside a script"""

    def trigger_tier(self) -> str:
        return CRITICAL if self.job_privileged else MEDIUM

    @staticmethod
    def shell_taint(env_taint: Dict[str, List[str]]) -> Dict[str, List[str]]:
        return {name.upper(): sources for name, sources in env_taint.items()}


class ArgumentInjectionRule(CommandRule):
    """Untrusted input passed as a command-line argument"""

    def findings(self, step: Step, env_taint: Dict[str, List[str]]) -> List[Finding]:
        found: List[Finding] = []
        run = step.run
        if run is None:
            return found
        tier = self.trigger_tier()
        shell_taint = self.shell_taint(env_taint)

        for start, line in script_lines(run.value):
            if line.lstrip().startswith("#"):
                continue
            match = _COMMAND_RE.match(line)
            if match is None or match.group(1) not in ARGUMENT_COMMANDS:
                continue
            command = match.group(1)

            for expr in expressions_in(run, start + match.end(), start + len(line)):
                if _END_OF_OPTIONS_RE.search(line[: expr.offset - start]):
                    continue
                sources = self.tracker.sources_of(expr.node, env_taint)
                if sources:
                    found.append(
                        Finding(
                            tier,
                            f"{_quoted(sources)} is potentially untrusted and is passed as a "
                            f"command-line argument to '{command}' in {step.describe()}; "
                            "a value starting with '-' is read as an option",
                            expr.pos,
                        )
                    )

            for column, var in variables_in(line):
                if column < match.end() or _END_OF_OPTIONS_RE.search(line[:column]):
                    continue
                sources = shell_taint.get(var.upper())
                if sources:
                    found.append(
                        Finding(
                            tier,
                            f"${var} holds untrusted input ({_quoted(sources)}) and is passed as a "
                            f"command-line argument to '{command}' in {step.describe()}; "
                            "a value starting with '-' is read as an option",
                        )
                    )
        return found


class ArgumentInjectionCriticalRule(ArgumentInjectionRule):
    """Rule for option injection in jobs started by privileged triggers"""

    tier = CRITICAL

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="argument-injection-critical",
            severity="CRITICAL",
            description="Untrusted input must not be passed as an argument in privileged jobs",
            remediation="End option parsing with '--' before the value, or validate that it does not start with '-'",
            policy=policy,
        )


class ArgumentInjectionMediumRule(ArgumentInjectionRule):
    """Rule for option injection in jobs without privileged triggers"""

    tier = MEDIUM

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="argument-injection-medium",
            severity="MEDIUM",
            description="Untrusted input should not be passed as a command-line argument",
            remediation="End option parsing with '--' before the value, or validate that it does not start with '-'",
            policy=policy,
        )


class OutputClobberingRule(CommandRule):
    """Untrusted input written to $GITHUB_OUTPUT as a single-line value"""

    def findings(self, step: Step, env_taint: Dict[str, List[str]]) -> List[Finding]:
        found: List[Finding] = []
        run = step.run
        if run is None:
            return found
        tier = self.trigger_tier()
        shell_taint = self.shell_taint(env_taint)
        message = (
            "is written to $GITHUB_OUTPUT in {step}; a newline in it can overwrite other "
            "outputs of the step"
        )

        # Lines between "name<<DELIM" and "DELIM" belong to one multiline value
        delimiter: Optional[str] = None
        for start, end in file_write_ranges(run.value, GITHUB_OUTPUT):
            for line_start, line in script_lines(run.value[start:end]):
                line_start += start
                multiline = _MULTILINE_OUTPUT_RE.search(line)
                if multiline is not None:
                    delimiter = multiline.group(1)
                    continue
                if delimiter is not None:
                    if re.search(rf"(?<![\w-]){re.escape(delimiter)}(?![\w-])", line):
                        delimiter = None
                    continue

                for expr in expressions_in(run, line_start, line_start + len(line)):
                    sources = self.tracker.sources_of(expr.node, env_taint)
                    if sources:
                        found.append(
                            Finding(
                                tier,
                                f"{_quoted(sources)} is potentially untrusted and "
                                + message.format(step=step.describe()),
                                expr.pos,
                            )
                        )
                for _, var in variables_in(line):
                    sources = shell_taint.get(var.upper())
                    if sources:
                        found.append(
                            Finding(
                                tier,
                                f"${var} holds untrusted input ({_quoted(sources)}) and "
                                + message.format(step=step.describe()),
                            )
                        )
        return found


class OutputClobberingCriticalRule(OutputClobberingRule):
    """Rule for clobbered step outputs in jobs started by privileged triggers"""

    tier = CRITICAL

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="output-clobbering-critical",
            severity="CRITICAL",
            description="Untrusted input must not be written to $GITHUB_OUTPUT as a single-line value in privileged jobs",
            remediation="Write the value with the name<<DELIMITER syntax and a random delimiter",
            policy=policy,
        )


class OutputClobberingMediumRule(OutputClobberingRule):
    """Rule for clobbered step outputs in jobs without privileged triggers"""

    tier = MEDIUM

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="output-clobbering-medium",
            severity="MEDIUM",
            description="Untrusted input should not be written to $GITHUB_OUTPUT as a single-line value",
            remediation="Write the value with the name<<DELIMITER syntax and a random delimiter",
            policy=policy,
        )


class RequestForgeryRule(CommandRule):
    """Untrusted input deciding where a script sends network requests"""

    def findings(self, step: Step, env_taint: Dict[str, List[str]]) -> List[Finding]:
        found: List[Finding] = []
        tier = self.trigger_tier()
        sinks: List[Tuple[String, str]] = []
        if step.run is not None:
            sinks.append((step.run, "#"))
        action = step.action
        if action is not None and action.action_name == GITHUB_SCRIPT_ACTION:
            script = action.input_value("script")
            if script is not None:
                sinks.append((script, "//"))

        for value, comment in sinks:
            for start, line in script_lines(value.value):
                if line.lstrip().startswith(comment):
                    continue
                for host in CLOUD_METADATA_HOSTS:
                    if host in line:
                        found.append(
                            Finding(
                                tier,
                                f"{step.describe()} contacts the cloud metadata service at {host}, "
                                "which hands out credentials of the runner",
                                value.pos,
                            )
                        )
                if not _NETWORK_CALL_RE.search(line):
                    continue
                for expr in expressions_in(value, start, start + len(line)):
                    sources = self.tracker.sources_of(expr.node, env_taint)
                    if not sources:
                        continue
                    before = line[: expr.offset - start]
                    if _HOST_PREFIX_RE.search(before):
                        target = "the host"
                    elif _URL_PREFIX_RE.search(before):
                        target = "the whole URL"
                    else:
                        target = "part of the URL"
                    found.append(
                        Finding(
                            tier,
                            f"{_quoted(sources)} is potentially untrusted and decides {target} of a "
                            f"network request in {step.describe()}; an attacker can redirect the "
                            "request and its credentials",
                            expr.pos,
                        )
                    )
        return found


class RequestForgeryCriticalRule(RequestForgeryRule):
    """Rule for request forgery in jobs started by privileged triggers"""

    tier = CRITICAL

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="request-forgery-critical",
            severity="CRITICAL",
            description="Untrusted input must not decide the target of network requests in privileged jobs",
            remediation="Build request URLs from fixed hosts and validate untrusted path segments against an allowlist",
            policy=policy,
        )


class RequestForgeryMediumRule(RequestForgeryRule):
    """Rule for request forgery in jobs without privileged triggers"""

    tier = MEDIUM

    def __init__(self, policy: Optional[LintPolicy] = None):
        super().__init__(
            rule_id="request-forgery-medium",
            severity="MEDIUM",
            description="Untrusted input should not decide the target of network requests",
            remediation="Build request URLs from fixed hosts and validate untrusted path segments against an allowlist",
            policy=policy,
        )
