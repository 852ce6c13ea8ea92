"""
analysis.py - Shared workflow analysis helpers

Trigger classification, checkout/cache action recognition, detection of
writes to the runner's environment files, and the per-job taint tracking
used by the injection, checkout and poisoning rules.
"""

import json
import logging
import re
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .ast import Env, ExecAction, Job, Step, String
from .expressions import (
    CompareOpNode,
    ExprNode,
    FuncCallNode,
    LogicalOpNode,
    NotOpNode,
    ObjectDerefNode,
    StringNode,
    VariableNode,
    access_path,
    context_reads,
)
from .untrusted import DEFAULT_SANITIZING_FUNCTIONS, UntrustedContextTable

logger = logging.getLogger(__name__)

# Triggers that run with write tokens and secrets while being started by
# people outside the repository.
PRIVILEGED_TRIGGERS: FrozenSet[str] = frozenset(
    {
        "pull_request_target",
        "workflow_run",
        "issue_comment",
        "issues",
        "discussion_comment",
    }
)

# Triggers whose event payload can be controlled by outside contributors.
UNTRUSTED_TRIGGERS: FrozenSet[str] = PRIVILEGED_TRIGGERS | frozenset(
    {
        "pull_request",
        "pull_request_review",
        "pull_request_review_comment",
        "discussion",
        "fork",
        "watch",
    }
)

UNSAFE_CHECKOUT_REF_PATTERNS: Tuple[str, ...] = (
    "github.event.pull_request.head.sha",
    "github.event.pull_request.head.ref",
    "github.event.pull_request.merge_commit_sha",
    "github.event.workflow_run.head_sha",
    "github.event.workflow_run.head_branch",
    "github.event.workflow_run.head_commit.id",
    "github.head_ref",
    "refs/pull/",
)

MUTABLE_REF_PATTERNS: Tuple[str, ...] = (
    "github.event.pull_request.head.ref",
    "github.head_ref",
    "github.event.workflow_run.head_branch",
)

CHECKOUT_ACTION = "actions/checkout"
CACHE_ACTION = "actions/cache"
GITHUB_SCRIPT_ACTION = "actions/github-script"
UPLOAD_ARTIFACT_ACTION = "actions/upload-artifact"
DOWNLOAD_ARTIFACT_ACTIONS = ("actions/download-artifact", "dawidd6/action-download-artifact")

GITHUB_ENV = "GITHUB_ENV"
GITHUB_PATH = "GITHUB_PATH"
GITHUB_OUTPUT = "GITHUB_OUTPUT"

_SHELL_VAR_RE = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?")
_ASSIGN_RE = re.compile(r"^\s*(?:export\s+|local\s+|declare\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
_HEREDOC_RE = re.compile(r"<<-?\s*['\"]?([A-Za-z_][A-Za-z0-9_]*)['\"]?")
_EXPR_SPAN_RE = re.compile(r"\$\{\{.*?\}\}")


def is_privileged_trigger(name: str) -> bool:
    return name.lower() in PRIVILEGED_TRIGGERS


def is_untrusted_trigger(name: str) -> bool:
    return name.lower() in UNTRUSTED_TRIGGERS


def is_unsafe_checkout_ref(value: str) -> bool:
    """True if a checkout ref points at code controlled by the pull request author"""
    return any(pattern in value for pattern in UNSAFE_CHECKOUT_REF_PATTERNS)


def is_mutable_ref(value: str) -> bool:
    """True if a checkout ref names a branch that can move after review"""
    return any(pattern in value for pattern in MUTABLE_REF_PATTERNS)


def is_checkout(step: Step) -> bool:
    action = step.action
    return action is not None and action.action_name == CHECKOUT_ACTION


def checkout_ref(step: Step) -> Optional[String]:
    action = step.action
    if action is None or action.action_name != CHECKOUT_ACTION:
        return None
    return action.input_value("ref")


def is_untrusted_checkout(step: Step) -> bool:
    ref = checkout_ref(step)
    return ref is not None and is_unsafe_checkout_ref(ref.value)


def is_cache_action(action: ExecAction) -> bool:
    """``actions/cache`` and ``actions/setup-*`` with caching switched on"""
    name = action.action_name
    if name == CACHE_ACTION or name.startswith(CACHE_ACTION + "/"):
        return True
    if name.startswith("actions/setup-"):
        cache = action.input_value("cache")
        return cache is not None and cache.value.strip() not in ("", "false")
    return False


def executes_workspace_code(step: Step) -> bool:
    """Run scripts and local actions execute files from the checked out workspace"""
    if step.run is not None:
        return True
    action = step.action
    return action is not None and action.is_local


# ---------------------------------------------------------------------------
# Script analysis
# ---------------------------------------------------------------------------


def _redirect_pattern(target: str) -> "re.Pattern[str]":
    var = r"""["']?\$\{?""" + target + r"""\}?["']?"""
    return re.compile(r"(?:>>?\s*" + var + r"|\btee\b(?:\s+-a)?\s+" + var + r")")


_REDIRECTS = {target: _redirect_pattern(target) for target in (GITHUB_ENV, GITHUB_PATH, GITHUB_OUTPUT)}


def file_write_ranges(script: str, target: str) -> List[Tuple[int, int]]:
    """
    Find the parts of a script whose output is appended to a runner file

    A line redirecting to ``$GITHUB_ENV`` (or the other runner files) counts
    as a write, and so does the body of a heredoc started on such a line.

    Args:
        script: Run script
        target: ``GITHUB_ENV``, ``GITHUB_PATH`` or ``GITHUB_OUTPUT``

    Returns:
        List of (start, end) character offsets into the script
    """
    pattern = _REDIRECTS.get(target) or _redirect_pattern(target)
    ranges: List[Tuple[int, int]] = []
    lines = script.splitlines(keepends=True)
    offset = 0
    i = 0
    while i < len(lines):
        line = lines[i]
        start = offset
        offset += len(line)
        i += 1
        if not pattern.search(line):
            continue
        ranges.append((start, start + len(line)))
        heredoc = _HEREDOC_RE.search(line)
        if heredoc is None:
            continue
        delimiter = heredoc.group(1)
        body_start = offset
        while i < len(lines):
            body_line = lines[i]
            offset += len(body_line)
            i += 1
            if body_line.strip() == delimiter:
                break
        ranges.append((body_start, offset))
    return ranges


def in_ranges(offset: int, ranges: Iterable[Tuple[int, int]]) -> bool:
    return any(start <= offset < end for start, end in ranges)


def shell_variables(text: str) -> List[str]:
    """Names of shell variables referenced as ``$NAME`` or ``${NAME}``"""
    # ${{ }} spans are not shell variables
    return _SHELL_VAR_RE.findall(_EXPR_SPAN_RE.sub("", text))


def line_at(script: str, offset: int) -> str:
    start = script.rfind("\n", 0, offset) + 1
    end = script.find("\n", offset)
    return script[start : end if end != -1 else len(script)]


# ---------------------------------------------------------------------------
# Taint
# ---------------------------------------------------------------------------


def untrusted_in_string(
    value: Optional[String],
    table: UntrustedContextTable,
    sanitizers: FrozenSet[str] = DEFAULT_SANITIZING_FUNCTIONS,
) -> List[str]:
    """Untrusted paths interpolated anywhere in a string value"""
    found: List[str] = []
    if value is None:
        return found
    for expr in value.expressions:
        for path in table.find_untrusted(expr.node, sanitizers):
            if path not in found:
                found.append(path)
    return found


def tainted_env(
    envs: Iterable[Optional[Env]],
    table: UntrustedContextTable,
    sanitizers: FrozenSet[str] = DEFAULT_SANITIZING_FUNCTIONS,
) -> Dict[str, List[str]]:
    """
    Compute which environment variables carry untrusted input

    Later scopes override earlier ones, so pass workflow, job then step env.

    Returns:
        Mapping of variable name to the untrusted paths it was built from
    """
    result: Dict[str, List[str]] = {}
    for env in envs:
        if env is None:
            continue
        for name, var in env.vars.items():
            sources = untrusted_in_string(var.value, table, sanitizers)
            if sources:
                result[name] = sources
            else:
                result.pop(name, None)
    return result


def env_reference(node: ExprNode) -> Optional[str]:
    """Name of the variable read by ``env.NAME``, or None"""
    path = access_path(node)
    if path and len(path) == 2 and path[0] == "env":
        return path[1]
    return None


def step_output_reference(node: ExprNode) -> Optional[Tuple[str, str]]:
    """``(step_id, output)`` read by ``steps.<id>.outputs.<name>``, or None"""
    path = access_path(node)
    if path and len(path) >= 4 and path[0] == "steps" and path[2] == "outputs":
        return path[1], path[3]
    return None


class TaintTracker:
    """
    Track step outputs that carry untrusted input within one job

    Writes to ``$GITHUB_OUTPUT`` are followed through echo/printf lines,
    heredocs and shell variables assigned from untrusted expressions or
    tainted environment variables.
    """

    def __init__(
        self,
        table: UntrustedContextTable,
        sanitizers: FrozenSet[str] = DEFAULT_SANITIZING_FUNCTIONS,
    ) -> None:
        self.table = table
        self.sanitizers = sanitizers
        self.tainted_outputs: Dict[str, Dict[str, List[str]]] = {}

    def reset(self) -> None:
        self.tainted_outputs = {}

    def analyze_step(self, step: Step, env_taint: Optional[Dict[str, List[str]]] = None) -> None:
        run = step.run
        if step.id is None or run is None or not step.id.value:
            return
        script = run.value
        ranges = file_write_ranges(script, GITHUB_OUTPUT)
        if not ranges:
            return

        env_taint = env_taint or {}
        sources_at: List[Tuple[int, List[str]]] = []
        for expr in run.expressions:
            sources = self.sources_of(expr.node, env_taint)
            if sources:
                sources_at.append((expr.offset, sources))

        shell_taint: Dict[str, List[str]] = {
            name.upper(): list(sources) for name, sources in env_taint.items()
        }
        shell_taint.update(self._tainted_assignments(script, sources_at, shell_taint))

        step_id = step.id.value.lower()
        for start, end in ranges:
            segment = script[start:end]
            names = self._output_names(segment)
            if not names:
                continue
            sources: List[str] = []
            for offset, expr_sources in sources_at:
                if start <= offset < end:
                    sources.extend(expr_sources)
            for var in shell_variables(segment):
                sources.extend(shell_taint.get(var.upper(), []))
            if not sources:
                continue
            for name in names:
                self.tainted_outputs.setdefault(step_id, {})[name.lower()] = _dedupe(sources)
                logger.debug("step output %s.%s is tainted by %s", step_id, name, sources)

    def _tainted_assignments(
        self,
        script: str,
        sources_at: List[Tuple[int, List[str]]],
        known: Dict[str, List[str]],
    ) -> Dict[str, List[str]]:
        tainted: Dict[str, List[str]] = {}
        offset = 0
        for line in script.splitlines(keepends=True):
            match = _ASSIGN_RE.match(line)
            if match:
                sources = [
                    s for o, srcs in sources_at if offset <= o < offset + len(line) for s in srcs
                ]
                for var in shell_variables(match.group(2)):
                    sources.extend(known.get(var.upper(), []) + tainted.get(var.upper(), []))
                if sources:
                    tainted[match.group(1).upper()] = _dedupe(sources)
            offset += len(line)
        return tainted

    @staticmethod
    def _output_names(segment: str) -> List[str]:
        names = []
        for line in segment.splitlines():
            stripped = line.strip()
            match = re.search(r"""(?:echo|printf)\s+(?:-e\s+)?["']?([A-Za-z_][A-Za-z0-9_-]*)=""", stripped)
            if match is None:
                match = re.match(r"([A-Za-z_][A-Za-z0-9_-]*)=", stripped)
            if match is not None:
                names.append(match.group(1))
        return names

    def sources_of(self, node: ExprNode, env_taint: Optional[Dict[str, List[str]]] = None) -> List[str]:
        """Untrusted paths reaching an expression directly or through env / step outputs"""
        sources = list(self.table.find_untrusted(node, self.sanitizers))
        sources.extend(self.indirect_sources(node, env_taint))
        return _dedupe(sources)

    def indirect_sources(
        self, node: ExprNode, env_taint: Optional[Dict[str, List[str]]] = None
    ) -> List[str]:
        """Untrusted paths reaching an expression only through env vars or step outputs"""
        sources: List[str] = []
        for read, _ in context_reads(node):
            ref = step_output_reference(read)
            if ref is not None:
                sources.extend(self.tainted_outputs.get(ref[0], {}).get(ref[1], []))
                continue
            name = env_reference(read)
            if name is not None and env_taint:
                for key, value in env_taint.items():
                    if key.lower() == name:
                        sources.extend(value)
        return _dedupe(sources)


def _dedupe(items: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


# ---------------------------------------------------------------------------
# Job reachability
# ---------------------------------------------------------------------------


class _EventConstraint:
    def __init__(self, included: Optional[Set[str]] = None, excluded: Optional[Set[str]] = None):
        self.included = included or set()
        self.excluded = excluded or set()


class JobTriggerAnalyzer:
    """
    Narrow the workflow triggers a job can actually run under

    Conditions like ``github.event_name == 'push'`` or
    ``contains(fromJSON('["push"]'), github.event_name)`` in a job's ``if:``
    restrict the triggers; anything the analyzer does not understand leaves
    all workflow triggers in place.
    """

    def __init__(self, triggers: List[str]) -> None:
        self.triggers = [t.lower() for t in triggers]

    def effective_triggers(self, job: Job) -> List[str]:
        cond = job.if_cond
        if cond is None or len(cond.expressions) != 1:
            return list(self.triggers)
        constraint = self._extract(cond.expressions[0].node)
        if constraint is None:
            return list(self.triggers)
        return [
            t
            for t in self.triggers
            if (not constraint.included or t in constraint.included) and t not in constraint.excluded
        ]

    def has_privileged_trigger(self, job: Job) -> bool:
        return any(is_privileged_trigger(t) for t in self.effective_triggers(job))

    def has_untrusted_trigger(self, job: Job) -> bool:
        return any(is_untrusted_trigger(t) for t in self.effective_triggers(job))

    def _extract(self, node: ExprNode) -> Optional[_EventConstraint]:
        if isinstance(node, CompareOpNode):
            return self._from_compare(node)
        if isinstance(node, LogicalOpNode):
            left = self._extract(node.left) if node.left else None
            right = self._extract(node.right) if node.right else None
            if node.kind == "&&":
                if left is None:
                    return right
                if right is None:
                    return left
                return self._intersect(left, right)
            if left is None or right is None:
                return None
            return self._union(left, right)
        if isinstance(node, NotOpNode) and node.operand is not None:
            inner = self._extract(node.operand)
            if inner is None:
                return None
            return _EventConstraint(included=inner.excluded, excluded=inner.included)
        if isinstance(node, FuncCallNode):
            return self._from_contains(node)
        return None

    @staticmethod
    def _is_event_name(node: Optional[ExprNode]) -> bool:
        return (
            isinstance(node, ObjectDerefNode)
            and node.property.lower() == "event_name"
            and isinstance(node.receiver, VariableNode)
            and node.receiver.name.lower() == "github"
        )

    def _from_compare(self, node: CompareOpNode) -> Optional[_EventConstraint]:
        if self._is_event_name(node.left):
            value = node.right
        elif self._is_event_name(node.right):
            value = node.left
        else:
            return None
        if not isinstance(value, StringNode) or not value.value:
            return None
        if node.kind == "==":
            return _EventConstraint(included={value.value.lower()})
        if node.kind == "!=":
            return _EventConstraint(excluded={value.value.lower()})
        return None

    def _from_contains(self, node: FuncCallNode) -> Optional[_EventConstraint]:
        if node.callee.lower() != "contains" or len(node.args) != 2:
            return None
        if not self._is_event_name(node.args[1]):
            return None
        values = self._json_array(node.args[0])
        if not values:
            return None
        return _EventConstraint(included={v.lower() for v in values})

    @staticmethod
    def _json_array(node: ExprNode) -> List[str]:
        if not isinstance(node, FuncCallNode) or node.callee.lower() != "fromjson" or len(node.args) != 1:
            return []
        arg = node.args[0]
        if not isinstance(arg, StringNode):
            return []
        try:
            data = json.loads(arg.value)
        except ValueError:
            return []
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, str)]

    @staticmethod
    def _intersect(left: _EventConstraint, right: _EventConstraint) -> _EventConstraint:
        if left.included and right.included:
            included = left.included & right.included
        else:
            included = left.included | right.included
        return _EventConstraint(included=included, excluded=left.excluded | right.excluded)

    @staticmethod
    def _union(left: _EventConstraint, right: _EventConstraint) -> _EventConstraint:
        excluded: Set[str] = set()
        if left.excluded and right.excluded:
            excluded = left.excluded & right.excluded
        return _EventConstraint(included=left.included | right.included, excluded=excluded)
