"""
parser.py - Tolerant structural parser for workflow files

This module turns raw workflow text into the position-annotated tree of
``wflint.core.ast``. Schema problems are reported as diagnostics and parsing
carries on with the sibling structure, so one broken job or step never hides
the rest of the document.
"""

import logging
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

import yaml
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from ..utils.yaml_handler import (
    FLOAT_TAG,
    INT_TAG,
    compose_yaml,
    is_null,
    mark_position,
    node_kind,
    node_position,
)
from .ast import (
    Container,
    EmbeddedExpression,
    Env,
    EnvVar,
    Event,
    ExecAction,
    ExecRun,
    Input,
    Job,
    PermissionScope,
    Permissions,
    Runner,
    Step,
    String,
    Workflow,
)
from .diagnostic import EXPRESSION_RULE_ID, SYNTAX_RULE_ID, Diagnostic, Position, Severity
from .expressions import ExpressionError, extract_expressions, parse_expression

logger = logging.getLogger(__name__)

WORKFLOW_KEYS = {"name", "run-name", "on", "permissions", "env", "defaults", "concurrency", "jobs"}

JOB_KEYS = {
    "name",
    "needs",
    "runs-on",
    "permissions",
    "environment",
    "concurrency",
    "outputs",
    "env",
    "defaults",
    "if",
    "steps",
    "timeout-minutes",
    "strategy",
    "continue-on-error",
    "container",
    "services",
    "uses",
    "with",
    "secrets",
}

STEP_KEYS = {
    "id",
    "if",
    "name",
    "uses",
    "run",
    "working-directory",
    "shell",
    "with",
    "env",
    "continue-on-error",
    "timeout-minutes",
}

KNOWN_EVENTS = {
    "branch_protection_rule",
    "check_run",
    "check_suite",
    "create",
    "delete",
    "deployment",
    "deployment_status",
    "discussion",
    "discussion_comment",
    "fork",
    "gollum",
    "issue_comment",
    "issues",
    "label",
    "merge_group",
    "milestone",
    "page_build",
    "project",
    "project_card",
    "project_column",
    "public",
    "pull_request",
    "pull_request_review",
    "pull_request_review_comment",
    "pull_request_target",
    "push",
    "registry_package",
    "release",
    "repository_dispatch",
    "schedule",
    "status",
    "watch",
    "workflow_call",
    "workflow_dispatch",
    "workflow_run",
}

EVENT_FILTER_KEYS = {
    "types",
    "branches",
    "branches-ignore",
    "tags",
    "tags-ignore",
    "paths",
    "paths-ignore",
    "workflows",
    "inputs",
    "secrets",
    "outputs",
}

ParseResult = Tuple[Optional[Workflow], List[Diagnostic]]


class WorkflowParser:
    """Builds a Workflow tree from YAML nodes, collecting diagnostics as it goes"""

    def __init__(self, source: str) -> None:
        self.source = source
        self.lines = source.splitlines()
        self.diagnostics: List[Diagnostic] = []

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def error(self, pos: Position, message: str, rule_id: str = SYNTAX_RULE_ID) -> None:
        logger.debug("parse diagnostic at %s: %s", pos, message)
        self.diagnostics.append(Diagnostic.at(pos, message, rule_id, Severity.HIGH))

    def _type_error(self, node: Node, expected: str, where: str) -> None:
        self.error(
            node_position(node),
            f"expected {expected} for {where} but found {node_kind(node)}",
        )

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _mapping(
        self, node: MappingNode, where: str, allowed: Optional[Set[str]] = None,
        case_insensitive: bool = False,
    ) -> List[Tuple[ScalarNode, Node]]:
        """Return mapping entries, reporting non-scalar, duplicate and unknown keys"""
        entries: List[Tuple[ScalarNode, Node]] = []
        seen: Dict[str, Position] = {}
        for key, value in node.value:
            if not isinstance(key, ScalarNode):
                self.error(node_position(key), f"keys of {where} must be strings")
                continue
            name = key.value.lower() if case_insensitive else key.value
            if name in seen:
                self.error(
                    node_position(key),
                    f"key {key.value!r} is duplicated in {where}; previously defined at "
                    f"line {seen[name].line}, column {seen[name].column}",
                )
                continue
            seen[name] = node_position(key)
            if allowed is not None and key.value not in allowed:
                self.error(
                    node_position(key),
                    f"unexpected key {key.value!r} for {where}; expected one of "
                    + ", ".join(repr(k) for k in sorted(allowed)),
                )
                continue
            entries.append((key, value))
        return entries

    def _block_position(self, node: ScalarNode, offset: int, value: str) -> Position:
        """Locate a span of a literal or folded scalar by its ``${{`` in the source"""
        wanted = value[:offset].count("${{")
        seen = 0
        first = node_position(node).line + 1
        last = min(node.end_mark.line + 1, len(self.lines))
        for line in range(first, last + 1):
            text = self.lines[line - 1]
            column = text.find("${{")
            while column != -1:
                if seen == wanted:
                    return Position(line, column + 1)
                seen += 1
                column = text.find("${{", column + 3)
        return node_position(node)

    def _expression_position(self, node: ScalarNode, offset: int, value: str) -> Position:
        base = node_position(node)
        if node.style in ("|", ">"):
            return self._block_position(node, offset, value)
        if "\n" in value[:offset]:
            return base
        shift = 1 if node.style in ("'", '"') else 0
        return Position(base.line, base.column + shift + offset)

    def _string(self, node: Node, where: str, allow_empty: bool = True) -> Optional[String]:
        if not isinstance(node, ScalarNode):
            self._type_error(node, "a string", where)
            return None
        value = "" if is_null(node) and node.value in ("", "~", "null") and not node.style else node.value
        if not allow_empty and not value.strip():
            self.error(node_position(node), f"{where} must not be empty")
            return None
        result = String(
            value=value,
            pos=node_position(node),
            quoted=node.style in ("'", '"'),
        )
        if "${{" in value:
            self._parse_embedded(node, result)
        return result

    def _parse_embedded(self, node: ScalarNode, target: String) -> None:
        try:
            spans = extract_expressions(target.value)
        except ExpressionError as e:
            self.error(
                self._expression_position(node, e.offset, target.value),
                f"invalid expression in {target.value.strip()!r}: {e.message}",
                EXPRESSION_RULE_ID,
            )
            return
        for source, offset in spans:
            pos = self._expression_position(node, offset, target.value)
            expr, err = parse_expression(source)
            if err is not None or expr is None:
                message = err.message if err is not None else "invalid expression"
                self.error(
                    pos,
                    f"could not parse expression '${{{{ {source} }}}}': {message}",
                    EXPRESSION_RULE_ID,
                )
                continue
            target.expressions.append(EmbeddedExpression(source, expr, pos, offset))

    def _condition(self, node: Node, where: str) -> Optional[String]:
        """Parse an ``if:`` value, which is an expression even without ``${{ }}``"""
        cond = self._string(node, where)
        if cond is None or cond.contains_expression or not cond.value.strip():
            return cond
        source = cond.value.strip()
        expr, err = parse_expression(source)
        if err is not None or expr is None:
            message = err.message if err is not None else "invalid expression"
            self.error(cond.pos, f"could not parse condition {source!r}: {message}", EXPRESSION_RULE_ID)
            return cond
        cond.expressions.append(EmbeddedExpression(source, expr, cond.pos, 0))
        return cond

    def _string_list(self, node: Node, where: str) -> List[String]:
        if isinstance(node, ScalarNode):
            item = self._string(node, where)
            return [item] if item is not None else []
        if isinstance(node, SequenceNode):
            items = []
            for child in node.value:
                item = self._string(child, f"element of {where}")
                if item is not None:
                    items.append(item)
            return items
        self._type_error(node, "a string or sequence", where)
        return []

    def _number(self, node: Node, where: str) -> Optional[float]:
        if isinstance(node, ScalarNode):
            if node.tag in (INT_TAG, FLOAT_TAG):
                try:
                    return float(node.value.replace("_", ""))
                except ValueError:
                    pass
            elif "${{" in node.value:
                self._string(node, where)
                return None
        self.error(
            node_position(node),
            f"expected a number for {where} but found "
            + (repr(node.value) if isinstance(node, ScalarNode) else node_kind(node)),
        )
        return None

    def _string_map(self, node: Node, where: str, lower_keys: bool = False) -> Dict[str, EnvVar]:
        result: Dict[str, EnvVar] = {}
        if is_null(node):
            return result
        if not isinstance(node, MappingNode):
            self._type_error(node, "a mapping", where)
            return result
        for key, value in self._mapping(node, where, case_insensitive=lower_keys):
            name = self._string(key, f"key of {where}")
            val = self._string(value, f"{where} {key.value!r}")
            if name is None or val is None:
                continue
            result[name.value.lower() if lower_keys else name.value] = EnvVar(name, val)
        return result

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _env(self, node: Node, where: str) -> Optional[Env]:
        pos = node_position(node)
        if isinstance(node, ScalarNode) and "${{" in node.value:
            return Env(pos=pos, expression=self._string(node, where))
        if is_null(node):
            return Env(pos=pos)
        if not isinstance(node, MappingNode):
            self._type_error(node, "a mapping", where)
            return None
        return Env(pos=pos, vars=self._string_map(node, where))

    def _permissions(self, node: Node, where: str) -> Optional[Permissions]:
        pos = node_position(node)
        if isinstance(node, ScalarNode):
            return Permissions(pos=pos, all=self._string(node, where))
        if not isinstance(node, MappingNode):
            self._type_error(node, "a string or mapping", where)
            return None
        scopes: Dict[str, PermissionScope] = {}
        for key, value in self._mapping(node, where):
            name = self._string(key, f"scope of {where}")
            val = self._string(value, f"{where} scope {key.value!r}")
            if name is not None and val is not None:
                scopes[name.value] = PermissionScope(name, val)
        return Permissions(pos=pos, scopes=scopes)

    def _inputs(self, node: Node, where: str) -> Dict[str, Input]:
        inputs: Dict[str, Input] = {}
        if is_null(node):
            return inputs
        if not isinstance(node, MappingNode):
            self._type_error(node, "a mapping", where)
            return inputs
        for key, value in self._mapping(node, where, case_insensitive=True):
            name = self._string(key, f"input name of {where}")
            if name is None:
                continue
            item = Input(name=name, pos=node_position(key))
            if isinstance(value, MappingNode):
                for k, v in self._mapping(value, f"input {key.value!r}"):
                    if k.value == "description":
                        item.description = self._string(v, "input description")
                    elif k.value == "default":
                        item.default = self._string(v, "input default")
                    elif k.value == "type":
                        item.type = self._string(v, "input type")
                    elif k.value == "required":
                        item.required = isinstance(v, ScalarNode) and v.value.lower() == "true"
            elif not is_null(value):
                self._type_error(value, "a mapping", f"input {key.value!r}")
            inputs[name.value.lower()] = item
        return inputs

    def _event(self, key: ScalarNode, value: Optional[Node]) -> Optional[Event]:
        name = self._string(key, "event name")
        if name is None:
            return None
        event = Event(name=name, pos=name.pos)
        if name.value.lower() not in KNOWN_EVENTS:
            self.error(name.pos, f"unknown event {name.value!r} in 'on' section")
            return None
        if value is None or is_null(value):
            return event

        if name.value == "schedule":
            if not isinstance(value, SequenceNode):
                self._type_error(value, "a sequence", "'schedule' event")
                return event
            for item in value.value:
                if not isinstance(item, MappingNode):
                    self._type_error(item, "a mapping", "'schedule' entry")
                    continue
                for k, v in self._mapping(item, "'schedule' entry", {"cron"}):
                    cron = self._string(v, "cron", allow_empty=False)
                    if cron is not None:
                        event.schedules.append(cron)
            return event

        if not isinstance(value, MappingNode):
            self._type_error(value, "a mapping", f"{name.value!r} event")
            return event

        for k, v in self._mapping(value, f"{name.value!r} event", EVENT_FILTER_KEYS):
            if k.value == "types":
                event.types = self._string_list(v, "'types'")
            elif k.value == "branches":
                event.branches = self._string_list(v, "'branches'")
            elif k.value == "branches-ignore":
                event.branches_ignore = self._string_list(v, "'branches-ignore'")
            elif k.value == "tags":
                event.tags = self._string_list(v, "'tags'")
            elif k.value == "tags-ignore":
                event.tags_ignore = self._string_list(v, "'tags-ignore'")
            elif k.value == "paths":
                event.paths = self._string_list(v, "'paths'")
            elif k.value == "paths-ignore":
                event.paths_ignore = self._string_list(v, "'paths-ignore'")
            elif k.value == "workflows":
                event.workflows = self._string_list(v, "'workflows'")
            elif k.value == "inputs":
                event.inputs = self._inputs(v, f"inputs of {name.value!r}")
            elif k.value == "secrets":
                if isinstance(v, MappingNode):
                    for sk, _ in self._mapping(v, "'secrets'", case_insensitive=True):
                        secret = self._string(sk, "secret name")
                        if secret is not None:
                            event.secrets[secret.value.lower()] = secret
                elif not is_null(v):
                    self._type_error(v, "a mapping", "'secrets'")
        return event

    def _on(self, node: Node) -> List[Event]:
        events: List[Event] = []
        if isinstance(node, ScalarNode):
            event = self._event(node, None)
            return [event] if event else []
        if isinstance(node, SequenceNode):
            seen: Set[str] = set()
            for item in node.value:
                if not isinstance(item, ScalarNode):
                    self._type_error(item, "an event name", "'on' section")
                    continue
                if item.value in seen:
                    self.error(node_position(item), f"event {item.value!r} is duplicated")
                    continue
                seen.add(item.value)
                event = self._event(item, None)
                if event:
                    events.append(event)
            return events
        if isinstance(node, MappingNode):
            for key, value in self._mapping(node, "'on' section"):
                event = self._event(key, value)
                if event:
                    events.append(event)
            return events
        self._type_error(node, "a string, sequence or mapping", "'on' section")
        return events

    def _runner(self, node: Node) -> Optional[Runner]:
        pos = node_position(node)
        if isinstance(node, (ScalarNode, SequenceNode)):
            return Runner(pos=pos, labels=self._string_list(node, "'runs-on'"))
        if isinstance(node, MappingNode):
            runner = Runner(pos=pos)
            for k, v in self._mapping(node, "'runs-on'", {"group", "labels"}):
                if k.value == "group":
                    runner.group = self._string(v, "runner group")
                else:
                    runner.labels = self._string_list(v, "runner labels")
            return runner
        self._type_error(node, "a string, sequence or mapping", "'runs-on'")
        return None

    def _container(self, node: Node, where: str) -> Optional[Container]:
        pos = node_position(node)
        if isinstance(node, ScalarNode):
            return Container(image=self._string(node, where), pos=pos)
        if not isinstance(node, MappingNode):
            self._type_error(node, "a string or mapping", where)
            return None
        container = Container(image=None, pos=pos)
        for k, v in self._mapping(node, where):
            if k.value == "image":
                container.image = self._string(v, f"image of {where}")
            elif k.value == "env":
                container.env = self._env(v, f"env of {where}")
            elif k.value == "credentials":
                if not isinstance(v, MappingNode):
                    self._type_error(v, "a mapping", f"credentials of {where}")
                    continue
                for ck, cv in self._mapping(v, f"credentials of {where}", {"username", "password"}):
                    if ck.value == "username":
                        container.username = self._string(cv, "username")
                    else:
                        container.password = self._string(cv, "password")
        return container

    def _matrix_values(self, node: Node, out: List[String]) -> None:
        if isinstance(node, ScalarNode):
            item = self._string(node, "matrix value")
            if item is not None:
                out.append(item)
        elif isinstance(node, SequenceNode):
            for child in node.value:
                self._matrix_values(child, out)
        elif isinstance(node, MappingNode):
            for _, value in self._mapping(node, "'strategy'"):
                self._matrix_values(value, out)

    def _step(self, node: Node, index: int, job_id: str) -> Optional[Step]:
        where = f"step {index + 1} of job {job_id!r}"
        if not isinstance(node, MappingNode):
            self._type_error(node, "a mapping", where)
            return None
        pos = node_position(node)
        entries = dict((k.value, (k, v)) for k, v in self._mapping(node, where, STEP_KEYS))

        run_entry = entries.get("run")
        uses_entry = entries.get("uses")
        if run_entry and uses_entry:
            self.error(
                node_position(uses_entry[0]),
                f"{where} cannot have both 'run' and 'uses'",
            )
            return None
        if not run_entry and not uses_entry:
            self.error(pos, f"{where} must run a script with 'run' or an action with 'uses'")
            return None

        exec_: Union[ExecRun, ExecAction]
        if run_entry:
            run = self._string(run_entry[1], f"'run' of {where}")
            if run is None:
                return None
            exec_ = ExecRun(run=run)
            if "shell" in entries:
                exec_.shell = self._string(entries["shell"][1], "'shell'")
            if "working-directory" in entries:
                exec_.working_directory = self._string(
                    entries["working-directory"][1], "'working-directory'"
                )
            if "with" in entries:
                self.error(node_position(entries["with"][0]), f"'with' is only valid with 'uses' in {where}")
        else:
            if uses_entry is None:
                return None
            uses = self._string(uses_entry[1], f"'uses' of {where}", allow_empty=False)
            if uses is None:
                return None
            exec_ = ExecAction(uses=uses)
            if "with" in entries:
                exec_.inputs = self._string_map(entries["with"][1], f"'with' of {where}", lower_keys=True)
            for key in ("shell", "working-directory"):
                if key in entries:
                    self.error(
                        node_position(entries[key][0]), f"{key!r} is only valid with 'run' in {where}"
                    )

        step = Step(pos=pos, exec=exec_, index=index)
        for key, (k, v) in entries.items():
            if key == "id":
                step.id = self._string(v, f"'id' of {where}", allow_empty=False)
            elif key == "name":
                step.name = self._string(v, f"'name' of {where}")
            elif key == "if":
                step.if_cond = self._condition(v, f"'if' of {where}")
            elif key == "env":
                step.env = self._env(v, f"'env' of {where}")
            elif key == "timeout-minutes":
                step.timeout_minutes = self._number(v, f"'timeout-minutes' of {where}")
            elif key == "continue-on-error":
                step.continue_on_error = self._string(v, f"'continue-on-error' of {where}")
        return step

    def _job(self, key: ScalarNode, node: Node) -> Optional[Job]:
        job_id = self._string(key, "job ID", allow_empty=False)
        if job_id is None:
            return None
        where = f"job {job_id.value!r}"
        if not isinstance(node, MappingNode):
            self._type_error(node, "a mapping", where)
            return None

        job = Job(id=job_id, pos=job_id.pos)
        entries = self._mapping(node, where, JOB_KEYS)
        keys = {k.value for k, _ in entries}
        handlers: Dict[str, Callable[[ScalarNode, Node], None]] = {
            "name": lambda k, v: setattr(job, "name", self._string(v, f"'name' of {where}")),
            "needs": lambda k, v: setattr(job, "needs", self._string_list(v, f"'needs' of {where}")),
            "runs-on": lambda k, v: setattr(job, "runs_on", self._runner(v)),
            "permissions": lambda k, v: setattr(
                job, "permissions", self._permissions(v, f"'permissions' of {where}")
            ),
            "env": lambda k, v: setattr(job, "env", self._env(v, f"'env' of {where}")),
            "if": lambda k, v: setattr(job, "if_cond", self._condition(v, f"'if' of {where}")),
            "outputs": lambda k, v: setattr(job, "outputs", self._string_map(v, f"'outputs' of {where}")),
            "container": lambda k, v: setattr(job, "container", self._container(v, f"container of {where}")),
            "uses": lambda k, v: setattr(job, "uses", self._string(v, f"'uses' of {where}", allow_empty=False)),
            "with": lambda k, v: setattr(
                job, "with_inputs", self._string_map(v, f"'with' of {where}", lower_keys=True)
            ),
            "continue-on-error": lambda k, v: setattr(
                job, "continue_on_error", self._string(v, f"'continue-on-error' of {where}")
            ),
        }
        for k, v in entries:
            name = k.value
            if name in handlers:
                handlers[name](k, v)
            elif name == "timeout-minutes":
                job.timeout_minutes = self._number(v, f"'timeout-minutes' of {where}")
                job.timeout_pos = node_position(k)
            elif name == "environment":
                self._job_environment(job, v, where)
            elif name == "services":
                self._job_services(job, v, where)
            elif name == "secrets":
                self._job_secrets(job, v, where)
            elif name == "strategy":
                if isinstance(v, MappingNode):
                    for sk, sv in self._mapping(v, f"'strategy' of {where}"):
                        if sk.value == "matrix":
                            self._matrix_values(sv, job.matrix_values)
                elif not (isinstance(v, ScalarNode) and "${{" in v.value):
                    self._type_error(v, "a mapping", f"'strategy' of {where}")
            elif name == "steps":
                self._job_steps(job, v, where)
            elif name in ("concurrency", "defaults"):
                if not isinstance(v, (MappingNode, ScalarNode)):
                    self._type_error(v, "a string or mapping", f"{name!r} of {where}")

        if "uses" in keys:
            for forbidden in ("runs-on", "steps"):
                if forbidden in keys:
                    self.error(job.pos, f"{where} calls a reusable workflow and cannot define {forbidden!r}")
        else:
            if "runs-on" not in keys:
                self.error(job.pos, f"'runs-on' section is missing in {where}")
            if "steps" not in keys:
                self.error(job.pos, f"'steps' section is missing in {where}")
        return job

    def _job_environment(self, job: Job, node: Node, where: str) -> None:
        if isinstance(node, ScalarNode):
            job.environment = self._string(node, f"'environment' of {where}")
        elif isinstance(node, MappingNode):
            for k, v in self._mapping(node, f"'environment' of {where}", {"name", "url"}):
                if k.value == "name":
                    job.environment = self._string(v, "environment name")
        else:
            self._type_error(node, "a string or mapping", f"'environment' of {where}")

    def _job_services(self, job: Job, node: Node, where: str) -> None:
        if not isinstance(node, MappingNode):
            self._type_error(node, "a mapping", f"'services' of {where}")
            return
        for k, v in self._mapping(node, f"'services' of {where}"):
            service = self._container(v, f"service {k.value!r}")
            if service is not None:
                job.services[k.value] = service

    def _job_secrets(self, job: Job, node: Node, where: str) -> None:
        if isinstance(node, ScalarNode):
            value = self._string(node, f"'secrets' of {where}")
            if value is not None and value.value == "inherit":
                job.inherit_secrets = value
            elif value is not None:
                self.error(value.pos, f"'secrets' of {where} must be 'inherit' or a mapping")
            return
        job.secrets = self._string_map(node, f"'secrets' of {where}", lower_keys=True)

    def _job_steps(self, job: Job, node: Node, where: str) -> None:
        if not isinstance(node, SequenceNode):
            self._type_error(node, "a sequence", f"'steps' of {where}")
            return
        if not node.value:
            self.error(node_position(node), f"'steps' of {where} must not be empty")
        for index, item in enumerate(node.value):
            step = self._step(item, index, job.id.value)
            if step is not None:
                job.steps.append(step)

    def parse_root(self, root: Node) -> Optional[Workflow]:
        if not isinstance(root, MappingNode):
            self.error(
                node_position(root),
                f"workflow must be a mapping but found {node_kind(root)}",
            )
            return None

        workflow = Workflow(pos=node_position(root))
        entries = self._mapping(root, "workflow", WORKFLOW_KEYS)
        keys = {k.value for k, _ in entries}
        for key, value in entries:
            name = key.value
            if name == "name":
                workflow.name = self._string(value, "workflow 'name'")
            elif name == "run-name":
                self._string(value, "'run-name'")
            elif name == "on":
                workflow.on = self._on(value)
            elif name == "permissions":
                workflow.permissions = self._permissions(value, "workflow 'permissions'")
            elif name == "env":
                workflow.env = self._env(value, "workflow 'env'")
            elif name == "concurrency":
                if isinstance(value, ScalarNode):
                    workflow.concurrency = self._string(value, "'concurrency'")
                elif not isinstance(value, MappingNode):
                    self._type_error(value, "a string or mapping", "'concurrency'")
            elif name == "defaults":
                if not isinstance(value, MappingNode):
                    self._type_error(value, "a mapping", "'defaults'")
            elif name == "jobs":
                self._jobs(workflow, value)

        if "on" not in keys:
            self.error(workflow.pos, "'on' section is missing in workflow")
        if "jobs" not in keys:
            self.error(workflow.pos, "'jobs' section is missing in workflow")
        return workflow

    def _jobs(self, workflow: Workflow, node: Node) -> None:
        if not isinstance(node, MappingNode):
            self._type_error(node, "a mapping", "'jobs'")
            return
        entries = self._mapping(node, "'jobs'", case_insensitive=True)
        if not entries:
            self.error(node_position(node), "'jobs' section must contain at least one job")
        for key, value in entries:
            job = self._job(key, value)
            if job is not None:
                workflow.jobs[job.id.value] = job


def parse(content: Union[str, bytes]) -> ParseResult:
    """
    Parse workflow text into a tree

    Args:
        content: Workflow document as text or UTF-8 bytes

    Returns:
        Tuple of (workflow or None, diagnostics). The workflow is None only
        when nothing usable could be recovered, and then diagnostics are
        never empty.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")

    parser = WorkflowParser(content)
    if not content.strip():
        parser.error(Position(1, 1), "workflow is empty")
        return None, parser.diagnostics

    try:
        root = compose_yaml(content)
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        problem = e.problem or str(e)
        parser.error(mark_position(mark), f"could not parse as YAML: {problem}")
        return None, parser.diagnostics
    except yaml.YAMLError as e:
        parser.error(Position(1, 1), f"could not parse as YAML: {e}")
        return None, parser.diagnostics
    except RecursionError:
        parser.error(Position(1, 1), "could not parse as YAML: document is nested too deeply")
        return None, parser.diagnostics

    if root is None or is_null(root):
        parser.error(Position(1, 1), "workflow is empty")
        return None, parser.diagnostics

    try:
        workflow = parser.parse_root(root)
    except RecursionError:
        parser.error(node_position(root), "workflow is nested too deeply to be checked")
        return None, parser.diagnostics
    logger.debug(
        "parsed workflow: %d job(s), %d diagnostic(s)",
        len(workflow.jobs) if workflow else 0,
        len(parser.diagnostics),
    )
    return workflow, parser.diagnostics
