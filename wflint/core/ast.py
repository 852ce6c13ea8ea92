"""
ast.py - Position-annotated workflow tree

The structural parser builds these nodes once per lint call. Rules only read
them; nothing in the tree points back to diagnostics.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .diagnostic import Position
from .expressions import ExprNode


@dataclass
class EmbeddedExpression:
    """A parsed ``${{ }}`` span inside a string value"""

    source: str
    node: ExprNode
    pos: Position
    offset: int = 0


@dataclass
class String:
    """Scalar string value with its position and embedded expressions"""

    value: str
    pos: Position
    quoted: bool = False
    expressions: List[EmbeddedExpression] = field(default_factory=list)

    @property
    def contains_expression(self) -> bool:
        return "${{" in self.value

    @property
    def is_expression_only(self) -> bool:
        """True when the whole value is one ``${{ }}`` span"""
        stripped = self.value.strip()
        return (
            len(self.expressions) == 1
            and stripped.startswith("${{")
            and stripped.endswith("}}")
            and stripped.count("${{") == 1
        )

    def __str__(self) -> str:
        return self.value


@dataclass
class Input:
    """Input definition of workflow_dispatch / workflow_call"""

    name: String
    description: Optional[String] = None
    required: bool = False
    default: Optional[String] = None
    type: Optional[String] = None
    pos: Optional[Position] = None


@dataclass
class Event:
    """A workflow trigger from the ``on:`` section"""

    name: String
    pos: Position
    types: List[String] = field(default_factory=list)
    branches: Optional[List[String]] = None
    branches_ignore: Optional[List[String]] = None
    tags: Optional[List[String]] = None
    tags_ignore: Optional[List[String]] = None
    paths: Optional[List[String]] = None
    paths_ignore: Optional[List[String]] = None
    workflows: List[String] = field(default_factory=list)
    inputs: Dict[str, Input] = field(default_factory=dict)
    secrets: Dict[str, String] = field(default_factory=dict)
    schedules: List[String] = field(default_factory=list)

    @property
    def event_name(self) -> str:
        return self.name.value.lower()

    def has_type(self, type_name: str) -> bool:
        return any(t.value == type_name for t in self.types)


@dataclass
class PermissionScope:
    name: String
    value: String


@dataclass
class Permissions:
    """``permissions:`` at workflow or job level"""

    pos: Position
    all: Optional[String] = None
    scopes: Dict[str, PermissionScope] = field(default_factory=dict)

    @property
    def is_write_all(self) -> bool:
        return self.all is not None and self.all.value == "write-all"

    def write_scopes(self) -> List[str]:
        if self.is_write_all:
            return ["write-all"]
        return [name for name, scope in self.scopes.items() if scope.value.value == "write"]


@dataclass
class EnvVar:
    name: String
    value: String


@dataclass
class Env:
    """``env:`` mapping, or a single expression producing the mapping"""

    pos: Position
    vars: Dict[str, EnvVar] = field(default_factory=dict)
    expression: Optional[String] = None


@dataclass
class Runner:
    """``runs-on:`` specification"""

    pos: Position
    labels: List[String] = field(default_factory=list)
    group: Optional[String] = None

    @property
    def is_self_hosted(self) -> bool:
        if self.group is not None:
            return True
        return any(label.value.lower() == "self-hosted" for label in self.labels)


@dataclass
class ExecRun:
    """Inline script step"""

    run: String
    shell: Optional[String] = None
    working_directory: Optional[String] = None


@dataclass
class ExecAction:
    """Step that invokes an action"""

    uses: String
    inputs: Dict[str, EnvVar] = field(default_factory=dict)

    @property
    def action_name(self) -> str:
        """Action reference without the ``@ref`` suffix, lower-cased"""
        return self.uses.value.split("@", 1)[0].lower()

    @property
    def ref(self) -> Optional[str]:
        if "@" not in self.uses.value:
            return None
        return self.uses.value.rsplit("@", 1)[1]

    @property
    def is_local(self) -> bool:
        return self.uses.value.startswith("./")

    @property
    def is_docker(self) -> bool:
        return self.uses.value.startswith("docker://")

    def input_value(self, name: str) -> Optional[String]:
        entry = self.inputs.get(name.lower())
        return entry.value if entry else None


Exec = Union[ExecRun, ExecAction]


@dataclass
class Step:
    """A step of a job"""

    pos: Position
    exec: Exec
    index: int = 0
    id: Optional[String] = None
    name: Optional[String] = None
    if_cond: Optional[String] = None
    env: Optional[Env] = None
    timeout_minutes: Optional[float] = None
    continue_on_error: Optional[String] = None

    @property
    def run(self) -> Optional[String]:
        return self.exec.run if isinstance(self.exec, ExecRun) else None

    @property
    def action(self) -> Optional[ExecAction]:
        return self.exec if isinstance(self.exec, ExecAction) else None

    def describe(self) -> str:
        if self.id is not None:
            return f"step '{self.id.value}'"
        if self.name is not None:
            return f"step '{self.name.value}'"
        return f"step {self.index + 1}"


@dataclass
class Container:
    image: Optional[String]
    pos: Position
    username: Optional[String] = None
    password: Optional[String] = None
    env: Optional[Env] = None


@dataclass
class Job:
    """A job of a workflow"""

    id: String
    pos: Position
    name: Optional[String] = None
    needs: List[String] = field(default_factory=list)
    runs_on: Optional[Runner] = None
    permissions: Optional[Permissions] = None
    env: Optional[Env] = None
    if_cond: Optional[String] = None
    steps: List[Step] = field(default_factory=list)
    timeout_minutes: Optional[float] = None
    timeout_pos: Optional[Position] = None
    environment: Optional[String] = None
    outputs: Dict[str, EnvVar] = field(default_factory=dict)
    container: Optional[Container] = None
    services: Dict[str, Container] = field(default_factory=dict)
    matrix_values: List[String] = field(default_factory=list)
    uses: Optional[String] = None
    with_inputs: Dict[str, EnvVar] = field(default_factory=dict)
    secrets: Dict[str, EnvVar] = field(default_factory=dict)
    inherit_secrets: Optional[String] = None
    continue_on_error: Optional[String] = None

    @property
    def is_reusable_call(self) -> bool:
        return self.uses is not None


@dataclass
class Workflow:
    """Root of the parsed document"""

    pos: Position
    name: Optional[String] = None
    on: List[Event] = field(default_factory=list)
    permissions: Optional[Permissions] = None
    env: Optional[Env] = None
    concurrency: Optional[String] = None
    jobs: Dict[str, Job] = field(default_factory=dict)

    def event_names(self) -> List[str]:
        return [e.event_name for e in self.on]

    def find_event(self, name: str) -> Optional[Event]:
        for event in self.on:
            if event.event_name == name:
                return event
        return None
