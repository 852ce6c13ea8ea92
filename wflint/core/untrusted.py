"""
untrusted.py - Classification of attacker-controllable expression contexts

The table of untrusted context paths is built once into an immutable trie
and handed to rules through the lint policy. ``*`` in a path matches any
property name or array index.
"""

from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .expressions import (
    CompareOpNode,
    ExprNode,
    FuncCallNode,
    IndexAccessNode,
    LogicalOpNode,
    NotOpNode,
    StringNode,
    access_path,
    children,
    is_access_chain,
)

DEFAULT_UNTRUSTED_PATHS: Tuple[str, ...] = (
    "github.head_ref",
    "github.event.issue.title",
    "github.event.issue.body",
    "github.event.pull_request.title",
    "github.event.pull_request.body",
    "github.event.pull_request.head.ref",
    "github.event.pull_request.head.label",
    "github.event.pull_request.head.repo.default_branch",
    "github.event.discussion.title",
    "github.event.discussion.body",
    "github.event.comment.body",
    "github.event.review.body",
    "github.event.review_comment.body",
    "github.event.pages.*.page_name",
    "github.event.commits.*.message",
    "github.event.commits.*.author.email",
    "github.event.commits.*.author.name",
    "github.event.head_commit.message",
    "github.event.head_commit.author.email",
    "github.event.head_commit.author.name",
    "github.event.head_commit.committer.email",
    "github.event.head_commit.committer.name",
    "github.event.workflow_run.head_branch",
    "github.event.workflow_run.head_commit.message",
    "github.event.workflow_run.head_commit.author.email",
    "github.event.workflow_run.head_commit.author.name",
    "github.event.workflow_run.pull_requests.*.head.ref",
    "github.event.workflow_run.display_title",
    "github.event.inputs.*",
    "inputs.*",
)

# Functions whose result carries no attacker-controlled text.
DEFAULT_SANITIZING_FUNCTIONS: FrozenSet[str] = frozenset(
    {
        "contains",
        "startswith",
        "endswith",
        "success",
        "failure",
        "always",
        "cancelled",
        "hashfiles",
    }
)

WILDCARD = "*"


class _TrieNode:
    __slots__ = ("children", "path")

    def __init__(self, path: str) -> None:
        self.children: Dict[str, "_TrieNode"] = {}
        self.path = path

    @property
    def is_leaf(self) -> bool:
        return not self.children


class UntrustedContextTable:
    """Immutable lookup structure for untrusted context paths"""

    def __init__(self, paths: Iterable[str] = DEFAULT_UNTRUSTED_PATHS) -> None:
        self._root = _TrieNode("")
        self._paths: Tuple[str, ...] = tuple(paths)
        for path in self._paths:
            node = self._root
            for segment in path.lower().split("."):
                if segment not in node.children:
                    prefix = f"{node.path}.{segment}" if node.path else segment
                    node.children[segment] = _TrieNode(prefix)
                node = node.children[segment]

    @property
    def paths(self) -> Tuple[str, ...]:
        return self._paths

    def match(self, segments: List[str], allow_intermediate: bool = False) -> List[str]:
        """
        Match a rendered access path against the table

        Args:
            segments: Lower-case path segments (see ``access_path``)
            allow_intermediate: Also report whole objects that contain
                untrusted properties (``github.event.pull_request``)

        Returns:
            Untrusted paths reached by the access, sorted
        """
        current = [self._root]
        for segment in segments:
            following: List[_TrieNode] = []
            for node in current:
                if node.is_leaf and node is not self._root:
                    # Reading below an untrusted leaf is still untrusted.
                    following.append(node)
                    continue
                if segment == WILDCARD:
                    if WILDCARD in node.children:
                        following.append(node.children[WILDCARD])
                    else:
                        following.extend(node.children.values())
                    continue
                if segment in node.children:
                    following.append(node.children[segment])
                elif WILDCARD in node.children:
                    following.append(node.children[WILDCARD])
            current = following
            if not current:
                return []

        found: Set[str] = set()
        for node in current:
            if node.is_leaf:
                found.add(node.path)
            elif allow_intermediate and node is not self._root:
                found.add(node.path)
        return sorted(found)

    def is_untrusted_path(self, path: str) -> bool:
        return bool(self.match(path.lower().split(".")))

    def find_untrusted(
        self,
        node: ExprNode,
        sanitizers: FrozenSet[str] = DEFAULT_SANITIZING_FUNCTIONS,
    ) -> List[str]:
        """
        Return the untrusted paths whose value flows into an expression result

        Reads under a sanitizing function, a comparison or ``!`` do not
        count because the result is a boolean or a hash. A whole object passed
        to a function (``toJSON(github.event.pull_request)``) counts.

        Args:
            node: Parsed expression
            sanitizers: Lower-case names of sanitizing functions

        Returns:
            Untrusted paths in first-seen order, without duplicates
        """
        found: List[str] = []
        self._collect(node, sanitizers, False, found)
        return found

    def reads_untrusted(
        self,
        node: ExprNode,
        sanitizers: FrozenSet[str] = DEFAULT_SANITIZING_FUNCTIONS,
    ) -> bool:
        return bool(self.find_untrusted(node, sanitizers))

    def _collect(
        self,
        node: ExprNode,
        sanitizers: FrozenSet[str],
        in_func_arg: bool,
        found: List[str],
    ) -> None:
        if isinstance(node, (CompareOpNode, NotOpNode)):
            return
        if isinstance(node, FuncCallNode):
            if node.callee.lower() in sanitizers:
                return
            for arg in node.args:
                self._collect(arg, sanitizers, True, found)
            return
        if isinstance(node, LogicalOpNode):
            # ``a || b`` and ``a && b`` evaluate to one of their operands.
            for child in children(node):
                self._collect(child, sanitizers, in_func_arg, found)
            return
        if is_access_chain(node):
            segments = access_path(node)
            if segments is not None:
                for path in self.match(segments, allow_intermediate=in_func_arg):
                    if path not in found:
                        found.append(path)
            self._collect_dynamic_indexes(node, sanitizers, found)
            return
        for child in children(node):
            self._collect(child, sanitizers, in_func_arg, found)

    def _collect_dynamic_indexes(
        self, node: ExprNode, sanitizers: FrozenSet[str], found: List[str]
    ) -> None:
        current: Optional[ExprNode] = node
        while current is not None:
            if isinstance(current, IndexAccessNode):
                if current.index is not None and not isinstance(current.index, StringNode):
                    self._collect(current.index, sanitizers, False, found)
                current = current.operand
            else:
                current = getattr(current, "receiver", None)


def build_untrusted_table(extra_paths: Iterable[str] = ()) -> UntrustedContextTable:
    """
    Build the untrusted context table

    Args:
        extra_paths: Additional dotted paths from configuration

    Returns:
        Table covering the default and extra paths
    """
    return UntrustedContextTable(tuple(DEFAULT_UNTRUSTED_PATHS) + tuple(extra_paths))
