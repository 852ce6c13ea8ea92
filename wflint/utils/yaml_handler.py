"""
yaml_handler.py - Utilities for YAML processing

This module composes workflow documents into PyYAML node graphs. Nodes keep
their start marks, so every key and value can be mapped back to a position,
and mappings keep duplicate keys visible to the parser.
"""

import re
from pathlib import Path
from typing import List, Optional, Union, cast

import yaml
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from ..core.diagnostic import Position


class WorkflowLoader(yaml.SafeLoader):
    """SafeLoader variant used to compose workflow documents"""


# PyYAML follows YAML 1.1, which resolves plain scalars such as ``on``,
# ``off``, ``yes`` and ``no`` to booleans. Workflow files use ``on`` as a key,
# so only the YAML 1.2 boolean spellings are kept.
# The resolver table is copied so that yaml.SafeLoader itself is left alone.
WorkflowLoader.yaml_implicit_resolvers = {
    first_char: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:bool"]
    for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

WorkflowLoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)

BOOL_TAG = "tag:yaml.org,2002:bool"
INT_TAG = "tag:yaml.org,2002:int"
FLOAT_TAG = "tag:yaml.org,2002:float"
NULL_TAG = "tag:yaml.org,2002:null"
STR_TAG = "tag:yaml.org,2002:str"


def compose_yaml(content: Union[str, bytes]) -> Optional[Node]:
    """
    Compose YAML content into a node graph

    Args:
        content: YAML document as text or UTF-8 bytes

    Returns:
        Root node, or None for an empty document

    Raises:
        yaml.YAMLError: If the YAML is malformed
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return cast(Optional[Node], yaml.compose(content, Loader=WorkflowLoader))


def node_position(node: Node) -> Position:
    """Return the 1-based start position of a node"""
    mark = node.start_mark
    return Position(mark.line + 1, mark.column + 1)


def mark_position(mark: Optional[yaml.Mark]) -> Position:
    """Return the 1-based position of a PyYAML mark"""
    if mark is None:
        return Position(1, 1)
    return Position(mark.line + 1, mark.column + 1)


def is_null(node: Optional[Node]) -> bool:
    return node is None or (isinstance(node, ScalarNode) and node.tag == NULL_TAG)


def node_kind(node: Node) -> str:
    """Human readable kind of a node for error messages"""
    if isinstance(node, MappingNode):
        return "mapping"
    if isinstance(node, SequenceNode):
        return "sequence"
    if node.tag == NULL_TAG:
        return "null"
    if node.tag == BOOL_TAG:
        return "boolean"
    if node.tag in (INT_TAG, FLOAT_TAG):
        return "number"
    return "string"


def find_yaml_files(directory: str, recursive: bool = True) -> List[Path]:
    """
    Find all YAML files in a directory

    Args:
        directory: Directory to search
        recursive: Whether to search recursively

    Returns:
        Sorted list of paths to YAML files
    """
    path = Path(directory)
    if not path.is_dir():
        return []

    pattern = "**/*.y*ml" if recursive else "*.y*ml"
    return sorted(p for p in path.glob(pattern) if p.suffix in (".yml", ".yaml"))


def find_github_workflow_files(repo_path: str) -> List[Path]:
    """
    Find GitHub Actions workflow files in a repository

    Args:
        repo_path: Path to repository

    Returns:
        Sorted list of paths to workflow files
    """
    return find_yaml_files(str(Path(repo_path) / ".github" / "workflows"), recursive=False)
