"""
expressions.py - Parser for ${{ }} workflow expressions

This module tokenizes and parses the expression mini-language embedded in
workflow strings into a small node tree. Rules consume the tree read-only,
mostly through ``access_path`` and ``walk``.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple


class ExpressionError(Exception):
    """Raised for malformed expressions"""

    def __init__(self, message: str, offset: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.offset = offset


# --------------------------------------------------------------------------
# Nodes
# --------------------------------------------------------------------------


@dataclass
class ExprNode:
    """Base class of expression nodes; ``offset`` is relative to the expression text"""

    offset: int = field(default=0, compare=False)


@dataclass
class NullNode(ExprNode):
    pass


@dataclass
class BoolNode(ExprNode):
    value: bool = False


@dataclass
class NumberNode(ExprNode):
    value: float = 0


@dataclass
class StringNode(ExprNode):
    value: str = ""


@dataclass
class VariableNode(ExprNode):
    """Context root such as ``github`` or ``secrets``"""

    name: str = ""


@dataclass
class ObjectDerefNode(ExprNode):
    """``receiver.property``"""

    receiver: Optional[ExprNode] = None
    property: str = ""


@dataclass
class ArrayDerefNode(ExprNode):
    """``receiver.*`` object filter"""

    receiver: Optional[ExprNode] = None


@dataclass
class IndexAccessNode(ExprNode):
    """``operand[index]``"""

    operand: Optional[ExprNode] = None
    index: Optional[ExprNode] = None


@dataclass
class NotOpNode(ExprNode):
    operand: Optional[ExprNode] = None


@dataclass
class CompareOpNode(ExprNode):
    kind: str = "=="
    left: Optional[ExprNode] = None
    right: Optional[ExprNode] = None


@dataclass
class LogicalOpNode(ExprNode):
    kind: str = "&&"
    left: Optional[ExprNode] = None
    right: Optional[ExprNode] = None


@dataclass
class FuncCallNode(ExprNode):
    callee: str = ""
    args: List[ExprNode] = field(default_factory=list)


# --------------------------------------------------------------------------
# Tokenizer
# --------------------------------------------------------------------------

TOKEN_EOF = "EOF"
TOKEN_IDENT = "IDENT"
TOKEN_STRING = "STRING"
TOKEN_NUMBER = "NUMBER"
TOKEN_OP = "OP"

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_NUMBER_RE = re.compile(r"-?(?:0x[0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_OPERATORS = ("&&", "||", "==", "!=", "<=", ">=", "<", ">", "!", "(", ")", "[", "]", ".", ",", "*")

# Deeper expressions are rejected before they exhaust the interpreter stack.
MAX_NESTING_DEPTH = 64


@dataclass
class Token:
    kind: str
    value: str
    offset: int


class Tokenizer:
    """Split expression text into tokens"""

    def __init__(self, text: str) -> None:
        self.text = text

    def tokenize(self) -> List[Token]:
        text = self.text
        tokens: List[Token] = []
        i = 0
        while i < len(text):
            c = text[i]
            if c.isspace():
                i += 1
                continue
            if c == "'":
                start = i
                i += 1
                chars = []
                while True:
                    if i >= len(text):
                        raise ExpressionError("unterminated string literal", start)
                    if text[i] == "'":
                        if i + 1 < len(text) and text[i + 1] == "'":
                            chars.append("'")
                            i += 2
                            continue
                        i += 1
                        break
                    chars.append(text[i])
                    i += 1
                tokens.append(Token(TOKEN_STRING, "".join(chars), start))
                continue
            if c.isdigit() or (c == "-" and i + 1 < len(text) and text[i + 1].isdigit()):
                m = _NUMBER_RE.match(text, i)
                if m:
                    tokens.append(Token(TOKEN_NUMBER, m.group(0), i))
                    i = m.end()
                    continue
            if c.isalpha() or c == "_":
                m = _IDENT_RE.match(text, i)
                if m is None:
                    raise ExpressionError(f"unexpected character {c!r}", i)
                tokens.append(Token(TOKEN_IDENT, m.group(0), i))
                i = m.end()
                continue
            for op in _OPERATORS:
                if text.startswith(op, i):
                    tokens.append(Token(TOKEN_OP, op, i))
                    i += len(op)
                    break
            else:
                raise ExpressionError(f"unexpected character {c!r}", i)
        tokens.append(Token(TOKEN_EOF, "", len(text)))
        return tokens


# --------------------------------------------------------------------------
# Parser
# --------------------------------------------------------------------------


class ExpressionParser:
    """
    Recursive descent parser

    Precedence from lowest to highest: ``||``, ``&&``, ``==``/``!=``,
    ``<``/``<=``/``>``/``>=``, ``!``, then postfix property/index access
    and function calls.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens: List[Token] = []
        self.pos = 0
        self.depth = 0

    def parse(self) -> ExprNode:
        self.tokens = Tokenizer(self.text).tokenize()
        self.pos = 0
        self.depth = 0
        if self._peek().kind == TOKEN_EOF:
            raise ExpressionError("empty expression", 0)
        node = self._parse_or()
        tok = self._peek()
        if tok.kind != TOKEN_EOF:
            raise ExpressionError(f"unexpected token {tok.value!r}", tok.offset)
        return node

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _next(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != TOKEN_EOF:
            self.pos += 1
        return tok

    def _accept(self, op: str) -> Optional[Token]:
        tok = self._peek()
        if tok.kind == TOKEN_OP and tok.value == op:
            return self._next()
        return None

    def _expect(self, op: str) -> Token:
        tok = self._accept(op)
        if tok is None:
            found = self._peek()
            desc = "end of expression" if found.kind == TOKEN_EOF else repr(found.value)
            raise ExpressionError(f"expected {op!r} but found {desc}", found.offset)
        return tok

    def _descend(self, offset: int) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise ExpressionError("expression is nested too deeply", offset)

    def _parse_or(self) -> ExprNode:
        self._descend(self._peek().offset)
        try:
            left = self._parse_and()
            while True:
                tok = self._accept("||")
                if tok is None:
                    return left
                left = LogicalOpNode(offset=tok.offset, kind="||", left=left, right=self._parse_and())
        finally:
            self.depth -= 1

    def _parse_and(self) -> ExprNode:
        left = self._parse_equality()
        while True:
            tok = self._accept("&&")
            if tok is None:
                return left
            left = LogicalOpNode(
                offset=tok.offset, kind="&&", left=left, right=self._parse_equality()
            )

    def _parse_equality(self) -> ExprNode:
        left = self._parse_relational()
        while True:
            tok = self._accept("==") or self._accept("!=")
            if tok is None:
                return left
            left = CompareOpNode(
                offset=tok.offset, kind=tok.value, left=left, right=self._parse_relational()
            )

    def _parse_relational(self) -> ExprNode:
        left = self._parse_unary()
        while True:
            tok = self._accept("<=") or self._accept(">=") or self._accept("<") or self._accept(">")
            if tok is None:
                return left
            left = CompareOpNode(
                offset=tok.offset, kind=tok.value, left=left, right=self._parse_unary()
            )

    def _parse_unary(self) -> ExprNode:
        tok = self._accept("!")
        if tok is not None:
            self._descend(tok.offset)
            try:
                return NotOpNode(offset=tok.offset, operand=self._parse_unary())
            finally:
                self.depth -= 1
        return self._parse_postfix()

    def _parse_postfix(self) -> ExprNode:
        node = self._parse_primary()
        while True:
            if self._accept("."):
                tok = self._peek()
                if self._accept("*"):
                    node = ArrayDerefNode(offset=tok.offset, receiver=node)
                elif tok.kind == TOKEN_IDENT:
                    self._next()
                    node = ObjectDerefNode(offset=tok.offset, receiver=node, property=tok.value)
                else:
                    raise ExpressionError("expected property name after '.'", tok.offset)
            elif self._peek().kind == TOKEN_OP and self._peek().value == "[":
                open_tok = self._next()
                if self._accept("*"):
                    self._expect("]")
                    node = ArrayDerefNode(offset=open_tok.offset, receiver=node)
                    continue
                index = self._parse_or()
                self._expect("]")
                node = IndexAccessNode(offset=open_tok.offset, operand=node, index=index)
            else:
                return node

    def _parse_primary(self) -> ExprNode:
        tok = self._next()
        if tok.kind == TOKEN_STRING:
            return StringNode(offset=tok.offset, value=tok.value)
        if tok.kind == TOKEN_NUMBER:
            try:
                value = float(int(tok.value, 16)) if "x" in tok.value else float(tok.value)
            except ValueError:
                raise ExpressionError(f"invalid number {tok.value!r}", tok.offset)
            return NumberNode(offset=tok.offset, value=value)
        if tok.kind == TOKEN_IDENT:
            lowered = tok.value.lower()
            if self._accept("("):
                args: List[ExprNode] = []
                if not self._accept(")"):
                    while True:
                        args.append(self._parse_or())
                        if self._accept(")"):
                            break
                        self._expect(",")
                return FuncCallNode(offset=tok.offset, callee=tok.value, args=args)
            if lowered == "null":
                return NullNode(offset=tok.offset)
            if lowered in ("true", "false"):
                return BoolNode(offset=tok.offset, value=lowered == "true")
            return VariableNode(offset=tok.offset, name=lowered)
        if tok.kind == TOKEN_OP and tok.value == "(":
            node = self._parse_or()
            self._expect(")")
            return node
        if tok.kind == TOKEN_EOF:
            raise ExpressionError("unexpected end of expression", tok.offset)
        raise ExpressionError(f"unexpected token {tok.value!r}", tok.offset)


def parse_expression(text: str) -> Tuple[Optional[ExprNode], Optional[ExpressionError]]:
    """
    Parse the inside of a ``${{ }}`` span

    Args:
        text: Expression text without the delimiters

    Returns:
        Tuple of (node, None) on success or (None, error) on failure
    """
    try:
        return ExpressionParser(text).parse(), None
    except ExpressionError as e:
        return None, e
    except RecursionError:
        return None, ExpressionError("expression is nested too deeply", 0)


def extract_expressions(text: str) -> List[Tuple[str, int]]:
    """
    Find ``${{ ... }}`` spans in a string

    Closing braces inside single-quoted literals do not end a span.

    Args:
        text: String that may embed expressions

    Returns:
        List of (inner text, offset of ``${{``) tuples

    Raises:
        ExpressionError: If a span is never closed
    """
    spans: List[Tuple[str, int]] = []
    start = text.find("${{")
    while start != -1:
        i = start + 3
        in_string = False
        end = -1
        while i < len(text):
            c = text[i]
            if c == "'":
                in_string = not in_string
            elif not in_string and text.startswith("}}", i):
                end = i
                break
            i += 1
        if end == -1:
            raise ExpressionError("unterminated expression: '}}' is missing", start)
        spans.append((text[start + 3 : end].strip(), start))
        start = text.find("${{", end + 2)
    return spans


# --------------------------------------------------------------------------
# Tree helpers
# --------------------------------------------------------------------------


def children(node: ExprNode) -> List[ExprNode]:
    """Direct children of a node in evaluation order"""
    if isinstance(node, (ObjectDerefNode, ArrayDerefNode)):
        return [node.receiver] if node.receiver is not None else []
    if isinstance(node, IndexAccessNode):
        return [n for n in (node.operand, node.index) if n is not None]
    if isinstance(node, NotOpNode):
        return [node.operand] if node.operand is not None else []
    if isinstance(node, (CompareOpNode, LogicalOpNode)):
        return [n for n in (node.left, node.right) if n is not None]
    if isinstance(node, FuncCallNode):
        return list(node.args)
    return []


def walk(node: ExprNode) -> Iterator[ExprNode]:
    """Yield a node and all of its descendants, pre-order"""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


def access_path(node: ExprNode) -> Optional[List[str]]:
    """
    Render a property access chain as lower-case path segments

    ``github.event.commits[0].message`` becomes
    ``["github", "event", "commits", "*", "message"]`` and ``github['head_ref']``
    becomes ``["github", "head_ref"]``.

    Args:
        node: Expression node

    Returns:
        Segments, or None if the node is not a plain access chain
    """
    segments: List[str] = []
    current: Optional[ExprNode] = node
    while current is not None:
        if isinstance(current, VariableNode):
            segments.append(current.name.lower())
            return list(reversed(segments))
        if isinstance(current, ObjectDerefNode):
            segments.append(current.property.lower())
            current = current.receiver
        elif isinstance(current, ArrayDerefNode):
            segments.append("*")
            current = current.receiver
        elif isinstance(current, IndexAccessNode):
            if isinstance(current.index, StringNode):
                segments.append(current.index.value.lower())
            else:
                segments.append("*")
            current = current.operand
        else:
            return None
    return None


def path_string(node: ExprNode) -> Optional[str]:
    """Dotted form of ``access_path``"""
    segments = access_path(node)
    return ".".join(segments) if segments else None


def is_access_chain(node: ExprNode) -> bool:
    return isinstance(node, (VariableNode, ObjectDerefNode, ArrayDerefNode, IndexAccessNode))


def context_reads(node: ExprNode) -> List[Tuple[ExprNode, List[str]]]:
    """
    Return every maximal access chain read by an expression

    Index expressions inside a chain (``secrets[inputs.name]``) are reported
    as chains of their own.
    """
    reads: List[Tuple[ExprNode, List[str]]] = []

    def visit(n: ExprNode) -> None:
        if is_access_chain(n):
            path = access_path(n)
            if path is not None:
                reads.append((n, path))
                current: Optional[ExprNode] = n
                while current is not None and not isinstance(current, VariableNode):
                    if isinstance(current, IndexAccessNode):
                        if current.index is not None and not isinstance(current.index, StringNode):
                            visit(current.index)
                        current = current.operand
                    else:
                        current = getattr(current, "receiver", None)
                return
        for child in children(n):
            visit(child)

    visit(node)
    return reads


def find_function_calls(node: ExprNode, name: str) -> List[FuncCallNode]:
    """Return calls to ``name`` (case-insensitive) anywhere in the tree"""
    lowered = name.lower()
    return [n for n in walk(node) if isinstance(n, FuncCallNode) and n.callee.lower() == lowered]


def to_source(node: ExprNode) -> str:
    """Render a node back to expression syntax"""
    if isinstance(node, NullNode):
        return "null"
    if isinstance(node, BoolNode):
        return "true" if node.value else "false"
    if isinstance(node, NumberNode):
        return str(int(node.value)) if float(node.value).is_integer() else str(node.value)
    if isinstance(node, StringNode):
        return "'" + node.value.replace("'", "''") + "'"
    if isinstance(node, VariableNode):
        return node.name
    if isinstance(node, ObjectDerefNode):
        return f"{to_source(node.receiver)}.{node.property}" if node.receiver else node.property
    if isinstance(node, ArrayDerefNode):
        return f"{to_source(node.receiver)}.*" if node.receiver else "*"
    if isinstance(node, IndexAccessNode):
        operand = to_source(node.operand) if node.operand else ""
        index = to_source(node.index) if node.index else ""
        return f"{operand}[{index}]"
    if isinstance(node, NotOpNode):
        return f"!{to_source(node.operand)}" if node.operand else "!"
    if isinstance(node, (CompareOpNode, LogicalOpNode)):
        left = to_source(node.left) if node.left else ""
        right = to_source(node.right) if node.right else ""
        return f"({left} {node.kind} {right})"
    if isinstance(node, FuncCallNode):
        return f"{node.callee}({', '.join(to_source(a) for a in node.args)})"
    return ""


