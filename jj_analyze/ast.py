"""jj_analyze/ast.py – raw syntax tree for revset queries.

Nodes are produced by :mod:`jj_analyze.parser` and rewritten (never mutated)
by the alias expander.  Every node remembers the source slice it was parsed
from (``text``) and its offset (``pos``); neither takes part in equality, so
two trees built from differently spaced queries compare equal.

The source slice matters beyond error messages: fileset arguments such as
``files(src/*.rs)`` are re-parsed from the argument's text.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator, Tuple


class Node:
    """Marker base for raw syntax nodes."""

    __slots__ = ()

    def children(self) -> Iterator["Node"]:
        return iter(())


class UnaryOp(enum.Enum):
    NEGATE = "~"
    DAG_RANGE_PRE = "::x"
    DAG_RANGE_POST = "x::"
    RANGE_PRE = "..x"
    RANGE_POST = "x.."
    PARENTS = "x-"
    CHILDREN = "x+"


class BinaryOp(enum.Enum):
    UNION = "|"
    INTERSECTION = "&"
    DIFFERENCE = "~"
    DAG_RANGE = "::"
    RANGE = ".."


class RangeKind(enum.Enum):
    DAG = "::"
    DOTS = ".."


# ═══════════════════════════════════════════════════════════════════════
#  Leaves
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Identifier(Node):
    name: str
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)


@dataclass(frozen=True, slots=True)
class StringLiteral(Node):
    value: str
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)


@dataclass(frozen=True, slots=True)
class PatternLiteral(Node):
    """``kind:value`` – a string pattern in an argument position."""
    kind: str
    value: str
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)


@dataclass(frozen=True, slots=True)
class RemoteSymbol(Node):
    name: str
    remote: str
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)


@dataclass(frozen=True, slots=True)
class WorkspaceWorkingCopy(Node):
    """``name@``"""
    workspace: str
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)


@dataclass(frozen=True, slots=True)
class WorkingCopy(Node):
    """``@``"""
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)


@dataclass(frozen=True, slots=True)
class RangeAll(Node):
    """Bare ``::`` or ``..``."""
    kind: RangeKind
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)


# ═══════════════════════════════════════════════════════════════════════
#  Composite nodes
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class UnaryExpression(Node):
    op: UnaryOp
    operand: Node
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)

    def children(self) -> Iterator[Node]:
        yield self.operand


@dataclass(frozen=True, slots=True)
class BinaryExpression(Node):
    op: BinaryOp
    lhs: Node
    rhs: Node
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)

    def children(self) -> Iterator[Node]:
        yield self.lhs
        yield self.rhs


@dataclass(frozen=True, slots=True)
class KeywordArgument(Node):
    name: str
    value: Node
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)

    def children(self) -> Iterator[Node]:
        yield self.value


@dataclass(frozen=True, slots=True)
class FunctionCall(Node):
    name: str
    args: Tuple[Node, ...] = ()
    keyword_args: Tuple[KeywordArgument, ...] = ()
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)

    @property
    def arity(self) -> int:
        return len(self.args) + len(self.keyword_args)

    def children(self) -> Iterator[Node]:
        yield from self.args
        yield from self.keyword_args


@dataclass(frozen=True, slots=True)
class Modifier(Node):
    """``name:body`` at the very start of a query (only ``all:`` exists)."""
    name: str
    body: Node
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)

    def children(self) -> Iterator[Node]:
        yield self.body


@dataclass(frozen=True, slots=True)
class AliasExpanded(Node):
    """Marker left where an alias was substituted.

    ``label`` is the alias declaration (``trunk()``, ``f(x)``, ``foo``).
    ``builtin`` is set when the definition came from the builtin table and
    ``collapse`` when the renderer should show ``label`` instead of ``body``.
    """
    label: str
    body: Node
    builtin: bool = False
    collapse: bool = False
    pos: int = field(default=0, compare=False)
    text: str = field(default="", compare=False)

    def children(self) -> Iterator[Node]:
        yield self.body


def peel_aliases(node: Node) -> Node:
    """Strip any ``AliasExpanded`` wrappers around *node*."""
    while isinstance(node, AliasExpanded):
        node = node.body
    return node


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal."""
    yield node
    for child in node.children():
        yield from walk(child)
