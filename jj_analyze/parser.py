"""jj_analyze/parser.py – revset text → raw syntax tree.

A parsimonious :class:`~parsimonious.nodes.NodeVisitor` walks the parse tree
produced by :data:`jj_analyze.grammar.REVSET_GRAMMAR` and builds the frozen
nodes of :mod:`jj_analyze.ast`.

Public API
----------
``parse_program(text) -> ast.Node``
    Parse a complete revset query.

``parse_alias_declaration(text) -> AliasDeclaration``
    Parse the left-hand side of an alias definition (``name`` or
    ``name(a, b)``).

Syntax errors carry the offending position and the token class the grammar
expected there.  Operators borrowed from other tools (``x + y``, ``x - y``,
``x^``) parse, but are rejected with a hint naming the jj spelling.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple

from parsimonious.exceptions import ParseError
from parsimonious.expressions import Literal, OneOf, Regex
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node as ParseNode, NodeVisitor

from . import ast as A
from .errors import RevsetAnalyzeError, RevsetSyntaxError
from .grammar import ALIAS_DECLARATION_GRAMMAR, REVSET_GRAMMAR

logger = logging.getLogger(__name__)

# Friendly names for the grammar rules parsimonious reports as "expected".
_EXPECTED_TOKENS = {
    "program": "expression",
    "expression": "expression",
    "union_expression": "expression",
    "intersection_expression": "expression",
    "prefix_expression": "expression",
    "negate_expression": "expression",
    "range_expression": "expression",
    "infix_range": "expression",
    "postfix_range": "expression",
    "prefix_range": "expression",
    "neighbors_expression": "expression",
    "primary": "expression",
    "parenthesized": "expression",
    "argument": "expression",
    "keyword_argument": "expression",
    "function_arguments": "function arguments",
    "function_call": "function call",
    "union_operator": "operator",
    "intersection_operator": "operator",
    "range_operator": "range operator",
    "neighbors_operator": "operator",
    "symbol": "symbol",
    "identifier": "identifier",
    "strict_identifier": "identifier",
    "function_name": "function name",
    "string_pattern": "string pattern",
    "remote_symbol": "symbol",
    "workspace_symbol": "symbol",
    "working_copy": "symbol",
    "string_literal": "string literal",
    "raw_string_literal": "string literal",
    "alias_declaration": "alias declaration",
    "function_alias_declaration": "alias declaration",
    "formal_parameters": "parameter name",
    "fileset_program": "fileset expression",
    "fileset_expression": "fileset expression",
    "fileset_union": "fileset expression",
    "fileset_intersection": "fileset expression",
    "fileset_prefix": "fileset expression",
    "fileset_primary": "fileset expression",
    "fileset_symbol": "file path",
    "path_identifier": "file path",
}

_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "t": "\t",
    "r": "\r",
    "n": "\n",
    "0": "\0",
    "e": "\x1b",
}

_IDENTIFIER_RE = re.compile(
    r"[A-Za-z0-9_/\u0080-\U0010ffff]+(?:[.+\-][A-Za-z0-9_/\u0080-\U0010ffff]+)*\Z"
)


# ═══════════════════════════════════════════════════════════════════════
#  Helpers shared with the fileset parser
# ═══════════════════════════════════════════════════════════════════════

class Symbol(NamedTuple):
    """A lexical symbol before it is placed in the tree."""
    value: str
    is_identifier: bool
    pos: int
    text: str


def unescape_string_literal(text: str, pos: int = 0, query: str = "") -> str:
    """Decode the body of a double-quoted literal (quotes included in *text*)."""
    body = text[1:-1]
    out: List[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        esc = body[i + 1] if i + 1 < len(body) else ""
        if esc in _ESCAPES:
            out.append(_ESCAPES[esc])
            i += 2
        elif esc == "x" and re.fullmatch(r"[0-9a-fA-F]{2}", body[i + 2:i + 4]):
            out.append(chr(int(body[i + 2:i + 4], 16)))
            i += 4
        else:
            raise RevsetSyntaxError(
                f"invalid escape sequence \\{esc}",
                query=query,
                position=pos + 1 + i,
            )
    return "".join(out)


def is_identifier(text: str) -> bool:
    return bool(_IDENTIFIER_RE.match(text))


def format_symbol(text: str) -> str:
    """Render *text* as a revset symbol, quoting it when it isn't bare."""
    if is_identifier(text):
        return text
    return quote_string(text)


def quote_string(text: str) -> str:
    """Double-quote *text* using the revset escape rules."""
    out = ['"']
    for ch in text:
        if ch == '"':
            out.append('\\"')
        elif ch == "\\":
            out.append("\\\\")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\0":
            out.append("\\0")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\u{{{ord(ch):x}}}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def _describe_expected(error: ParseError) -> str:
    expr = error.expr
    if expr is None:
        return "expression"
    name = getattr(expr, "name", "")
    if name:
        return _EXPECTED_TOKENS.get(name, name.replace("_", " "))
    if isinstance(expr, Literal):
        return f'"{expr.literal}"'
    return "expression"


def run_grammar(grammar: Grammar, text: str) -> ParseNode:
    """Match *text* completely, turning parsimonious failures into
    :class:`RevsetSyntaxError` positioned at the furthest failure."""
    # match_core keeps the furthest failure in *error* even when a prefix
    # matched; parse() would only report where the prefix stopped.
    error = ParseError(text)
    node = grammar.default_rule.match_core(text, 0, defaultdict(dict), error)
    if node is not None and node.end == len(text):
        return node
    stop = 0 if node is None else node.end
    if error.pos >= 0 and error.pos >= stop:
        expected = _describe_expected(error)
        if error.pos < len(text):
            message = f'unexpected "{text[error.pos]}", expected {expected}'
        else:
            message = f"unexpected end of input, expected {expected}"
        raise RevsetSyntaxError(message, query=text, position=error.pos,
                                expected=expected)
    raise RevsetSyntaxError(f'unexpected "{text[stop]}"', query=text,
                            position=stop)


# ═══════════════════════════════════════════════════════════════════════
#  Visitor base: lexical rules
# ═══════════════════════════════════════════════════════════════════════

class LexicalVisitor(NodeVisitor):
    """Shared visits for the lexical rules of the grammar."""

    unwrapped_exceptions = (RevsetAnalyzeError,)

    def __init__(self, text: str):
        self.source = text

    def generic_visit(self, node, visited_children):
        if isinstance(node.expr, (Literal, Regex)):
            return node
        if isinstance(node.expr, OneOf):
            return visited_children[0]
        return visited_children

    def visit_identifier(self, node, visited_children):
        return Symbol(node.text, True, node.start, node.text)

    def visit_path_identifier(self, node, visited_children):
        return Symbol(node.text, True, node.start, node.text)

    def visit_string_literal(self, node, visited_children):
        value = unescape_string_literal(node.text, node.start, self.source)
        return Symbol(value, False, node.start, node.text)

    def visit_raw_string_literal(self, node, visited_children):
        return Symbol(node.text[1:-1], False, node.start, node.text)

    def visit_strict_identifier(self, node, visited_children):
        return node.text

    def visit_function_name(self, node, visited_children):
        return node.text

    def _error(self, message: str, pos: int, hint: Optional[str] = None):
        return RevsetSyntaxError(message, query=self.source, position=pos,
                                 hint=hint)


# ═══════════════════════════════════════════════════════════════════════
#  Revset visitor
# ═══════════════════════════════════════════════════════════════════════

class RevsetASTBuilder(LexicalVisitor):
    """Builds :mod:`jj_analyze.ast` nodes from a revset parse tree."""

    def _span(self, start: int, end: int) -> dict:
        return {"pos": start, "text": self.source[start:end]}

    def _end(self, node: A.Node) -> int:
        return node.pos + len(node.text)

    # ── Program ──────────────────────────────────────────────────────

    def visit_program(self, node, visited_children):
        _, modifier, expression, _ = visited_children
        if modifier:
            name, pos = modifier[0]
            return A.Modifier(name, expression, **self._span(pos, self._end(expression)))
        return expression

    def visit_program_modifier(self, node, visited_children):
        return (visited_children[0], node.start)

    # ── Infix operators ──────────────────────────────────────────────

    def visit_union_expression(self, node, visited_children):
        lhs, rest = visited_children
        for _, op, _, rhs in rest:
            if op.text == "+":
                raise self._error("'+' is not an infix operator", op.start,
                                  hint="Did you mean '|' for union?")
            lhs = A.BinaryExpression(A.BinaryOp.UNION, lhs, rhs,
                                     **self._span(lhs.pos, self._end(rhs)))
        return lhs

    def visit_intersection_expression(self, node, visited_children):
        lhs, rest = visited_children
        for _, op, _, rhs in rest:
            if op.text == "-":
                raise self._error("'-' is not an infix operator", op.start,
                                  hint="Did you mean '~' for difference?")
            kind = (A.BinaryOp.INTERSECTION if op.text == "&"
                    else A.BinaryOp.DIFFERENCE)
            lhs = A.BinaryExpression(kind, lhs, rhs,
                                     **self._span(lhs.pos, self._end(rhs)))
        return lhs

    def visit_negate_expression(self, node, visited_children):
        _, _, operand = visited_children
        return A.UnaryExpression(A.UnaryOp.NEGATE, operand,
                                 **self._span(node.start, node.end))

    # ── Ranges ───────────────────────────────────────────────────────

    def visit_infix_range(self, node, visited_children):
        lhs, _, op, _, rhs = visited_children
        kind = A.BinaryOp.DAG_RANGE if op.text == "::" else A.BinaryOp.RANGE
        return A.BinaryExpression(kind, lhs, rhs, **self._span(node.start, node.end))

    def visit_postfix_range(self, node, visited_children):
        operand, _, op = visited_children
        kind = A.UnaryOp.DAG_RANGE_POST if op.text == "::" else A.UnaryOp.RANGE_POST
        return A.UnaryExpression(kind, operand, **self._span(node.start, node.end))

    def visit_prefix_range(self, node, visited_children):
        op, _, operand = visited_children
        kind = A.UnaryOp.DAG_RANGE_PRE if op.text == "::" else A.UnaryOp.RANGE_PRE
        return A.UnaryExpression(kind, operand, **self._span(node.start, node.end))

    def visit_range_all(self, node, visited_children):
        kind = A.RangeKind.DAG if node.text == "::" else A.RangeKind.DOTS
        return A.RangeAll(kind, **self._span(node.start, node.end))

    def visit_neighbors_expression(self, node, visited_children):
        operand, ops = visited_children
        for op in ops:
            if op.text == "^":
                raise self._error("'^' is not a postfix operator", op.start,
                                  hint="Did you mean '-' for parents?")
            kind = A.UnaryOp.PARENTS if op.text == "-" else A.UnaryOp.CHILDREN
            operand = A.UnaryExpression(kind, operand,
                                        **self._span(node.start, op.end))
        return operand

    # ── Primaries ────────────────────────────────────────────────────

    def visit_primary(self, node, visited_children):
        child = visited_children[0]
        if isinstance(child, Symbol):
            return self._symbol_node(child)
        return child

    def _symbol_node(self, symbol: Symbol) -> A.Node:
        span = self._span(symbol.pos, symbol.pos + len(symbol.text))
        if symbol.is_identifier:
            return A.Identifier(symbol.value, **span)
        return A.StringLiteral(symbol.value, **span)

    def visit_parenthesized(self, node, visited_children):
        _, _, expression, _, _ = visited_children
        return expression

    def visit_function_call(self, node, visited_children):
        name, _, _, arguments, _, _ = visited_children
        args: List[A.Node] = []
        keyword_args: List[A.KeywordArgument] = []
        for arg in arguments:
            if isinstance(arg, A.KeywordArgument):
                keyword_args.append(arg)
            elif keyword_args:
                raise self._error("Positional argument follows keyword argument",
                                  arg.pos)
            else:
                args.append(arg)
        return A.FunctionCall(name, tuple(args), tuple(keyword_args),
                              **self._span(node.start, node.end))

    def visit_function_arguments(self, node, visited_children):
        if not visited_children:
            return []
        first, rest, _ = visited_children[0]
        return [first] + [arg for _, _, _, arg in rest]

    def visit_argument(self, node, visited_children):
        return visited_children[0]

    def visit_keyword_argument(self, node, visited_children):
        name, _, _, _, value = visited_children
        return A.KeywordArgument(name, value, **self._span(node.start, node.end))

    def visit_string_pattern(self, node, visited_children):
        kind, _, _, symbol = visited_children
        return A.PatternLiteral(kind, symbol.value, **self._span(node.start, node.end))

    def visit_remote_symbol(self, node, visited_children):
        name, _, remote = visited_children
        return A.RemoteSymbol(name.value, remote.value,
                              **self._span(node.start, node.end))

    def visit_workspace_symbol(self, node, visited_children):
        name, _ = visited_children
        return A.WorkspaceWorkingCopy(name.value, **self._span(node.start, node.end))

    def visit_working_copy(self, node, visited_children):
        return A.WorkingCopy(**self._span(node.start, node.end))


# ═══════════════════════════════════════════════════════════════════════
#  Alias declarations
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class AliasDeclaration:
    """Left-hand side of an alias definition."""
    name: str
    params: Optional[Tuple[str, ...]] = None   # None for symbol aliases

    @property
    def is_function(self) -> bool:
        return self.params is not None

    @property
    def label(self) -> str:
        if self.params is None:
            return self.name
        return f"{self.name}({', '.join(self.params)})"


class AliasDeclarationBuilder(LexicalVisitor):

    def visit_alias_declaration(self, node, visited_children):
        _, declaration, _ = visited_children
        if isinstance(declaration, Symbol):
            return AliasDeclaration(declaration.value)
        return declaration

    def visit_function_alias_declaration(self, node, visited_children):
        name, _, _, params, _, _ = visited_children
        seen = set()
        for param in params:
            if param in seen:
                raise self._error(f'Redefinition of function parameter "{param}"',
                                  node.start)
            seen.add(param)
        return AliasDeclaration(name, tuple(params))

    def visit_formal_parameters(self, node, visited_children):
        if not visited_children:
            return []
        first, rest, _ = visited_children[0]
        return [first] + [param for _, _, _, param in rest]


# ═══════════════════════════════════════════════════════════════════════
#  Entry points
# ═══════════════════════════════════════════════════════════════════════

def parse_program(text: str) -> A.Node:
    """Parse a revset query into a raw syntax tree."""
    tree = run_grammar(REVSET_GRAMMAR, text)
    result = RevsetASTBuilder(text).visit(tree)
    logger.debug("parsed %r -> %s", text, type(result).__name__)
    return result


def parse_alias_declaration(text: str) -> AliasDeclaration:
    """Parse ``name`` or ``name(a, b)``."""
    tree = run_grammar(ALIAS_DECLARATION_GRAMMAR, text)
    return AliasDeclarationBuilder(text).visit(tree)
