"""
jj_analyze/builtins.py
======================

The builtin revset function table, and lowering of an alias-expanded raw
tree into :mod:`jj_analyze.expression` nodes.

Operators lower the way jj defines them::

    x-      ancestors(x, generation 1)      x+      descendants(x, generation 1)
    ::x     Ancestors(x)                    x::     Descendants(x)
    x::y    DagRange(x, y)                  x..y    Range(x, y)
    ..x     Range(root(), x)                x..     Range(x, visible heads)
    ::      all()                           ..      Range(root(), visible heads)
    ~x      NotIn(x)                        x ~ y   Difference(x, y)

Functions are looked up in :data:`BUILTIN_FUNCTIONS` (their signatures) and
dispatched to ``Lowering._fn_<name>``.
"""

from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from . import ast as A
from . import expression as E
from .errors import RevsetExpressionError, UnknownOperatorError
from .patterns import (
    FilesetAll,
    PathConverter,
    StringMatch,
    StringPattern,
    StringPatternKind,
    parse_date_pattern,
    parse_fileset_argument,
    parse_literal,
    parse_string_expression,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
#  Signatures
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FunctionSignature:
    """Parameter names of a builtin.

    ``keywords`` lists the parameters that may also be passed by name.  A
    variadic function takes any number of positional arguments and no
    keywords.
    """
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    variadic: bool = False

    def describe(self) -> str:
        low = len(self.required)
        high = low + len(self.optional)
        if low == high:
            return f"Expected {low} arguments"
        return f"Expected {low} to {high} arguments"

    def bind(self, call: A.FunctionCall) -> Dict[str, Optional[A.Node]]:
        names = self.required + self.optional
        if len(call.args) > len(names) or (
            len(call.args) < len(self.required) and not call.keyword_args
        ):
            raise RevsetExpressionError(f'Function "{call.name}": {self.describe()}')
        bound: Dict[str, Optional[A.Node]] = dict.fromkeys(names)
        for name, arg in zip(names, call.args):
            bound[name] = arg
        for kwarg in call.keyword_args:
            if kwarg.name not in self.keywords:
                raise RevsetExpressionError(
                    f'Function "{call.name}": Unexpected keyword argument "{kwarg.name}"'
                )
            if bound[kwarg.name] is not None:
                raise RevsetExpressionError(
                    f'Function "{call.name}": Got multiple values for keyword "{kwarg.name}"'
                )
            bound[kwarg.name] = kwarg.value
        if any(bound[name] is None for name in self.required):
            raise RevsetExpressionError(f'Function "{call.name}": {self.describe()}')
        return bound


def _sig(*required: str, optional: Sequence[str] = (),
         keywords: Sequence[str] = ()) -> FunctionSignature:
    return FunctionSignature(tuple(required), tuple(optional), tuple(keywords))


BUILTIN_FUNCTIONS: Dict[str, FunctionSignature] = {
    # Graph navigation
    "parents": _sig("x", optional=("depth",)),
    "children": _sig("x", optional=("depth",)),
    "ancestors": _sig("heads", optional=("depth",)),
    "descendants": _sig("roots", optional=("depth",)),
    "first_parent": _sig("x", optional=("depth",)),
    "first_ancestors": _sig("heads", optional=("depth",)),
    "reachable": _sig("sources", "domain"),
    "connected": _sig("x"),
    "heads": _sig("x"),
    "roots": _sig("x"),
    "fork_point": _sig("x"),
    "bisect": _sig("x"),
    # Constant sets
    "none": _sig(),
    "all": _sig(),
    "visible_heads": _sig(),
    "root": _sig(),
    "working_copies": _sig(),
    # References
    "change_id": _sig("prefix"),
    "commit_id": _sig("prefix"),
    "bookmarks": _sig(optional=("pattern",)),
    "remote_bookmarks": _sig(optional=("bookmark", "remote"), keywords=("remote",)),
    "tracked_remote_bookmarks": _sig(optional=("bookmark", "remote"), keywords=("remote",)),
    "untracked_remote_bookmarks": _sig(optional=("bookmark", "remote"), keywords=("remote",)),
    "tags": _sig(optional=("pattern",)),
    "git_refs": _sig(),
    "git_head": _sig(),
    # Sizing
    "latest": _sig("x", optional=("count",)),
    "exactly": _sig("x", "count"),
    # Filters
    "merges": _sig(),
    "description": _sig("pattern"),
    "subject": _sig("pattern"),
    "author": _sig("pattern"),
    "author_name": _sig("pattern"),
    "author_email": _sig("pattern"),
    "author_date": _sig("pattern"),
    "mine": _sig(),
    "committer": _sig("pattern"),
    "committer_name": _sig("pattern"),
    "committer_email": _sig("pattern"),
    "committer_date": _sig("pattern"),
    "signed": _sig(),
    "empty": _sig(),
    "files": _sig("fileset"),
    "file": _sig("fileset"),
    "diff_lines": _sig("text", optional=("files",), keywords=("files",)),
    "diff_contains": _sig("text", optional=("files",), keywords=("files",)),
    "conflicts": _sig(),
    "divergent": _sig(),
    # Evaluation control
    "present": _sig("x"),
    "at_operation": _sig("operation", "x"),
    "coalesce": FunctionSignature(variadic=True),
}

_CHANGE_ID_RE = re.compile(r"[k-z]+\Z")
_COMMIT_ID_RE = re.compile(r"[0-9a-f]+\Z")
_INTEGER_RE = re.compile(r"[0-9]+\Z")


def suggest_functions(name: str, known: Iterable[str]) -> List[str]:
    """Close matches for an unknown function name."""
    return difflib.get_close_matches(name, sorted(set(known)), n=3, cutoff=0.6)


# ═══════════════════════════════════════════════════════════════════════
#  Lowering
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class LoweringContext:
    """Settings that literals in a query are resolved against."""
    user_email: str = "<user-email>"
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    path_converter: PathConverter = field(default_factory=PathConverter)
    use_glob_by_default: bool = True
    alias_functions: Tuple[str, ...] = ()

    @property
    def default_pattern_kind(self) -> StringPatternKind:
        if self.use_glob_by_default:
            return StringPatternKind.GLOB
        return StringPatternKind.SUBSTRING


class Lowering:
    """Turns an expanded raw tree into a revset expression."""

    def __init__(self, context: LoweringContext):
        self.context = context

    def lower(self, node: A.Node) -> E.RevsetExpression:
        method = getattr(self, f"_lower_{type(node).__name__}", None)
        if method is None:
            raise RevsetExpressionError(f"Unexpected syntax node {type(node).__name__}")
        return method(node)

    # ── Leaves ───────────────────────────────────────────────────────

    def _lower_Identifier(self, node: A.Identifier) -> E.RevsetExpression:
        return E.CommitRef(E.SymbolRef(node.name))

    def _lower_StringLiteral(self, node: A.StringLiteral) -> E.RevsetExpression:
        return E.CommitRef(E.SymbolRef(node.value))

    def _lower_RemoteSymbol(self, node: A.RemoteSymbol) -> E.RevsetExpression:
        return E.CommitRef(E.RemoteSymbolRef(node.name, node.remote))

    def _lower_WorkingCopy(self, node: A.WorkingCopy) -> E.RevsetExpression:
        return E.CommitRef(E.WorkingCopyRef())

    def _lower_WorkspaceWorkingCopy(self, node: A.WorkspaceWorkingCopy) -> E.RevsetExpression:
        return E.CommitRef(E.WorkingCopyRef(node.workspace))

    def _lower_PatternLiteral(self, node: A.PatternLiteral) -> E.RevsetExpression:
        raise RevsetExpressionError(
            f'Unexpected string pattern "{node.text}"',
            hint="String patterns are only allowed as arguments of functions "
                 "like bookmarks() or description()",
        )

    def _lower_RangeAll(self, node: A.RangeAll) -> E.RevsetExpression:
        if node.kind is A.RangeKind.DAG:
            return E.All()
        return E.Range(E.Root(), E.VisibleHeadsOrReferenced())

    # ── Operators ────────────────────────────────────────────────────

    def _lower_UnaryExpression(self, node: A.UnaryExpression) -> E.RevsetExpression:
        operand = self.lower(node.operand)
        op = node.op
        if op is A.UnaryOp.NEGATE:
            return E.NotIn(operand)
        if op is A.UnaryOp.PARENTS:
            return E.Ancestors(operand, E.generation_at(1))
        if op is A.UnaryOp.CHILDREN:
            return E.Descendants(operand, E.generation_at(1))
        if op is A.UnaryOp.DAG_RANGE_PRE:
            return E.Ancestors(operand)
        if op is A.UnaryOp.DAG_RANGE_POST:
            return E.Descendants(operand)
        if op is A.UnaryOp.RANGE_PRE:
            return E.Range(E.Root(), operand)
        if op is A.UnaryOp.RANGE_POST:
            return E.Range(operand, E.VisibleHeadsOrReferenced())
        raise RevsetExpressionError(f"Unknown unary operator {op.value}")

    def _lower_BinaryExpression(self, node: A.BinaryExpression) -> E.RevsetExpression:
        lhs = self.lower(node.lhs)
        rhs = self.lower(node.rhs)
        op = node.op
        if op is A.BinaryOp.UNION:
            return E.union(lhs, rhs)
        if op is A.BinaryOp.INTERSECTION:
            return E.intersection(lhs, rhs)
        if op is A.BinaryOp.DIFFERENCE:
            return E.Difference(lhs, rhs)
        if op is A.BinaryOp.DAG_RANGE:
            return E.DagRange(lhs, rhs)
        if op is A.BinaryOp.RANGE:
            return E.Range(lhs, rhs)
        raise RevsetExpressionError(f"Unknown binary operator {op.value}")

    def _lower_Modifier(self, node: A.Modifier) -> E.RevsetExpression:
        if node.name != "all":
            raise RevsetExpressionError(
                f'Modifier "{node.name}" doesn\'t exist',
                hint='The only modifier is "all:"',
            )
        return self.lower(node.body)

    def _lower_AliasExpanded(self, node: A.AliasExpanded) -> E.RevsetExpression:
        body = self.lower(node.body)
        if node.collapse:
            return E.AliasExpansion(node.label, body)
        return body

    def _lower_KeywordArgument(self, node: A.KeywordArgument) -> E.RevsetExpression:
        raise RevsetExpressionError(f'Unexpected keyword argument "{node.name}"')

    def _lower_FunctionCall(self, node: A.FunctionCall) -> E.RevsetExpression:
        signature = BUILTIN_FUNCTIONS.get(node.name)
        if signature is None:
            known = list(BUILTIN_FUNCTIONS) + list(self.context.alias_functions)
            raise UnknownOperatorError(node.name, suggest_functions(node.name, known))
        handler: Callable = getattr(self, f"_fn_{node.name}")
        if signature.variadic:
            if node.keyword_args:
                raise RevsetExpressionError(
                    f'Function "{node.name}": Unexpected keyword argument '
                    f'"{node.keyword_args[0].name}"'
                )
            return handler(node.args)
        return handler(**signature.bind(node))

    # ── Argument helpers ─────────────────────────────────────────────

    def _depth(self, node: Optional[A.Node]) -> Optional[int]:
        if node is None:
            return None
        return self._integer(node, "depth")

    def _integer(self, node: A.Node, description: str) -> int:
        value = parse_literal(node, f"integer {description}")
        if not _INTEGER_RE.match(value) or int(value) > E.U64_MAX:
            raise RevsetExpressionError(
                f"Expected a non-negative integer {description}, got {value!r}"
            )
        return int(value)

    def _string(self, node: Optional[A.Node]):
        if node is None:
            return E.everything_pattern()
        return parse_string_expression(node, self.context.default_pattern_kind)

    def _text_filter(self, field_name: str, pattern: A.Node) -> E.RevsetExpression:
        return E.Filter(E.TextFilter(field_name, self._string(pattern)))

    def _date_filter(self, field_name: str, pattern: A.Node) -> E.RevsetExpression:
        return E.Filter(E.DateFilter(field_name, parse_date_pattern(pattern, self.context.now)))

    # ── Graph navigation ─────────────────────────────────────────────

    def _fn_parents(self, x, depth):
        d = self._depth(depth)
        return E.Ancestors(self.lower(x), E.generation_at(1 if d is None else d))

    def _fn_children(self, x, depth):
        d = self._depth(depth)
        return E.Descendants(self.lower(x), E.generation_at(1 if d is None else d))

    def _fn_ancestors(self, heads, depth):
        d = self._depth(depth)
        generation = E.GENERATION_RANGE_FULL if d is None else E.generation_up_to(d)
        return E.Ancestors(self.lower(heads), generation)

    def _fn_descendants(self, roots, depth):
        d = self._depth(depth)
        generation = E.GENERATION_RANGE_FULL if d is None else E.generation_up_to(d)
        return E.Descendants(self.lower(roots), generation)

    def _fn_first_parent(self, x, depth):
        d = self._depth(depth)
        return E.Ancestors(self.lower(x), E.generation_at(1 if d is None else d),
                           E.GenerationRange(0, 1))

    def _fn_first_ancestors(self, heads, depth):
        d = self._depth(depth)
        generation = E.GENERATION_RANGE_FULL if d is None else E.generation_up_to(d)
        return E.Ancestors(self.lower(heads), generation, E.GenerationRange(0, 1))

    def _fn_reachable(self, sources, domain):
        return E.Reachable(self.lower(sources), self.lower(domain))

    def _fn_connected(self, x):
        candidates = self.lower(x)
        return E.DagRange(candidates, candidates)

    def _fn_heads(self, x):
        return E.Heads(self.lower(x))

    def _fn_roots(self, x):
        return E.Roots(self.lower(x))

    def _fn_fork_point(self, x):
        return E.ForkPoint(self.lower(x))

    def _fn_bisect(self, x):
        return E.Bisect(self.lower(x))

    # ── Constant sets ────────────────────────────────────────────────

    def _fn_none(self):
        return E.NoneExpr()

    def _fn_all(self):
        return E.All()

    def _fn_visible_heads(self):
        return E.VisibleHeads()

    def _fn_root(self):
        return E.Root()

    def _fn_working_copies(self):
        return E.CommitRef(E.WorkingCopiesRef())

    # ── References ───────────────────────────────────────────────────

    def _fn_change_id(self, prefix):
        value = parse_literal(prefix, "change ID prefix")
        if not _CHANGE_ID_RE.match(value):
            raise RevsetExpressionError(f'Invalid change ID prefix "{value}"')
        return E.CommitRef(E.ChangeIdRef(value))

    def _fn_commit_id(self, prefix):
        value = parse_literal(prefix, "commit ID prefix")
        if not _COMMIT_ID_RE.match(value.lower()):
            raise RevsetExpressionError(f'Invalid commit ID prefix "{value}"')
        return E.CommitRef(E.CommitIdRef(value.lower()))

    def _fn_bookmarks(self, pattern):
        return E.CommitRef(E.BookmarksRef(self._string(pattern)))

    def _remote_bookmarks(self, bookmark, remote, state):
        return E.CommitRef(E.RemoteBookmarksRef(self._string(bookmark),
                                                self._string(remote), state))

    def _fn_remote_bookmarks(self, bookmark, remote):
        return self._remote_bookmarks(bookmark, remote, None)

    def _fn_tracked_remote_bookmarks(self, bookmark, remote):
        return self._remote_bookmarks(bookmark, remote, E.RemoteRefState.TRACKED)

    def _fn_untracked_remote_bookmarks(self, bookmark, remote):
        return self._remote_bookmarks(bookmark, remote, E.RemoteRefState.NEW)

    def _fn_tags(self, pattern):
        return E.CommitRef(E.TagsRef(self._string(pattern)))

    def _fn_git_refs(self):
        return E.CommitRef(E.GitRefsRef())

    def _fn_git_head(self):
        return E.CommitRef(E.GitHeadRef())

    # ── Sizing ───────────────────────────────────────────────────────

    def _fn_latest(self, x, count):
        n = 1 if count is None else self._integer(count, "count")
        return E.Latest(self.lower(x), n)

    def _fn_exactly(self, x, count):
        return E.HasSize(self.lower(x), self._integer(count, "count"))

    # ── Filters ──────────────────────────────────────────────────────

    def _fn_merges(self):
        return E.Filter(E.ParentCount(E.GenerationRange(2, E.U32_MAX)))

    def _fn_description(self, pattern):
        return self._text_filter("description", pattern)

    def _fn_subject(self, pattern):
        return self._text_filter("subject", pattern)

    def _fn_author(self, pattern):
        return E.union(self._text_filter("author_name", pattern),
                       self._text_filter("author_email", pattern))

    def _fn_author_name(self, pattern):
        return self._text_filter("author_name", pattern)

    def _fn_author_email(self, pattern):
        return self._text_filter("author_email", pattern)

    def _fn_author_date(self, pattern):
        return self._date_filter("author_date", pattern)

    def _fn_mine(self):
        email = StringPattern(StringPatternKind.EXACT_I, self.context.user_email)
        return E.Filter(E.TextFilter("author_email", StringMatch(email)))

    def _fn_committer(self, pattern):
        return E.union(self._text_filter("committer_name", pattern),
                       self._text_filter("committer_email", pattern))

    def _fn_committer_name(self, pattern):
        return self._text_filter("committer_name", pattern)

    def _fn_committer_email(self, pattern):
        return self._text_filter("committer_email", pattern)

    def _fn_committer_date(self, pattern):
        return self._date_filter("committer_date", pattern)

    def _fn_signed(self):
        return E.Filter(E.SignedFilter())

    def _fn_empty(self):
        return E.empty_filter()

    def _fn_files(self, fileset):
        files = parse_fileset_argument(fileset, self.context.path_converter)
        return E.Filter(E.FileFilter(files))

    _fn_file = _fn_files

    def _fn_diff_lines(self, text, files):
        if files is None:
            fileset = FilesetAll()
        else:
            fileset = parse_fileset_argument(files, self.context.path_converter)
        return E.Filter(E.DiffLinesFilter(self._string(text), fileset))

    _fn_diff_contains = _fn_diff_lines

    def _fn_conflicts(self):
        return E.Filter(E.ConflictFilter())

    def _fn_divergent(self):
        return E.Filter(E.DivergentFilter())

    # ── Evaluation control ───────────────────────────────────────────

    def _fn_present(self, x):
        return E.Present(self.lower(x))

    def _fn_at_operation(self, operation, x):
        op = A.peel_aliases(operation)
        if isinstance(op, (A.Identifier, A.StringLiteral)):
            op = parse_literal(op, "operation")
        else:
            op = op.text
        return E.AtOperation(op, self.lower(x))

    def _fn_coalesce(self, args: Sequence[A.Node]):
        if not args:
            return E.NoneExpr()
        return E.coalesce(*(self.lower(arg) for arg in args))


def lower(node: A.Node, context: Optional[LoweringContext] = None) -> E.RevsetExpression:
    """Lower an alias-expanded raw tree."""
    expression = Lowering(context or LoweringContext()).lower(node)
    logger.debug("lowered to %s", type(expression).__name__)
    return expression
