"""jj_analyze/expression.py – the revset expression model.

This is the user-level operator tree the engine's optimizer rewrites: what
``builtins.lower`` produces from the expanded syntax tree and what
``plan.resolve`` lowers into the backend shape.

Design invariants
-----------------
* Every node is a frozen, slotted dataclass; rewrites build new nodes with
  :func:`dataclasses.replace` or :func:`map_children`.
* ``Union``, ``Intersection`` and ``Coalesce`` are n-ary and keep their
  operands in source order.  Use :func:`union`, :func:`intersection` and
  :func:`coalesce` to build them; they never produce a one-operand node.
* Generation and parent-index bounds are half-open :class:`GenerationRange`
  values.  ``GENERATION_RANGE_FULL`` and ``PARENTS_RANGE_FULL`` mean "no
  bound".
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence, Tuple, Union as TypingUnion

from .parser import format_symbol
from .patterns import (
    DatePattern,
    FilesetAll,
    FilesetExpression,
    StringExpression,
    StringMatch,
    StringPattern,
    string_expression_is_all,
)

U64_MAX = 2 ** 64 - 1
U32_MAX = 2 ** 32 - 1


# ═══════════════════════════════════════════════════════════════════════
#  Generation ranges
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class GenerationRange:
    start: int
    end: int

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def span(self) -> int:
        return max(self.end - self.start, 0)

    def add(self, other: "GenerationRange", limit: int = U64_MAX) -> "GenerationRange":
        """Compose two generation bounds, saturating at *limit*.

        ``ancestors(ancestors(x, a), b)`` reaches generations ``a + b``; the
        end bound is exclusive on both sides so one is subtracted.
        """
        if self.is_empty or other.is_empty:
            return GenerationRange(0, 0)
        start = min(self.start + other.start, limit)
        end = min(self.end + other.end - 1, limit)
        return GenerationRange(start, end)

    def format(self, full: "GenerationRange") -> Optional[str]:
        if self == full:
            return None
        if self.start == self.end:
            return "empty range"
        if self.end - self.start == 1:
            return str(self.start)
        if self.end == full.end:
            return f"{self.start}.."
        return f"{self.start}..{self.end}"


GENERATION_RANGE_FULL = GenerationRange(0, U64_MAX)
GENERATION_RANGE_EMPTY = GenerationRange(0, 0)
PARENTS_RANGE_FULL = GenerationRange(0, U32_MAX)


def generation_at(depth: int) -> GenerationRange:
    return GenerationRange(depth, min(depth + 1, U64_MAX))


def generation_up_to(depth: int) -> GenerationRange:
    return GenerationRange(0, depth)


# ═══════════════════════════════════════════════════════════════════════
#  Commit references
# ═══════════════════════════════════════════════════════════════════════

class RemoteRefState(enum.Enum):
    NEW = "untracked"
    TRACKED = "tracked"


@dataclass(frozen=True, slots=True)
class WorkingCopyRef:
    workspace: str = "default"

    def __str__(self) -> str:
        if self.workspace == "default":
            return "@"
        return f"{self.workspace}@"


@dataclass(frozen=True, slots=True)
class WorkingCopiesRef:
    def __str__(self) -> str:
        return "working_copies()"


@dataclass(frozen=True, slots=True)
class SymbolRef:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class RemoteSymbolRef:
    name: str
    remote: str

    def __str__(self) -> str:
        return f"{format_symbol(self.name)}@{format_symbol(self.remote)}"


@dataclass(frozen=True, slots=True)
class ChangeIdRef:
    prefix: str

    def __str__(self) -> str:
        return f"change_id({self.prefix})"


@dataclass(frozen=True, slots=True)
class CommitIdRef:
    prefix: str

    def __str__(self) -> str:
        return f"commit_id({self.prefix})"


@dataclass(frozen=True, slots=True)
class BookmarksRef:
    pattern: StringExpression

    def __str__(self) -> str:
        if string_expression_is_all(self.pattern):
            return "bookmarks()"
        return f"bookmarks({self.pattern})"


@dataclass(frozen=True, slots=True)
class RemoteBookmarksRef:
    bookmark: StringExpression
    remote: StringExpression
    state: Optional[RemoteRefState] = None

    def __str__(self) -> str:
        if self.state is None:
            name = "remote_bookmarks"
        elif self.state is RemoteRefState.NEW:
            name = "untracked_remote_bookmarks"
        else:
            name = "tracked_remote_bookmarks"
        if string_expression_is_all(self.bookmark) and string_expression_is_all(self.remote):
            return f"{name}()"
        return f"{name}({self.bookmark}, remote={self.remote})"


@dataclass(frozen=True, slots=True)
class TagsRef:
    pattern: StringExpression

    def __str__(self) -> str:
        if string_expression_is_all(self.pattern):
            return "tags()"
        return f"tags({self.pattern})"


@dataclass(frozen=True, slots=True)
class GitRefsRef:
    def __str__(self) -> str:
        return "git_refs()"


@dataclass(frozen=True, slots=True)
class GitHeadRef:
    def __str__(self) -> str:
        return "git_head()"


CommitReference = TypingUnion[
    WorkingCopyRef, WorkingCopiesRef, SymbolRef, RemoteSymbolRef, ChangeIdRef,
    CommitIdRef, BookmarksRef, RemoteBookmarksRef, TagsRef, GitRefsRef, GitHeadRef,
]


# ═══════════════════════════════════════════════════════════════════════
#  Filter predicates
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class ParentCount:
    range: GenerationRange

    def __str__(self) -> str:
        if self.range == GenerationRange(2, U32_MAX):
            return "merges()"
        return f"parent_count({self.range.format(PARENTS_RANGE_FULL)})"


@dataclass(frozen=True, slots=True)
class TextFilter:
    """description / subject / author_name / ... with a string expression."""
    field: str
    pattern: StringExpression

    def __str__(self) -> str:
        return f"{self.field}({self.pattern})"


@dataclass(frozen=True, slots=True)
class DateFilter:
    field: str
    pattern: DatePattern

    def __str__(self) -> str:
        return f"{self.field}({self.pattern})"


@dataclass(frozen=True, slots=True)
class FileFilter:
    files: FilesetExpression

    def __str__(self) -> str:
        return f"files({self.files})"


@dataclass(frozen=True, slots=True)
class DiffLinesFilter:
    text: StringExpression
    files: FilesetExpression

    def __str__(self) -> str:
        return f"diff_lines({self.text}, {self.files})"


@dataclass(frozen=True, slots=True)
class ConflictFilter:
    def __str__(self) -> str:
        return "conflicts()"


@dataclass(frozen=True, slots=True)
class SignedFilter:
    def __str__(self) -> str:
        return "signed()"


@dataclass(frozen=True, slots=True)
class DivergentFilter:
    """Divergent changes; evaluated against the visible heads."""

    def __str__(self) -> str:
        return "divergent()"


FilterPredicate = TypingUnion[
    ParentCount, TextFilter, DateFilter, FileFilter, DiffLinesFilter,
    ConflictFilter, SignedFilter, DivergentFilter,
]


# ═══════════════════════════════════════════════════════════════════════
#  Expressions
# ═══════════════════════════════════════════════════════════════════════

class RevsetExpression:
    """Base of the revset expression tree."""

    __slots__ = ()

    def children(self) -> Iterator["RevsetExpression"]:
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, RevsetExpression):
                yield value
            elif isinstance(value, tuple):
                for item in value:
                    if isinstance(item, RevsetExpression):
                        yield item


@dataclass(frozen=True, slots=True)
class NoneExpr(RevsetExpression):
    pass


@dataclass(frozen=True, slots=True)
class All(RevsetExpression):
    pass


@dataclass(frozen=True, slots=True)
class VisibleHeads(RevsetExpression):
    pass


@dataclass(frozen=True, slots=True)
class VisibleHeadsOrReferenced(RevsetExpression):
    pass


@dataclass(frozen=True, slots=True)
class Root(RevsetExpression):
    pass


@dataclass(frozen=True, slots=True)
class CommitRef(RevsetExpression):
    reference: CommitReference


@dataclass(frozen=True, slots=True)
class AliasExpansion(RevsetExpression):
    """A collapsible alias that still carries its lowered body."""
    label: str
    body: RevsetExpression


@dataclass(frozen=True, slots=True)
class CollapsedAlias(RevsetExpression):
    """An alias shown by name instead of by its definition."""
    label: str


@dataclass(frozen=True, slots=True)
class Ancestors(RevsetExpression):
    heads: RevsetExpression
    generation: GenerationRange = GENERATION_RANGE_FULL
    parents_range: GenerationRange = PARENTS_RANGE_FULL


@dataclass(frozen=True, slots=True)
class Descendants(RevsetExpression):
    roots: RevsetExpression
    generation: GenerationRange = GENERATION_RANGE_FULL


@dataclass(frozen=True, slots=True)
class Range(RevsetExpression):
    """``roots..heads``: ancestors of heads that aren't ancestors of roots."""
    roots: RevsetExpression
    heads: RevsetExpression
    generation: GenerationRange = GENERATION_RANGE_FULL
    parents_range: GenerationRange = PARENTS_RANGE_FULL


@dataclass(frozen=True, slots=True)
class DagRange(RevsetExpression):
    roots: RevsetExpression
    heads: RevsetExpression


@dataclass(frozen=True, slots=True)
class Reachable(RevsetExpression):
    sources: RevsetExpression
    domain: RevsetExpression


@dataclass(frozen=True, slots=True)
class Heads(RevsetExpression):
    candidates: RevsetExpression


@dataclass(frozen=True, slots=True)
class HeadsRange(RevsetExpression):
    roots: RevsetExpression
    heads: RevsetExpression
    parents_range: GenerationRange
    filter: RevsetExpression


@dataclass(frozen=True, slots=True)
class Roots(RevsetExpression):
    candidates: RevsetExpression


@dataclass(frozen=True, slots=True)
class ForkPoint(RevsetExpression):
    candidates: RevsetExpression


@dataclass(frozen=True, slots=True)
class Bisect(RevsetExpression):
    candidates: RevsetExpression


@dataclass(frozen=True, slots=True)
class HasSize(RevsetExpression):
    candidates: RevsetExpression
    count: int


@dataclass(frozen=True, slots=True)
class Latest(RevsetExpression):
    candidates: RevsetExpression
    count: int


@dataclass(frozen=True, slots=True)
class Filter(RevsetExpression):
    predicate: FilterPredicate


@dataclass(frozen=True, slots=True)
class AsFilter(RevsetExpression):
    """Marks a set expression that should be evaluated as a predicate."""
    candidates: RevsetExpression


@dataclass(frozen=True, slots=True)
class AtOperation(RevsetExpression):
    operation: str
    candidates: RevsetExpression


@dataclass(frozen=True, slots=True)
class Present(RevsetExpression):
    candidates: RevsetExpression


@dataclass(frozen=True, slots=True)
class NotIn(RevsetExpression):
    complement: RevsetExpression


@dataclass(frozen=True, slots=True)
class Union(RevsetExpression):
    items: Tuple[RevsetExpression, ...]


@dataclass(frozen=True, slots=True)
class Intersection(RevsetExpression):
    items: Tuple[RevsetExpression, ...]


@dataclass(frozen=True, slots=True)
class Coalesce(RevsetExpression):
    items: Tuple[RevsetExpression, ...]


@dataclass(frozen=True, slots=True)
class Difference(RevsetExpression):
    left: RevsetExpression
    right: RevsetExpression


# ═══════════════════════════════════════════════════════════════════════
#  Construction and traversal helpers
# ═══════════════════════════════════════════════════════════════════════

def _nary(cls, items: Sequence[RevsetExpression]) -> RevsetExpression:
    items = tuple(items)
    if not items:
        raise ValueError(f"{cls.__name__} needs at least one operand")
    if len(items) == 1:
        return items[0]
    return cls(items)


def union(*items: RevsetExpression) -> RevsetExpression:
    return _nary(Union, items)


def intersection(*items: RevsetExpression) -> RevsetExpression:
    return _nary(Intersection, items)


def coalesce(*items: RevsetExpression) -> RevsetExpression:
    return _nary(Coalesce, items)


def map_children(node: RevsetExpression,
                 fn: Callable[[RevsetExpression], RevsetExpression]) -> RevsetExpression:
    """Rebuild *node* with ``fn`` applied to each direct child expression."""
    changes = {}
    for f in dataclasses.fields(node):
        value = getattr(node, f.name)
        if isinstance(value, RevsetExpression):
            new = fn(value)
            if new is not value:
                changes[f.name] = new
        elif isinstance(value, tuple) and value and isinstance(value[0], RevsetExpression):
            new_items = tuple(fn(item) for item in value)
            if any(a is not b for a, b in zip(new_items, value)):
                changes[f.name] = new_items
    if not changes:
        return node
    return dataclasses.replace(node, **changes)


def transform_bottom_up(node: RevsetExpression,
                        rule: Callable[[RevsetExpression], Optional[RevsetExpression]]
                        ) -> RevsetExpression:
    """Apply *rule* to every node, children first.

    *rule* returns a replacement or ``None`` to keep the node.
    """
    node = map_children(node, lambda child: transform_bottom_up(child, rule))
    replaced = rule(node)
    return node if replaced is None else replaced


def walk(node: RevsetExpression) -> Iterator[RevsetExpression]:
    yield node
    for child in node.children():
        yield from walk(child)


def is_filter(node: RevsetExpression) -> bool:
    return isinstance(node, (Filter, AsFilter))


def strip_filter(node: RevsetExpression) -> RevsetExpression:
    """``AsFilter(x)`` -> ``x``; other nodes are returned unchanged."""
    return node.candidates if isinstance(node, AsFilter) else node


def empty_filter() -> RevsetExpression:
    """``empty()`` is ``~files(all())``."""
    return NotIn(Filter(FileFilter(FilesetAll())))


def everything_pattern() -> StringExpression:
    return StringMatch(StringPattern.everything())
