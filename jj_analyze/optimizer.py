"""
jj_analyze/optimizer.py
=======================

Rewrites a lowered revset expression the way jj's revset engine does before
evaluating it.

Passes, in the order a round applies them:

1. ``unfold_difference``          ``x..y`` -> ``::y & ~::x``, ``x ~ y`` -> ``x & ~y``
2. ``fold_redundant_expression``  ``~~x`` -> ``x``, ``all() & x`` -> ``x``
3. ``fold_generation``            nested ancestors / descendants add generations
4. ``flatten_associative``        merge nested union / intersection / coalesce
5. ``fold_ancestors_union``       ``::a | ::b`` -> ``::(a | b)``
6. ``sort_negations_and_ancestors`` also ``~::a & ~::b`` -> ``~::(a | b)``
7. ``internalize_filter``         move filters right and merge them
8. ``fold_heads_range``           ``heads(R & f)`` -> ``HeadsRange``
9. ``fold_difference``            ``::h & ~::r`` -> ``r..h``, ``x & ~y`` -> ``x ~ y``
10. ``fold_not_in_ancestors``     ``~::h`` -> ``h..visible_heads``

Rounds repeat until one changes nothing; a query still changing after
``MAX_ROUNDS`` rounds raises :class:`OptimizerError`.

Union, intersection and coalesce are n-ary here; the passes that care about
jj's binary left-associative shape (``fold_difference``, the heads-range
fold) replay it as a left fold over the operands.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from . import expression as E
from .errors import OptimizerError

logger = logging.getLogger(__name__)

MAX_ROUNDS = 32

RewritePass = Callable[[E.RevsetExpression], E.RevsetExpression]


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def _and(lhs: E.RevsetExpression, rhs: E.RevsetExpression) -> E.RevsetExpression:
    """``lhs & rhs``, appending to ``lhs`` when it already is an intersection."""
    items: List[E.RevsetExpression] = []
    for side in (lhs, rhs):
        if isinstance(side, E.Intersection):
            items.extend(side.items)
        else:
            items.append(side)
    return E.intersection(*items)


def _is_open_ancestors(node: E.RevsetExpression) -> bool:
    """``::x`` reaching every generation from some start, all parents."""
    return (isinstance(node, E.Ancestors)
            and node.generation.end == E.U64_MAX
            and node.parents_range == E.PARENTS_RANGE_FULL)


def _full_ancestors_heads(node: E.RevsetExpression) -> Optional[E.RevsetExpression]:
    """Heads of ``::x`` over every generation and parent, else ``None``."""
    if (isinstance(node, E.Ancestors)
            and node.generation == E.GENERATION_RANGE_FULL
            and node.parents_range == E.PARENTS_RANGE_FULL):
        return node.heads
    return None


def _negated_ancestors_roots(node: E.RevsetExpression) -> Optional[E.RevsetExpression]:
    """Roots of ``~::x`` seen as ``x..``, else ``None``."""
    if isinstance(node, E.NotIn) and _is_open_ancestors(node.complement):
        return _range_roots(node.complement)
    return None


def _merge_ancestors(items: Sequence[E.RevsetExpression],
                     heads_of: Callable[[E.RevsetExpression], Optional[E.RevsetExpression]],
                     wrap: Callable[[E.RevsetExpression], E.RevsetExpression],
                     ) -> Optional[Tuple[E.RevsetExpression, ...]]:
    """Replace every operand *heads_of* accepts by one ``wrap(union of heads)``
    at the first such operand's place.  ``None`` when fewer than two match."""
    found = [heads_of(item) for item in items]
    heads = [h for h in found if h is not None]
    if len(heads) < 2:
        return None
    merged: Optional[E.RevsetExpression] = wrap(E.union(*heads))
    out: List[E.RevsetExpression] = []
    for item, h in zip(items, found):
        if h is None:
            out.append(item)
        elif merged is not None:
            out.append(merged)
            merged = None
    return tuple(out)


def _range_roots(ancestors: E.Ancestors) -> E.RevsetExpression:
    """Roots of the range that excludes *ancestors*.

    ``~ancestors(x, n..)`` keeps everything that is not an ancestor of
    ``x``'s n-th generation.
    """
    start = ancestors.generation.start
    if start == 0:
        return ancestors.heads
    return E.Ancestors(ancestors.heads, E.generation_at(start))


# ═══════════════════════════════════════════════════════════════════════
#  Alias normalisation
# ═══════════════════════════════════════════════════════════════════════

def normalize_aliases(expression: E.RevsetExpression) -> E.RevsetExpression:
    """Replace collapsible alias expansions by their label."""
    def rule(node):
        if isinstance(node, E.AliasExpansion):
            return E.CollapsedAlias(node.label)
        return None
    return E.transform_bottom_up(expression, rule)


# ═══════════════════════════════════════════════════════════════════════
#  Passes
# ═══════════════════════════════════════════════════════════════════════

def unfold_difference(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.Range):
            heads = E.Ancestors(node.heads, node.generation, node.parents_range)
            return E.intersection(heads, E.NotIn(E.Ancestors(node.roots)))
        if isinstance(node, E.Difference):
            return E.intersection(node.left, E.NotIn(node.right))
        return None
    return E.transform_bottom_up(expression, rule)


def fold_redundant_expression(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.NotIn) and isinstance(node.complement, E.NotIn):
            return node.complement.complement
        if isinstance(node, E.Intersection):
            kept = [item for item in node.items if not isinstance(item, E.All)]
            if len(kept) == len(node.items):
                return None
            return E.intersection(*kept) if kept else E.All()
        return None
    return E.transform_bottom_up(expression, rule)


def fold_generation(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.Ancestors) and isinstance(node.heads, E.Ancestors):
            inner = node.heads
            if inner.parents_range == node.parents_range:
                return E.Ancestors(inner.heads, node.generation.add(inner.generation),
                                   node.parents_range)
        if isinstance(node, E.Descendants) and isinstance(node.roots, E.Descendants):
            inner = node.roots
            return E.Descendants(inner.roots, node.generation.add(inner.generation))
        return None
    return E.transform_bottom_up(expression, rule)


def flatten_associative(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, (E.Union, E.Intersection, E.Coalesce)):
            if not any(type(item) is type(node) for item in node.items):
                return None
            items: List[E.RevsetExpression] = []
            for item in node.items:
                if type(item) is type(node):
                    items.extend(item.items)
                else:
                    items.append(item)
            return type(node)(tuple(items))
        return None
    return E.transform_bottom_up(expression, rule)


def fold_ancestors_union(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.Union):
            items = _merge_ancestors(node.items, _full_ancestors_heads, E.Ancestors)
            if items is not None:
                return E.union(*items)
        return None
    return E.transform_bottom_up(expression, rule)


# Intersection operand order: ~::x, ::x, other, ~other
_NEGATED_ANCESTORS, _ANCESTORS, _OTHER, _NEGATED_OTHER = range(4)


def _intersection_rank(node: E.RevsetExpression) -> int:
    if isinstance(node, E.NotIn):
        if _is_open_ancestors(node.complement):
            return _NEGATED_ANCESTORS
        return _NEGATED_OTHER
    if isinstance(node, E.Ancestors) and node.parents_range == E.PARENTS_RANGE_FULL:
        return _ANCESTORS
    return _OTHER


def sort_negations_and_ancestors(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.Intersection):
            items = _merge_ancestors(node.items, _negated_ancestors_roots,
                                     lambda heads: E.NotIn(E.Ancestors(heads)))
            if items is None:
                items = node.items
            elif len(items) == 1:
                return items[0]
            ordered = tuple(sorted(items, key=_intersection_rank))
            if ordered != node.items:
                return E.Intersection(ordered)
        return None
    return E.transform_bottom_up(expression, rule)


def internalize_filter(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.AsFilter) and isinstance(node.candidates, E.AsFilter):
            return node.candidates
        if isinstance(node, E.Present) and E.is_filter(node.candidates):
            return E.AsFilter(E.Present(E.strip_filter(node.candidates)))
        if isinstance(node, E.NotIn) and E.is_filter(node.complement):
            return E.AsFilter(E.NotIn(E.strip_filter(node.complement)))
        if isinstance(node, E.Union) and any(E.is_filter(item) for item in node.items):
            return E.AsFilter(E.Union(tuple(E.strip_filter(item) for item in node.items)))
        if isinstance(node, E.Intersection):
            return _internalize_intersection(node)
        return None
    return E.transform_bottom_up(expression, rule)


def _internalize_intersection(node: E.Intersection) -> Optional[E.RevsetExpression]:
    sets = [item for item in node.items if not E.is_filter(item)]
    filters = [item for item in node.items if E.is_filter(item)]
    if not filters:
        return None
    if not sets:
        return E.AsFilter(E.intersection(*(E.strip_filter(f) for f in filters)))
    if len(filters) == 1:
        merged = filters[0]
    else:
        merged = E.AsFilter(E.intersection(*(E.strip_filter(f) for f in filters)))
    rebuilt = E.Intersection(tuple(sets) + (merged,))
    return None if rebuilt == node else rebuilt


# ── Heads-range fusion ───────────────────────────────────────────────

class FilteredRange:
    """``roots..heads`` restricted by a filter, built one operand at a time."""

    def __init__(self, roots: E.RevsetExpression):
        self.roots = roots
        self.heads: Optional[Tuple[E.RevsetExpression, E.GenerationRange]] = None
        self.filter: E.RevsetExpression = E.All()

    def add(self, node: E.RevsetExpression) -> "FilteredRange":
        if (self.heads is None and isinstance(node, E.Ancestors)
                and node.generation == E.GENERATION_RANGE_FULL):
            self.heads = (node.heads, node.parents_range)
            return self
        return self.add_filter(node)

    def add_filter(self, node: E.RevsetExpression) -> "FilteredRange":
        self.filter = node if isinstance(self.filter, E.All) else _and(self.filter, node)
        return self

    def to_heads_range(self) -> E.HeadsRange:
        heads, parents_range = self.heads or (E.VisibleHeadsOrReferenced(),
                                              E.PARENTS_RANGE_FULL)
        return E.HeadsRange(self.roots, heads, parents_range, self.filter)


def to_filtered_range(candidates: E.RevsetExpression) -> Optional[FilteredRange]:
    items: Sequence[E.RevsetExpression]
    if isinstance(candidates, E.Intersection):
        items = candidates.items
    else:
        items = (candidates,)
    first, rest = items[0], items[1:]
    if isinstance(first, E.Ancestors) and first.generation == E.GENERATION_RANGE_FULL:
        filtered = FilteredRange(E.NoneExpr()).add(first)
    elif isinstance(first, E.Range) and first.generation == E.GENERATION_RANGE_FULL:
        filtered = FilteredRange(first.roots)
        filtered.heads = (first.heads, first.parents_range)
    elif isinstance(first, E.NotIn) and _is_open_ancestors(first.complement):
        filtered = FilteredRange(_range_roots(first.complement))
    elif E.is_filter(first):
        filtered = FilteredRange(E.NoneExpr()).add_filter(first)
    else:
        return None
    for item in rest:
        filtered.add(item)
    return filtered


def fold_heads_range(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.Heads):
            filtered = to_filtered_range(node.candidates)
            if filtered is not None:
                return filtered.to_heads_range()
        if (isinstance(node, E.Ancestors)
                and node.generation == E.GENERATION_RANGE_FULL
                and node.parents_range == E.PARENTS_RANGE_FULL):
            filtered = to_filtered_range(node.heads)
            if filtered is not None and not isinstance(filtered.filter, E.All):
                return E.Ancestors(filtered.to_heads_range())
        return None
    return E.transform_bottom_up(expression, rule)


# ── Range fusion ─────────────────────────────────────────────────────

def to_difference(node: E.RevsetExpression,
                  complement: E.RevsetExpression) -> E.RevsetExpression:
    if isinstance(node, E.NotIn) and _is_open_ancestors(node.complement):
        node = E.Range(_range_roots(node.complement), E.VisibleHeadsOrReferenced())
    if isinstance(node, E.Ancestors) and _is_open_ancestors(complement):
        return E.Range(_range_roots(complement), node.heads, node.generation,
                       node.parents_range)
    return E.Difference(node, complement)


def _fold_pair(acc: E.RevsetExpression, item: E.RevsetExpression) -> E.RevsetExpression:
    if isinstance(item, E.AsFilter):
        return _and(acc, item)
    if isinstance(item, E.NotIn):
        return to_difference(acc, item.complement)
    if isinstance(acc, E.NotIn):
        return to_difference(item, acc.complement)
    return _and(acc, item)


def fold_difference(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.Intersection):
            acc = node.items[0]
            for item in node.items[1:]:
                acc = _fold_pair(acc, item)
            return None if acc == node else acc
        return None
    return E.transform_bottom_up(expression, rule)


def fold_not_in_ancestors(expression: E.RevsetExpression) -> E.RevsetExpression:
    def rule(node):
        if isinstance(node, E.NotIn) and _is_open_ancestors(node.complement):
            return E.Range(_range_roots(node.complement), E.VisibleHeadsOrReferenced())
        return None
    return E.transform_bottom_up(expression, rule)


# ═══════════════════════════════════════════════════════════════════════
#  Driver
# ═══════════════════════════════════════════════════════════════════════

PASSES: Tuple[Tuple[str, RewritePass], ...] = (
    ("unfold_difference", unfold_difference),
    ("fold_redundant_expression", fold_redundant_expression),
    ("fold_generation", fold_generation),
    ("flatten_associative", flatten_associative),
    ("fold_ancestors_union", fold_ancestors_union),
    ("sort_negations_and_ancestors", sort_negations_and_ancestors),
    ("internalize_filter", internalize_filter),
    ("fold_heads_range", fold_heads_range),
    ("fold_difference", fold_difference),
    ("fold_not_in_ancestors", fold_not_in_ancestors),
)


def run_round(expression: E.RevsetExpression) -> E.RevsetExpression:
    for name, rewrite in PASSES:
        rewritten = rewrite(expression)
        if rewritten != expression:
            logger.debug("%s rewrote %s", name, type(expression).__name__)
        expression = rewritten
    return flatten_associative(expression)


def optimize(expression: E.RevsetExpression) -> E.RevsetExpression:
    """Apply the engine's rewrites until a round changes nothing."""
    expression = normalize_aliases(expression)
    for round_number in range(1, MAX_ROUNDS + 1):
        rewritten = run_round(expression)
        if rewritten == expression:
            logger.debug("optimizer converged after %d round(s)", round_number)
            return rewritten
        expression = rewritten
    raise OptimizerError(f"Rewrites did not settle after {MAX_ROUNDS} rounds")
