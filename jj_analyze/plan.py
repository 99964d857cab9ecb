"""
jj_analyze/plan.py
==================

The backend-shaped tree jj's default revset engine evaluates, and the
resolution of an optimized :mod:`jj_analyze.expression` tree into it.

Resolution does what the engine's ``to_backend_expression`` does without a
repository: commit references become labelled :class:`Reference` leaves,
``all()`` becomes the ancestors of the visible heads, a lone negation
becomes a difference from ``all()``, and filters are attached to the set
they narrow (:class:`FilterWithin`).  Nested unions, intersections and
coalesces are flattened into one list for display.

Plan nodes are visited through :class:`PlanVisitor`; its dispatch table
names every node type and an unhandled one raises ``TypeError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type, Union as TypingUnion

from . import expression as E

logger = logging.getLogger(__name__)

ROOT_LABEL = "root()"
VISIBLE_HEADS_LABEL = "visible_heads()"
VISIBLE_HEADS_OR_REFERENCED_LABEL = "visible_heads() and referenced revisions"


# ═══════════════════════════════════════════════════════════════════════
#  Set nodes
# ═══════════════════════════════════════════════════════════════════════

class PlanNode:
    __slots__ = ()


@dataclass(frozen=True, slots=True)
class NoneSet(PlanNode):
    pass


@dataclass(frozen=True, slots=True)
class Reference(PlanNode):
    """A resolved commit reference, shown by label."""
    label: str


@dataclass(frozen=True, slots=True)
class Ancestors(PlanNode):
    heads: PlanNode
    generation: E.GenerationRange = E.GENERATION_RANGE_FULL
    parents_range: E.GenerationRange = E.PARENTS_RANGE_FULL


@dataclass(frozen=True, slots=True)
class Range(PlanNode):
    roots: PlanNode
    heads: PlanNode
    generation: E.GenerationRange = E.GENERATION_RANGE_FULL
    parents_range: E.GenerationRange = E.PARENTS_RANGE_FULL


@dataclass(frozen=True, slots=True)
class DagRange(PlanNode):
    roots: PlanNode
    heads: PlanNode
    generation_from_roots: E.GenerationRange = E.GENERATION_RANGE_FULL


@dataclass(frozen=True, slots=True)
class Reachable(PlanNode):
    sources: PlanNode
    domain: PlanNode


@dataclass(frozen=True, slots=True)
class Heads(PlanNode):
    candidates: PlanNode


@dataclass(frozen=True, slots=True)
class HeadsRange(PlanNode):
    roots: PlanNode
    heads: PlanNode
    parents_range: E.GenerationRange
    filter: Optional["Predicate"] = None


@dataclass(frozen=True, slots=True)
class Roots(PlanNode):
    candidates: PlanNode


@dataclass(frozen=True, slots=True)
class ForkPoint(PlanNode):
    candidates: PlanNode


@dataclass(frozen=True, slots=True)
class Bisect(PlanNode):
    candidates: PlanNode


@dataclass(frozen=True, slots=True)
class HasSize(PlanNode):
    candidates: PlanNode
    count: int


@dataclass(frozen=True, slots=True)
class Latest(PlanNode):
    candidates: PlanNode
    count: int


@dataclass(frozen=True, slots=True)
class Coalesce(PlanNode):
    items: Tuple[PlanNode, ...]


@dataclass(frozen=True, slots=True)
class Union(PlanNode):
    items: Tuple[PlanNode, ...]


@dataclass(frozen=True, slots=True)
class FilterWithin(PlanNode):
    candidates: PlanNode
    predicate: "Predicate"


@dataclass(frozen=True, slots=True)
class Intersection(PlanNode):
    items: Tuple[PlanNode, ...]


@dataclass(frozen=True, slots=True)
class Difference(PlanNode):
    candidates: PlanNode
    excluded: PlanNode


# ═══════════════════════════════════════════════════════════════════════
#  Predicates
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class FilterPredicate(PlanNode):
    filter: E.FilterPredicate


@dataclass(frozen=True, slots=True)
class DivergentPredicate(PlanNode):
    visible_heads: PlanNode


@dataclass(frozen=True, slots=True)
class SetPredicate(PlanNode):
    """A set used as a membership test."""
    candidates: PlanNode


@dataclass(frozen=True, slots=True)
class NotInPredicate(PlanNode):
    inner: "Predicate"


@dataclass(frozen=True, slots=True)
class UnionPredicate(PlanNode):
    items: Tuple["Predicate", ...]


@dataclass(frozen=True, slots=True)
class IntersectionPredicate(PlanNode):
    items: Tuple["Predicate", ...]


Predicate = TypingUnion[FilterPredicate, DivergentPredicate, SetPredicate,
                        NotInPredicate, UnionPredicate, IntersectionPredicate]

SET_NODE_TYPES: Tuple[Type[PlanNode], ...] = (
    NoneSet, Reference, Ancestors, Range, DagRange, Reachable, Heads, HeadsRange,
    Roots, ForkPoint, Bisect, HasSize, Latest, Coalesce, Union, FilterWithin,
    Intersection, Difference,
)
PREDICATE_NODE_TYPES: Tuple[Type[PlanNode], ...] = (
    FilterPredicate, DivergentPredicate, SetPredicate, NotInPredicate,
    UnionPredicate, IntersectionPredicate,
)
PLAN_NODE_TYPES = SET_NODE_TYPES + PREDICATE_NODE_TYPES


# ═══════════════════════════════════════════════════════════════════════
#  Visitor
# ═══════════════════════════════════════════════════════════════════════

_DISPATCH: Dict[type, str] = {cls: f"visit_{cls.__name__}" for cls in PLAN_NODE_TYPES}


class PlanVisitor:
    """Base for per-operator tables over plan nodes.

    Subclasses implement ``visit_<ClassName>``; anything left to
    :meth:`generic_visit` is an error.
    """

    def visit(self, node: PlanNode, *args: Any) -> Any:
        method_name = _DISPATCH.get(type(node))
        if method_name is None:
            raise TypeError(f"Unknown plan node type: {type(node).__name__}")
        method = getattr(self, method_name, None)
        if method is None:
            return self.generic_visit(node, *args)
        return method(node, *args)

    def generic_visit(self, node: PlanNode, *args: Any) -> Any:
        raise TypeError(
            f"{type(self).__name__} does not handle {type(node).__name__}"
        )


def is_root_or_none(node: PlanNode) -> bool:
    """True when *node* can only contain the root commit (or nothing)."""
    if isinstance(node, NoneSet):
        return True
    if isinstance(node, Reference):
        return node.label == ROOT_LABEL
    if isinstance(node, (Coalesce, Union)):
        return all(is_root_or_none(item) for item in node.items)
    if isinstance(node, Intersection):
        return any(is_root_or_none(item) for item in node.items)
    return False


# ═══════════════════════════════════════════════════════════════════════
#  Resolution
# ═══════════════════════════════════════════════════════════════════════

def _flatten(cls, items: List[PlanNode]) -> PlanNode:
    flat: List[PlanNode] = []
    for item in items:
        if isinstance(item, cls):
            flat.extend(item.items)
        else:
            flat.append(item)
    if len(flat) == 1:
        return flat[0]
    return cls(tuple(flat))


class Resolver:
    """Lowers an optimized expression into plan nodes.

    *operation* is set while resolving the body of ``at_operation()``.
    """

    def __init__(self, operation: Optional[str] = None, has_operations: bool = False):
        self.operation = operation
        self.has_operations = has_operations

    def _within(self, operation: str) -> "Resolver":
        return Resolver(operation, self.has_operations)

    def _label(self, label: str) -> str:
        if self.operation is None:
            return label
        return f"{label} at operation {self.operation}"

    def visible_heads(self) -> Reference:
        if self.operation is None:
            return Reference(VISIBLE_HEADS_LABEL)
        return Reference(f"{VISIBLE_HEADS_LABEL} at operation {self.operation}")

    def visible_heads_or_referenced(self) -> Reference:
        if self.operation is None and self.has_operations:
            return Reference(VISIBLE_HEADS_OR_REFERENCED_LABEL)
        return self.visible_heads()

    def all(self) -> PlanNode:
        return Ancestors(self.visible_heads())

    # ── Sets ─────────────────────────────────────────────────────────

    def resolve(self, node: E.RevsetExpression) -> PlanNode:
        if isinstance(node, E.NoneExpr):
            return NoneSet()
        if isinstance(node, E.All):
            return self.all()
        if isinstance(node, E.VisibleHeads):
            return self.visible_heads()
        if isinstance(node, E.VisibleHeadsOrReferenced):
            return self.visible_heads_or_referenced()
        if isinstance(node, E.Root):
            return Reference(ROOT_LABEL)
        if isinstance(node, E.CommitRef):
            return Reference(self._label(str(node.reference)))
        if isinstance(node, (E.CollapsedAlias, E.AliasExpansion)):
            return Reference(self._label(node.label))
        if isinstance(node, E.Ancestors):
            return Ancestors(self.resolve(node.heads), node.generation, node.parents_range)
        if isinstance(node, E.Descendants):
            return DagRange(self.resolve(node.roots), self.visible_heads(), node.generation)
        if isinstance(node, E.Range):
            return Range(self.resolve(node.roots), self.resolve(node.heads),
                         node.generation, node.parents_range)
        if isinstance(node, E.DagRange):
            return DagRange(self.resolve(node.roots), self.resolve(node.heads))
        if isinstance(node, E.Reachable):
            return Reachable(self.resolve(node.sources), self.resolve(node.domain))
        if isinstance(node, E.Heads):
            return Heads(self.resolve(node.candidates))
        if isinstance(node, E.HeadsRange):
            predicate = None
            if not isinstance(node.filter, E.All):
                predicate = self.to_predicate(node.filter)
            return HeadsRange(self.resolve(node.roots), self.resolve(node.heads),
                              node.parents_range, predicate)
        if isinstance(node, E.Roots):
            return Roots(self.resolve(node.candidates))
        if isinstance(node, E.ForkPoint):
            return ForkPoint(self.resolve(node.candidates))
        if isinstance(node, E.Bisect):
            return Bisect(self.resolve(node.candidates))
        if isinstance(node, E.HasSize):
            return HasSize(self.resolve(node.candidates), node.count)
        if isinstance(node, E.Latest):
            return Latest(self.resolve(node.candidates), node.count)
        if isinstance(node, (E.Filter, E.AsFilter)):
            return FilterWithin(self.all(), self.to_predicate(node))
        if isinstance(node, E.AtOperation):
            return self._within(node.operation).resolve(node.candidates)
        if isinstance(node, E.Present):
            return self.resolve(node.candidates)
        if isinstance(node, E.NotIn):
            return Difference(self.all(), self.resolve(node.complement))
        if isinstance(node, E.Union):
            return _flatten(Union, [self.resolve(item) for item in node.items])
        if isinstance(node, E.Coalesce):
            return _flatten(Coalesce, [self.resolve(item) for item in node.items])
        if isinstance(node, E.Intersection):
            return self._intersection(node.items)
        if isinstance(node, E.Difference):
            return Difference(self.resolve(node.left), self.resolve(node.right))
        raise TypeError(f"Cannot resolve {type(node).__name__}")

    def _intersection(self, items) -> PlanNode:
        first, rest = items[0], items[1:]
        acc = self.resolve(first)
        for item in rest:
            if E.is_filter(item):
                acc = FilterWithin(acc, self.to_predicate(item))
            else:
                acc = _flatten(Intersection, [acc, self.resolve(item)])
        return acc

    # ── Predicates ───────────────────────────────────────────────────

    def to_predicate(self, node: E.RevsetExpression) -> Predicate:
        if isinstance(node, E.Filter):
            if isinstance(node.predicate, E.DivergentFilter):
                return DivergentPredicate(self.visible_heads())
            return FilterPredicate(node.predicate)
        if isinstance(node, E.AsFilter):
            return self.to_predicate(node.candidates)
        if isinstance(node, E.Present):
            return self.to_predicate(node.candidates)
        if isinstance(node, E.AtOperation):
            return self._within(node.operation).to_predicate(node.candidates)
        if isinstance(node, E.NotIn):
            return NotInPredicate(self.to_predicate(node.complement))
        if isinstance(node, E.Union):
            items: List[Predicate] = []
            for item in node.items:
                predicate = self.to_predicate(item)
                if isinstance(predicate, UnionPredicate):
                    items.extend(predicate.items)
                elif (isinstance(predicate, SetPredicate)
                      and isinstance(predicate.candidates, Union)):
                    items.extend(SetPredicate(c) for c in predicate.candidates.items)
                else:
                    items.append(predicate)
            return UnionPredicate(tuple(items))
        if isinstance(node, E.Intersection):
            items = []
            for item in node.items:
                predicate = self.to_predicate(item)
                if isinstance(predicate, IntersectionPredicate):
                    items.extend(predicate.items)
                else:
                    items.append(predicate)
            return IntersectionPredicate(tuple(items))
        return SetPredicate(self.resolve(node))


def resolve(expression: E.RevsetExpression) -> PlanNode:
    """Lower an optimized expression into the plan the engine evaluates."""
    has_operations = any(isinstance(node, E.AtOperation) for node in E.walk(expression))
    plan = Resolver(has_operations=has_operations).resolve(expression)
    logger.debug("resolved plan root %s", type(plan).__name__)
    return plan
