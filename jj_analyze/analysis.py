"""
jj_analyze/analysis.py
======================

Evaluation classification and cost annotation of a plan tree.

The classifier is a pure function of ``(node, context)``: it returns the
node's display name, the evaluation strategy the engine uses for it and the
context each child inherits.  Running it again with another base context
gives the other reading of the same tree.

Evaluation strategies
---------------------
- **eager**      the set is fully materialized before use
- **lazy**       the set is streamed and may stop early
- **predicate**  the set is only used as a membership test
- **resolved**   a constant (reference, count, range); never evaluated

Cost
----
A node is *expensive* when it is an eager scan whose boundary is the root
commit (or nothing) on one side and a real head set on the other, over a
generation span the :class:`CostPolicy` considers large.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union as TypingUnion

from . import expression as E
from . import plan as P
from .patterns import FilesetAll

logger = logging.getLogger(__name__)


class Evaluation(enum.Enum):
    EAGER = "eager"
    LAZY = "lazy"
    PREDICATE = "predicate"
    RESOLVED = "resolved"

    @classmethod
    def selectable(cls) -> Tuple["Evaluation", ...]:
        """Contexts a caller may choose as the base context."""
        return (cls.EAGER, cls.LAZY, cls.PREDICATE)

    @classmethod
    def from_name(cls, name: str) -> "Evaluation":
        for evaluation in cls.selectable():
            if evaluation.value == name:
                return evaluation
        raise ValueError(f"invalid evaluation context: {name!r}")

    def predicate_to_lazy(self) -> "Evaluation":
        return Evaluation.LAZY if self is Evaluation.PREDICATE else self

    def eager_to_lazy(self) -> "Evaluation":
        return Evaluation.LAZY if self is Evaluation.EAGER else self

    def __str__(self) -> str:
        return self.value


# ═══════════════════════════════════════════════════════════════════════
#  Tree entries
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Literal:
    """A constant child such as a count or a generation range."""
    text: str


AnalyzedTree = TypingUnion[P.PlanNode, Literal]


@dataclass(frozen=True, slots=True)
class Child:
    label: Optional[str]
    context: Evaluation
    tree: AnalyzedTree


@dataclass(frozen=True, slots=True)
class TreeEntry:
    name: str
    evaluation: Evaluation
    children: Tuple[Child, ...] = ()


def _range_child(label: str, value: E.GenerationRange, full: E.GenerationRange,
                 context: Evaluation) -> List[Child]:
    text = value.format(full)
    if text is None:
        return []
    return [Child(label, context, Literal(text))]


def _is_nonempty_filter(predicate: P.PlanNode) -> bool:
    return (isinstance(predicate, P.FilterPredicate)
            and isinstance(predicate.filter, E.FileFilter)
            and isinstance(predicate.filter.files, FilesetAll))


# ═══════════════════════════════════════════════════════════════════════
#  Classifier
# ═══════════════════════════════════════════════════════════════════════

class Classifier(P.PlanVisitor):
    """Per-operator evaluation rules of jj's default revset engine."""

    # ── Leaves ───────────────────────────────────────────────────────

    def visit_NoneSet(self, node, context):
        return TreeEntry("none()", Evaluation.RESOLVED)

    def visit_Reference(self, node, context):
        return TreeEntry(node.label, Evaluation.RESOLVED)

    # ── Graph scans ──────────────────────────────────────────────────

    def visit_Ancestors(self, node, context):
        children = (
            _range_child("generation", node.generation, E.GENERATION_RANGE_FULL, context)
            + _range_child("parent_index", node.parents_range, E.PARENTS_RANGE_FULL, context)
            + [Child("heads", Evaluation.EAGER, node.heads)]
        )
        return TreeEntry("Ancestors", context.predicate_to_lazy(), tuple(children))

    def visit_Range(self, node, context):
        children = (
            _range_child("generation", node.generation, E.GENERATION_RANGE_FULL, context)
            + _range_child("parent_index", node.parents_range, E.PARENTS_RANGE_FULL, context)
            + [Child("roots", Evaluation.EAGER, node.roots),
               Child("heads", Evaluation.EAGER, node.heads)]
        )
        return TreeEntry("Range", context.predicate_to_lazy(), tuple(children))

    def visit_DagRange(self, node, context):
        if node.generation_from_roots == E.generation_at(1):
            evaluation = context.predicate_to_lazy()
        else:
            evaluation = Evaluation.EAGER
        children = (
            _range_child("generation_from_roots", node.generation_from_roots,
                         E.GENERATION_RANGE_FULL, context)
            + [Child("roots", Evaluation.EAGER, node.roots),
               Child("heads", Evaluation.EAGER, node.heads)]
        )
        return TreeEntry("DagRange", evaluation, tuple(children))

    def visit_Reachable(self, node, context):
        return TreeEntry("Reachable", Evaluation.EAGER, (
            Child("sources", Evaluation.PREDICATE, node.sources),
            Child("domain", Evaluation.EAGER, node.domain),
        ))

    def visit_HeadsRange(self, node, context):
        children = _range_child("parent_index", node.parents_range,
                                E.PARENTS_RANGE_FULL, context)
        children += [Child("roots", Evaluation.EAGER, node.roots),
                     Child("heads", Evaluation.EAGER, node.heads)]
        if node.filter is not None:
            children.append(Child("filter", Evaluation.PREDICATE, node.filter))
        return TreeEntry("HeadsRange", Evaluation.EAGER, tuple(children))

    # ── Whole-set operators ──────────────────────────────────────────

    def _eager_unary(self, name, candidates):
        return TreeEntry(name, Evaluation.EAGER,
                         (Child(None, Evaluation.EAGER, candidates),))

    def visit_Heads(self, node, context):
        return self._eager_unary("Heads", node.candidates)

    def visit_Roots(self, node, context):
        return self._eager_unary("Roots", node.candidates)

    def visit_ForkPoint(self, node, context):
        return self._eager_unary("ForkPoint", node.candidates)

    def visit_Bisect(self, node, context):
        return self._eager_unary("Bisect", node.candidates)

    def visit_HasSize(self, node, context):
        return TreeEntry("HasSize", Evaluation.EAGER, (
            Child("count", Evaluation.RESOLVED, Literal(str(node.count))),
            Child("candidates", Evaluation.LAZY, node.candidates),
        ))

    def visit_Latest(self, node, context):
        return TreeEntry("Latest", Evaluation.EAGER, (
            Child("count", Evaluation.RESOLVED, Literal(str(node.count))),
            Child("candidates", Evaluation.EAGER, node.candidates),
        ))

    # ── Set algebra ──────────────────────────────────────────────────

    def visit_Coalesce(self, node, context):
        return TreeEntry("Coalesce", context,
                         tuple(Child(None, context, item) for item in node.items))

    def visit_Union(self, node, context):
        return TreeEntry("Union", context,
                         tuple(Child(None, context, item) for item in node.items))

    def visit_FilterWithin(self, node, context):
        return TreeEntry("FilterWithin", context, (
            Child("candidates", context, node.candidates),
            Child("predicate", Evaluation.PREDICATE, node.predicate),
        ))

    def visit_Intersection(self, node, context):
        inner = context.eager_to_lazy()
        return TreeEntry("Intersection", context,
                         tuple(Child(None, inner, item) for item in node.items))

    def visit_Difference(self, node, context):
        return TreeEntry("Difference", context, (
            Child("candidates", context, node.candidates),
            Child("excluded", context.eager_to_lazy(), node.excluded),
        ))

    # ── Predicates ───────────────────────────────────────────────────

    def visit_FilterPredicate(self, node, context):
        if _is_nonempty_filter(node):
            return TreeEntry("~empty()", Evaluation.PREDICATE)
        return TreeEntry(str(node.filter), Evaluation.PREDICATE)

    def visit_DivergentPredicate(self, node, context):
        return TreeEntry("Divergent", Evaluation.PREDICATE,
                         (Child("visible_heads", Evaluation.EAGER, node.visible_heads),))

    def visit_SetPredicate(self, node, context):
        return self.visit(node.candidates, Evaluation.PREDICATE)

    def visit_NotInPredicate(self, node, context):
        inner = node.inner
        if _is_nonempty_filter(inner):
            return TreeEntry("empty()", Evaluation.PREDICATE)
        if isinstance(inner, P.FilterPredicate):
            return TreeEntry(f"~{inner.filter}", Evaluation.PREDICATE)
        return TreeEntry("NotIn", Evaluation.PREDICATE,
                         (Child(None, Evaluation.PREDICATE, inner),))

    def visit_UnionPredicate(self, node, context):
        return TreeEntry("Union", Evaluation.PREDICATE,
                         tuple(Child(None, Evaluation.PREDICATE, item) for item in node.items))

    def visit_IntersectionPredicate(self, node, context):
        return TreeEntry("Intersection", Evaluation.PREDICATE,
                         tuple(Child(None, Evaluation.PREDICATE, item) for item in node.items))


_CLASSIFIER = Classifier()


def classify(tree: AnalyzedTree, context: Evaluation) -> TreeEntry:
    """Name, own evaluation and child contexts of *tree* under *context*."""
    if isinstance(tree, Literal):
        return TreeEntry(tree.text, Evaluation.RESOLVED)
    return _CLASSIFIER.visit(tree, context)


# ═══════════════════════════════════════════════════════════════════════
#  Cost
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CostPolicy:
    """Tunable thresholds of the expensive-node heuristic.

    ``version`` names the engine release the thresholds were taken from.
    """
    large_generation_span: int = 10_000
    version: str = "jj-0.3x"

    def is_large(self, generation: E.GenerationRange) -> bool:
        return generation.span() >= self.large_generation_span


DEFAULT_COST_POLICY = CostPolicy()


def is_expensive(tree: AnalyzedTree, context: Evaluation,
                 policy: CostPolicy = DEFAULT_COST_POLICY) -> bool:
    if isinstance(tree, P.Ancestors):
        return (context is Evaluation.EAGER
                and not P.is_root_or_none(tree.heads)
                and policy.is_large(tree.generation))
    if isinstance(tree, P.Range):
        return (context is Evaluation.EAGER
                and P.is_root_or_none(tree.roots)
                and not P.is_root_or_none(tree.heads)
                and policy.is_large(tree.generation))
    if isinstance(tree, P.DagRange):
        return (not isinstance(tree.roots, P.NoneSet)
                and P.is_root_or_none(tree.roots)
                and not P.is_root_or_none(tree.heads)
                and policy.is_large(tree.generation_from_roots))
    if isinstance(tree, P.Intersection):
        return all(is_expensive(item, context, policy) for item in tree.items)
    if isinstance(tree, P.SetPredicate):
        return is_expensive(tree.candidates, Evaluation.PREDICATE, policy)
    return False


# ═══════════════════════════════════════════════════════════════════════
#  Annotated tree
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class AnnotatedChild:
    label: Optional[str]
    node: "AnnotatedNode"


@dataclass(frozen=True, slots=True)
class AnnotatedNode:
    name: str
    evaluation: Evaluation
    expensive: bool = False
    children: Tuple[AnnotatedChild, ...] = ()


def annotate(tree: AnalyzedTree, context: Evaluation,
             policy: CostPolicy = DEFAULT_COST_POLICY,
             analyze: bool = True) -> AnnotatedNode:
    """Classify and cost *tree* and all of its children under *context*.

    With *analyze* off nothing is marked expensive.
    """
    if context is Evaluation.RESOLVED:
        raise ValueError("resolved is not a valid base context")
    return _annotate(tree, context, policy, analyze)


def _annotate(tree: AnalyzedTree, context: Evaluation, policy: CostPolicy,
              analyze: bool) -> AnnotatedNode:
    entry = classify(tree, context)
    children = tuple(
        AnnotatedChild(child.label, _annotate(child.tree, child.context, policy, analyze))
        for child in entry.children
    )
    expensive = analyze and is_expensive(tree, context, policy)
    return AnnotatedNode(entry.name, entry.evaluation, expensive, children)
