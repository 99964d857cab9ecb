# tests/test_analysis.py
"""
Tests for evaluation classification and the expensive-node heuristic.
"""

import pytest

from jj_analyze import expression as E
from jj_analyze import plan as P
from jj_analyze.analysis import (
    DEFAULT_COST_POLICY,
    Classifier,
    CostPolicy,
    Evaluation,
    Literal,
    annotate,
    classify,
    is_expensive,
)
from jj_analyze.patterns import FilesetAll

EAGER, LAZY, PREDICATE = Evaluation.EAGER, Evaluation.LAZY, Evaluation.PREDICATE

VH = P.Reference("visible_heads()")
ROOT = P.Reference("root()")
X = P.Reference("x")
NONEMPTY = P.FilterPredicate(E.FileFilter(FilesetAll()))
EMPTY = P.NotInPredicate(NONEMPTY)


def child_contexts(entry):
    return [child.context for child in entry.children]


def walk(node):
    yield node
    for child in node.children:
        yield from walk(child.node)


# Trees exercising every plan node type at least once.
SAMPLE_TREES = [
    P.Latest(P.FilterWithin(P.Ancestors(VH), EMPTY), 1),
    P.HeadsRange(P.Union((ROOT, X)), VH, E.PARENTS_RANGE_FULL, EMPTY),
    P.Difference(P.Ancestors(VH), P.Range(X, VH)),
    P.Intersection((P.DagRange(ROOT, VH), P.Ancestors(X, E.GenerationRange(0, 2)))),
    P.Coalesce((P.Heads(X), P.Roots(X), P.ForkPoint(X), P.Bisect(X))),
    P.HasSize(P.Reachable(X, P.Ancestors(VH)), 2),
    P.FilterWithin(P.NoneSet(), P.UnionPredicate((
        P.DivergentPredicate(VH),
        P.SetPredicate(P.DagRange(ROOT, VH)),
        P.IntersectionPredicate((NONEMPTY, P.FilterPredicate(E.ConflictFilter()))),
    ))),
]


class TestClassifierTable:

    def test_every_plan_node_has_a_rule(self):
        for cls in P.PLAN_NODE_TYPES:
            assert hasattr(Classifier, f"visit_{cls.__name__}"), cls.__name__

    def test_literal(self):
        entry = classify(Literal("3"), EAGER)
        assert entry.name == "3"
        assert entry.evaluation is Evaluation.RESOLVED

    def test_reference_is_resolved(self, base_context):
        assert classify(X, base_context).evaluation is Evaluation.RESOLVED


class TestContextRules:

    def test_ancestors_never_predicate(self):
        assert classify(P.Ancestors(VH), PREDICATE).evaluation is LAZY
        assert classify(P.Ancestors(VH), EAGER).evaluation is EAGER
        assert classify(P.Ancestors(VH), LAZY).evaluation is LAZY

    def test_ancestors_heads_are_eager(self, base_context):
        assert child_contexts(classify(P.Ancestors(VH), base_context)) == [EAGER]

    def test_ancestors_generation_child(self):
        entry = classify(P.Ancestors(VH, E.GenerationRange(0, 2)), EAGER)
        assert entry.children[0].label == "generation"
        assert entry.children[0].tree == Literal("0..2")

    def test_range_children(self):
        entry = classify(P.Range(X, VH), PREDICATE)
        assert entry.evaluation is LAZY
        assert [c.label for c in entry.children] == ["roots", "heads"]

    def test_dag_range_of_children_is_lazy(self):
        node = P.DagRange(X, VH, E.generation_at(1))
        assert classify(node, PREDICATE).evaluation is LAZY
        assert classify(P.DagRange(X, VH), PREDICATE).evaluation is EAGER

    def test_whole_set_operators_are_eager(self, base_context):
        for node in (P.Heads(X), P.Roots(X), P.ForkPoint(X), P.Bisect(X),
                     P.Latest(X, 1), P.HasSize(X, 1)):
            assert classify(node, base_context).evaluation is EAGER

    def test_latest_children(self):
        entry = classify(P.Latest(X, 1), LAZY)
        assert [(c.label, c.context) for c in entry.children] == [
            ("count", Evaluation.RESOLVED), ("candidates", EAGER)]

    def test_union_inherits_context(self, base_context):
        entry = classify(P.Union((X, VH)), base_context)
        assert entry.evaluation is base_context
        assert child_contexts(entry) == [base_context, base_context]

    def test_intersection_children_relaxed_from_eager(self):
        entry = classify(P.Intersection((X, VH)), EAGER)
        assert entry.evaluation is EAGER
        assert child_contexts(entry) == [LAZY, LAZY]

    def test_intersection_keeps_predicate(self):
        assert child_contexts(classify(P.Intersection((X, VH)), PREDICATE)) == [
            PREDICATE, PREDICATE]

    def test_difference(self):
        entry = classify(P.Difference(X, VH), EAGER)
        assert [(c.label, c.context) for c in entry.children] == [
            ("candidates", EAGER), ("excluded", LAZY)]

    def test_filter_within(self):
        entry = classify(P.FilterWithin(X, EMPTY), LAZY)
        assert [(c.label, c.context) for c in entry.children] == [
            ("candidates", LAZY), ("predicate", PREDICATE)]

    def test_reachable(self):
        entry = classify(P.Reachable(X, VH), LAZY)
        assert entry.evaluation is EAGER
        assert child_contexts(entry) == [PREDICATE, EAGER]

    def test_set_predicate_uses_predicate_context(self):
        entry = classify(P.SetPredicate(P.Union((X, VH))), EAGER)
        assert entry.evaluation is PREDICATE


class TestPredicateNames:

    def test_empty(self):
        assert classify(EMPTY, PREDICATE).name == "empty()"

    def test_nonempty(self):
        assert classify(NONEMPTY, PREDICATE).name == "~empty()"

    def test_filter(self):
        node = P.FilterPredicate(E.ConflictFilter())
        assert classify(node, PREDICATE).name == "conflicts()"

    def test_negated_filter(self):
        node = P.NotInPredicate(P.FilterPredicate(E.ConflictFilter()))
        assert classify(node, PREDICATE).name == "~conflicts()"

    def test_negated_set_keeps_child(self):
        node = P.NotInPredicate(P.SetPredicate(X))
        entry = classify(node, PREDICATE)
        assert entry.name == "NotIn"
        assert len(entry.children) == 1


class TestExpensive:

    def test_eager_ancestors_of_visible_heads(self):
        assert is_expensive(P.Ancestors(VH), EAGER)
        assert not is_expensive(P.Ancestors(VH), LAZY)
        assert not is_expensive(P.Ancestors(VH), PREDICATE)

    def test_ancestors_of_root_are_cheap(self):
        assert not is_expensive(P.Ancestors(ROOT), EAGER)

    def test_short_generation_span_is_cheap(self):
        assert not is_expensive(P.Ancestors(VH, E.generation_at(1)), EAGER)

    def test_range_from_root(self):
        assert is_expensive(P.Range(ROOT, VH), EAGER)
        assert is_expensive(P.Range(P.NoneSet(), VH), EAGER)
        assert not is_expensive(P.Range(X, VH), EAGER)
        assert not is_expensive(P.Range(ROOT, VH), LAZY)

    def test_dag_range_from_root(self):
        assert is_expensive(P.DagRange(ROOT, VH), LAZY)
        assert not is_expensive(P.DagRange(P.NoneSet(), VH), EAGER)
        assert not is_expensive(P.DagRange(ROOT, ROOT), EAGER)

    def test_intersection_needs_every_item(self):
        assert is_expensive(P.Intersection((P.Ancestors(VH), P.Range(ROOT, VH))), EAGER)
        assert not is_expensive(P.Intersection((P.Ancestors(VH), X)), EAGER)

    def test_set_predicate(self):
        assert is_expensive(P.SetPredicate(P.DagRange(ROOT, VH)), EAGER)
        assert not is_expensive(P.SetPredicate(P.Ancestors(VH)), EAGER)

    def test_other_nodes_never_expensive(self, base_context):
        for node in (X, P.Heads(P.Ancestors(VH)), P.Union((P.Ancestors(VH),)), EMPTY):
            assert not is_expensive(node, base_context)


class TestCostPolicy:

    def test_defaults(self):
        assert DEFAULT_COST_POLICY.large_generation_span == 10_000
        assert DEFAULT_COST_POLICY.version

    def test_threshold(self):
        node = P.Ancestors(VH, E.GenerationRange(0, 10))
        assert not is_expensive(node, EAGER)
        assert is_expensive(node, EAGER, CostPolicy(large_generation_span=5))

    @pytest.mark.parametrize("tree", SAMPLE_TREES)
    def test_raising_threshold_never_adds_expensive_nodes(self, tree):
        strict = annotate(tree, EAGER, CostPolicy(large_generation_span=1))
        loose = annotate(tree, EAGER, CostPolicy(large_generation_span=1_000_000))

        def flags(node):
            return [n.expensive for n in walk(node)]

        for low, high in zip(flags(strict), flags(loose)):
            assert low or not high


class TestAnnotate:

    @pytest.mark.parametrize("tree", SAMPLE_TREES)
    def test_deterministic(self, tree, base_context):
        assert annotate(tree, base_context) == annotate(tree, base_context)

    def test_resolved_base_context_rejected(self):
        with pytest.raises(ValueError):
            annotate(X, Evaluation.RESOLVED)

    def test_expensive_only_in_eager_context(self):
        for tree in SAMPLE_TREES:
            for node in walk(annotate(tree, LAZY)):
                if node.expensive and node.name != "DagRange":
                    assert node.evaluation is EAGER

    def test_latest_empty_marks_ancestors(self):
        root = annotate(SAMPLE_TREES[0], LAZY)
        filter_within = root.children[1].node
        ancestors = filter_within.children[0].node
        assert root.evaluation is EAGER
        assert ancestors.name == "Ancestors"
        assert ancestors.expensive

    def test_analyze_off_marks_nothing(self):
        for tree in SAMPLE_TREES:
            assert not any(n.expensive for n in walk(annotate(tree, EAGER, analyze=False)))

    def test_literal_children(self):
        root = annotate(P.HasSize(X, 3), LAZY)
        count = root.children[0]
        assert count.label == "count"
        assert count.node.name == "3"
        assert count.node.evaluation is Evaluation.RESOLVED


class TestEvaluation:

    def test_from_name(self):
        assert Evaluation.from_name("eager") is EAGER
        with pytest.raises(ValueError):
            Evaluation.from_name("resolved")

    def test_relaxations(self):
        assert PREDICATE.predicate_to_lazy() is LAZY
        assert EAGER.predicate_to_lazy() is EAGER
        assert EAGER.eager_to_lazy() is LAZY
        assert PREDICATE.eager_to_lazy() is PREDICATE
