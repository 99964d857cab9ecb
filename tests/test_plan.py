# tests/test_plan.py
"""
Tests for resolving optimized expressions into engine plan nodes.
"""

import pytest

from jj_analyze import expression as E
from jj_analyze import plan as P


def sym(name):
    return E.CommitRef(E.SymbolRef(name))


X, Y, Z = sym("x"), sym("y"), sym("z")
CONFLICTS = E.Filter(E.ConflictFilter())
VHR = E.VisibleHeadsOrReferenced()

VISIBLE_HEADS = P.Reference("visible_heads()")


def ref(label):
    return P.Reference(label)


class TestResolveSets:

    def test_all_is_ancestors_of_visible_heads(self):
        assert P.resolve(E.All()) == P.Ancestors(VISIBLE_HEADS)

    def test_lone_negation_is_difference_from_all(self):
        assert P.resolve(E.NotIn(X)) == P.Difference(P.Ancestors(VISIBLE_HEADS), ref("x"))

    def test_descendants_become_dag_range(self):
        assert P.resolve(E.Descendants(X)) == P.DagRange(ref("x"), VISIBLE_HEADS)

    def test_descendants_keep_generation(self):
        node = P.resolve(E.Descendants(X, E.generation_at(1)))
        assert node.generation_from_roots == E.generation_at(1)

    def test_root_and_none(self):
        assert P.resolve(E.Root()) == ref("root()")
        assert P.resolve(E.NoneExpr()) == P.NoneSet()

    def test_collapsed_alias_is_a_reference(self):
        assert P.resolve(E.CollapsedAlias("trunk()")) == ref("trunk()")
        assert P.resolve(E.AliasExpansion("trunk()", E.Latest(X, 1))) == ref("trunk()")

    def test_present_is_transparent(self):
        assert P.resolve(E.Present(X)) == ref("x")

    def test_remote_symbol_label(self):
        node = P.resolve(E.CommitRef(E.RemoteSymbolRef("main", "origin")))
        assert node == ref("main@origin")


class TestFlattening:

    def test_nested_unions(self):
        assert P.resolve(E.Union((X, E.Union((Y, Z))))) == P.Union(
            (ref("x"), ref("y"), ref("z")))

    def test_nested_intersections(self):
        assert P.resolve(E.Intersection((E.Intersection((X, Y)), Z))) == P.Intersection(
            (ref("x"), ref("y"), ref("z")))

    def test_coalesce(self):
        assert P.resolve(E.Coalesce((X, E.Coalesce((Y, Z))))) == P.Coalesce(
            (ref("x"), ref("y"), ref("z")))

    def test_union_inside_intersection_is_kept(self):
        node = P.resolve(E.Intersection((E.Union((X, Y)), Z)))
        assert node == P.Intersection((P.Union((ref("x"), ref("y"))), ref("z")))


class TestFilters:

    def test_filter_narrows_preceding_set(self):
        node = P.resolve(E.Intersection((X, CONFLICTS)))
        assert node == P.FilterWithin(ref("x"), P.FilterPredicate(E.ConflictFilter()))

    def test_bare_filter_scans_all(self):
        node = P.resolve(CONFLICTS)
        assert node == P.FilterWithin(P.Ancestors(VISIBLE_HEADS),
                                      P.FilterPredicate(E.ConflictFilter()))

    def test_divergent_needs_visible_heads(self):
        predicate = P.Resolver().to_predicate(E.Filter(E.DivergentFilter()))
        assert predicate == P.DivergentPredicate(VISIBLE_HEADS)

    def test_union_predicate_mixes_filters_and_sets(self):
        predicate = P.Resolver().to_predicate(E.Union((CONFLICTS, X)))
        assert predicate == P.UnionPredicate(
            (P.FilterPredicate(E.ConflictFilter()), P.SetPredicate(ref("x"))))

    def test_negated_predicate(self):
        predicate = P.Resolver().to_predicate(E.NotIn(CONFLICTS))
        assert predicate == P.NotInPredicate(P.FilterPredicate(E.ConflictFilter()))

    def test_heads_range_without_filter(self):
        node = P.resolve(E.HeadsRange(X, VHR, E.PARENTS_RANGE_FULL, E.All()))
        assert node.filter is None

    def test_heads_range_with_filter(self):
        node = P.resolve(E.HeadsRange(X, VHR, E.PARENTS_RANGE_FULL, E.AsFilter(CONFLICTS)))
        assert node.filter == P.FilterPredicate(E.ConflictFilter())


class TestOperations:

    def test_reference_labelled_with_operation(self):
        assert P.resolve(E.AtOperation("abc", X)) == ref("x at operation abc")

    def test_visible_heads_at_operation(self):
        node = P.resolve(E.AtOperation("abc", E.All()))
        assert node == P.Ancestors(ref("visible_heads() at operation abc"))

    def test_referenced_revisions_label(self):
        node = P.resolve(E.Union((E.AtOperation("abc", X), E.Range(Y, VHR))))
        assert node.items[1].heads == ref("visible_heads() and referenced revisions")

    def test_plain_visible_heads_without_operations(self):
        assert P.resolve(E.Range(Y, VHR)).heads == VISIBLE_HEADS


class TestHelpers:

    def test_is_root_or_none(self):
        assert P.is_root_or_none(P.NoneSet())
        assert P.is_root_or_none(ref("root()"))
        assert P.is_root_or_none(P.Union((ref("root()"), P.NoneSet())))
        assert P.is_root_or_none(P.Intersection((ref("root()"), ref("x"))))
        assert not P.is_root_or_none(ref("x"))
        assert not P.is_root_or_none(P.Union((ref("root()"), ref("x"))))

    def test_node_type_tables(self):
        assert len(P.PLAN_NODE_TYPES) == 24
        assert not set(P.SET_NODE_TYPES) & set(P.PREDICATE_NODE_TYPES)


class TestPlanVisitor:

    def test_unknown_type_rejected(self):
        with pytest.raises(TypeError, match="Unknown plan node type"):
            P.PlanVisitor().visit(object())

    def test_unhandled_type_rejected(self):
        class OnlyReferences(P.PlanVisitor):
            def visit_Reference(self, node):
                return node.label

        visitor = OnlyReferences()
        assert visitor.visit(ref("x")) == "x"
        with pytest.raises(TypeError, match="does not handle Heads"):
            visitor.visit(P.Heads(ref("x")))
