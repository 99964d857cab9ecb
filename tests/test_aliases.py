# tests/test_aliases.py
"""
Tests for the alias table and the alias expander.
"""

import pytest

from jj_analyze import ast as A
from jj_analyze.aliases import (
    BUILTIN_ALIASES,
    AliasSource,
    AliasTable,
    expand_aliases,
)
from jj_analyze.errors import (
    AliasArityError,
    AliasCycleError,
    AliasLoadError,
    RevsetSyntaxError,
)
from jj_analyze.parser import parse_program


def expand(table, query):
    return expand_aliases(parse_program(query), table)


class TestAliasTable:

    def test_builtins_loaded(self, table):
        labels = {declaration for declaration, _ in BUILTIN_ALIASES}
        assert "trunk()" in labels
        assert table.lookup_declaration(
            table.collapse("trunk()")).source == AliasSource.BUILTIN

    def test_symbol_and_function_namespaces(self, table):
        table.insert("foo", "x")
        table.insert("foo()", "y")
        assert table.symbols["foo"].body == "x"
        assert table.functions["foo"][0].body == "y"

    def test_overloads_by_arity(self, table):
        table.insert("f(a)", "a")
        table.insert("f(a, b)", "a | b")
        assert sorted(table.functions["f"]) == [1, 2]

    def test_later_insert_shadows(self, table):
        table.insert("immutable_heads()", "none()", AliasSource.CONFIG)
        definition = table.functions["immutable_heads"][0]
        assert definition.body == "none()"
        assert not definition.builtin

    def test_bad_declaration(self, table):
        with pytest.raises(AliasLoadError) as info:
            table.insert("f(", "x")
        assert info.value.stage == "config"

    def test_non_string_config_value(self, table):
        with pytest.raises(AliasLoadError, match="must be a string"):
            table.insert_all({"foo": 3}, AliasSource.CONFIG)

    def test_collapse_undefined_alias_inserts_placeholder(self, table):
        table.collapse("mystery()")
        definition = table.functions["mystery"][0]
        assert definition.source == AliasSource.COLLAPSE
        assert table.is_collapsed("mystery", 0)

    def test_uncollapse(self, table):
        declaration = table.collapse("trunk()")
        table.uncollapse(declaration)
        assert not table.is_collapsed("trunk", 0)


class TestExpansion:

    def test_symbol_alias(self, table):
        table.insert("mine_or_main", "main")
        node = expand(table, "mine_or_main")
        assert isinstance(node, A.AliasExpanded)
        assert node.label == "mine_or_main"
        assert node.body == A.Identifier("main")

    def test_parameters_are_substituted(self, table):
        table.insert("both(a, b)", "a & b")
        node = expand(table, "both(x, y)")
        assert node.body == A.BinaryExpression(
            A.BinaryOp.INTERSECTION, A.Identifier("x"), A.Identifier("y"))

    def test_arguments_expand_in_caller_scope(self, table):
        table.insert("x", "caller")
        table.insert("f(x)", "x | x")
        node = expand(table, "f(x)")
        lhs = node.body.lhs
        assert isinstance(lhs, A.AliasExpanded)
        assert lhs.label == "x"

    def test_nested_aliases_keep_markers(self, table):
        node = expand(table, "immutable_heads()")
        assert node.label == "immutable_heads()"
        assert isinstance(node.body, A.AliasExpanded)
        assert node.body.label == "builtin_immutable_heads()"
        assert node.body.builtin

    def test_collapse_flag(self, table):
        table.collapse("trunk()")
        node = expand(table, "trunk()")
        assert node.collapse

    def test_unknown_functions_are_left_alone(self, table):
        node = expand(table, "description(x)")
        assert node == A.FunctionCall("description", (A.Identifier("x"),))


class TestExpansionErrors:

    def test_cycle(self, table):
        table.insert("a()", "b()")
        table.insert("b()", "a()")
        with pytest.raises(AliasCycleError) as info:
            expand(table, "a()")
        assert info.value.stage == "alias expansion"
        assert 'In alias "a()"' in str(info.value)

    def test_self_recursive_symbol(self, table):
        table.insert("loop", "loop | x")
        with pytest.raises(AliasCycleError):
            expand(table, "loop")

    def test_same_alias_twice_is_not_a_cycle(self, table):
        table.insert("f(x)", "x")
        expand(table, "f(f(y))")

    def test_arity_mismatch(self, table):
        table.insert("f(a)", "a")
        with pytest.raises(AliasArityError) as info:
            expand(table, "f()")
        assert info.value.expected == (1,)
        assert info.value.got == 0

    def test_keyword_arguments_rejected(self, table):
        table.insert("f(a)", "a")
        with pytest.raises(AliasArityError):
            expand(table, "f(a=x)")

    def test_malformed_body_reports_alias(self, table):
        table.insert("broken", "x &")
        with pytest.raises(RevsetSyntaxError) as info:
            expand(table, "broken")
        assert 'In alias "broken"' in str(info.value)
