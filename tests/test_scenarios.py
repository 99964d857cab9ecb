# tests/test_scenarios.py
"""
End-to-end checks: query text in, rendered evaluation tree out.
"""

import textwrap

import pytest

from jj_analyze import Evaluation, analyze
from jj_analyze.config import Settings
from jj_analyze.optimizer import optimize
from jj_analyze.pipeline import AnalyzeOptions, analyze_query, build_alias_table, run

from tests.conftest import (
    SCENARIO_HEADS_QUERY,
    SCENARIO_HEADS_TREE,
    SCENARIO_LATEST_EMPTY_QUERY,
    SCENARIO_LATEST_EMPTY_TREE,
    SCENARIO_MUTABLE_QUERY,
    SCENARIO_MUTABLE_TREE,
    SCENARIO_UNION_QUERY,
    SCENARIO_UNION_TREE,
    render_plain,
)


def tree(text):
    return textwrap.dedent(text).lstrip("\n")


@pytest.mark.parametrize("query, expected", [
    (SCENARIO_UNION_QUERY, SCENARIO_UNION_TREE),
    (SCENARIO_LATEST_EMPTY_QUERY, SCENARIO_LATEST_EMPTY_TREE),
    (SCENARIO_MUTABLE_QUERY, SCENARIO_MUTABLE_TREE),
    (SCENARIO_HEADS_QUERY, SCENARIO_HEADS_TREE),
], ids=["union", "latest-empty", "mutable", "heads"])
def test_reference_scenarios(query, expected):
    assert render_plain(query) == expected


class TestPipeline:

    def test_rendering_is_deterministic(self):
        first = render_plain(SCENARIO_HEADS_QUERY)
        assert render_plain(SCENARIO_HEADS_QUERY) == first

    def test_optimizing_twice_changes_nothing(self):
        result = analyze_query(AnalyzeOptions(SCENARIO_MUTABLE_QUERY))
        assert optimize(result.expression) == result.expression

    def test_analyze_helper(self):
        output = analyze(SCENARIO_LATEST_EMPTY_QUERY, Evaluation.LAZY, color="never")
        assert output == SCENARIO_LATEST_EMPTY_TREE

    def test_whitespace_is_irrelevant(self):
        assert render_plain("latest( empty( ) )") == SCENARIO_LATEST_EMPTY_TREE

    def test_unoptimized_keeps_ancestors_and_negation(self):
        assert render_plain("::foo & ~::bar", optimize=False) == tree("""
            Intersection [
              Ancestors {
                heads: foo
              }
              Difference {
                candidates: Ancestors {
                  heads: visible_heads()
                }
                excluded: Ancestors {
                  heads: bar
                }
              }
            ]
        """)

    def test_mutable_minus_ancestors(self):
        output = render_plain("mutable() & ~::main")
        assert output == tree("""
            Range {
              roots: Union [
                builtin_immutable_heads()
                root()
                main
              ]
              heads: visible_heads()
            }
        """)
        result = analyze_query(AnalyzeOptions("mutable() & ~::main"))
        assert optimize(result.expression) == result.expression

    def test_union_of_ancestors(self):
        output = render_plain("::a | ::b", context=Evaluation.EAGER)
        assert output == tree("""
            (EXPENSIVE) Ancestors {
              heads: Union [
                a
                b
              ]
            }
        """)

    def test_config_aliases_are_used(self):
        settings = Settings(aliases={"mine_heads": "heads(x)"})
        output = run(AnalyzeOptions("mine_heads", color="never"), settings)
        assert output == "Heads(\n  x\n)\n"

    def test_defines_shadow_config(self):
        table = build_alias_table("q", config_aliases={"q": "a"}, defines=["q=b"])
        assert table.symbols["q"].body == "b"

    def test_builtins_collapsed_by_default(self):
        table = build_alias_table("x")
        assert table.is_collapsed("trunk", 0)
        assert table.is_collapsed("builtin_immutable_heads", 0)

    def test_builtin_collapse_can_be_disabled(self):
        table = build_alias_table("x", collapse_builtins=False)
        assert not table.is_collapsed("trunk", 0)

    def test_define_uncollapses_builtin(self):
        table = build_alias_table("x", defines=["trunk()=main"])
        assert not table.is_collapsed("trunk", 0)


class TestContexts:

    def test_predicate_context(self):
        output = render_plain("::x | y", context=Evaluation.PREDICATE)
        assert output == tree("""
            Union [
              Ancestors {
                heads: x
              }
              y
            ]
        """)

    def test_eager_context_marks_scans(self):
        output = render_plain("::visible_heads()", context=Evaluation.EAGER)
        assert output.startswith("(EXPENSIVE) Ancestors {")

    def test_lazy_context_does_not(self):
        assert "(EXPENSIVE)" not in render_plain("::visible_heads()")


class TestFormatting:

    def test_files(self):
        assert render_plain('files("src")') == tree("""
            FilterWithin {
              candidates: Ancestors {
                heads: visible_heads()
              }
              predicate: files("src")
            }
        """)

    def test_nonempty(self):
        assert "predicate: ~empty()" in render_plain("~empty()")

    def test_string_pattern_filter(self):
        assert render_plain('description(substring-i:"Fix") & x') == tree("""
            FilterWithin {
              candidates: x
              predicate: description(substring-i:"Fix")
            }
        """)

    def test_generation_ranges(self):
        assert render_plain("x--") == tree("""
            Ancestors {
              generation: 2
              heads: x
            }
        """)

    def test_count_literal(self):
        assert render_plain("exactly(x, 3)") == tree("""
            HasSize {
              count: 3
              candidates: x
            }
        """)

    def test_at_operation_labels(self):
        assert render_plain("at_operation(abc, x) | y..") == tree("""
            Union [
              x at operation abc
              Range {
                roots: y
                heads: visible_heads() and referenced revisions
              }
            ]
        """)
