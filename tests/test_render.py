# tests/test_render.py
"""
Tests for the indented tree renderer.
"""

import logging

import pytest

from jj_analyze import plan as P
from jj_analyze.analysis import AnnotatedChild, AnnotatedNode, Evaluation, annotate
from jj_analyze.render import EXPENSIVE_MARKER, ColorMode, TreeRenderer, render_tree

EAGER, LAZY, RESOLVED = Evaluation.EAGER, Evaluation.LAZY, Evaluation.RESOLVED


def leaf(name):
    return AnnotatedNode(name, RESOLVED)


def node(name, *children, evaluation=LAZY, expensive=False):
    return AnnotatedNode(name, evaluation, expensive, tuple(
        AnnotatedChild(label, child) for label, child in children))


def plain(root, analyze=True):
    return render_tree(root, ColorMode.NEVER, analyze)


class TestBrackets:

    def test_leaf(self):
        assert plain(leaf("x")) == "x\n"

    def test_single_unlabelled_child(self):
        tree = node("Heads", (None, leaf("x")), evaluation=EAGER)
        assert plain(tree) == "Heads(\n  x\n)\n"

    def test_many_unlabelled_children(self):
        tree = node("Union", (None, leaf("x")), (None, leaf("y")))
        assert plain(tree) == "Union [\n  x\n  y\n]\n"

    def test_labelled_children(self):
        tree = node("Latest", ("count", leaf("1")), ("candidates", leaf("x")),
                    evaluation=EAGER)
        assert plain(tree) == "Latest {\n  count: 1\n  candidates: x\n}\n"

    def test_nested_indentation(self):
        inner = node("Union", (None, leaf("x")), (None, leaf("y")))
        tree = node("Difference", ("candidates", inner), ("excluded", leaf("z")))
        assert plain(tree).splitlines() == [
            "Difference {",
            "  candidates: Union [",
            "    x",
            "    y",
            "  ]",
            "  excluded: z",
            "}",
        ]


class TestExpensiveMarker:

    def test_marker_precedes_name(self):
        tree = node("Ancestors", ("heads", leaf("visible_heads()")),
                    evaluation=EAGER, expensive=True)
        assert plain(tree).splitlines()[0] == f"{EXPENSIVE_MARKER} Ancestors {{"

    def test_marker_after_label(self):
        ancestors = node("Ancestors", ("heads", leaf("visible_heads()")),
                         evaluation=EAGER, expensive=True)
        tree = node("FilterWithin", ("candidates", ancestors))
        assert "  candidates: (EXPENSIVE) Ancestors {" in plain(tree).splitlines()

    def test_no_marker_without_analysis(self):
        tree = node("Ancestors", ("heads", leaf("visible_heads()")),
                    evaluation=EAGER, expensive=True)
        assert EXPENSIVE_MARKER not in plain(tree, analyze=False)


class TestColor:

    def test_never_has_no_escapes(self):
        tree = annotate(P.Latest(P.Ancestors(P.Reference("visible_heads()")), 1), LAZY)
        assert "\x1b[" not in render_tree(tree, ColorMode.NEVER)

    def test_always_colors_by_evaluation(self):
        tree = node("Union", (None, node("Heads", (None, leaf("x")), evaluation=EAGER)),
                    (None, leaf("y")), evaluation=LAZY)
        output = render_tree(tree, ColorMode.ALWAYS)
        assert "\x1b[96m" in output   # lazy
        assert "\x1b[94m" in output   # eager
        assert "\x1b[1m" in output    # names with children
        assert "\x1b[2m" in output    # brackets
        assert "y\n" in output

    def test_predicate_color(self):
        tree = node("Union", (None, leaf("x")), (None, leaf("y")),
                    evaluation=Evaluation.PREDICATE)
        assert "\x1b[95m" in render_tree(tree, ColorMode.ALWAYS)

    def test_expensive_marker_is_red(self):
        tree = node("Ancestors", ("heads", leaf("x")), evaluation=EAGER, expensive=True)
        output = render_tree(tree, ColorMode.ALWAYS)
        assert "\x1b[91m" in output
        assert EXPENSIVE_MARKER in output

    def test_unanalyzed_nodes_are_blue(self):
        tree = node("Union", (None, leaf("x")), (None, leaf("y")), evaluation=LAZY)
        output = render_tree(tree, ColorMode.ALWAYS, analyze=False)
        assert "\x1b[34m" in output
        assert "\x1b[96m" not in output

    def test_auto_honours_no_color(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "1")
        tree = node("Union", (None, leaf("x")), (None, leaf("y")))
        assert "\x1b[" not in render_tree(tree, ColorMode.AUTO)


class TestColorMode:

    @pytest.mark.parametrize("name, mode", [
        (None, ColorMode.AUTO),
        ("always", ColorMode.ALWAYS),
        ("NEVER", ColorMode.NEVER),
        ("auto", ColorMode.AUTO),
    ])
    def test_from_name(self, name, mode):
        assert ColorMode.from_name(name) is mode

    def test_unknown_name_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="jj_analyze.render"):
            assert ColorMode.from_name("debug") is ColorMode.AUTO
        assert "debug" in caplog.text

    def test_renderer_options(self):
        assert TreeRenderer(ColorMode.ALWAYS)._options == {"force_color": True}
        assert TreeRenderer(ColorMode.NEVER)._options == {"no_color": True}
