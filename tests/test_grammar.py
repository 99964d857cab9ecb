# tests/test_grammar.py
"""
Tests that the revset PEG grammar is well-formed and matches the lexical
and operator constructs at the grammar level (before visitor transformation).
"""

import pytest
from parsimonious.exceptions import IncompleteParseError, ParseError

from jj_analyze.grammar import (
    ALIAS_DECLARATION_GRAMMAR,
    FILESET_GRAMMAR,
    REVSET_GRAMMAR,
)


@pytest.fixture(scope="module")
def grammar():
    return REVSET_GRAMMAR


class TestGrammarWellFormed:

    def test_default_rule_is_program(self, grammar):
        assert grammar.default_rule.name == "program"

    def test_key_rules_exist(self, grammar):
        for rule in ("program", "union_expression", "intersection_expression",
                     "range_expression", "neighbors_expression", "function_call",
                     "string_pattern", "alias_declaration", "fileset_program"):
            assert rule in grammar, f"Rule {rule!r} missing"

    def test_reentry_points(self):
        assert ALIAS_DECLARATION_GRAMMAR.default_rule.name == "alias_declaration"
        assert FILESET_GRAMMAR.default_rule.name == "fileset_program"


class TestGrammarLexical:

    def test_identifiers(self, grammar):
        for name in ("main", "feature/x", "v1.2.3", "x-y", "a+b", "abc123", "日本"):
            assert grammar["identifier"].parse(name).text == name

    def test_identifier_does_not_end_with_operator(self, grammar):
        with pytest.raises((ParseError, IncompleteParseError)):
            grammar["identifier"].parse("x-")

    def test_string_literals(self, grammar):
        for literal in ('"hello"', r'"esc\"aped"', '""'):
            assert grammar["string_literal"].parse(literal).text == literal
        assert grammar["raw_string_literal"].parse("'raw \\ text'") is not None

    def test_strict_identifier_allows_inner_dash(self, grammar):
        assert grammar["strict_identifier"].parse("substring-i").text == "substring-i"


class TestGrammarExpressions:

    @pytest.mark.parametrize("query", [
        "@",
        "@-",
        "x | y & ~z",
        "::x",
        "x::",
        "x..y",
        "..",
        "::",
        "main@origin",
        "ws@",
        'description(exact:"fix")',
        "remote_bookmarks(remote=origin)",
        "f(a, b,)",
        "all:x | y",
        "(x)+",
        "  padded  ",
    ])
    def test_valid_queries(self, grammar, query):
        assert grammar.parse(query) is not None

    @pytest.mark.parametrize("query", ["x |", "(x", "f(", "x::y::z", "x @ y"])
    def test_invalid_queries(self, grammar, query):
        with pytest.raises((ParseError, IncompleteParseError)):
            grammar.parse(query)

    def test_alias_declarations(self):
        for declaration in ("foo", "foo()", "f(x, y)", " g(a,) "):
            assert ALIAS_DECLARATION_GRAMMAR.parse(declaration) is not None

    def test_filesets(self):
        for fileset in ("src", "src/*.rs", 'glob:"*.md"', "a | b & ~c", "all()"):
            assert FILESET_GRAMMAR.parse(fileset) is not None
