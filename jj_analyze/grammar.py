"""jj_analyze/grammar.py – PEG grammar for revsets, alias declarations and filesets.

One parsimonious :class:`~parsimonious.grammar.Grammar` holds all three
sub-languages so the lexical rules (symbols, string literals, whitespace)
are shared.  The default rule is ``program``; the other entry points are
exposed as re-rooted copies.

Operator precedence, lowest first::

    x | y                       union            (also rejects infix "+")
    x & y   x ~ y               intersection / difference (rejects infix "-")
    ~x                          negation
    x::y x..y ::x ..x x:: x..   ranges (no nesting without parentheses)
    x- x+                       parents / children (rejects postfix "^")
"""

from __future__ import annotations

from parsimonious.grammar import Grammar

REVSET_GRAMMAR_TEXT = r'''
    # ─────────────────────────────────────────────────────────────
    # Revset programs
    # ─────────────────────────────────────────────────────────────

    program                 = _ program_modifier? expression _
    program_modifier        = strict_identifier ":" !":" _

    expression              = union_expression
    union_expression        = intersection_expression (_ union_operator _ intersection_expression)*
    union_operator          = "|" / compat_add_operator
    compat_add_operator     = "+"

    intersection_expression = prefix_expression (_ intersection_operator _ prefix_expression)*
    intersection_operator   = "&" / "~" / compat_sub_operator
    compat_sub_operator     = "-"

    prefix_expression       = negate_expression / range_expression
    negate_expression       = "~" _ prefix_expression

    range_expression        = infix_range / postfix_range / prefix_range / neighbors_expression / range_all
    infix_range             = neighbors_expression _ range_operator _ neighbors_expression
    postfix_range           = neighbors_expression _ range_operator
    prefix_range            = range_operator _ neighbors_expression
    range_all               = "::" / ".."
    range_operator          = "::" / ".."

    neighbors_expression    = primary neighbors_operator*
    neighbors_operator      = "-" / "+" / compat_parents_operator
    compat_parents_operator = "^"

    primary                 = parenthesized
                            / function_call
                            / string_pattern
                            / remote_symbol
                            / workspace_symbol
                            / working_copy
                            / symbol
    parenthesized           = "(" _ expression _ ")"

    function_call           = function_name "(" _ function_arguments _ ")"
    function_arguments      = (argument (_ "," _ argument)* (_ ",")?)?
    argument                = keyword_argument / expression
    keyword_argument        = strict_identifier _ "=" _ expression

    string_pattern          = strict_identifier ":" !":" symbol
    remote_symbol           = symbol "@" symbol
    workspace_symbol        = symbol "@"
    working_copy            = "@"

    # ─────────────────────────────────────────────────────────────
    # Alias declarations:  name  |  name(param, ...)
    # ─────────────────────────────────────────────────────────────

    alias_declaration       = _ (function_alias_declaration / identifier) _
    function_alias_declaration = function_name "(" _ formal_parameters _ ")"
    formal_parameters       = (strict_identifier (_ "," _ strict_identifier)* (_ ",")?)?

    # ─────────────────────────────────────────────────────────────
    # Filesets (arguments of files() / diff_lines())
    # ─────────────────────────────────────────────────────────────

    fileset_program         = _ fileset_expression _
    fileset_expression      = fileset_union
    fileset_union           = fileset_intersection (_ "|" _ fileset_intersection)*
    fileset_intersection    = fileset_prefix (_ fileset_infix_operator _ fileset_prefix)*
    fileset_infix_operator  = "&" / "~"
    fileset_prefix          = fileset_negate / fileset_primary
    fileset_negate          = "~" _ fileset_prefix
    fileset_primary         = fileset_parenthesized
                            / fileset_function
                            / fileset_pattern
                            / fileset_symbol
    fileset_parenthesized   = "(" _ fileset_expression _ ")"
    fileset_function        = function_name "(" _ ")"
    fileset_pattern         = strict_identifier ":" fileset_symbol
    fileset_symbol          = string_literal / raw_string_literal / path_identifier

    # ─────────────────────────────────────────────────────────────
    # Lexical rules
    # ─────────────────────────────────────────────────────────────

    symbol                  = identifier / string_literal / raw_string_literal
    identifier              = ~r"[A-Za-z0-9_/\u0080-\U0010ffff]+(?:[.+\-][A-Za-z0-9_/\u0080-\U0010ffff]+)*"
    strict_identifier       = ~r"[A-Za-z0-9_]+(?:-[A-Za-z0-9_]+)*"
    function_name           = ~r"[A-Za-z_][A-Za-z0-9_]*"
    path_identifier         = ~r"[A-Za-z0-9_/.\-+*?\[\]{}\u0080-\U0010ffff]+"
    string_literal          = ~r'"(?:[^"\\]|\\.)*"'s
    raw_string_literal      = ~r"'[^']*'"s
    _                       = ~r"\s*"
'''

REVSET_GRAMMAR = Grammar(REVSET_GRAMMAR_TEXT)
ALIAS_DECLARATION_GRAMMAR = REVSET_GRAMMAR.default("alias_declaration")
FILESET_GRAMMAR = REVSET_GRAMMAR.default("fileset_program")
