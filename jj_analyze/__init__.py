"""jj_analyze — static analysis of jj revset queries.

Parses a revset, expands aliases, applies the rewrites jj's default revset
engine performs and shows how each part of the resulting tree would be
evaluated (eagerly, lazily or as a predicate), flagging the parts likely
to scan the whole history.

Submodules
----------
parser, grammar, ast
    parsimonious grammar and the raw syntax tree.
aliases
    Builtin and user alias layers, alias expansion.
builtins, patterns, expression
    Builtin function table and the revset expression model.
optimizer
    Engine rewrite passes applied to a fixed point.
plan, analysis
    Backend plan tree, evaluation classification and cost.
render
    Colored tree output.
config
    jj TOML settings.

Usage
-----
Command-line::

    jj-analyze 'latest(empty())'

Programmatic::

    from jj_analyze import analyze
    print(analyze("latest(empty())", color="never"), end="")
"""

from __future__ import annotations

__version__: str = "0.1.0"
__all__: list[str] = [
    "__version__",
    "AnalyzeOptions",
    "Evaluation",
    "RevsetAnalyzeError",
    "analyze",
    "analyze_query",
    "run",
]

from .analysis import Evaluation
from .errors import RevsetAnalyzeError
from .pipeline import AnalyzeOptions, analyze, analyze_query, run
