"""jj_analyze/pipeline.py – runs every analysis stage for one query."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from . import expression as E
from . import plan as P
from .aliases import AliasSource, AliasTable, BUILTIN_COLLAPSED, expand_aliases
from .analysis import (
    DEFAULT_COST_POLICY,
    AnnotatedNode,
    CostPolicy,
    Evaluation,
    annotate,
)
from .builtins import LoweringContext, lower
from .config import Settings, current_time
from .errors import AliasLoadError, RevsetAnalyzeError
from .optimizer import normalize_aliases, optimize
from .parser import parse_program
from .patterns import PathConverter
from .render import ColorMode, render_tree

logger = logging.getLogger(__name__)

DEFAULT_USER_EMAIL = "<user-email>"


@dataclass
class AnalyzeOptions:
    """Everything the command line can change about one run."""
    query: str
    context: Evaluation = Evaluation.LAZY
    defines: List[str] = field(default_factory=list)
    collapse: List[str] = field(default_factory=list)
    analyze: bool = True
    collapse_builtins: bool = True
    optimize: bool = True
    color: Optional[str] = None
    cost_policy: CostPolicy = DEFAULT_COST_POLICY


@dataclass
class AnalysisResult:
    expression: E.RevsetExpression
    plan: P.PlanNode
    tree: AnnotatedNode


def split_definition(definition: str):
    """Split ``NAME=EXPR`` at the first ``=``."""
    name, sep, value = definition.partition("=")
    if not sep:
        raise AliasLoadError("Expected a '=' in revset definition",
                             hint=f"Got {definition!r}")
    return name.strip(), value.strip()


def build_alias_table(query: str, *, config_aliases=None,
                      defines: Sequence[str] = (),
                      collapse: Sequence[str] = (),
                      collapse_builtins: bool = True) -> AliasTable:
    """Layer builtin, config, collapsed and ``--define`` aliases.

    An alias is never collapsed when the query is exactly its label, so
    ``jj-analyze 'trunk()'`` still shows the definition.
    """
    table = AliasTable.with_builtins()
    if config_aliases:
        table.insert_all(config_aliases, AliasSource.CONFIG)

    if collapse_builtins:
        for label in BUILTIN_COLLAPSED:
            if label != query:
                table.collapse(label)

    for definition in defines:
        name, value = split_definition(definition)
        try:
            defined = table.insert(name, value, AliasSource.DEFINE)
        except RevsetAnalyzeError as exc:
            raise exc.add_context("Failed to insert revset definition")
        table.uncollapse(defined.declaration)

    for label in collapse:
        if label != query:
            table.collapse(label)
    return table


def analyze_query(options: AnalyzeOptions, settings: Optional[Settings] = None,
                  cwd: Optional[Path] = None) -> AnalysisResult:
    settings = settings or Settings()
    table = build_alias_table(
        options.query,
        config_aliases=settings.aliases,
        defines=options.defines,
        collapse=options.collapse,
        collapse_builtins=options.collapse_builtins,
    )

    raw = parse_program(options.query)
    expanded = expand_aliases(raw, table)

    if settings.workspace_root is not None and cwd is not None:
        converter = PathConverter.for_directories(cwd, settings.workspace_root)
    else:
        converter = PathConverter()
    context = LoweringContext(
        user_email=settings.user_email or DEFAULT_USER_EMAIL,
        now=current_time(settings),
        path_converter=converter,
        alias_functions=tuple(table.function_names()),
    )
    expression = lower(expanded, context)

    if options.optimize:
        expression = optimize(expression)
    else:
        expression = normalize_aliases(expression)

    plan = P.resolve(expression)
    tree = annotate(plan, options.context, options.cost_policy, options.analyze)
    return AnalysisResult(expression, plan, tree)


def run(options: AnalyzeOptions, settings: Optional[Settings] = None,
        cwd: Optional[Path] = None) -> str:
    """Analyze and render one query."""
    settings = settings or Settings()
    result = analyze_query(options, settings, cwd)
    color = ColorMode.from_name(options.color or settings.color)
    return render_tree(result.tree, color, options.analyze)


def analyze(query: str, context: Evaluation = Evaluation.LAZY, **kwargs) -> str:
    """Render *query* without loading any configuration."""
    return run(AnalyzeOptions(query, context=context, **kwargs))
