"""jj_analyze/aliases.py – revset alias table and expander.

Aliases come in layers that are inserted in order, later ones shadowing
earlier ones with the same name and arity:

1. the builtin aliases jj ships (``trunk()``, ``immutable()``, ...),
2. ``[revset-aliases]`` from the configuration files,
3. ``--define NAME=EXPR`` on the command line.

A separate collapse set lists alias labels the renderer should show as a
single leaf instead of their definition.

Expansion is purely structural.  The set of labels currently being
expanded is threaded through the recursion; seeing a label again is a
cycle.  Actual arguments are expanded in the caller's scope before they
are substituted for the formal parameters of the alias body.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from . import ast as A
from .errors import (
    AliasArityError,
    AliasCycleError,
    AliasLoadError,
    RevsetAnalyzeError,
    RevsetSyntaxError,
)
from .parser import AliasDeclaration, parse_alias_declaration, parse_program, quote_string

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════
#  Builtin aliases
# ═══════════════════════════════════════════════════════════════════════

BUILTIN_ALIASES: Tuple[Tuple[str, str], ...] = (
    ("trunk()", """latest(
  remote_bookmarks(exact:"main", exact:"origin") |
  remote_bookmarks(exact:"master", exact:"origin") |
  remote_bookmarks(exact:"trunk", exact:"origin") |
  remote_bookmarks(exact:"main", exact:"upstream") |
  remote_bookmarks(exact:"master", exact:"upstream") |
  remote_bookmarks(exact:"trunk", exact:"upstream") |
  root()
)"""),
    ("builtin_immutable_heads()", "present(trunk()) | tags() | untracked_remote_bookmarks()"),
    ("immutable_heads()", "builtin_immutable_heads()"),
    ("immutable()", "::(immutable_heads() | root())"),
    ("mutable()", "~immutable()"),
    ("visible()", "::visible_heads()"),
    ("hidden()", "~visible()"),
)

# Collapsed unless redefined with --define, or -B/--no-collapse-builtin is given.
BUILTIN_COLLAPSED: Tuple[str, ...] = ("trunk()", "builtin_immutable_heads()")


class AliasSource:
    BUILTIN = "builtin"
    CONFIG = "config"
    DEFINE = "define"
    COLLAPSE = "collapse"


@dataclass(frozen=True)
class AliasDefinition:
    declaration: AliasDeclaration
    body: str
    source: str = AliasSource.CONFIG

    @property
    def label(self) -> str:
        return self.declaration.label

    @property
    def builtin(self) -> bool:
        return self.source == AliasSource.BUILTIN


# ═══════════════════════════════════════════════════════════════════════
#  Alias table
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class AliasTable:
    """Symbol and function aliases plus the set of collapsed labels."""

    symbols: Dict[str, AliasDefinition] = field(default_factory=dict)
    functions: Dict[str, Dict[int, AliasDefinition]] = field(default_factory=dict)
    collapsed: Set[Tuple[str, Optional[int]]] = field(default_factory=set)
    _parsed: Dict[str, A.Node] = field(default_factory=dict, repr=False)

    @classmethod
    def with_builtins(cls) -> "AliasTable":
        table = cls()
        for declaration, body in BUILTIN_ALIASES:
            table.insert(declaration, body, AliasSource.BUILTIN)
        return table

    # ── Population ───────────────────────────────────────────────────

    def insert(self, declaration: str, body: str,
               source: str = AliasSource.CONFIG) -> AliasDefinition:
        try:
            parsed = parse_alias_declaration(declaration)
        except RevsetSyntaxError as exc:
            raise AliasLoadError(
                f'Failed to parse revset alias declaration "{declaration}"',
                hint=str(exc),
            ) from exc
        definition = AliasDefinition(parsed, body, source)
        if parsed.params is None:
            self.symbols[parsed.name] = definition
        else:
            self.functions.setdefault(parsed.name, {})[len(parsed.params)] = definition
        self._parsed.pop(definition.label, None)
        logger.debug("alias %s defined from %s", definition.label, source)
        return definition

    def insert_all(self, aliases: Mapping[str, str], source: str) -> None:
        for declaration, body in aliases.items():
            if not isinstance(body, str):
                raise AliasLoadError(
                    f'Revset alias "{declaration}" must be a string, '
                    f"not {type(body).__name__}"
                )
            self.insert(declaration, body, source)

    def collapse(self, declaration: str) -> AliasDeclaration:
        """Mark an alias so it renders as a leaf.

        An alias that has no definition yet gets a placeholder body naming
        itself, so a call to it still resolves.
        """
        try:
            parsed = parse_alias_declaration(declaration)
        except RevsetSyntaxError as exc:
            raise AliasLoadError(
                f'Failed to parse alias to collapse "{declaration}"',
                hint=str(exc),
            ) from exc
        if self.lookup_declaration(parsed) is None:
            self.insert(declaration, quote_string(parsed.label), AliasSource.COLLAPSE)
        self.collapsed.add(_key(parsed))
        return parsed

    def uncollapse(self, declaration: AliasDeclaration) -> None:
        self.collapsed.discard(_key(declaration))

    # ── Lookup ───────────────────────────────────────────────────────

    def lookup_declaration(self, declaration: AliasDeclaration) -> Optional[AliasDefinition]:
        if declaration.params is None:
            return self.symbols.get(declaration.name)
        return self.functions.get(declaration.name, {}).get(len(declaration.params))

    def is_collapsed(self, name: str, arity: Optional[int]) -> bool:
        return (name, arity) in self.collapsed

    def function_names(self) -> List[str]:
        return sorted(self.functions)

    def parsed_body(self, definition: AliasDefinition) -> A.Node:
        label = definition.label
        if label not in self._parsed:
            try:
                self._parsed[label] = parse_program(definition.body)
            except RevsetAnalyzeError as exc:
                raise exc.add_context(f'In alias "{label}"')
        return self._parsed[label]


def _key(declaration: AliasDeclaration) -> Tuple[str, Optional[int]]:
    arity = None if declaration.params is None else len(declaration.params)
    return (declaration.name, arity)


# ═══════════════════════════════════════════════════════════════════════
#  Expander
# ═══════════════════════════════════════════════════════════════════════

class AliasExpander:
    """Substitutes aliases in a raw syntax tree."""

    def __init__(self, table: AliasTable):
        self.table = table

    def expand(self, node: A.Node) -> A.Node:
        return self._expand(node, frozenset(), {})

    def _expand(self, node: A.Node, expanding: FrozenSet[str],
                params: Mapping[str, A.Node]) -> A.Node:
        if isinstance(node, A.Identifier):
            if node.name in params:
                return params[node.name]
            definition = self.table.symbols.get(node.name)
            if definition is not None:
                return self._substitute(node, definition, (), expanding)
            return node
        if isinstance(node, A.FunctionCall):
            overloads = self.table.functions.get(node.name)
            if overloads:
                return self._expand_call(node, overloads, expanding, params)
            return A.FunctionCall(
                node.name,
                tuple(self._expand(arg, expanding, params) for arg in node.args),
                tuple(self._expand(kw, expanding, params) for kw in node.keyword_args),
                pos=node.pos,
                text=node.text,
            )
        if isinstance(node, A.KeywordArgument):
            return A.KeywordArgument(node.name, self._expand(node.value, expanding, params),
                                     pos=node.pos, text=node.text)
        if isinstance(node, A.UnaryExpression):
            return A.UnaryExpression(node.op, self._expand(node.operand, expanding, params),
                                     pos=node.pos, text=node.text)
        if isinstance(node, A.BinaryExpression):
            return A.BinaryExpression(node.op,
                                      self._expand(node.lhs, expanding, params),
                                      self._expand(node.rhs, expanding, params),
                                      pos=node.pos, text=node.text)
        if isinstance(node, A.Modifier):
            return A.Modifier(node.name, self._expand(node.body, expanding, params),
                              pos=node.pos, text=node.text)
        if isinstance(node, A.AliasExpanded):
            return node
        # Leaves: string literals, patterns, remote symbols, working copies.
        return node

    def _expand_call(self, node: A.FunctionCall,
                     overloads: Mapping[int, AliasDefinition],
                     expanding: FrozenSet[str],
                     params: Mapping[str, A.Node]) -> A.Node:
        if node.keyword_args:
            error = AliasArityError(node.name, node.arity, overloads.keys())
            error.hint = "Keyword arguments are not supported for alias functions"
            raise error
        definition = overloads.get(len(node.args))
        if definition is None:
            raise AliasArityError(node.name, len(node.args), overloads.keys())
        args = tuple(self._expand(arg, expanding, params) for arg in node.args)
        return self._substitute(node, definition, args, expanding)

    def _substitute(self, node: A.Node, definition: AliasDefinition,
                    args: Tuple[A.Node, ...], expanding: FrozenSet[str]) -> A.Node:
        label = definition.label
        if label in expanding:
            raise AliasCycleError(label)
        body = self.table.parsed_body(definition)
        formal = definition.declaration.params or ()
        try:
            expanded = self._expand(body, expanding | {label}, dict(zip(formal, args)))
        except RevsetAnalyzeError as exc:
            raise exc.add_context(f'In alias "{label}"')
        return A.AliasExpanded(
            label,
            expanded,
            builtin=definition.builtin,
            collapse=self.table.is_collapsed(*_key(definition.declaration)),
            pos=node.pos,
            text=node.text,
        )


def expand_aliases(node: A.Node, table: AliasTable) -> A.Node:
    """Expand every alias reachable from *node*."""
    return AliasExpander(table).expand(node)
