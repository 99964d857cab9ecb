"""
jj_analyze/render.py
====================

Indented text rendering of an annotated plan tree.

Output shape::

    Latest {
      count: 1
      candidates: FilterWithin {
        candidates: (EXPENSIVE) Ancestors {
          heads: visible_heads()
        }
        predicate: empty()
      }
    }

A node with at least one labelled child opens `` {``, a node with a single
unlabelled child opens ``(`` and any other node with children opens `` [``.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, List, Optional

from termcolor import colored

from .analysis import AnnotatedNode, Evaluation

logger = logging.getLogger(__name__)


class ColorMode(enum.Enum):
    AUTO = "auto"
    NEVER = "never"
    ALWAYS = "always"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "ColorMode":
        if name is None:
            return cls.AUTO
        try:
            return cls(name.lower())
        except ValueError:
            logger.warning("ignoring unknown color mode %r", name)
            return cls.AUTO

    def termcolor_options(self) -> Dict[str, Any]:
        if self is ColorMode.ALWAYS:
            return {"force_color": True}
        if self is ColorMode.NEVER:
            return {"no_color": True}
        return {}


_EVALUATION_COLORS = {
    Evaluation.EAGER: "light_blue",
    Evaluation.LAZY: "light_cyan",
    Evaluation.PREDICATE: "light_magenta",
    Evaluation.RESOLVED: None,
}

EXPENSIVE_MARKER = "(EXPENSIVE)"


class TreeRenderer:
    """Renders one annotated tree to a list of lines."""

    def __init__(self, color_mode: ColorMode = ColorMode.AUTO, analyze: bool = True):
        self.color_mode = color_mode
        self.analyze = analyze
        self._options = color_mode.termcolor_options()

    def _paint(self, text: str, color: Optional[str] = None,
               attrs: Optional[List[str]] = None) -> str:
        if color is None and not attrs:
            return text
        return colored(text, color, attrs=attrs, **self._options)

    def _dim(self, text: str) -> str:
        return self._paint(text, attrs=["dark"])

    def _name_color(self, evaluation: Evaluation) -> Optional[str]:
        if self.analyze:
            return _EVALUATION_COLORS[evaluation]
        if evaluation is Evaluation.RESOLVED:
            return None
        return "blue"

    def render(self, root: AnnotatedNode) -> str:
        lines: List[str] = []
        self._render(root, 0, "", lines)
        return "\n".join(lines) + "\n"

    def _render(self, node: AnnotatedNode, depth: int, prefix: str,
                lines: List[str]) -> None:
        head = prefix
        if self.analyze and node.expensive:
            head += self._paint(EXPENSIVE_MARKER, "light_red", ["bold"]) + " "
        attrs = ["bold"] if node.children else None
        head += self._paint(node.name, self._name_color(node.evaluation), attrs)
        if not node.children:
            lines.append(head)
            return

        if any(child.label is not None for child in node.children):
            opening, closing = " {", "}"
        elif len(node.children) == 1:
            opening, closing = "(", ")"
        else:
            opening, closing = " [", "]"
        lines.append(head + self._dim(opening))

        indent = "  " * (depth + 1)
        for child in node.children:
            child_prefix = indent
            if child.label is not None:
                child_prefix += self._dim(f"{child.label}:") + " "
            self._render(child.node, depth + 1, child_prefix, lines)
        lines.append("  " * depth + self._dim(closing))


def render_tree(root: AnnotatedNode, color_mode: ColorMode = ColorMode.AUTO,
                analyze: bool = True) -> str:
    """Render *root* as indented text ending with a newline."""
    return TreeRenderer(color_mode, analyze).render(root)
