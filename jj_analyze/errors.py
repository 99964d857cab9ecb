# jj_analyze/errors.py
"""
Error types for the revset analysis pipeline.

Every error names the pipeline stage it came from so the CLI can report
where a query was rejected.  No stage recovers from an error: the first
one raised aborts the analysis and nothing is rendered.

Hierarchy
─────────
    RevsetAnalyzeError (base)
    ├── RevsetSyntaxError      - grammar violations (stage "parse")
    ├── RevsetExpressionError  - bad arguments / literals (stage "resolve")
    │   └── UnknownOperatorError - unrecognized function name
    ├── AliasArityError        - alias called with the wrong arity
    ├── AliasCycleError        - alias re-entered while expanding itself
    ├── OptimizerError         - rewrites that never reach a fixed point
    └── AliasLoadError         - unusable alias definition or config file
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class RevsetAnalyzeError(Exception):
    """Base exception for all analysis errors."""

    stage: str = "analyze"

    def __init__(self, message: str, *, hint: Optional[str] = None):
        self.message = message
        self.hint = hint
        self.context: List[str] = []
        super().__init__(message)

    def add_context(self, note: str) -> "RevsetAnalyzeError":
        """Prepend an outer context line (e.g. the alias being expanded)."""
        self.context.insert(0, note)
        return self

    def __str__(self) -> str:
        lines = [*self.context, self.message]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        return "\n".join(lines)


class RevsetSyntaxError(RevsetAnalyzeError):
    """Raised when a query (or alias body) is malformed."""

    stage = "parse"

    def __init__(
        self,
        message: str,
        query: str = "",
        position: int = -1,
        expected: Optional[str] = None,
        *,
        hint: Optional[str] = None,
    ):
        self.query = query
        self.position = position
        self.expected = expected
        if position >= 0 and query:
            head = f"Syntax error at position {position}: {message}"
            # caret lines only make sense for single-line input
            if "\n" not in query:
                pointer = " " * position + "^"
                message = f"{head}\n  {query}\n  {pointer}"
            else:
                message = head
        super().__init__(message, hint=hint)


class RevsetExpressionError(RevsetAnalyzeError):
    """Raised when a well-formed query cannot be lowered to an expression."""

    stage = "resolve"


class UnknownOperatorError(RevsetExpressionError):
    """Raised for a function name that is neither builtin nor an alias."""

    def __init__(self, name: str, candidates: Sequence[str] = ()):
        self.name = name
        self.candidates = tuple(candidates)
        hint = None
        if self.candidates:
            quoted = ", ".join(f'"{c}"' for c in self.candidates)
            hint = f"Did you mean {quoted}?"
        super().__init__(f'Function "{name}" doesn\'t exist', hint=hint)


class AliasArityError(RevsetAnalyzeError):
    """Raised when an alias is invoked with an unsupported argument count."""

    stage = "alias expansion"

    def __init__(self, name: str, got: int, expected: Sequence[int]):
        self.name = name
        self.got = got
        self.expected = tuple(sorted(expected))
        counts = " or ".join(str(n) for n in self.expected)
        super().__init__(
            f'Function "{name}": Expected {counts} arguments, got {got}'
        )


class AliasCycleError(RevsetAnalyzeError):
    """Raised when an alias is re-entered during its own expansion."""

    stage = "alias expansion"

    def __init__(self, label: str):
        self.label = label
        super().__init__(f'Alias "{label}" expanded recursively')


class OptimizerError(RevsetAnalyzeError):
    """Raised when the rewrite rounds never stop changing the expression."""

    stage = "optimize"


class AliasLoadError(RevsetAnalyzeError):
    """Raised for unusable alias definitions or configuration files."""

    stage = "config"


STAGE_DESCRIPTIONS = {
    "parse": "Failed to parse revset",
    "resolve": "Failed to resolve revset",
    "alias expansion": "Failed to expand revset aliases",
    "config": "Failed to load configuration",
    "optimize": "Failed to optimize revset",
    "analyze": "Failed to analyze revset",
}


def describe_stage(error: RevsetAnalyzeError) -> str:
    return STAGE_DESCRIPTIONS.get(error.stage, STAGE_DESCRIPTIONS["analyze"])
