"""jj_analyze/patterns.py – string, date and file patterns.

These are the argument languages of the text and file filters
(``description(glob:"fix*")``, ``author_date(after:"2024-01-01")``,
``files(src & ~glob:"*.md")``).  Each value knows how to print itself the
way the analysis tree shows it.
"""

from __future__ import annotations

import enum
import logging
import posixpath
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import PurePath, PurePosixPath
from typing import Optional, Tuple, Union

from . import ast as A
from .errors import RevsetAnalyzeError, RevsetExpressionError
from .grammar import FILESET_GRAMMAR
from .parser import LexicalVisitor, Symbol, quote_string, run_grammar

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
#  String patterns
# ═══════════════════════════════════════════════════════════════════════

class StringPatternKind(enum.Enum):
    EXACT = "exact"
    EXACT_I = "exact-i"
    SUBSTRING = "substring"
    SUBSTRING_I = "substring-i"
    GLOB = "glob"
    GLOB_I = "glob-i"
    REGEX = "regex"
    REGEX_I = "regex-i"

    @classmethod
    def from_label(cls, label: str) -> "StringPatternKind":
        for kind in cls:
            if kind.value == label:
                return kind
        raise RevsetExpressionError(
            f'Invalid string pattern kind "{label}:"',
            hint="Try prefixing with one of `exact:`, `glob:`, `regex:`, "
                 "`substring:`, or one of these with `-i` suffix added "
                 "(e.g. `glob-i:`) for case-insensitive matching",
        )


_GLOB_META = re.compile(r"[?*\[\\]")


@dataclass(frozen=True, slots=True)
class StringPattern:
    kind: StringPatternKind
    value: str

    @classmethod
    def parse(cls, kind: Optional[str], value: str,
              default: StringPatternKind = StringPatternKind.GLOB) -> "StringPattern":
        resolved = default if kind is None else StringPatternKind.from_label(kind)
        if resolved in (StringPatternKind.REGEX, StringPatternKind.REGEX_I):
            try:
                re.compile(value)
            except re.error as exc:
                raise RevsetExpressionError(f"Invalid regular expression: {exc}") from exc
        # a glob without meta characters can only match itself
        if resolved is StringPatternKind.GLOB and not _GLOB_META.search(value):
            resolved = StringPatternKind.EXACT
        elif resolved is StringPatternKind.GLOB_I and not _GLOB_META.search(value):
            resolved = StringPatternKind.EXACT_I
        return cls(resolved, value)

    @classmethod
    def everything(cls) -> "StringPattern":
        return cls(StringPatternKind.SUBSTRING, "")

    @property
    def is_all(self) -> bool:
        return self.kind is StringPatternKind.SUBSTRING and self.value == ""

    def __str__(self) -> str:
        return f"{self.kind.value}:{quote_string(self.value)}"


@dataclass(frozen=True, slots=True)
class StringMatch:
    """A single pattern inside a string expression."""
    pattern: StringPattern

    def __str__(self) -> str:
        return str(self.pattern)


@dataclass(frozen=True, slots=True)
class StringNot:
    inner: "StringExpression"

    def __str__(self) -> str:
        return f"~{self.inner}"


@dataclass(frozen=True, slots=True)
class StringUnion:
    lhs: "StringExpression"
    rhs: "StringExpression"

    def __str__(self) -> str:
        return f"({self.lhs} | {self.rhs})"


@dataclass(frozen=True, slots=True)
class StringIntersection:
    lhs: "StringExpression"
    rhs: "StringExpression"

    def __str__(self) -> str:
        return f"({self.lhs} & {self.rhs})"


StringExpression = Union[StringMatch, StringNot, StringUnion, StringIntersection]


def string_expression_is_all(expression: StringExpression) -> bool:
    return isinstance(expression, StringMatch) and expression.pattern.is_all


def parse_string_expression(node: A.Node,
                            default: StringPatternKind = StringPatternKind.GLOB
                            ) -> StringExpression:
    """Interpret a raw argument as a string expression."""
    node = A.peel_aliases(node)
    if isinstance(node, A.Identifier):
        return StringMatch(StringPattern.parse(None, node.name, default))
    if isinstance(node, A.StringLiteral):
        return StringMatch(StringPattern.parse(None, node.value, default))
    if isinstance(node, A.PatternLiteral):
        return StringMatch(StringPattern.parse(node.kind, node.value, default))
    if isinstance(node, A.UnaryExpression) and node.op is A.UnaryOp.NEGATE:
        return StringNot(parse_string_expression(node.operand, default))
    if isinstance(node, A.BinaryExpression):
        lhs = parse_string_expression(node.lhs, default)
        rhs = parse_string_expression(node.rhs, default)
        if node.op is A.BinaryOp.UNION:
            return StringUnion(lhs, rhs)
        if node.op is A.BinaryOp.INTERSECTION:
            return StringIntersection(lhs, rhs)
        if node.op is A.BinaryOp.DIFFERENCE:
            return StringIntersection(lhs, StringNot(rhs))
    raise RevsetExpressionError(f"Expected string pattern, got {node.text!r}")


def parse_string_pattern(node: A.Node,
                         default: StringPatternKind = StringPatternKind.GLOB
                         ) -> StringPattern:
    """Interpret a raw argument as a single string pattern."""
    expression = parse_string_expression(node, default)
    if not isinstance(expression, StringMatch):
        raise RevsetExpressionError(f"Expected string pattern, got {node.text!r}")
    return expression.pattern


def parse_literal(node: A.Node, description: str = "string") -> str:
    """Interpret a raw argument as a plain literal (identifier or string)."""
    node = A.peel_aliases(node)
    if isinstance(node, A.Identifier):
        return node.name
    if isinstance(node, A.StringLiteral):
        return node.value
    raise RevsetExpressionError(f"Expected {description}, got {node.text!r}")


# ═══════════════════════════════════════════════════════════════════════
#  Date patterns
# ═══════════════════════════════════════════════════════════════════════

class DatePatternKind(enum.Enum):
    AT_OR_AFTER = "after"
    BEFORE = "before"


_RELATIVE_RE = re.compile(
    r"^\s*(\d+)\s*(second|sec|s|minute|min|m|hour|h|day|d|week|w|month|year|y)s?\s+ago\s*$",
    re.IGNORECASE,
)

_UNIT_SECONDS = {
    "second": 1, "sec": 1, "s": 1,
    "minute": 60, "min": 60, "m": 60,
    "hour": 3600, "h": 3600,
    "day": 86400, "d": 86400,
    "week": 7 * 86400, "w": 7 * 86400,
    "month": 30 * 86400,
    "year": 365 * 86400, "y": 365 * 86400,
}


def parse_datetime(value: str, now: datetime) -> datetime:
    """Parse an absolute or relative date/time.

    Naive values are interpreted in *now*'s timezone.
    """
    text = value.strip()
    lowered = text.lower()
    tz = now.tzinfo or timezone.utc
    midnight = datetime.combine(now.date(), time(0), tzinfo=tz)
    if lowered == "now":
        return now
    if lowered == "today":
        return midnight
    if lowered == "yesterday":
        return midnight - timedelta(days=1)
    if lowered == "tomorrow":
        return midnight + timedelta(days=1)
    match = _RELATIVE_RE.match(text)
    if match:
        amount = int(match.group(1))
        seconds = _UNIT_SECONDS[match.group(2).lower()]
        return now - timedelta(seconds=amount * seconds)
    candidate = text.replace("Z", "+00:00").replace("z", "+00:00")
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(candidate), time(0))
        except ValueError:
            raise RevsetExpressionError(
                f'Invalid date pattern "{value}"',
                hint="Use an ISO 8601 date/time, or a relative date like "
                     "\"2 days ago\"",
            ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


@dataclass(frozen=True, slots=True)
class DatePattern:
    kind: DatePatternKind
    timestamp: datetime

    @classmethod
    def parse(cls, kind: str, value: str, now: datetime) -> "DatePattern":
        for candidate in DatePatternKind:
            if candidate.value == kind:
                return cls(candidate, parse_datetime(value, now))
        raise RevsetExpressionError(
            f'Invalid date pattern kind "{kind}:"',
            hint="Use `after:` or `before:`",
        )

    def format_utc(self) -> str:
        moment = self.timestamp.astimezone(timezone.utc)
        spec = "milliseconds" if moment.microsecond else "seconds"
        return moment.isoformat(timespec=spec)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.format_utc()}"


def parse_date_pattern(node: A.Node, now: datetime) -> DatePattern:
    node = A.peel_aliases(node)
    if isinstance(node, A.PatternLiteral):
        return DatePattern.parse(node.kind, node.value, now)
    raise RevsetExpressionError(
        f"Expected date pattern, got {node.text!r}",
        hint='Use `after:"<date>"` or `before:"<date>"`',
    )


# ═══════════════════════════════════════════════════════════════════════
#  File patterns and filesets
# ═══════════════════════════════════════════════════════════════════════

class FilePatternKind(enum.Enum):
    PREFIX_PATH = "prefix"
    FILE_PATH = "file"
    FILE_GLOB = "glob"
    PREFIX_GLOB = "prefix-glob"


@dataclass(frozen=True, slots=True)
class FilePattern:
    """A workspace-relative path pattern (``/`` separated, ``""`` is the root)."""
    kind: FilePatternKind
    path: str

    def __str__(self) -> str:
        if self.kind is FilePatternKind.PREFIX_PATH:
            return quote_string(self.path)
        return f"{self.kind.value}:{quote_string(self.path)}"


@dataclass(frozen=True, slots=True)
class FilesetNone:
    def __str__(self) -> str:
        return "none()"


@dataclass(frozen=True, slots=True)
class FilesetAll:
    def __str__(self) -> str:
        return "all()"


@dataclass(frozen=True, slots=True)
class FilesetPattern:
    pattern: FilePattern

    def __str__(self) -> str:
        return str(self.pattern)


@dataclass(frozen=True, slots=True)
class FilesetUnion:
    items: Tuple["FilesetExpression", ...]

    def __str__(self) -> str:
        return "(" + " | ".join(str(item) for item in self.items) + ")"


@dataclass(frozen=True, slots=True)
class FilesetIntersection:
    lhs: "FilesetExpression"
    rhs: "FilesetExpression"

    def __str__(self) -> str:
        return f"({self.lhs} & {self.rhs})"


@dataclass(frozen=True, slots=True)
class FilesetDifference:
    lhs: "FilesetExpression"
    rhs: "FilesetExpression"

    def __str__(self) -> str:
        return f"({self.lhs} ~ {self.rhs})"


FilesetExpression = Union[FilesetNone, FilesetAll, FilesetPattern, FilesetUnion,
                          FilesetIntersection, FilesetDifference]


def fileset_union(lhs: FilesetExpression, rhs: FilesetExpression) -> FilesetExpression:
    items = []
    for side in (lhs, rhs):
        if isinstance(side, FilesetUnion):
            items.extend(side.items)
        else:
            items.append(side)
    return FilesetUnion(tuple(items))


@dataclass(frozen=True)
class PathConverter:
    """Maps user-typed paths to workspace-relative ``/``-separated paths.

    *cwd* is the current directory relative to the workspace root
    (``""`` at the root).
    """
    cwd: str = ""
    workspace_root: Optional[str] = None

    @classmethod
    def for_directories(cls, cwd: PurePath, workspace_root: PurePath) -> "PathConverter":
        try:
            relative = PurePosixPath(*PurePath(cwd).relative_to(workspace_root).parts)
        except ValueError:
            relative = PurePosixPath()
        text = relative.as_posix()
        return cls("" if text == "." else text, str(workspace_root))

    def _normalize(self, base: str, value: str) -> str:
        if self.workspace_root and PurePath(value).is_absolute():
            try:
                value = PurePosixPath(
                    *PurePath(value).relative_to(self.workspace_root).parts
                ).as_posix()
            except ValueError:
                raise RevsetExpressionError(
                    f'Path "{value}" is not in the workspace') from None
            base = ""
        joined = posixpath.normpath(posixpath.join(base, value)) if (base or value) else ""
        if joined == ".":
            joined = ""
        if joined == ".." or joined.startswith("../") or joined.startswith("/"):
            raise RevsetExpressionError(f'Path "{value}" is not in the workspace')
        return joined

    def cwd_path(self, value: str) -> str:
        return self._normalize(self.cwd, value)

    def root_path(self, value: str) -> str:
        return self._normalize("", value)


_FILE_PATTERN_KINDS = {
    # kind -> (pattern kind, relative to cwd?)
    "cwd": (FilePatternKind.PREFIX_PATH, True),
    "cwd-file": (FilePatternKind.FILE_PATH, True),
    "file": (FilePatternKind.FILE_PATH, True),
    "cwd-glob": (FilePatternKind.FILE_GLOB, True),
    "cwd-glob-i": (FilePatternKind.FILE_GLOB, True),
    "glob": (FilePatternKind.FILE_GLOB, True),
    "glob-i": (FilePatternKind.FILE_GLOB, True),
    "cwd-prefix-glob": (FilePatternKind.PREFIX_GLOB, True),
    "prefix-glob": (FilePatternKind.PREFIX_GLOB, True),
    "root": (FilePatternKind.PREFIX_PATH, False),
    "root-file": (FilePatternKind.FILE_PATH, False),
    "root-glob": (FilePatternKind.FILE_GLOB, False),
    "root-glob-i": (FilePatternKind.FILE_GLOB, False),
    "root-prefix-glob": (FilePatternKind.PREFIX_GLOB, False),
}


def parse_file_pattern(kind: Optional[str], value: str,
                       converter: PathConverter) -> FilePattern:
    label = "cwd" if kind is None else kind
    try:
        pattern_kind, relative = _FILE_PATTERN_KINDS[label]
    except KeyError:
        raise RevsetExpressionError(f'Invalid file pattern kind "{label}:"') from None
    path = converter.cwd_path(value) if relative else converter.root_path(value)
    return FilePattern(pattern_kind, path)


class FilesetBuilder(LexicalVisitor):
    """Builds fileset expressions from the ``fileset_program`` rule."""

    def __init__(self, text: str, converter: PathConverter):
        super().__init__(text)
        self.converter = converter

    def visit_fileset_program(self, node, visited_children):
        return visited_children[1]

    def visit_fileset_union(self, node, visited_children):
        lhs, rest = visited_children
        for _, _, _, rhs in rest:
            lhs = fileset_union(lhs, rhs)
        return lhs

    def visit_fileset_intersection(self, node, visited_children):
        lhs, rest = visited_children
        for _, op, _, rhs in rest:
            if op.text == "&":
                lhs = FilesetIntersection(lhs, rhs)
            else:
                lhs = FilesetDifference(lhs, rhs)
        return lhs

    def visit_fileset_negate(self, node, visited_children):
        _, _, operand = visited_children
        return FilesetDifference(FilesetAll(), operand)

    def visit_fileset_primary(self, node, visited_children):
        child = visited_children[0]
        if isinstance(child, Symbol):
            return FilesetPattern(parse_file_pattern(None, child.value, self.converter))
        return child

    def visit_fileset_parenthesized(self, node, visited_children):
        return visited_children[2]

    def visit_fileset_function(self, node, visited_children):
        name = visited_children[0]
        if name == "all":
            return FilesetAll()
        if name == "none":
            return FilesetNone()
        raise RevsetExpressionError(f'Fileset function "{name}" doesn\'t exist')

    def visit_fileset_pattern(self, node, visited_children):
        kind, _, symbol = visited_children
        return FilesetPattern(parse_file_pattern(kind, symbol.value, self.converter))


def parse_fileset(text: str, converter: PathConverter) -> FilesetExpression:
    """Parse fileset source text."""
    tree = run_grammar(FILESET_GRAMMAR, text)
    return FilesetBuilder(text, converter).visit(tree)


def parse_fileset_argument(node: A.Node, converter: PathConverter) -> FilesetExpression:
    """Interpret a raw revset argument as a fileset.

    A string literal's value is parsed as fileset text; anything else is
    re-parsed from its source text (``files(src/*.rs)``).
    """
    node = A.peel_aliases(node)
    text = node.value if isinstance(node, A.StringLiteral) else node.text
    try:
        return parse_fileset(text, converter)
    except RevsetAnalyzeError as exc:
        raise exc.add_context(f"In fileset expression {text!r}")
