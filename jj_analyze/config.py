"""
jj_analyze/config.py
====================

Reads the parts of jj's TOML configuration the analyzer cares about.

Layers, lowest precedence first:

1. user config: ``$JJ_CONFIG`` (files or directories of ``*.toml``,
   separated by ``os.pathsep``), otherwise ``~/.jjconfig.toml`` followed by
   ``$XDG_CONFIG_HOME/jj/config.toml`` and ``$XDG_CONFIG_HOME/jj/conf.d/*.toml``
2. repo config: ``.jj/repo/config.toml`` (``.jj/repo`` may be a file that
   points at the shared repo directory of a secondary workspace)
3. workspace config: ``.jj/workspace-config.toml``
4. environment overrides: ``$JJ_EMAIL`` and ``$JJ_TIMESTAMP``

Tables are merged key by key; later layers win.  The repository itself is
never opened beyond these files.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import AliasLoadError

logger = logging.getLogger(__name__)

JJ_DIR = ".jj"
ALIASES_TABLE = "revset-aliases"
COLOR_CHOICES = ("always", "never", "auto")


@dataclass
class Settings:
    """Settings collected from every config layer."""
    aliases: Dict[str, Any] = field(default_factory=dict)
    color: Optional[str] = None
    user_email: Optional[str] = None
    now: Optional[datetime] = None
    workspace_root: Optional[Path] = None
    sources: List[Path] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════
#  Discovery
# ═══════════════════════════════════════════════════════════════════════

def find_workspace_root(start: Path) -> Optional[Path]:
    """Nearest ancestor of *start* (itself included) containing ``.jj/``."""
    start = start.resolve()
    for candidate in (start, *start.parents):
        if (candidate / JJ_DIR).is_dir():
            return candidate
    return None


def repo_dir(workspace_root: Path) -> Path:
    """The repo directory of a workspace, following a pointer file."""
    jj_dir = workspace_root / JJ_DIR
    repo = jj_dir / "repo"
    if repo.is_file():
        target = repo.read_text(encoding="utf-8").strip()
        return (jj_dir / target).resolve()
    return repo


def _toml_files_in(directory: Path) -> List[Path]:
    return sorted(p for p in directory.glob("*.toml") if p.is_file())


def user_config_paths(environ: Mapping[str, str]) -> List[Path]:
    explicit = environ.get("JJ_CONFIG")
    if explicit:
        paths: List[Path] = []
        for entry in explicit.split(os.pathsep):
            if not entry:
                continue
            path = Path(entry).expanduser()
            paths.extend(_toml_files_in(path) if path.is_dir() else [path])
        return paths

    home = environ.get("HOME")
    paths = []
    if home:
        paths.append(Path(home) / ".jjconfig.toml")
    xdg = environ.get("XDG_CONFIG_HOME")
    config_home = Path(xdg) if xdg else (Path(home) / ".config" if home else None)
    if config_home is not None:
        jj_config = config_home / "jj"
        paths.append(jj_config / "config.toml")
        conf_d = jj_config / "conf.d"
        if conf_d.is_dir():
            paths.extend(_toml_files_in(conf_d))
    return paths


def workspace_config_paths(workspace_root: Path) -> List[Path]:
    return [
        repo_dir(workspace_root) / "config.toml",
        workspace_root / JJ_DIR / "workspace-config.toml",
    ]


# ═══════════════════════════════════════════════════════════════════════
#  Loading
# ═══════════════════════════════════════════════════════════════════════

def read_toml(path: Path) -> Optional[Dict[str, Any]]:
    """Parse one config file; ``None`` if it is missing or unreadable."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("skipping unreadable config file %s: %s", path, exc)
        return None
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise AliasLoadError(f"Configuration cannot be parsed: {path}", hint=str(exc)) from exc
    logger.debug("read config file %s", path)
    return data


def merge_tables(base: Dict[str, Any], layer: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in layer.items():
        existing = base.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            merge_tables(existing, value)
        elif isinstance(value, Mapping):
            base[key] = merge_tables({}, value)
        else:
            base[key] = value
    return base


def parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise AliasLoadError(
            f"Invalid JJ_TIMESTAMP: {value!r}",
            hint="Use an RFC 3339 timestamp such as 2001-02-03T04:05:06+07:00",
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _lookup(table: Mapping[str, Any], dotted: str) -> Any:
    node: Any = table
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def load_settings(start: Path, *, load_config: bool = True,
                  environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Collect settings for a query run from directory *start*."""
    if environ is None:
        environ = os.environ
    workspace_root = find_workspace_root(start)
    settings = Settings(workspace_root=workspace_root)

    merged: Dict[str, Any] = {}
    if load_config:
        paths = user_config_paths(environ)
        if workspace_root is not None:
            paths += workspace_config_paths(workspace_root)
        for path in paths:
            data = read_toml(path)
            if data is not None:
                merge_tables(merged, data)
                settings.sources.append(path)

    aliases = merged.get(ALIASES_TABLE, {})
    if not isinstance(aliases, Mapping):
        raise AliasLoadError(f"[{ALIASES_TABLE}] must be a table")
    settings.aliases = dict(aliases)

    color = _lookup(merged, "ui.color")
    if color is not None:
        if color in COLOR_CHOICES:
            settings.color = color
        else:
            logger.warning("ignoring unsupported ui.color value %r", color)

    email = environ.get("JJ_EMAIL") or _lookup(merged, "user.email")
    if isinstance(email, str) and email:
        settings.user_email = email

    timestamp = environ.get("JJ_TIMESTAMP")
    if timestamp:
        settings.now = parse_timestamp(timestamp)

    logger.debug("loaded %d revset aliases from %d config files",
                 len(settings.aliases), len(settings.sources))
    return settings


def current_time(settings: Settings) -> datetime:
    if settings.now is not None:
        return settings.now
    return datetime.now(timezone.utc).astimezone()
