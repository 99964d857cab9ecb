# tests/conftest.py
"""
Shared fixtures and reference outputs for the jj_analyze test suite.
"""

import textwrap
from datetime import datetime, timezone

import pytest

from jj_analyze.aliases import AliasTable
from jj_analyze.analysis import Evaluation
from jj_analyze.builtins import LoweringContext
from jj_analyze.pipeline import AnalyzeOptions, run


def _tree(text):
    return textwrap.dedent(text).lstrip("\n")


# ── Reference queries and their rendered trees (colour off) ─────────────

SCENARIO_UNION_QUERY = "@ | ancestors(immutable_heads().., 2) | trunk()"
SCENARIO_UNION_TREE = _tree("""
    Union [
      @
      Ancestors {
        generation: 0..2
        heads: Range {
          roots: builtin_immutable_heads()
          heads: visible_heads()
        }
      }
      trunk()
    ]
""")

SCENARIO_LATEST_EMPTY_QUERY = "latest(empty())"
SCENARIO_LATEST_EMPTY_TREE = _tree("""
    Latest {
      count: 1
      candidates: FilterWithin {
        candidates: (EXPENSIVE) Ancestors {
          heads: visible_heads()
        }
        predicate: empty()
      }
    }
""")

SCENARIO_MUTABLE_QUERY = "latest(empty() & mutable())"
SCENARIO_MUTABLE_TREE = _tree("""
    Latest {
      count: 1
      candidates: FilterWithin {
        candidates: Range {
          roots: Union [
            builtin_immutable_heads()
            root()
          ]
          heads: visible_heads()
        }
        predicate: empty()
      }
    }
""")

SCENARIO_HEADS_QUERY = "latest(heads(empty() & mutable()))"
SCENARIO_HEADS_TREE = _tree("""
    Latest {
      count: 1
      candidates: HeadsRange {
        roots: Union [
          builtin_immutable_heads()
          root()
        ]
        heads: visible_heads()
        filter: empty()
      }
    }
""")

FIXED_NOW = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)


def render_plain(query, **kwargs):
    """Render *query* with colour off and no configuration."""
    kwargs.setdefault("color", "never")
    return run(AnalyzeOptions(query, **kwargs))


@pytest.fixture
def table():
    """A fresh alias table holding only the builtin aliases."""
    return AliasTable.with_builtins()


@pytest.fixture(scope="module")
def lowering_context():
    return LoweringContext(now=FIXED_NOW)


@pytest.fixture(params=list(Evaluation.selectable()), ids=lambda e: e.value)
def base_context(request):
    return request.param


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Point every config location at an empty temporary home."""
    home = tmp_path / "home"
    home.mkdir()
    for name in ("JJ_CONFIG", "JJ_EMAIL", "JJ_TIMESTAMP", "XDG_CONFIG_HOME",
                 "NO_COLOR", "FORCE_COLOR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(home))
    return home
