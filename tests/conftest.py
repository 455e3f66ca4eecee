"""Pytest configuration for test isolation.

The rules repository writes a snapshot under a project-relative cache
directory (``./.cache``) and the ``db`` client caches one engine per URL. To
keep tests hermetic, each test gets its own cache root and the engine cache
is disposed afterwards (tests use one SQLite file per test).
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make the workspace packages importable without an install.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]


@pytest.fixture(autouse=True)
def _isolate_cache_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Force a per-test cache root so tests don't share on-disk state.

    The application reads ``LEDGER_IMPORT_CACHE_DIR`` (when set) to override
    the default ``./.cache`` location.
    """

    cache_root = tmp_path / "cache"
    cache_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("LEDGER_IMPORT_CACHE_DIR", os.fspath(cache_root))
    # Settings are environment driven; start every test from defaults.
    for key in list(os.environ):
        if key.startswith("LEDGER_IMPORT_") and key != "LEDGER_IMPORT_CACHE_DIR":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


@pytest.fixture(autouse=True)
def _dispose_engines() -> Iterator[None]:
    yield
    from db.client import dispose_engines

    dispose_engines()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    from tests.helpers.db import bootstrap_sqlite_db

    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
