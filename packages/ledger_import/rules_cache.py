"""On-disk snapshot of the last successful rule listing.

When both rule tables are unreachable, the rule repository falls back to the
most recent snapshot so imports can still apply known rules.

Layout (relative to the cache root, default ``./.cache``; override with
``LEDGER_IMPORT_CACHE_DIR``)::

    <cache_root>/rules/snapshot.json

Writes target a ``.tmp`` sibling first and then ``os.replace`` into place.
"""

from __future__ import annotations

import contextlib
import json
import os
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from .logging_setup import get_logger
from .models import SourceRule

# Bump when the on-disk snapshot shape changes.
SCHEMA_VERSION: int = 1

_logger = get_logger("ledger_import.rules_cache")


class RulesSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int
    saved_at: datetime
    rules: list[SourceRule]


def _get_cache_root() -> Path:
    """Return the cache root (``LEDGER_IMPORT_CACHE_DIR`` or ``./.cache``)."""

    root = os.getenv("LEDGER_IMPORT_CACHE_DIR")
    if root and root.strip():
        return Path(root).expanduser().resolve()
    return (Path.cwd() / ".cache").resolve()


def _snapshot_path() -> Path:
    return _get_cache_root() / "rules" / "snapshot.json"


def write_rules_snapshot(rules: Sequence[SourceRule]) -> Path:
    """Persist ``rules`` atomically and return the snapshot path."""

    path = _snapshot_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    snap = RulesSnapshot(
        schema_version=SCHEMA_VERSION, saved_at=datetime.now(UTC), rules=list(rules)
    )
    try:
        tmp.write_text(
            json.dumps(snap.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":")),
            encoding="utf-8",
        )
        os.replace(tmp, path)
    except Exception:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()
        raise
    return path


def read_rules_snapshot() -> RulesSnapshot | None:
    """Return the stored snapshot, or ``None`` when missing or unreadable."""

    path = _snapshot_path()
    if not path.exists():
        return None
    try:
        snap = RulesSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValidationError):
        _logger.debug("rules_cache:read_failed path=%s", os.fspath(path), exc_info=True)
        return None
    if snap.schema_version != SCHEMA_VERSION:
        return None
    return snap


__all__ = ["SCHEMA_VERSION", "RulesSnapshot", "write_rules_snapshot", "read_rules_snapshot"]
