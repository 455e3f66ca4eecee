"""Public API surface for the ``ledger_import`` package.

Wires the SQL-backed collaborators into an :class:`ImportSession` and exposes
the few one-call workflows the CLI and other hosts use. The building blocks
(parsing, mapping, matching, scanning, rules) are re-exported for callers
that drive the stages themselves.
"""

from __future__ import annotations

from collections.abc import Callable

from .categories import SqlCategoryStore
from .config import ImportSettings, load_settings
from .ingest.field_mapping import auto_map, validate_mapping
from .ingest.tabular import parse_table
from .matcher import find_similar_transactions, match_descriptor
from .models import ImportProgress, ImportSummary, ScanResult
from .normalizer import normalize_descriptor
from .orchestrator import ImportSession
from .rules import RuleRepository
from .scanner import confirm_candidate, scan
from .store import TABLE_TRANSACTIONS, SqlRecordStore


def open_session(
    *,
    database_url: str | None = None,
    settings: ImportSettings | None = None,
    on_progress: Callable[[ImportProgress], None] | None = None,
) -> ImportSession:
    """Create an :class:`ImportSession` backed by the configured database.

    ``database_url`` overrides ``LEDGER_IMPORT_DATABASE_URL`` / ``DATABASE_URL``.
    ``settings`` defaults to :func:`load_settings` (environment driven).
    """

    store = SqlRecordStore(database_url)
    return ImportSession(
        store=store,
        categories=SqlCategoryStore(database_url),
        rules=RuleRepository(store),
        settings=settings or load_settings(),
        on_progress=on_progress,
    )


def import_text(
    text: str,
    *,
    database_url: str | None = None,
    settings: ImportSettings | None = None,
    include_conflicts: bool = False,
) -> ImportSummary:
    """Run a whole import non-interactively with the automatic mapping.

    Possible duplicates are skipped unless ``include_conflicts`` is set.
    """

    session = open_session(database_url=database_url, settings=settings)
    session.parse(text)
    session.generate_preview()
    check = session.check_duplicates()
    if include_conflicts:
        session.include_conflicts(d.row_index for d in check.conflicts)
    return session.execute()


def scan_history(
    *,
    database_url: str | None = None,
    settings: ImportSettings | None = None,
    limit: int = 20,
) -> list[ScanResult]:
    """Scan persisted transactions for rule candidates."""

    settings = settings or load_settings()
    store = SqlRecordStore(database_url)
    return scan(store.select(TABLE_TRANSACTIONS), settings.noise_filters, limit=limit)


__all__ = [
    "ImportSession",
    "ImportSettings",
    "RuleRepository",
    "auto_map",
    "confirm_candidate",
    "find_similar_transactions",
    "import_text",
    "load_settings",
    "match_descriptor",
    "normalize_descriptor",
    "open_session",
    "parse_table",
    "scan",
    "scan_history",
    "validate_mapping",
]
