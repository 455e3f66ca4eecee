"""Category collaborator: two-level taxonomy with idempotent creation.

Before saving an import, every category / sub-category named in the draft set
must exist. :func:`ensure_categories` lists what exists and creates what is
missing; concurrent or repeated creation of the same name is tolerated, not
fatal.

Exports
-------
- ``CategoryStore``: protocol consumed by the orchestrator.
- ``SqlCategoryStore``: implementation over ``li_categories``.
- ``normalize_name(...)`` / ``validate_name(...)``: shared name helpers.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from db.client import session_scope
from db.models.finance import LiCategory
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .batching import run_batches
from .errors import RemoteOperationError
from .logging_setup import get_logger

_logger = get_logger("ledger_import.categories")

T = TypeVar("T")

# ---------------------------
# Name normalization/validation
# ---------------------------

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def normalize_name(name: str) -> str:
    """Return a trimmed, single-spaced representation of ``name`` (case kept)."""

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, min_len: int = 1, max_len: int = 64) -> NameValidation:
    """Check length bounds and reject control characters."""

    n = normalize_name(name)
    if len(n) < min_len:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    if _CONTROL_RE.search(n):
        return NameValidation(False, "Name contains control characters")
    return NameValidation(True, None)


class CategoryStore(Protocol):
    def list_categories(self) -> list[str]: ...

    def list_sub_categories(self, category: str) -> list[str]: ...

    def create_category(self, name: str) -> bool: ...

    def create_sub_category(self, category: str, name: str) -> bool: ...


class SqlCategoryStore:
    """:class:`CategoryStore` over the ``li_categories`` table.

    ``create_*`` return ``True`` when a row was inserted and ``False`` when a
    case-insensitive duplicate already existed (including a duplicate that
    won a race with this call).
    """

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        try:
            with session_scope(database_url=self._database_url) as session:
                return fn(session)
        except SQLAlchemyError as e:
            raise RemoteOperationError(operation, [e]) from e

    @staticmethod
    def _find(session: Session, name: str, parent: str) -> LiCategory | None:
        return (
            session.execute(
                select(LiCategory).where(
                    func.lower(LiCategory.name) == name.lower(),
                    func.lower(LiCategory.parent) == parent.lower(),
                )
            )
            .scalars()
            .first()
        )

    def list_categories(self) -> list[str]:
        def _do(session: Session) -> list[str]:
            rows = session.execute(
                select(LiCategory.name).where(LiCategory.parent == "").order_by(LiCategory.name)
            )
            return [r[0] for r in rows]

        return self._run("categories.list", _do)

    def list_sub_categories(self, category: str) -> list[str]:
        def _do(session: Session) -> list[str]:
            rows = session.execute(
                select(LiCategory.name)
                .where(func.lower(LiCategory.parent) == normalize_name(category).lower())
                .order_by(LiCategory.name)
            )
            return [r[0] for r in rows]

        return self._run("categories.list_sub", _do)

    def create_category(self, name: str) -> bool:
        return self._create(name, parent="")

    def create_sub_category(self, category: str, name: str) -> bool:
        return self._create(name, parent=category)

    def _create(self, name: str, *, parent: str) -> bool:
        name_n = normalize_name(name)
        parent_n = normalize_name(parent)
        check = validate_name(name_n)
        if not check.ok:
            raise ValueError(f"Invalid category name {name!r}: {check.reason}")

        def _do(session: Session) -> bool:
            scope_parent = ""
            if parent_n:
                parent_row = self._find(session, parent_n, "")
                if parent_row is None:
                    raise ValueError(f"Parent category not found: {parent!r}")
                scope_parent = parent_row.name
            if self._find(session, name_n, scope_parent) is not None:
                return False
            try:
                session.add(LiCategory(name=name_n, parent=scope_parent))
                session.flush()
            except IntegrityError:
                # Lost a race with a concurrent create of the same name.
                session.rollback()
                if self._find(session, name_n, scope_parent) is None:
                    raise
                return False
            return True

        op = "categories.create_sub" if parent_n else "categories.create"
        return self._run(op, _do)


def ensure_categories(
    store: CategoryStore,
    pairs: Iterable[tuple[str | None, str | None]],
    *,
    concurrency: int = 4,
    timeout: float | None = None,
) -> int:
    """Create every missing category and sub-category named in ``pairs``.

    ``pairs`` holds ``(category, sub_category)`` tuples; blanks are ignored.
    Top-level categories are created first, then sub-categories per parent;
    each step runs as concurrent single-name batches. Returns the number of
    rows actually created.

    ``timeout`` bounds the whole call in seconds, listing included; past it
    :class:`TimeoutError` is raised and creates still in flight are abandoned.
    """

    wanted: dict[str, str] = {}
    subs: dict[str, dict[str, str]] = {}
    for category, sub_category in pairs:
        cat = normalize_name(category or "")
        if not cat:
            continue
        wanted.setdefault(cat.lower(), cat)
        sub = normalize_name(sub_category or "")
        if sub:
            subs.setdefault(cat.lower(), {}).setdefault(sub.lower(), sub)
    if not wanted:
        return 0

    deadline = None if timeout is None else time.monotonic() + timeout

    def _left() -> float | None:
        return None if deadline is None else max(0.0, deadline - time.monotonic())

    (listed,) = run_batches(
        "categories.list", [store], lambda s: s.list_categories(), concurrency=1, timeout=_left()
    )
    existing = {c.lower() for c in listed}
    missing = [name for key, name in wanted.items() if key not in existing]
    created = run_batches(
        "categories.create",
        missing,
        store.create_category,
        concurrency=concurrency,
        count=int,
        timeout=_left(),
    )

    parents = [wanted[key] for key in subs]
    existing_subs = run_batches(
        "categories.list_sub",
        parents,
        store.list_sub_categories,
        concurrency=concurrency,
        timeout=_left(),
    )
    missing_subs: list[tuple[str, str]] = []
    for parent, present in zip(parents, existing_subs, strict=True):
        have = {s.lower() for s in present}
        missing_subs.extend(
            (parent, name) for key, name in subs[parent.lower()].items() if key not in have
        )
    created_subs = run_batches(
        "categories.create_sub",
        missing_subs,
        lambda pair: store.create_sub_category(*pair),
        concurrency=concurrency,
        count=int,
        timeout=_left(),
    )

    total = sum(created) + sum(created_subs)
    _logger.info(
        "categories:ensure wanted=%d subs=%d created=%d",
        len(wanted),
        sum(len(v) for v in subs.values()),
        total,
    )
    return total


__all__ = [
    "normalize_name",
    "validate_name",
    "NameValidation",
    "CategoryStore",
    "SqlCategoryStore",
    "ensure_categories",
]
