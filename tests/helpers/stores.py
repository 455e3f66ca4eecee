"""In-memory collaborators for tests, with per-operation failure injection."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping, Sequence
from typing import Any

from ledger_import.errors import RemoteOperationError


class MemoryRecordStore:
    """Dict-backed :class:`~ledger_import.store.RecordStore`.

    ``fail`` holds ``"<table>.<op>"`` names (or bare table names) that raise
    :class:`RemoteOperationError`. ``fail_after`` lets an operation succeed a
    number of times before failing. ``calls`` records every operation name.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "transactions": [],
            "source_rules": [],
            "merchant_rules": [],
        }
        self.fail: set[str] = set()
        self.fail_after: dict[str, int] = {}
        self.calls: list[str] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _check(self, table: str, op: str) -> None:
        name = f"{table}.{op}"
        with self._lock:
            self.calls.append(name)
            if name in self.fail_after:
                if self.fail_after[name] > 0:
                    self.fail_after[name] -= 1
                    return
                raise RemoteOperationError(name, [RuntimeError("injected failure")])
        if name in self.fail or table in self.fail:
            raise RemoteOperationError(name, [RuntimeError("injected failure")])

    @staticmethod
    def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
        for key, value in (filters or {}).items():
            have = row.get(key)
            if value is None:
                if have is not None:
                    return False
            elif isinstance(value, list | tuple | set | frozenset):
                if have not in value:
                    return False
            elif have != value:
                return False
        return True

    def select(
        self, table: str, filters: Mapping[str, Any] | None = None, *, order_by: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        self._check(table, "select")
        rows = [dict(r) for r in self.tables[table] if self._matches(r, filters)]
        keys = tuple(order_by) or ("id",)
        rows.sort(key=lambda r: tuple(str(r.get(k) or "") for k in keys))
        return rows

    def batch_select(self, table: str, column: str, values: Sequence[Any]) -> list[dict[str, Any]]:
        self._check(table, "batch_select")
        wanted = set(values)
        return [dict(r) for r in self.tables[table] if r.get(column) in wanted]

    def insert(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        self._check(table, "insert")
        with self._lock:
            for rec in records:
                row = dict(rec)
                row.setdefault("id", next(self._ids))
                self.tables[table].append(row)
        return len(records)

    def upsert(
        self, table: str, records: Sequence[Mapping[str, Any]], conflict_key: Sequence[str]
    ) -> int:
        self._check(table, "upsert")
        with self._lock:
            for rec in records:
                existing = next(
                    (r for r in self.tables[table] if all(r.get(k) == rec.get(k) for k in conflict_key)),
                    None,
                )
                if existing is None:
                    self.tables[table].append(dict(rec))
                else:
                    existing.update({k: v for k, v in rec.items() if k not in ("id", "created_at")})
        return len(records)

    def update(self, table: str, ids: Sequence[Any], patch: Mapping[str, Any]) -> int:
        self._check(table, "update")
        wanted = set(ids)
        n = 0
        with self._lock:
            for row in self.tables[table]:
                if row.get("id") in wanted:
                    row.update(patch)
                    n += 1
        return n

    def delete(self, table: str, ids: Sequence[Any]) -> int:
        self._check(table, "delete")
        wanted = set(ids)
        with self._lock:
            before = len(self.tables[table])
            self.tables[table] = [r for r in self.tables[table] if r.get("id") not in wanted]
            return before - len(self.tables[table])


class MemoryCategoryStore:
    """Dict-backed :class:`~ledger_import.categories.CategoryStore`."""

    def __init__(self, categories: Mapping[str, Sequence[str]] | None = None) -> None:
        self.categories: dict[str, list[str]] = {k: list(v) for k, v in (categories or {}).items()}
        self.fail: set[str] = set()
        self.created: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise RemoteOperationError(op, [RuntimeError("injected failure")])

    def list_categories(self) -> list[str]:
        self._check("categories.list")
        return sorted(self.categories)

    def list_sub_categories(self, category: str) -> list[str]:
        self._check("categories.list_sub")
        for name, subs in self.categories.items():
            if name.lower() == category.lower():
                return list(subs)
        return []

    def create_category(self, name: str) -> bool:
        self._check("categories.create")
        with self._lock:
            if any(c.lower() == name.lower() for c in self.categories):
                return False
            self.categories[name] = []
            self.created.append(("", name))
        return True

    def create_sub_category(self, category: str, name: str) -> bool:
        self._check("categories.create_sub")
        with self._lock:
            parent = next((c for c in self.categories if c.lower() == category.lower()), None)
            if parent is None:
                raise ValueError(f"Parent category not found: {category}")
            if any(s.lower() == name.lower() for s in self.categories[parent]):
                return False
            self.categories[parent].append(name)
            self.created.append((parent, name))
        return True
