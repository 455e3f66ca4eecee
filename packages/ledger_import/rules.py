"""Rule repository over the two historical rule tables.

Rules live in ``source_rules`` (current naming) and ``merchant_rules``
(legacy naming: ``merchant_name``/``clean_merchant_name``). The repository
reads both, normalizes field names into :class:`~ledger_import.models.SourceRule`
and routes writes back to the table a rule came from, so callers never see the
duplication.

Each table call is an independent remote operation. A failure in one table
does not undo work done in the other; the caller receives one combined
:class:`~ledger_import.errors.RemoteOperationError` instead.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from .batching import chunked, run_batches
from .errors import RemoteOperationError
from .logging_setup import get_logger
from .matcher import rule_tier
from .models import (
    STATUS_COMPLETE,
    MatchMode,
    Recurrence,
    SourceRule,
    TransactionRecord,
)
from .normalizer import make_normalizer
from .rules_cache import read_rules_snapshot, write_rules_snapshot
from .store import (
    TABLE_MERCHANT_RULES,
    TABLE_SOURCE_RULES,
    TABLE_TRANSACTIONS,
    RecordStore,
)

_logger = get_logger("ledger_import.rules")

# Current table first: its rules win over legacy rows with the same pattern.
_TABLES: tuple[str, ...] = (TABLE_SOURCE_RULES, TABLE_MERCHANT_RULES)

_NAME_COLUMNS: dict[str, dict[str, str]] = {
    TABLE_SOURCE_RULES: {"pattern": "source_name", "clean_name": "clean_source_name"},
    TABLE_MERCHANT_RULES: {"pattern": "merchant_name", "clean_name": "clean_merchant_name"},
}

_SHARED_COLUMNS: dict[str, str] = {
    "category": "auto_category",
    "sub_category": "auto_sub_category",
    "recurring": "auto_recurring",
    "planned": "auto_planned",
    "skip_triage": "skip_triage",
    "match_mode": "match_mode",
}

_EDITABLE: frozenset[str] = frozenset(
    {"pattern", "clean_name", "excluded", *_SHARED_COLUMNS}
)

_BUDGET_EXCLUDE = "Exclude"
_BUDGET_BUDGETED = "Budgeted"


def _to_row(table: str, fields: Mapping[str, Any]) -> dict[str, Any]:
    """Translate rule field names into ``table`` column names."""

    names = _NAME_COLUMNS[table]
    row: dict[str, Any] = {}
    for key, value in fields.items():
        if key in names:
            row[names[key]] = value
        elif key in _SHARED_COLUMNS:
            row[_SHARED_COLUMNS[key]] = value
        elif key == "excluded":
            row["auto_budget"] = _BUDGET_EXCLUDE if value else _BUDGET_BUDGETED
        elif key == "id":
            row["id"] = value
        else:
            raise ValueError(f"unknown rule field: {key!r}")
    return row


def _from_row(table: str, row: Mapping[str, Any]) -> SourceRule:
    names = _NAME_COLUMNS[table]
    return SourceRule(
        id=str(row["id"]),
        pattern=row.get(names["pattern"]) or "",
        clean_name=row.get(names["clean_name"]) or row.get(names["pattern"]) or "",
        category=row.get("auto_category"),
        sub_category=row.get("auto_sub_category"),
        recurring=row.get("auto_recurring"),
        planned=row.get("auto_planned"),
        excluded=row.get("auto_budget") == _BUDGET_EXCLUDE,
        skip_triage=bool(row.get("skip_triage")),
        match_mode=row.get("match_mode") or "fuzzy",
    )


def _rule_fields(rule: SourceRule) -> dict[str, Any]:
    return rule.model_dump()


def bulk_apply_patch(rule: SourceRule, tx: TransactionRecord) -> dict[str, Any]:
    """Return the column patch applying ``rule`` to a persisted transaction.

    The clean name is always set. With ``skip_triage`` the rule also fills
    gaps: category when empty or ``Other``, sub-category when empty, recurrence
    when empty or ``N/A``, planned when unset, and marks the row excluded when
    the rule excludes. The row becomes ``Complete`` when it then carries a
    category and sub-category, or is excluded.
    """

    patch: dict[str, Any] = {"clean_source": rule.clean_name}
    if not rule.skip_triage:
        return patch
    if rule.category and (not tx.get("category") or tx.get("category") == "Other"):
        patch["category"] = rule.category
    if rule.sub_category and not tx.get("sub_category"):
        patch["sub_category"] = rule.sub_category
    if rule.recurring and tx.get("recurring") in (None, "", "N/A"):
        patch["recurring"] = rule.recurring
    if rule.planned is not None and tx.get("planned") is None:
        patch["planned"] = rule.planned
    if rule.excluded and not tx.get("excluded"):
        patch["excluded"] = True

    category = patch.get("category", tx.get("category"))
    sub_category = patch.get("sub_category", tx.get("sub_category"))
    excluded = patch.get("excluded", tx.get("excluded"))
    if (category and sub_category) or excluded:
        patch["status"] = STATUS_COMPLETE
    return patch


def find_matching_transactions(
    rule: SourceRule,
    transactions: Iterable[TransactionRecord],
    *,
    noise_filters: Iterable[str] = (),
) -> list[TransactionRecord]:
    """Return history rows the rule would match under the matcher's precedence."""

    normalize = make_normalizer(noise_filters)
    out: list[TransactionRecord] = []
    for tx in transactions:
        descriptor = str(tx.get("descriptor") or "")
        if rule_tier(rule, descriptor, normalize(descriptor)) is not None:
            out.append(tx)
    return out


class RuleRepository:
    """CRUD over rules with the dual-table adapter.

    Parameters
    ----------
    store:
        Record-store collaborator.
    use_cache:
        Write a snapshot after each fully successful listing and fall back to
        it when both tables are unreadable.
    id_factory:
        Generates ids for new rules (uuid4 hex by default).
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        use_cache: bool = True,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._use_cache = use_cache
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)
        self._origin: dict[str, str] = {}

    # ---- reads ---------------------------------------------------------

    def list_rules(self) -> list[SourceRule]:
        """Return the merged, ordered rule set.

        A table that fails to load is logged and skipped. When both fail, the
        last snapshot is returned if available; otherwise the combined error
        is raised.
        """

        rules: list[SourceRule] = []
        seen_patterns: set[str] = set()
        errors: list[RemoteOperationError] = []
        for table in _TABLES:
            try:
                rows = self._store.select(table, order_by=("created_at", "id"))
            except RemoteOperationError as e:
                _logger.warning("rules:list table=%s failed: %s", table, e)
                errors.append(e)
                continue
            for row in rows:
                try:
                    rule = _from_row(table, row)
                except ValidationError:
                    _logger.warning("rules:list skipping invalid row table=%s id=%s", table, row.get("id"))
                    continue
                key = rule.pattern.lower()
                if key in seen_patterns:
                    continue
                seen_patterns.add(key)
                self._origin[rule.id] = table
                rules.append(rule)

        if len(errors) == len(_TABLES):
            snap = read_rules_snapshot() if self._use_cache else None
            if snap is not None:
                _logger.warning(
                    "rules:list using snapshot saved_at=%s rules=%d",
                    snap.saved_at.isoformat(),
                    len(snap.rules),
                )
                return list(snap.rules)
            raise RemoteOperationError.combine("rules.list", errors)

        if self._use_cache and not errors:
            try:
                write_rules_snapshot(rules)
            except OSError as e:
                _logger.warning("rules:snapshot write failed: %s", e)
        return rules

    def get_rule(self, rule_id: str) -> SourceRule:
        for rule in self.list_rules():
            if rule.id == rule_id:
                return rule
        raise LookupError(f"rule not found: {rule_id}")

    # ---- writes --------------------------------------------------------

    def create_rule(
        self,
        pattern: str,
        clean_name: str,
        *,
        category: str | None = None,
        sub_category: str | None = None,
        recurring: Recurrence | None = None,
        planned: bool | None = None,
        excluded: bool = False,
        skip_triage: bool = False,
        match_mode: MatchMode = "fuzzy",
    ) -> SourceRule:
        """Create (or overwrite, by pattern) a rule and return it as stored.

        Writes go to ``source_rules``; when that fails the legacy table is
        tried. Raises the combined error when both fail, and
        ``pydantic.ValidationError`` (a ``ValueError``) for an empty pattern.
        """

        rule = SourceRule(
            id=self._new_id(),
            pattern=pattern,
            clean_name=clean_name,
            category=category,
            sub_category=sub_category,
            recurring=recurring,
            planned=planned,
            excluded=excluded,
            skip_triage=skip_triage,
            match_mode=match_mode,
        )
        errors: list[RemoteOperationError] = []
        for table in _TABLES:
            pattern_col = _NAME_COLUMNS[table]["pattern"]
            try:
                row = {**_to_row(table, _rule_fields(rule)), "created_at": datetime.now(UTC)}
                self._store.upsert(table, [row], (pattern_col,))
                stored = self._store.select(table, {pattern_col: rule.pattern})
            except RemoteOperationError as e:
                _logger.warning("rules:create table=%s failed: %s", table, e)
                errors.append(e)
                continue
            saved = _from_row(table, stored[0]) if stored else rule
            self._origin[saved.id] = table
            _logger.info("rules:create id=%s table=%s pattern=%r", saved.id, table, saved.pattern)
            return saved
        raise RemoteOperationError.combine("rules.create", errors)

    def update_rule(
        self, rule_id: str, *, group_default: bool = False, **changes: Any
    ) -> list[SourceRule]:
        """Edit a rule and return every rule that changed.

        A plain edit touches only ``rule_id``. With ``group_default=True`` the
        non-pattern changes (including a new ``clean_name``) are applied to
        every rule sharing the target's clean name, in both tables.
        """

        unknown = set(changes) - _EDITABLE
        if unknown:
            raise ValueError(f"unknown rule field(s): {sorted(unknown)}")
        rules = self.list_rules()
        target = next((r for r in rules if r.id == rule_id), None)
        if target is None:
            raise LookupError(f"rule not found: {rule_id}")

        edits: list[tuple[SourceRule, dict[str, Any]]] = [(target, dict(changes))]
        if group_default:
            shared = {k: v for k, v in changes.items() if k != "pattern"}
            group_key = target.clean_name.lower()
            edits.extend(
                (r, shared) for r in rules if r.id != target.id and r.clean_name.lower() == group_key
            )

        # Validate everything before issuing any write.
        updated = [
            (rule, SourceRule.model_validate({**_rule_fields(rule), **patch}), patch)
            for rule, patch in edits
        ]

        done: list[SourceRule] = []
        errors: list[RemoteOperationError] = []
        for rule, new_rule, patch in updated:
            try:
                self._update_in_origin(rule.id, patch)
            except RemoteOperationError as e:
                errors.append(e)
                continue
            done.append(new_rule)
        if errors:
            err = RemoteOperationError.combine("rules.update", errors)
            err.succeeded = len(done)
            raise err
        _logger.info("rules:update id=%s group=%s changed=%d", rule_id, group_default, len(done))
        return done

    def rename_group(self, old_clean_name: str, new_clean_name: str) -> int:
        """Set ``new_clean_name`` on every rule whose clean name is ``old_clean_name``.

        Each table is updated in one call and checked independently.
        """

        if not new_clean_name.strip():
            raise ValueError("clean name must be non-empty")
        key = old_clean_name.strip().lower()
        by_table: dict[str, list[str]] = defaultdict(list)
        for rule in self.list_rules():
            if rule.clean_name.lower() == key:
                by_table[self._origin.get(rule.id, TABLE_SOURCE_RULES)].append(rule.id)

        renamed = 0
        errors: list[RemoteOperationError] = []
        for table, ids in by_table.items():
            patch = _to_row(table, {"clean_name": new_clean_name.strip()})
            try:
                renamed += self._store.update(table, ids, patch)
            except RemoteOperationError as e:
                errors.append(e)
        if errors:
            err = RemoteOperationError.combine("rules.rename_group", errors)
            err.succeeded = renamed
            raise err
        _logger.info("rules:rename_group from=%r to=%r rules=%d", old_clean_name, new_clean_name, renamed)
        return renamed

    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule; returns ``False`` when no table held it."""

        for table in self._candidate_tables(rule_id):
            if self._store.delete(table, [rule_id]):
                self._origin.pop(rule_id, None)
                _logger.info("rules:delete id=%s table=%s", rule_id, table)
                return True
        return False

    def _candidate_tables(self, rule_id: str) -> tuple[str, ...]:
        origin = self._origin.get(rule_id)
        if origin is None:
            return _TABLES
        return (origin, *(t for t in _TABLES if t != origin))

    def _update_in_origin(self, rule_id: str, patch: Mapping[str, Any]) -> None:
        for table in self._candidate_tables(rule_id):
            if self._store.update(table, [rule_id], _to_row(table, patch)):
                return
        raise RemoteOperationError("rules.update", [LookupError(f"rule not found: {rule_id}")])

    # ---- history -------------------------------------------------------

    def apply_to_history(
        self,
        rule: SourceRule,
        *,
        transactions: Sequence[TransactionRecord] | None = None,
        noise_filters: Iterable[str] = (),
        batch_size: int = 50,
        concurrency: int = 4,
    ) -> int:
        """Bulk-apply ``rule`` to matching persisted transactions.

        Rows are selected with the matcher's precedence; updates are grouped
        by identical patch and issued as bounded, concurrent batches. Returns
        the number of rows updated; batch failures are aggregated into one
        :class:`RemoteOperationError` whose ``succeeded`` counts updated rows.
        """

        if transactions is None:
            transactions = self._store.select(TABLE_TRANSACTIONS)
        matches = find_matching_transactions(rule, transactions, noise_filters=noise_filters)

        by_patch: dict[tuple[tuple[str, Any], ...], list[Any]] = defaultdict(list)
        for tx in matches:
            patch = bulk_apply_patch(rule, tx)
            by_patch[tuple(sorted(patch.items()))].append(tx["id"])

        batches: list[tuple[dict[str, Any], Sequence[Any]]] = [
            (dict(patch_key), ids_chunk)
            for patch_key, ids in by_patch.items()
            for ids_chunk in chunked(ids, batch_size)
        ]

        def _apply(batch: tuple[dict[str, Any], Sequence[Any]]) -> int:
            patch, ids = batch
            return self._store.update(TABLE_TRANSACTIONS, ids, patch)

        counts = run_batches(
            "transactions.update", batches, _apply, concurrency=concurrency, count=lambda n: n
        )
        total = sum(counts)
        _logger.info(
            "rules:apply_to_history id=%s matched=%d updated=%d batches=%d",
            rule.id,
            len(matches),
            total,
            len(batches),
        )
        return total


__all__ = [
    "RuleRepository",
    "bulk_apply_patch",
    "find_matching_transactions",
]
