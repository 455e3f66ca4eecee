"""Staged import pipeline with resumable entry points.

Stages::

    idle -> parsing -> mapping* -> preview* -> validating -> saving -> complete
                                                                   \\-> error

``mapping`` and ``preview`` (*) are suspend points: the session returns
control to the operator and resumes when the next entry point is called.
``parsing``, ``validating`` and ``saving`` run to completion. Each session
owns its draft set; the rule set is read once when the preview is generated.

Cancellation is cooperative and observed between rows (between write batches
while saving). Saving runs under an overall watchdog; on timeout the session
moves to ``error`` and rows already written stay written.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import date
from typing import Any

from .batching import chunked, run_batches
from .categories import CategoryStore, ensure_categories
from .config import ImportSettings
from .errors import (
    EmptyInputError,
    ImportCancelledError,
    ImportTimeoutError,
    LedgerImportError,
    MissingRequiredFieldError,
    RemoteOperationError,
    StageError,
    ValueParseError,
)
from .fingerprint import find_conflicts
from .ingest.field_mapping import FieldMapping, auto_map, validate_mapping
from .ingest.tabular import ParsedTable, parse_table
from .ingest.values import coerce_bool, coerce_recurrence, parse_amount, parse_date
from .logging_setup import get_logger
from .matcher import match_descriptor
from .models import (
    CanonicalField,
    DraftTransaction,
    DuplicateCheck,
    ImportProgress,
    ImportRecord,
    ImportStage,
    ImportSummary,
    SourceRule,
)
from .normalizer import make_normalizer
from .rules import RuleRepository
from .store import TABLE_TRANSACTIONS, RecordStore

_logger = get_logger("ledger_import.orchestrator")

_EDITABLE_DRAFT_FIELDS: frozenset[str] = frozenset(
    {
        "date",
        "descriptor",
        "amount",
        "account",
        "category",
        "sub_category",
        "planned",
        "recurring",
        "notes",
        "excluded",
    }
)


class ImportSession:
    """One import, from raw text to saved records.

    Parameters
    ----------
    store:
        Record-store collaborator (transactions are written here).
    categories:
        Category collaborator used to create missing categories before saving.
    rules:
        Rule repository; read once per preview.
    settings:
        Explicit pipeline settings (noise filters, locale hints, batch sizes,
        save timeout).
    on_progress:
        Called with an :class:`ImportProgress` after every row or batch.
    clock / today:
        Injectable time sources for the watchdog and the date fallback.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        categories: CategoryStore,
        rules: RuleRepository,
        settings: ImportSettings | None = None,
        on_progress: Callable[[ImportProgress], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._categories = categories
        self._rule_repo = rules
        self._settings = settings or ImportSettings()
        self._on_progress = on_progress
        self._clock = clock
        self._today = today
        self._normalize = make_normalizer(self._settings.noise_filters)
        self._cancel = threading.Event()
        self._init_state()

    def _init_state(self) -> None:
        self._stage: ImportStage = "idle"
        self._progress = ImportProgress(stage="idle", current=0, total=0)
        self._error: LedgerImportError | None = None
        self._table: ParsedTable | None = None
        self._mapping = FieldMapping()
        self._default_account = self._settings.default_account
        self._rules: list[SourceRule] = []
        self._drafts: list[DraftTransaction] = []
        self._duplicates: DuplicateCheck | None = None
        self._included: set[int] = set()

    # ---- read-only state -----------------------------------------------

    @property
    def stage(self) -> ImportStage:
        return self._stage

    @property
    def progress(self) -> ImportProgress:
        return self._progress

    @property
    def error(self) -> LedgerImportError | None:
        return self._error

    @property
    def table(self) -> ParsedTable | None:
        return self._table

    @property
    def mapping(self) -> FieldMapping:
        return self._mapping.copy()

    @property
    def drafts(self) -> tuple[DraftTransaction, ...]:
        return tuple(self._drafts)

    @property
    def preview(self) -> tuple[DraftTransaction, ...]:
        """The first ``settings.preview_rows`` drafts (all rows are imported)."""

        return tuple(self._drafts[: self._settings.preview_rows])

    @property
    def duplicates(self) -> DuplicateCheck | None:
        return self._duplicates

    @property
    def included_conflicts(self) -> frozenset[int]:
        return frozenset(self._included)

    @property
    def warnings(self) -> list[str]:
        return [w for d in self._drafts for w in d.warnings]

    # ---- internals -----------------------------------------------------

    def _require(self, *allowed: ImportStage) -> None:
        if self._stage not in allowed:
            raise StageError(
                f"operation not allowed in stage {self._stage!r} (expected {', '.join(allowed)})"
            )

    def _enter(self, stage: ImportStage, total: int = 0) -> None:
        _logger.debug("import:stage from=%s to=%s", self._stage, stage)
        self._stage = stage
        self._report(0, total)

    def _report(self, current: int, total: int) -> None:
        self._progress = ImportProgress(stage=self._stage, current=current, total=total)
        if self._on_progress is not None:
            self._on_progress(self._progress)

    def _fail(self, exc: LedgerImportError) -> None:
        _logger.warning("import:error stage=%s error=%s", self._stage, exc)
        self._error = exc
        self._stage = "error"
        self._progress = replace(self._progress, stage="error")

    def _check_cancel(self, processed: int, total: int) -> None:
        if self._cancel.is_set():
            raise ImportCancelledError(processed, total)

    def _remap(self) -> None:
        assert self._table is not None
        if self._table.has_header:
            self._mapping = auto_map(self._table.column_labels())
        else:
            self._mapping = FieldMapping()
        self._drafts = []
        self._duplicates = None

    # ---- stage: parsing -> mapping -------------------------------------

    def parse(self, text: str) -> ParsedTable:
        """Parse raw text and auto-map columns; suspends in ``mapping``.

        Raises :class:`EmptyInputError` (session moves to ``error``).
        """

        self._require("idle")
        self._enter("parsing")
        try:
            self._table = parse_table(text)
        except EmptyInputError as e:
            self._fail(e)
            raise
        self._remap()
        self._enter("mapping", total=len(self._table.data_rows))
        return self._table

    def set_has_header(self, has_header: bool) -> None:
        """Override header detection; re-runs auto-mapping."""

        self._require("mapping")
        assert self._table is not None
        self._table = self._table.with_header(has_header)
        self._remap()

    def set_mapping(
        self, mapping: FieldMapping | Mapping[int, CanonicalField]
    ) -> FieldMapping:
        """Replace the column mapping (from ``mapping`` or back from ``preview``)."""

        self._require("mapping", "preview")
        self._mapping = mapping.copy() if isinstance(mapping, FieldMapping) else FieldMapping(mapping)
        self._back_to_mapping()
        return self.mapping

    def assign_column(self, column: int, field: CanonicalField) -> FieldMapping:
        """Override one column; any other column holding ``field`` is cleared."""

        self._require("mapping", "preview")
        self._mapping.assign(column, field)
        self._back_to_mapping()
        return self.mapping

    def set_default_account(self, account: str | None) -> None:
        self._require("mapping", "preview")
        self._default_account = (account or "").strip() or None
        self._back_to_mapping()

    def _back_to_mapping(self) -> None:
        if self._stage == "preview":
            self._drafts = []
            self._duplicates = None
            self._stage = "mapping"

    def check_for_unknown_accounts(self, known_accounts: Iterable[str] | None = None) -> list[str]:
        """Validate the mapping and list account names not in ``known_accounts``.

        Defaults to ``settings.known_accounts``. Raises
        :class:`MissingRequiredFieldError` when required fields are unmapped.
        """

        self._require("mapping", "preview")
        validate_mapping(self._mapping, default_account=self._default_account)
        if known_accounts is None:
            known_accounts = self._settings.known_accounts
        known = {a.strip().lower() for a in known_accounts}
        if self._drafts:
            accounts = {d.account for d in self._drafts}
        else:
            assert self._table is not None
            col = self._mapping.column_for("account")
            accounts = {
                (row[col].strip() if col is not None and col < len(row) else "")
                or (self._default_account or "")
                for row in self._table.data_rows
            }
        return sorted(a for a in accounts if a and a.lower() not in known)

    # ---- stage: mapping -> preview -------------------------------------

    def generate_preview(self) -> tuple[DraftTransaction, ...]:
        """Build and enrich the draft set; suspends in ``preview``.

        Raises :class:`MissingRequiredFieldError` (stage stays ``mapping``),
        :class:`RemoteOperationError` when rules cannot be loaded, and
        :class:`ImportCancelledError` when cancelled between rows.
        """

        self._require("mapping", "preview")
        assert self._table is not None
        validate_mapping(self._mapping, default_account=self._default_account)

        rows = self._table.data_rows
        total = len(rows)
        try:
            self._rules = self._rule_repo.list_rules()
        except RemoteOperationError as e:
            self._fail(e)
            raise
        self._enter("preview", total=total)
        drafts: list[DraftTransaction] = []
        try:
            for i, row in enumerate(rows):
                self._check_cancel(i, total)
                drafts.append(self._build_draft(i, row))
                self._report(i + 1, total)
        except ImportCancelledError as e:
            self._fail(e)
            raise
        self._drafts = drafts
        self._duplicates = None
        flagged = sum(1 for d in drafts if d.warnings)
        _logger.info(
            "import:preview rows=%d rules=%d flagged=%d matched=%d",
            total,
            len(self._rules),
            flagged,
            sum(1 for d in drafts if d.clean_source),
        )
        return self.preview

    def _cell(self, row: Sequence[str], field: CanonicalField) -> str:
        col = self._mapping.column_for(field)
        if col is None or col >= len(row):
            return ""
        return row[col].strip()

    def _build_draft(self, index: int, row: Sequence[str]) -> DraftTransaction:
        warnings: list[str] = []

        raw_date = self._cell(row, "date")
        parsed_date = parse_date(raw_date, self._settings.date_format)
        if parsed_date is None:
            warnings.append(str(ValueParseError(index, "date", raw_date)))

        raw_amount = self._cell(row, "amount")
        amount = parse_amount(raw_amount, self._settings.amount_locale)
        if amount is None:
            warnings.append(str(ValueParseError(index, "amount", raw_amount)))
            amount = 0.0

        raw_recurring = self._cell(row, "recurring")
        draft = DraftTransaction(
            row_index=index,
            date=parsed_date or self._today().isoformat(),
            descriptor=self._cell(row, "descriptor"),
            amount=amount,
            account=self._cell(row, "account") or self._default_account or "",
            category=self._cell(row, "category") or None,
            sub_category=self._cell(row, "sub_category") or None,
            planned=coerce_bool(self._cell(row, "planned")),
            recurring=coerce_recurrence(raw_recurring) if raw_recurring else "N/A",
            notes=self._cell(row, "notes"),
            needs_date_verification=parsed_date is None,
            warnings=warnings,
        )
        self._enrich(draft)
        return draft

    def _enrich(self, draft: DraftTransaction) -> None:
        match = match_descriptor(draft.descriptor, self._rules, normalizer=self._normalize)
        draft.status = match.status
        draft.confidence = match.confidence
        rule = match.rule
        if rule is not None:
            draft.clean_source = rule.clean_name
            keep_csv = self._settings.trust_csv_categories and bool(draft.category)
            if rule.category and not keep_csv:
                draft.category = rule.category
                draft.sub_category = rule.sub_category
            if rule.recurring and draft.recurring == "N/A":
                draft.recurring = rule.recurring
            if rule.planned is not None:
                draft.planned = rule.planned
            if rule.excluded:
                draft.excluded = True
        else:
            draft.clean_source = None
        if not draft.category:
            draft.category = self._settings.default_category

    # ---- preview edits -------------------------------------------------

    def _draft(self, row_index: int) -> DraftTransaction:
        for d in self._drafts:
            if d.row_index == row_index:
                return d
        raise LookupError(f"no draft for row {row_index}")

    def remove_row(self, row_index: int) -> None:
        """Discard a draft row from the import."""

        self._require("preview")
        self._drafts.remove(self._draft(row_index))
        self._duplicates = None

    def update_row(self, row_index: int, **changes: Any) -> DraftTransaction:
        """Edit a draft in preview; a new descriptor re-runs rule matching."""

        self._require("preview")
        unknown = set(changes) - _EDITABLE_DRAFT_FIELDS
        if unknown:
            raise ValueError(f"field(s) not editable: {sorted(unknown)}")
        draft = self._draft(row_index)
        for key, value in changes.items():
            setattr(draft, key, value)
        if "date" in changes:
            draft.needs_date_verification = False
        if "descriptor" in changes:
            self._enrich(draft)
        self._duplicates = None
        return draft

    # ---- stage: validating ---------------------------------------------

    def check_duplicates(self) -> DuplicateCheck:
        """Fingerprint the draft set against persisted records.

        Conflicts are excluded by default; use :meth:`include_conflicts` to
        opt specific rows back in before :meth:`execute`.
        """

        self._require("preview", "validating")
        self._enter("validating", total=len(self._drafts))
        try:
            self._duplicates = find_conflicts(
                self._store,
                self._drafts,
                batch_size=self._settings.fingerprint_batch_size,
                concurrency=self._settings.concurrency,
            )
        except RemoteOperationError as e:
            self._fail(e)
            raise
        self._included = set()
        self._report(len(self._drafts), len(self._drafts))
        return self._duplicates

    def include_conflicts(self, row_indexes: Iterable[int]) -> None:
        """Select which conflicting rows are imported anyway (replaces the set)."""

        self._require("validating")
        assert self._duplicates is not None
        conflict_rows = {d.row_index for d in self._duplicates.conflicts}
        chosen = set(row_indexes)
        stray = chosen - conflict_rows
        if stray:
            raise ValueError(f"rows are not conflicts: {sorted(stray)}")
        self._included = chosen

    # ---- stage: saving -------------------------------------------------

    def execute(self) -> ImportSummary:
        """Create missing categories and write the import set.

        Runs :meth:`check_duplicates` first when it has not run. Raises
        :class:`RemoteOperationError`, :class:`ImportTimeoutError` or
        :class:`ImportCancelledError`; in every case the session moves to
        ``error`` and already-written rows remain written.
        """

        self._require("preview", "validating")
        if self._stage == "preview" or self._duplicates is None:
            self.check_duplicates()
        dup = self._duplicates
        assert dup is not None

        conflict_rows = {c.row_index for c in dup.conflicts}
        chosen = [d for d in self._drafts if d.row_index not in conflict_rows]
        chosen += [d for d in dup.conflicts if d.row_index in self._included]
        chosen.sort(key=lambda d: d.row_index)
        batch_id = uuid.uuid4().hex
        records = [
            ImportRecord.from_draft(d, fingerprint=dup.fingerprints[d.row_index], import_batch=batch_id)
            for d in chosen
        ]
        total = len(records)
        skipped = len(dup.conflicts) - len(self._included)

        self._enter("saving", total=total)
        started = self._clock()
        committed = 0
        try:
            created = ensure_categories(
                self._categories,
                ((d.category, d.sub_category) for d in chosen),
                concurrency=self._settings.concurrency,
                timeout=self._check_deadline(started, committed, total),
            )
            batches = list(chunked(records, self._settings.write_batch_size))
            _logger.info("import:saving batches=%d records=%d", len(batches), total)
            for group in chunked(batches, self._settings.concurrency):
                remaining = self._check_deadline(started, committed, total)
                self._check_cancel(committed, total)
                written = run_batches(
                    "transactions.insert",
                    group,
                    self._insert_batch,
                    concurrency=self._settings.concurrency,
                    count=int,
                    timeout=remaining,
                )
                committed += sum(written)
                self._report(committed, total)
        except RemoteOperationError as e:
            if e.operation == "transactions.insert":
                committed += e.succeeded
            self._report(committed, total)
            self._fail(e)
            raise
        except TimeoutError as e:
            # A store call outlived the deadline; its rows may still land.
            err = ImportTimeoutError(committed, total, self._settings.save_timeout_sec)
            self._fail(err)
            raise err from e
        except (ImportTimeoutError, ImportCancelledError) as e:
            self._fail(e)
            raise

        self._enter("complete", total=total)
        self._report(committed, total)
        summary = ImportSummary(
            batch_id=batch_id,
            inserted=committed,
            skipped_conflicts=skipped,
            categories_created=created,
            warnings=tuple(w for d in chosen for w in d.warnings),
        )
        _logger.info(
            "import:complete batch=%s inserted=%d skipped=%d categories_created=%d seconds=%.2f",
            batch_id,
            committed,
            skipped,
            created,
            self._clock() - started,
        )
        return summary

    def _insert_batch(self, batch: Sequence[ImportRecord]) -> int:
        return self._store.insert(TABLE_TRANSACTIONS, [r.as_row() for r in batch])

    def _check_deadline(self, started: float, committed: int, total: int) -> float:
        """Return the seconds left before the save deadline, or raise once it passed."""

        timeout = self._settings.save_timeout_sec
        remaining = timeout - (self._clock() - started)
        if remaining <= 0:
            raise ImportTimeoutError(committed, total, timeout)
        return remaining

    # ---- control -------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; observed before the next row or batch."""

        self._cancel.set()

    def reset(self) -> None:
        """Drop all session state and return to ``idle``."""

        self._cancel.clear()
        self._init_state()


__all__ = ["ImportSession"]
