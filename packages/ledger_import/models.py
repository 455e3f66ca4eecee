"""Data model for the import engine.

Working records (:class:`DraftTransaction`) are mutable while a single import
session enriches them; everything handed across a boundary afterwards
(:class:`ImportRecord`, :class:`ScanResult`, :class:`MatchResult`) is frozen.
Rules are validated pydantic models because they round-trip through the
record store and the on-disk rules snapshot.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------

type CanonicalField = Literal[
    "date",
    "descriptor",
    "amount",
    "account",
    "category",
    "sub_category",
    "planned",
    "recurring",
    "notes",
]

# Dictionary order matters: the field mapper tests aliases in this order.
CANONICAL_FIELDS: tuple[CanonicalField, ...] = (
    "date",
    "descriptor",
    "amount",
    "account",
    "category",
    "sub_category",
    "planned",
    "recurring",
    "notes",
)

type Recurrence = Literal[
    "Weekly", "Monthly", "Quarterly", "Bi-annually", "Annually", "One-off", "N/A"
]

RECURRENCE_VALUES: tuple[Recurrence, ...] = (
    "Weekly",
    "Monthly",
    "Quarterly",
    "Bi-annually",
    "Annually",
    "One-off",
    "N/A",
)

type MatchMode = Literal["exact", "fuzzy"]

type TriageStatus = Literal["Pending Triage", "Complete"]

STATUS_PENDING_TRIAGE: TriageStatus = "Pending Triage"
STATUS_COMPLETE: TriageStatus = "Complete"

type ImportStage = Literal[
    "idle", "parsing", "mapping", "preview", "validating", "saving", "complete", "error"
]

# A persisted transaction as returned by the record store (column -> value).
type TransactionRecord = Mapping[str, Any]


# ---------------------------------------------------------------------------
# Import working set
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DraftTransaction:
    """A mapped row being enriched during one import session.

    Attributes
    ----------
    row_index:
        Zero-based index of the source data row (header excluded).
    date:
        ISO calendar date. When the raw value could not be parsed this holds
        the import day and ``needs_date_verification`` is set.
    amount:
        Signed amount; negative values are outflows as exported by the bank.
    warnings:
        Human-readable per-row parse warnings surfaced in the preview.
    """

    row_index: int
    date: str
    descriptor: str
    amount: float
    account: str
    category: str | None = None
    sub_category: str | None = None
    planned: bool = False
    recurring: Recurrence = "N/A"
    notes: str = ""
    needs_date_verification: bool = False
    clean_source: str | None = None
    status: TriageStatus = STATUS_PENDING_TRIAGE
    confidence: float = 0.0
    excluded: bool = False
    warnings: list[str] = field(default_factory=list)

    def as_record(self) -> dict[str, Any]:
        """Return the row in the record-store transaction shape."""

        rec = asdict(self)
        rec.pop("row_index")
        rec.pop("warnings")
        return rec


@dataclass(frozen=True, slots=True)
class ImportRecord:
    """Final, immutable record handed to the record store."""

    fingerprint: str
    import_batch: str
    date: str
    descriptor: str
    amount: float
    account: str
    category: str | None
    sub_category: str | None
    planned: bool
    recurring: Recurrence
    notes: str
    needs_date_verification: bool
    clean_source: str | None
    status: TriageStatus
    confidence: float
    excluded: bool

    @classmethod
    def from_draft(
        cls, draft: DraftTransaction, *, fingerprint: str, import_batch: str
    ) -> ImportRecord:
        return cls(
            fingerprint=fingerprint,
            import_batch=import_batch,
            date=draft.date,
            descriptor=draft.descriptor,
            amount=draft.amount,
            account=draft.account,
            category=draft.category,
            sub_category=draft.sub_category,
            planned=draft.planned,
            recurring=draft.recurring,
            notes=draft.notes,
            needs_date_verification=draft.needs_date_verification,
            clean_source=draft.clean_source,
            status=draft.status,
            confidence=draft.confidence,
            excluded=draft.excluded,
        )

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ImportProgress:
    stage: ImportStage
    current: int
    total: int


@dataclass(frozen=True, slots=True)
class DuplicateCheck:
    """Outcome of the fingerprint check for one draft set.

    ``conflicts`` hold drafts whose fingerprint already exists in the store;
    they are excluded from the import unless explicitly included.
    """

    fresh: tuple[DraftTransaction, ...]
    conflicts: tuple[DraftTransaction, ...]
    fingerprints: Mapping[int, str]


@dataclass(frozen=True, slots=True)
class ImportSummary:
    batch_id: str
    inserted: int
    skipped_conflicts: int
    categories_created: int
    warnings: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Rules, matching and discovery
# ---------------------------------------------------------------------------


class SourceRule(BaseModel):
    """A stored mapping from a raw descriptor pattern to a canonical source.

    Many rules may share one ``clean_name``; each rule has exactly one
    non-empty ``pattern``. ``skip_triage`` lets a match complete a
    transaction without human review (see :mod:`ledger_import.matcher`).
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    id: str
    pattern: str
    clean_name: str
    category: str | None = None
    sub_category: str | None = None
    recurring: Recurrence | None = None
    planned: bool | None = None
    excluded: bool = False
    skip_triage: bool = False
    match_mode: MatchMode = "fuzzy"

    @field_validator("pattern", "clean_name")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be non-empty")
        return v

    @field_validator("category", "sub_category", "recurring", mode="before")
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Outcome of matching one descriptor against the rule set.

    ``tier`` is 1 (raw equality), 2 (normalized equality), 3 (containment,
    fuzzy rules only) or ``None`` when no rule matched.
    """

    clean_name: str
    status: TriageStatus
    confidence: float
    rule: SourceRule | None = None
    tier: int | None = None


@dataclass(frozen=True, slots=True)
class ScanResult:
    clean_name: str
    count: int
    category: str
    sub_category: str
    recurring_guess: Recurrence
    avg_amount: float
    confidence: float
    planned_majority: bool
    excluded_majority: bool


__all__ = [
    "CanonicalField",
    "CANONICAL_FIELDS",
    "Recurrence",
    "RECURRENCE_VALUES",
    "MatchMode",
    "TriageStatus",
    "STATUS_PENDING_TRIAGE",
    "STATUS_COMPLETE",
    "ImportStage",
    "TransactionRecord",
    "DraftTransaction",
    "ImportRecord",
    "ImportProgress",
    "DuplicateCheck",
    "ImportSummary",
    "SourceRule",
    "MatchResult",
    "ScanResult",
]
