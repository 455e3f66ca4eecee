"""Column-to-field reconciliation.

Columns are matched to canonical fields by alias membership (English and
Danish bank-export vocabulary), then by a rapidfuzz similarity fallback.
Every field is held by at most one column; :class:`FieldMapping` enforces
that invariant for both auto-mapping and manual overrides.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from rapidfuzz import fuzz, process

from ..errors import MissingRequiredFieldError
from ..logging_setup import get_logger
from ..models import CANONICAL_FIELDS, CanonicalField

_logger = get_logger("ledger_import.ingest.field_mapping")

# Minimum WRatio score (0-100) for the fuzzy fallback to accept a field.
_FUZZY_CUTOFF = 85.0

FIELD_ALIASES: dict[CanonicalField, frozenset[str]] = {
    "date": frozenset(
        {
            "date",
            "dato",
            "datum",
            "transaction date",
            "booking date",
            "posting date",
            "posted date",
            "bogføringsdato",
            "bogfoeringsdato",
            "rentedato",
            "valørdato",
        }
    ),
    "descriptor": frozenset(
        {
            "description",
            "descriptor",
            "desc",
            "text",
            "tekst",
            "beskrivelse",
            "posteringstekst",
            "merchant",
            "source",
            "payee",
            "modtager",
            "name",
            "navn",
        }
    ),
    "amount": frozenset(
        {"amount", "beløb", "beloeb", "belob", "sum", "price", "value", "dkk", "total", "pris"}
    ),
    "account": frozenset({"account", "konto", "kontonavn", "account name", "card", "kort"}),
    "category": frozenset({"category", "kategori", "hovedkategori", "main category"}),
    "sub_category": frozenset(
        {"sub_category", "sub category", "subcategory", "underkategori", "sub"}
    ),
    "planned": frozenset({"planned", "planlagt", "budgeted"}),
    "recurring": frozenset(
        {"recurring", "recurrence", "frequency", "interval", "tilbagevendende", "gentagelse"}
    ),
    "notes": frozenset(
        {"notes", "note", "memo", "comment", "comments", "kommentar", "bemærkning", "noter"}
    ),
}

# Tokens that mark row 0 as a header row (whole word, case-insensitive).
HEADER_VOCABULARY: frozenset[str] = frozenset(
    alias for aliases in FIELD_ALIASES.values() for alias in aliases if len(alias) >= 3
)

REQUIRED_FIELDS: tuple[CanonicalField, ...] = ("descriptor", "amount")


def normalize_label(label: str) -> str:
    """Lower-case, trim, and collapse ``_``/``-``/whitespace runs to one space."""

    s = label.strip().lower().replace("_", " ").replace("-", " ")
    return " ".join(s.split())


class FieldMapping:
    """A 1:1 assignment of column indexes to canonical fields."""

    __slots__ = ("_by_column",)

    def __init__(self, assignments: Mapping[int, CanonicalField] | None = None) -> None:
        self._by_column: dict[int, CanonicalField] = {}
        for column, field in (assignments or {}).items():
            self.assign(column, field)

    def assign(self, column: int, field: CanonicalField) -> None:
        """Map ``column`` to ``field``, clearing any other column holding it."""

        if field not in CANONICAL_FIELDS:
            raise ValueError(f"unknown field: {field!r}")
        if column < 0:
            raise ValueError("column index must be non-negative")
        for other, held in list(self._by_column.items()):
            if held == field and other != column:
                del self._by_column[other]
        self._by_column[column] = field

    def unassign(self, column: int) -> None:
        self._by_column.pop(column, None)

    def field_for(self, column: int) -> CanonicalField | None:
        return self._by_column.get(column)

    def column_for(self, field: CanonicalField) -> int | None:
        for column, held in self._by_column.items():
            if held == field:
                return column
        return None

    def fields(self) -> set[CanonicalField]:
        return set(self._by_column.values())

    def as_dict(self) -> dict[int, CanonicalField]:
        return dict(sorted(self._by_column.items()))

    def copy(self) -> FieldMapping:
        return FieldMapping(self._by_column)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldMapping):
            return NotImplemented
        return self._by_column == other._by_column

    def __repr__(self) -> str:  # pragma: no cover - trivial repr
        return f"FieldMapping({self.as_dict()!r})"


def _fuzzy_field(label: str, remaining: Sequence[CanonicalField]) -> CanonicalField | None:
    choices: dict[str, CanonicalField] = {}
    for field in remaining:
        choices[field.replace("_", " ")] = field
        for alias in FIELD_ALIASES[field]:
            choices.setdefault(alias, field)
    hit = process.extractOne(label, list(choices), scorer=fuzz.WRatio, score_cutoff=_FUZZY_CUTOFF)
    if hit is None:
        return None
    choice, score, _ = hit
    _logger.debug("automap:fuzzy label=%r field=%s score=%.1f", label, choices[choice], score)
    return choices[choice]


def auto_map(labels: Iterable[str]) -> FieldMapping:
    """Propose a mapping for the given column labels.

    Each column is tested for alias membership against the still-unassigned
    fields in dictionary order; without an alias hit, the fuzzy fallback runs
    against the remaining fields. First match wins and removes the field from
    candidacy for later columns.
    """

    labels = list(labels)
    mapping = FieldMapping()
    remaining: list[CanonicalField] = list(CANONICAL_FIELDS)
    for column, raw_label in enumerate(labels):
        if not remaining:
            break
        label = normalize_label(raw_label)
        if not label:
            continue
        field = next((f for f in remaining if label in FIELD_ALIASES[f]), None)
        if field is None:
            field = _fuzzy_field(label, remaining)
        if field is None:
            continue
        mapping.assign(column, field)
        remaining.remove(field)
    _logger.info("automap:done columns=%d mapped=%d", len(labels), len(mapping.fields()))
    return mapping


def missing_required_fields(
    mapping: FieldMapping, *, default_account: str | None = None
) -> list[CanonicalField]:
    fields = mapping.fields()
    missing: list[CanonicalField] = [f for f in REQUIRED_FIELDS if f not in fields]
    if "account" not in fields and not (default_account and default_account.strip()):
        missing.append("account")
    return missing


def validate_mapping(mapping: FieldMapping, *, default_account: str | None = None) -> None:
    """Raise :class:`MissingRequiredFieldError` naming every missing field.

    ``descriptor`` and ``amount`` must be mapped; ``account`` must be mapped or
    covered by ``default_account``.
    """

    missing = missing_required_fields(mapping, default_account=default_account)
    if missing:
        raise MissingRequiredFieldError(missing)


__all__ = [
    "FIELD_ALIASES",
    "HEADER_VOCABULARY",
    "REQUIRED_FIELDS",
    "FieldMapping",
    "normalize_label",
    "auto_map",
    "missing_required_fields",
    "validate_mapping",
]
