"""Fingerprint-based duplicate detection across import batches.

The fingerprint is a 64-bit FNV-1a hash (16 hex chars) over
``"{date}-{descriptor}-{amount}-{account}"``. It is a lookup key for
*possible* duplicates only: a hit is presented to the operator as a conflict,
never dropped silently, so a non-cryptographic hash is sufficient.
"""

from __future__ import annotations

from collections.abc import Sequence

from .batching import chunked, run_batches
from .logging_setup import get_logger
from .models import DraftTransaction, DuplicateCheck
from .store import TABLE_TRANSACTIONS, RecordStore

_logger = get_logger("ledger_import.fingerprint")

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = (1 << 64) - 1


def stable_hash(text: str) -> str:
    h = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & _MASK_64
    return f"{h:016x}"


def fingerprint(date: str, descriptor: str, amount: float, account: str | None = None) -> str:
    """Return the fingerprint of one transaction.

    ``amount`` is rendered with two decimals so ``-99`` and ``-99.0`` agree;
    a missing account is keyed as ``Unknown``.
    """

    amount_2 = round(float(amount), 2) or 0.0  # folds -0.0 into 0.0
    acct = (account or "").strip() or "Unknown"
    return stable_hash(f"{date.strip()}-{descriptor.strip()}-{amount_2:.2f}-{acct}")


def fingerprint_draft(draft: DraftTransaction) -> str:
    return fingerprint(draft.date, draft.descriptor, draft.amount, draft.account)


def find_conflicts(
    store: RecordStore,
    drafts: Sequence[DraftTransaction],
    *,
    batch_size: int = 100,
    concurrency: int = 4,
) -> DuplicateCheck:
    """Split ``drafts`` into fresh rows and conflicts with persisted records.

    Unique fingerprints are looked up with ``batch_select`` in fixed-size
    batches (run up to ``concurrency`` at once) instead of one request per
    row.
    """

    fps = {d.row_index: fingerprint_draft(d) for d in drafts}
    unique = sorted(set(fps.values()))

    def _lookup(batch: Sequence[str]) -> set[str]:
        rows = store.batch_select(TABLE_TRANSACTIONS, "fingerprint", batch)
        return {str(r["fingerprint"]) for r in rows}

    found = run_batches(
        "transactions.batch_select",
        list(chunked(unique, batch_size)),
        _lookup,
        concurrency=concurrency,
    )
    existing: set[str] = set().union(*found) if found else set()

    fresh = tuple(d for d in drafts if fps[d.row_index] not in existing)
    conflicts = tuple(d for d in drafts if fps[d.row_index] in existing)
    _logger.info(
        "dedup:done rows=%d unique=%d batches=%d conflicts=%d",
        len(drafts),
        len(unique),
        len(found),
        len(conflicts),
    )
    return DuplicateCheck(fresh=fresh, conflicts=conflicts, fingerprints=fps)


__all__ = ["stable_hash", "fingerprint", "fingerprint_draft", "find_conflicts"]
