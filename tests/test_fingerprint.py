from __future__ import annotations

import pytest

from ledger_import.errors import RemoteOperationError
from ledger_import.fingerprint import find_conflicts, fingerprint, stable_hash
from ledger_import.models import DraftTransaction
from tests.helpers.stores import MemoryRecordStore


def _draft(i: int, descriptor: str, amount: float, day: str = "2024-01-15") -> DraftTransaction:
    return DraftTransaction(row_index=i, date=day, descriptor=descriptor, amount=amount, account="Checking")


def test_stable_hash_is_fnv1a_64() -> None:
    assert stable_hash("") == "cbf29ce484222325"
    assert stable_hash("a") == "af63dc4c8601ec8c"
    assert len(stable_hash("NETFLIX.COM")) == 16


def test_fingerprint_canonicalizes_amount_and_account() -> None:
    base = fingerprint("2024-01-15", "NETFLIX.COM", -99, "Checking")
    assert fingerprint("2024-01-15", "NETFLIX.COM", -99.0, "Checking") == base
    assert fingerprint("2024-01-15", "NETFLIX.COM", -99.0, "Savings") != base
    assert fingerprint("2024-01-15", "NETFLIX.COM", -99.01, "Checking") != base
    assert fingerprint("2024-01-15", "X", 0.0, None) == fingerprint("2024-01-15", "X", -0.0, "Unknown")


def test_find_conflicts_batches_unique_fingerprints() -> None:
    store = MemoryRecordStore()
    drafts = [
        _draft(0, "NETFLIX.COM", -99.0),
        _draft(1, "NETFLIX.COM", -99.0),
        _draft(2, "IRMA", -120.0),
        _draft(3, "SPOTIFY", -59.0),
    ]
    store.insert("transactions", [{"fingerprint": fingerprint("2024-01-15", "IRMA", -120.0, "Checking")}])

    check = find_conflicts(store, drafts, batch_size=1, concurrency=2)

    assert [d.row_index for d in check.conflicts] == [2]
    assert [d.row_index for d in check.fresh] == [0, 1, 3]
    assert check.fingerprints[0] == check.fingerprints[1]
    # Three unique fingerprints, one lookup each.
    assert store.calls.count("transactions.batch_select") == 3


def test_find_conflicts_surfaces_store_failures() -> None:
    store = MemoryRecordStore()
    store.fail.add("transactions.batch_select")
    with pytest.raises(RemoteOperationError) as info:
        find_conflicts(store, [_draft(0, "IRMA", -1.0)])
    assert info.value.operation == "transactions.batch_select"
