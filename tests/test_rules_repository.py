from __future__ import annotations

import itertools

import pytest

from ledger_import.errors import RemoteOperationError
from ledger_import.models import SourceRule
from ledger_import.rules import RuleRepository, bulk_apply_patch
from tests.helpers.stores import MemoryRecordStore


def _repo(store: MemoryRecordStore) -> RuleRepository:
    ids = (f"r{i}" for i in itertools.count(1))
    return RuleRepository(store, id_factory=lambda: next(ids))


@pytest.fixture
def store() -> MemoryRecordStore:
    s = MemoryRecordStore()
    s.tables["source_rules"] = [
        {
            "id": "s1",
            "source_name": "NETFLIX",
            "clean_source_name": "Netflix",
            "auto_category": "Entertainment",
            "created_at": "2024-01-01",
        },
    ]
    s.tables["merchant_rules"] = [
        {
            "id": "m1",
            "merchant_name": "netflix",
            "clean_merchant_name": "Old Netflix",
            "created_at": "2023-01-01",
        },
        {
            "id": "m2",
            "merchant_name": "IRMA",
            "clean_merchant_name": "Irma",
            "auto_budget": "Exclude",
            "skip_triage": True,
            "created_at": "2023-02-01",
        },
        {
            "id": "m3",
            "merchant_name": "NETFLIX.COM",
            "clean_merchant_name": "Netflix",
            "created_at": "2023-03-01",
        },
    ]
    return s


def test_list_merges_tables_and_current_table_wins(store: MemoryRecordStore) -> None:
    rules = _repo(store).list_rules()
    assert [r.id for r in rules] == ["s1", "m2", "m3"]
    irma = rules[1]
    assert irma.pattern == "IRMA"
    assert irma.clean_name == "Irma"
    assert irma.excluded is True
    assert irma.skip_triage is True
    assert irma.match_mode == "fuzzy"


def test_one_failing_table_yields_partial_rules(store: MemoryRecordStore) -> None:
    store.fail.add("source_rules.select")
    assert [r.id for r in _repo(store).list_rules()] == ["m1", "m2", "m3"]


def test_both_tables_failing_uses_snapshot_then_raises(store: MemoryRecordStore) -> None:
    repo = _repo(store)
    first = repo.list_rules()
    store.fail.update({"source_rules", "merchant_rules"})
    assert [r.id for r in repo.list_rules()] == [r.id for r in first]

    no_cache = RuleRepository(store, use_cache=False)
    with pytest.raises(RemoteOperationError) as info:
        no_cache.list_rules()
    assert info.value.operation == "rules.list"
    assert len(info.value.failures) == 2


def test_create_writes_current_table() -> None:
    store = MemoryRecordStore()
    rule = _repo(store).create_rule(
        "SPOTIFY", "Spotify", category="Entertainment", recurring="Monthly", excluded=True
    )
    assert rule.id == "r1"
    assert rule.recurring == "Monthly"
    (row,) = store.tables["source_rules"]
    assert row["source_name"] == "SPOTIFY"
    assert row["clean_source_name"] == "Spotify"
    assert row["auto_budget"] == "Exclude"
    assert store.tables["merchant_rules"] == []


def test_create_overwrites_by_pattern() -> None:
    store = MemoryRecordStore()
    repo = _repo(store)
    repo.create_rule("SPOTIFY", "Spotify")
    again = repo.create_rule("SPOTIFY", "Spotify AB", category="Music")
    assert len(store.tables["source_rules"]) == 1
    assert again.id == "r1"
    assert again.clean_name == "Spotify AB"


def test_create_falls_back_to_legacy_table() -> None:
    store = MemoryRecordStore()
    store.fail.add("source_rules")
    rule = _repo(store).create_rule("SPOTIFY", "Spotify")
    assert rule.pattern == "SPOTIFY"
    (row,) = store.tables["merchant_rules"]
    assert row["merchant_name"] == "SPOTIFY"

    store.fail.add("merchant_rules")
    with pytest.raises(RemoteOperationError) as info:
        _repo(store).create_rule("IRMA", "Irma")
    assert info.value.operation == "rules.create"


def test_create_rejects_empty_pattern() -> None:
    with pytest.raises(ValueError):
        _repo(MemoryRecordStore()).create_rule("  ", "Nothing")


def test_update_routes_to_origin_table(store: MemoryRecordStore) -> None:
    repo = _repo(store)
    (changed,) = repo.update_rule("m2", category="Groceries", excluded=False)
    assert changed.category == "Groceries"
    assert changed.excluded is False
    m2 = next(r for r in store.tables["merchant_rules"] if r["id"] == "m2")
    assert m2["auto_category"] == "Groceries"
    assert m2["auto_budget"] == "Budgeted"

    with pytest.raises(ValueError):
        repo.update_rule("m2", colour="red")
    with pytest.raises(LookupError):
        repo.update_rule("nope", category="X")


def test_group_default_edit_reaches_every_rule_with_the_clean_name(
    store: MemoryRecordStore,
) -> None:
    repo = _repo(store)
    changed = repo.update_rule(
        "s1", group_default=True, category="Streaming", pattern="NETFLIX INTL"
    )
    assert sorted(r.id for r in changed) == ["m3", "s1"]
    s1 = store.tables["source_rules"][0]
    m3 = next(r for r in store.tables["merchant_rules"] if r["id"] == "m3")
    assert s1["source_name"] == "NETFLIX INTL"
    assert s1["auto_category"] == "Streaming"
    assert m3["merchant_name"] == "NETFLIX.COM"
    assert m3["auto_category"] == "Streaming"


def test_update_reports_partial_failure(store: MemoryRecordStore) -> None:
    repo = _repo(store)
    repo.list_rules()
    store.fail.add("merchant_rules.update")
    with pytest.raises(RemoteOperationError) as info:
        repo.update_rule("s1", group_default=True, category="Streaming")
    assert info.value.succeeded == 1
    assert store.tables["source_rules"][0]["auto_category"] == "Streaming"


def test_rename_group_touches_both_tables(store: MemoryRecordStore) -> None:
    assert _repo(store).rename_group("netflix", "Netflix Inc") == 2
    assert store.tables["source_rules"][0]["clean_source_name"] == "Netflix Inc"
    m3 = next(r for r in store.tables["merchant_rules"] if r["id"] == "m3")
    assert m3["clean_merchant_name"] == "Netflix Inc"
    with pytest.raises(ValueError):
        _repo(store).rename_group("Netflix Inc", " ")


def test_delete_rule(store: MemoryRecordStore) -> None:
    repo = _repo(store)
    assert repo.delete_rule("m2") is True
    assert repo.delete_rule("m2") is False
    assert [r["id"] for r in store.tables["merchant_rules"]] == ["m1", "m3"]


def _rule(**kw) -> SourceRule:
    base = {"id": "x", "pattern": "NETTO", "clean_name": "Netto"}
    return SourceRule(**{**base, **kw})


def test_bulk_apply_patch_without_skip_triage_only_names() -> None:
    patch = bulk_apply_patch(_rule(category="Groceries"), {"descriptor": "NETTO"})
    assert patch == {"clean_source": "Netto"}


def test_bulk_apply_patch_fills_gaps_and_completes() -> None:
    rule = _rule(
        category="Groceries", sub_category="Supermarket", recurring="Weekly", skip_triage=True
    )
    patch = bulk_apply_patch(rule, {"category": "Other", "recurring": "N/A"})
    assert patch == {
        "clean_source": "Netto",
        "category": "Groceries",
        "sub_category": "Supermarket",
        "recurring": "Weekly",
        "status": "Complete",
    }
    kept = bulk_apply_patch(rule, {"category": "Food", "sub_category": "Lunch", "recurring": "Monthly"})
    assert kept == {"clean_source": "Netto", "status": "Complete"}
    pending = bulk_apply_patch(_rule(category="Groceries", skip_triage=True), {})
    assert "status" not in pending
    excluded = bulk_apply_patch(_rule(excluded=True, skip_triage=True), {})
    assert excluded["excluded"] is True
    assert excluded["status"] == "Complete"


def test_apply_to_history_updates_matching_rows_only() -> None:
    store = MemoryRecordStore()
    store.insert(
        "transactions",
        [
            {"descriptor": "VISA NETTO 1234", "category": None},
            {"descriptor": "NETTO", "category": "Food"},
            {"descriptor": "IRMA CITY", "category": None},
        ],
    )
    repo = _repo(store)
    rule = repo.create_rule("NETTO", "Netto", category="Groceries", skip_triage=True)

    assert repo.apply_to_history(rule, batch_size=1) == 2
    rows = {r["descriptor"]: r for r in store.tables["transactions"]}
    assert rows["VISA NETTO 1234"]["clean_source"] == "Netto"
    assert rows["VISA NETTO 1234"]["category"] == "Groceries"
    assert rows["NETTO"]["category"] == "Food"
    assert "clean_source" not in rows["IRMA CITY"]


def test_apply_to_history_failure_reports_updated_rows() -> None:
    store = MemoryRecordStore()
    store.insert("transactions", [{"descriptor": "NETTO"}, {"descriptor": "NETTO"}])
    repo = _repo(store)
    rule = repo.create_rule("NETTO", "Netto")
    store.fail_after["transactions.update"] = 1
    with pytest.raises(RemoteOperationError) as info:
        repo.apply_to_history(rule, batch_size=1, concurrency=1)
    assert info.value.operation == "transactions.update"
    assert info.value.succeeded == 1
