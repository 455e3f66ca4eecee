# ruff: noqa: E402, I001
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Make sure the workspace dirs are on sys.path so `ledger_import` and `db` import
_ROOT = Path(__file__).resolve().parents[2]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from ledger_import.api import import_text, open_session, scan_history  # noqa: E402
from ledger_import.config import ImportSettings  # noqa: E402
from ledger_import.rules import RuleRepository  # noqa: E402
from ledger_import.scanner import confirm_candidate  # noqa: E402
from ledger_import.store import SqlRecordStore  # noqa: E402

from tests.helpers.db import bootstrap_sqlite_db, fetch_transactions  # noqa: E402

_CSV = Path(__file__).resolve().parents[1] / "data/danske_q1_2024.csv"


def test_e2e_import_scan_confirm_reimport(tmp_path: Path) -> None:
    text = _CSV.read_text(encoding="utf-8")
    db_url = bootstrap_sqlite_db(tmp_path / "li-e2e.db")
    settings = ImportSettings()

    # -------------------------
    # First import: nothing is ruled yet
    # -------------------------
    summary = import_text(text, database_url=db_url, settings=settings)
    assert summary.inserted == 7
    assert summary.skipped_conflicts == 0
    assert summary.categories_created == 4  # Other, Dagligvarer, Indkomst, Bolig

    rows = fetch_transactions(database_url=db_url)
    by_desc = {r.descriptor: r for r in rows}
    assert float(by_desc["DANKORT NETTO 1234 KØBENHAVN"].amount) == pytest.approx(-1234.5)
    assert float(by_desc["Løn januar"].amount) == pytest.approx(32500.0)
    assert by_desc["Løn januar"].notes == "Arbejdsgiver"
    assert by_desc["Husleje februar"].account == "Budgetkonto"
    assert str(by_desc["Husleje februar"].date) == "2024-02-01"
    assert {r.status for r in rows} == {"Pending Triage"}

    # -------------------------
    # Scan history and confirm the subscription
    # -------------------------
    candidates = scan_history(database_url=db_url, settings=settings)
    names = [c.clean_name for c in candidates]
    assert names[:2] == ["NETTO", "NETFLIX.COM"]
    netflix = candidates[1]
    assert netflix.count == 3
    assert netflix.recurring_guess == "Monthly"

    repo = RuleRepository(SqlRecordStore(db_url))
    rule, updated = confirm_candidate(
        repo,
        netflix,
        clean_name="Netflix",
        category="Underholdning",
        sub_category="Streaming",
        apply_to_history=True,
    )
    assert updated == 3
    ruled = [r for r in fetch_transactions(database_url=db_url) if r.clean_source == "Netflix"]
    assert len(ruled) == 3
    assert {(r.category, r.sub_category, r.recurring, r.status) for r in ruled} == {
        ("Underholdning", "Streaming", "Monthly", "Complete")
    }
    assert "NETFLIX.COM" not in [c.clean_name for c in scan_history(database_url=db_url)]

    # -------------------------
    # Re-import the file with one new row: old rows are possible duplicates
    # -------------------------
    april = '"15-04-2024";"VISA/DANKORT NETFLIX.COM";"-99,00";"Lønkonto";"";""\n'
    session = open_session(database_url=db_url, settings=settings)
    session.parse(text + april)
    session.generate_preview()
    check = session.check_duplicates()
    assert len(check.conflicts) == 7
    (fresh,) = check.fresh
    assert fresh.clean_source == "Netflix"
    assert fresh.status == "Complete"
    assert fresh.category == "Underholdning"

    again = session.execute()
    assert again.inserted == 1
    assert again.skipped_conflicts == 7
    rows = fetch_transactions(database_url=db_url)
    assert len(rows) == 8
    assert str(rows[-1].date) == "2024-04-15"
    assert rows[-1].import_batch == again.batch_id
    assert rule.pattern == "NETFLIX.COM"
