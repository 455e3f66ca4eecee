"""DB helpers for tests: bootstrap a temporary SQLite DB and seed rows."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from db import Base
from db.client import get_engine, session_scope
from db.models.finance import LiCategory, LiTransaction
from sqlalchemy import event, select


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default), which the
    thread-pooled batch writers rely on.
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
        dbapi_conn.execute("PRAGMA foreign_keys = ON")

    Base.metadata.create_all(bind=engine)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_categories(
    *, database_url: str, categories: Mapping[str, Iterable[str]]
) -> None:
    """Insert ``{category: [sub, ...]}`` (parents first, then children)."""

    with session_scope(database_url=database_url) as session:
        for name in categories:
            session.add(LiCategory(name=name, parent=""))
        session.flush()
        for parent, subs in categories.items():
            for sub in subs:
                session.add(LiCategory(name=sub, parent=parent))


def seed_transactions(*, database_url: str, rows: Iterable[Mapping[str, Any]]) -> list[int]:
    """Insert persisted transactions directly; returns their ids."""

    now = datetime.now(UTC)
    objs: list[LiTransaction] = []
    with session_scope(database_url=database_url) as session:
        for row in rows:
            data = dict(row)
            data.setdefault("fingerprint", "0" * 16)
            data.setdefault("account", "Checking")
            data.setdefault("status", "Pending Triage")
            data["date"] = date.fromisoformat(str(data.get("date") or "2024-01-01"))
            data["amount"] = Decimal(str(data.get("amount", 0))).quantize(Decimal("0.01"))
            data.setdefault("created_at", now)
            data.setdefault("updated_at", now)
            obj = LiTransaction(**data)
            session.add(obj)
            objs.append(obj)
        session.flush()
        return [o.id for o in objs]


def fetch_transactions(*, database_url: str) -> list[LiTransaction]:
    with session_scope(database_url=database_url) as session:
        return list(session.execute(select(LiTransaction).order_by(LiTransaction.id)).scalars())
