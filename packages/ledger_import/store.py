# ruff: noqa: I001
"""Record-store collaborator: protocol and SQLAlchemy implementation.

The import engine talks to persistence only through :class:`RecordStore`,
addressing logical tables by name (``transactions``, ``source_rules``,
``merchant_rules``). Records are plain dicts with JSON-friendly values: ISO
date strings and floats go in and come out; the SQL implementation converts
to ``date``/``Decimal`` at the boundary.

Every call is treated as a possibly-failing remote operation. The SQL store
translates ``SQLAlchemyError`` into
:class:`~ledger_import.errors.RemoteOperationError` named ``<table>.<op>``;
no transaction spans more than one call.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol, TypeVar

from sqlalchemy import Date, Numeric, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.finance import Base, LiMerchantRule, LiSourceRule, LiTransaction

from .errors import RemoteOperationError
from .logging_setup import get_logger

TABLE_TRANSACTIONS = "transactions"
TABLE_SOURCE_RULES = "source_rules"
TABLE_MERCHANT_RULES = "merchant_rules"

# Column -> value. Sequences mean ``IN``; ``None`` means ``IS NULL``.
type Filters = Mapping[str, Any]
type Record = dict[str, Any]

_logger = get_logger("ledger_import.store")

T = TypeVar("T")


class RecordStore(Protocol):
    """Abstract persistence collaborator consumed by the engine."""

    def select(
        self, table: str, filters: Filters | None = None, *, order_by: Sequence[str] = ()
    ) -> list[Record]: ...

    def batch_select(self, table: str, column: str, values: Sequence[Any]) -> list[Record]: ...

    def insert(self, table: str, records: Sequence[Mapping[str, Any]]) -> int: ...

    def upsert(
        self, table: str, records: Sequence[Mapping[str, Any]], conflict_key: Sequence[str]
    ) -> int: ...

    def update(self, table: str, ids: Sequence[Any], patch: Mapping[str, Any]) -> int: ...

    def delete(self, table: str, ids: Sequence[Any]) -> int: ...


# ---------------------------------------------------------------------------
# Value coercion at the SQL boundary
# ---------------------------------------------------------------------------


def _to_decimal_2(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    try:
        d = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _to_date(raw: Any) -> date | None:
    if raw is None or isinstance(raw, date):
        return raw
    s = str(raw).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def _value_in(column_type: Any, value: Any) -> Any:
    if isinstance(column_type, Date):
        return _to_date(value)
    if isinstance(column_type, Numeric) and isinstance(value, int | float | str | Decimal):
        return _to_decimal_2(value)
    return value


def _value_out(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


class SqlRecordStore:
    """:class:`RecordStore` backed by the ``db`` ORM models.

    Parameters
    ----------
    database_url:
        Optional URL override; otherwise ``db.client`` resolves it from the
        environment. Each call opens its own session, so the store is safe to
        call from the batch thread pool.
    """

    _MODELS: dict[str, type[Base]] = {
        TABLE_TRANSACTIONS: LiTransaction,
        TABLE_SOURCE_RULES: LiSourceRule,
        TABLE_MERCHANT_RULES: LiMerchantRule,
    }

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url

    # ---- helpers -------------------------------------------------------

    def _model(self, table: str) -> Any:
        try:
            return self._MODELS[table]
        except KeyError:
            raise ValueError(f"unknown table: {table!r}") from None

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        try:
            with session_scope(database_url=self._database_url) as session:
                return fn(session)
        except SQLAlchemyError as e:
            _logger.warning("store:failed operation=%s error=%s", operation, e)
            raise RemoteOperationError(operation, [e]) from e

    def _row_in(self, model: Any, record: Mapping[str, Any]) -> dict[str, Any]:
        columns = model.__table__.columns
        out: dict[str, Any] = {}
        for key, value in record.items():
            if key not in columns:
                raise ValueError(f"unknown column for {model.__tablename__}: {key!r}")
            out[key] = _value_in(columns[key].type, value)
        return out

    @staticmethod
    def _row_out(row: Any) -> Record:
        return {c.key: _value_out(getattr(row, c.key)) for c in row.__table__.columns}

    def _where(self, model: Any, filters: Filters | None) -> list[Any]:
        clauses: list[Any] = []
        for key, value in (filters or {}).items():
            col = getattr(model, key)
            if value is None:
                clauses.append(col.is_(None))
            elif isinstance(value, list | tuple | set | frozenset):
                clauses.append(col.in_([_value_in(col.type, v) for v in value]))
            else:
                clauses.append(col == _value_in(col.type, value))
        return clauses

    # ---- RecordStore ---------------------------------------------------

    def select(
        self, table: str, filters: Filters | None = None, *, order_by: Sequence[str] = ()
    ) -> list[Record]:
        model = self._model(table)
        stmt = select(model).where(*self._where(model, filters))
        order_cols = [getattr(model, c) for c in order_by] or [model.id]
        stmt = stmt.order_by(*order_cols)

        def _do(session: Session) -> list[Record]:
            return [self._row_out(r) for r in session.execute(stmt).scalars().all()]

        return self._run(f"{table}.select", _do)

    def batch_select(self, table: str, column: str, values: Sequence[Any]) -> list[Record]:
        if not values:
            return []
        model = self._model(table)
        stmt = select(model).where(getattr(model, column).in_(list(values)))

        def _do(session: Session) -> list[Record]:
            return [self._row_out(r) for r in session.execute(stmt).scalars().all()]

        return self._run(f"{table}.batch_select", _do)

    def insert(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        if not records:
            return 0
        model = self._model(table)
        rows = [self._row_in(model, r) for r in records]

        def _do(session: Session) -> int:
            session.execute(insert(model), rows)
            return len(rows)

        return self._run(f"{table}.insert", _do)

    def upsert(
        self, table: str, records: Sequence[Mapping[str, Any]], conflict_key: Sequence[str]
    ) -> int:
        if not records:
            return 0
        model = self._model(table)
        rows = [self._row_in(model, r) for r in records]
        key = set(conflict_key)
        updatable = sorted({c for r in rows for c in r} - key - {"id", "created_at"})

        def _do(session: Session) -> int:
            dialect = session.get_bind().dialect.name
            if dialect == "postgresql":
                stmt = pg_insert(model).values(rows)
            elif dialect == "sqlite":
                stmt = sqlite_insert(model).values(rows)
            else:  # pragma: no cover - only PostgreSQL and SQLite are deployed
                raise NotImplementedError(f"upsert is not supported on {dialect}")
            if updatable:
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(conflict_key),
                    set_={c: stmt.excluded[c] for c in updatable},
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_key))
            session.execute(stmt)
            return len(rows)

        return self._run(f"{table}.upsert", _do)

    def update(self, table: str, ids: Sequence[Any], patch: Mapping[str, Any]) -> int:
        if not ids or not patch:
            return 0
        model = self._model(table)
        values = self._row_in(model, patch)
        if "updated_at" in model.__table__.columns:
            values.setdefault("updated_at", func.now())
        stmt = update(model).where(model.id.in_(list(ids))).values(**values)

        def _do(session: Session) -> int:
            result = session.execute(stmt, execution_options={"synchronize_session": False})
            return int(result.rowcount or 0)

        return self._run(f"{table}.update", _do)

    def delete(self, table: str, ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        model = self._model(table)
        stmt = delete(model).where(model.id.in_(list(ids)))

        def _do(session: Session) -> int:
            result = session.execute(stmt, execution_options={"synchronize_session": False})
            return int(result.rowcount or 0)

        return self._run(f"{table}.delete", _do)


__all__ = [
    "TABLE_TRANSACTIONS",
    "TABLE_SOURCE_RULES",
    "TABLE_MERCHANT_RULES",
    "Filters",
    "Record",
    "RecordStore",
    "SqlRecordStore",
]
