from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# BIGINT on PostgreSQL; INTEGER on SQLite so the rowid autoincrements.
_BigId = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: li_categories
# ---------------------------


class LiCategory(Base):
    """Two-level category taxonomy.

    Top-level categories have ``parent = ''``; sub-categories carry the name of
    their parent. Names are unique per parent; case-insensitive duplicates are
    rejected by the service layer (``ledger_import.categories``).
    """

    __tablename__ = "li_categories"

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    parent: Mapped[str] = mapped_column(String, nullable=False, server_default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (UniqueConstraint("parent", "name", name="uq_li_categories_parent_name"),)


# ---------------------------
# Core: li_transactions
# ---------------------------


class LiTransaction(Base):
    __tablename__ = "li_transactions"

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    # Advisory duplicate key; not unique because operators may knowingly
    # import a row whose fingerprint already exists.
    fingerprint: Mapped[str] = mapped_column(String(16), nullable=False)
    import_batch: Mapped[str | None] = mapped_column(String(32), nullable=True)
    date: Mapped[date | None] = mapped_column(Date, nullable=True)
    descriptor: Mapped[str] = mapped_column(Text, nullable=False)
    clean_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    account: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String, nullable=True)
    planned: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    recurring: Mapped[str] = mapped_column(String, nullable=False, server_default="N/A")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    excluded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, server_default="Pending Triage"
    )
    confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    needs_date_verification: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_li_transactions_fingerprint", "fingerprint"),
        Index("ix_li_transactions_clean_source", "clean_source"),
        CheckConstraint(
            "status in ('Pending Triage','Pending Reconciliation','Reconciled',"
            "'Complete','Excluded')",
            name="ck_li_tx_status",
        ),
        CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 1)",
            name="ck_li_tx_confidence",
        ),
    )


# ---------------------------
# Rules: li_source_rules (current) and li_merchant_rules (legacy naming)
# ---------------------------


class LiSourceRule(Base):
    __tablename__ = "li_source_rules"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    source_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    clean_source_name: Mapped[str] = mapped_column(Text, nullable=False)
    auto_category: Mapped[str | None] = mapped_column(String, nullable=True)
    auto_sub_category: Mapped[str | None] = mapped_column(String, nullable=True)
    auto_recurring: Mapped[str | None] = mapped_column(String, nullable=True)
    auto_planned: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    # 'Exclude' marks matched transactions as excluded from budgets.
    auto_budget: Mapped[str | None] = mapped_column(String, nullable=True)
    skip_triage: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    match_mode: Mapped[str] = mapped_column(String, nullable=False, server_default="fuzzy")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("match_mode in ('exact','fuzzy')", name="ck_li_source_rules_match_mode"),
    )


class LiMerchantRule(Base):
    """Legacy rule table; read and written alongside :class:`LiSourceRule`."""

    __tablename__ = "li_merchant_rules"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    merchant_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    clean_merchant_name: Mapped[str] = mapped_column(Text, nullable=False)
    auto_category: Mapped[str | None] = mapped_column(String, nullable=True)
    auto_sub_category: Mapped[str | None] = mapped_column(String, nullable=True)
    auto_recurring: Mapped[str | None] = mapped_column(String, nullable=True)
    auto_planned: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    auto_budget: Mapped[str | None] = mapped_column(String, nullable=True)
    skip_triage: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    match_mode: Mapped[str] = mapped_column(String, nullable=False, server_default="fuzzy")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


__all__ = [
    "Base",
    "LiCategory",
    "LiTransaction",
    "LiSourceRule",
    "LiMerchantRule",
]
