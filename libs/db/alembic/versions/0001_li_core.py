# ruff: noqa: I001
"""Ledger import core tables: categories, transactions and source rules.

Revision ID: 0001_li_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_li_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _rule_table(name: str, pattern_col: str, clean_col: str, *constraints: sa.Constraint) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(pattern_col, sa.Text(), nullable=False, unique=True),
        sa.Column(clean_col, sa.Text(), nullable=False),
        sa.Column("auto_category", sa.String(), nullable=True),
        sa.Column("auto_sub_category", sa.String(), nullable=True),
        sa.Column("auto_recurring", sa.String(), nullable=True),
        sa.Column("auto_planned", sa.Boolean(), nullable=True),
        sa.Column("auto_budget", sa.String(), nullable=True),
        sa.Column("skip_triage", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("match_mode", sa.String(), nullable=False, server_default="fuzzy"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        *constraints,
    )


def upgrade() -> None:
    # li_categories: parent '' marks a top-level category
    op.create_table(
        "li_categories",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("parent", sa.String(), nullable=False, server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("parent", "name", name="uq_li_categories_parent_name"),
    )

    # Default category for rows no rule or file column categorizes.
    op.bulk_insert(
        sa.table(
            "li_categories",
            sa.column("name", sa.String()),
            sa.column("parent", sa.String()),
        ),
        [{"name": "Other", "parent": ""}],
    )

    # li_transactions
    op.create_table(
        "li_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("fingerprint", sa.String(16), nullable=False),
        sa.Column("import_batch", sa.String(32), nullable=True),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("descriptor", sa.Text(), nullable=False),
        sa.Column("clean_source", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("account", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("sub_category", sa.String(), nullable=True),
        sa.Column("planned", sa.Boolean(), nullable=True),
        sa.Column("recurring", sa.String(), nullable=False, server_default="N/A"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("excluded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(), nullable=False, server_default="Pending Triage"),
        sa.Column("confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column(
            "needs_date_verification", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status in ('Pending Triage','Pending Reconciliation','Reconciled',"
            "'Complete','Excluded')",
            name="ck_li_tx_status",
        ),
        sa.CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 1)",
            name="ck_li_tx_confidence",
        ),
    )
    op.create_index("ix_li_transactions_fingerprint", "li_transactions", ["fingerprint"])
    op.create_index("ix_li_transactions_clean_source", "li_transactions", ["clean_source"])

    # Rules: current table plus the legacy one still read and written.
    _rule_table(
        "li_source_rules",
        "source_name",
        "clean_source_name",
        sa.CheckConstraint(
            "match_mode in ('exact','fuzzy')", name="ck_li_source_rules_match_mode"
        ),
    )
    _rule_table("li_merchant_rules", "merchant_name", "clean_merchant_name")


def downgrade() -> None:
    op.drop_table("li_merchant_rules")
    op.drop_table("li_source_rules")
    op.drop_index("ix_li_transactions_clean_source", table_name="li_transactions")
    op.drop_index("ix_li_transactions_fingerprint", table_name="li_transactions")
    op.drop_table("li_transactions")
    op.drop_table("li_categories")
