"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger import tables used by ``ledger_import``.
"""

from .finance import Base, LiCategory, LiMerchantRule, LiSourceRule, LiTransaction

__all__ = [
    "Base",
    "LiCategory",
    "LiTransaction",
    "LiSourceRule",
    "LiMerchantRule",
]
