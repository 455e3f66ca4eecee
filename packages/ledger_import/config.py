"""Explicit settings for the import pipeline.

Noise filters, locale hints and batch tunables are passed into the
normalizer, value parsers, scanner and orchestrator as an
:class:`ImportSettings` object rather than read from ambient state. The CLI
builds one from ``LEDGER_IMPORT_*`` environment variables via
:func:`load_settings` (after loading ``.env``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ingest.values import AmountLocale, DateFormat, coerce_bool

_ENV_PREFIX = "LEDGER_IMPORT_"

# env suffix -> (settings field, kind)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "NOISE_FILTERS": ("noise_filters", "list"),
    "DATE_FORMAT": ("date_format", "str"),
    "AMOUNT_LOCALE": ("amount_locale", "str"),
    "DEFAULT_ACCOUNT": ("default_account", "str"),
    "DEFAULT_CATEGORY": ("default_category", "str"),
    "TRUST_CSV_CATEGORIES": ("trust_csv_categories", "bool"),
    "FINGERPRINT_BATCH_SIZE": ("fingerprint_batch_size", "str"),
    "WRITE_BATCH_SIZE": ("write_batch_size", "str"),
    "CONCURRENCY": ("concurrency", "str"),
    "SAVE_TIMEOUT_SEC": ("save_timeout_sec", "str"),
    "PREVIEW_ROWS": ("preview_rows", "str"),
    "KNOWN_ACCOUNTS": ("known_accounts", "list"),
}


class ImportSettings(BaseModel):
    """Settings shared by one import session and the scanner.

    Attributes
    ----------
    noise_filters:
        User-configured noise tokens, applied on top of the built-in baseline.
    date_format / amount_locale:
        Format hints for the value parsers (``"auto"`` infers per value).
    default_account:
        Account assigned to rows when no account column is mapped.
    trust_csv_categories:
        Keep a category present in the CSV instead of the matched rule's.
    fingerprint_batch_size / write_batch_size / concurrency:
        Bounded batch sizes for store calls and how many batches run at once.
    save_timeout_sec:
        Overall watchdog for the saving stage.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    noise_filters: tuple[str, ...] = ()
    date_format: DateFormat = "auto"
    amount_locale: AmountLocale = "auto"
    default_account: str | None = None
    default_category: str = "Other"
    trust_csv_categories: bool = False
    fingerprint_batch_size: int = Field(default=100, ge=1)
    write_batch_size: int = Field(default=50, ge=1)
    concurrency: int = Field(default=4, ge=1)
    save_timeout_sec: float = Field(default=300.0, gt=0)
    preview_rows: int = Field(default=5, ge=1)
    known_accounts: tuple[str, ...] = ()

    @field_validator("noise_filters", "known_accounts")
    @classmethod
    def _drop_blank(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(s for s in v if s.strip())

    @field_validator("default_account")
    @classmethod
    def _blank_account(cls, v: str | None) -> str | None:
        return v or None


def load_settings(
    env: Mapping[str, str] | None = None, **overrides: Any
) -> ImportSettings:
    """Build :class:`ImportSettings` from ``LEDGER_IMPORT_*`` variables.

    List values are comma-separated. Keyword ``overrides`` that are not
    ``None`` win over the environment (used for CLI flags).
    """

    source = os.environ if env is None else env
    data: dict[str, Any] = {}
    for suffix, (name, kind) in _ENV_FIELDS.items():
        raw = source.get(_ENV_PREFIX + suffix)
        if raw is None or not raw.strip():
            continue
        if kind == "list":
            data[name] = tuple(part.strip() for part in raw.split(",") if part.strip())
        elif kind == "bool":
            data[name] = coerce_bool(raw)
        else:
            data[name] = raw.strip()
    data.update({k: v for k, v in overrides.items() if v is not None})
    return ImportSettings.model_validate(data)


__all__ = ["ImportSettings", "load_settings"]
