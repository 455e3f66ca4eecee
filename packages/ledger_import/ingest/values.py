"""Locale-aware cell value parsers.

All parsers are total: they return ``None`` (or a documented default) on
unparseable input instead of raising, so callers decide the fallback and can
attach a per-row warning.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Literal

from ..models import Recurrence

type DateFormat = Literal["auto", "dd-mm-yyyy", "mm-dd-yyyy", "yyyy-mm-dd"]
type AmountLocale = Literal["auto", "eu", "us"]

# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_YMD_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?!\d)")
_DMY_RE = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{4}|\d{2})(?!\d)")

# Last-resort textual layouts, tried against the value with commas removed.
_TEXTUAL_DATE_FORMATS: tuple[str, ...] = (
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %y",
    "%Y%m%d",
)


def _build_date(year: int, month: int, day: int) -> str | None:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _parse_explicit(s: str, fmt: DateFormat) -> str | None:
    if fmt == "yyyy-mm-dd":
        m = _YMD_RE.match(s)
        if m:
            return _build_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        return None
    m = _DMY_RE.match(s)
    if not m:
        return None
    a, b, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    if fmt == "dd-mm-yyyy":
        return _build_date(year, b, a)
    return _build_date(year, a, b)


def parse_date(raw: str | None, fmt: DateFormat = "auto") -> str | None:
    """Return ``raw`` as an ISO ``YYYY-MM-DD`` string, or ``None``.

    Parameters
    ----------
    raw:
        Cell text. Time-of-day suffixes (``2024-01-05T10:00``) are ignored.
    fmt:
        Format hint. An explicit hint is tried first; when it does not fit the
        value, auto detection runs as a fallback. Auto detection prefers
        year-first ISO layouts, then day-first numeric layouts (two-digit
        years land in the 2000s), then a few textual month layouts.
    """

    if raw is None:
        return None
    s = raw.strip()
    if not s:
        return None

    if fmt != "auto":
        parsed = _parse_explicit(s, fmt)
        if parsed is not None:
            return parsed

    m = _YMD_RE.match(s)
    if m:
        return _build_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    m = _DMY_RE.match(s)
    if m:
        return _build_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    text = " ".join(s.replace(",", " ").split())
    for layout in _TEXTUAL_DATE_FORMATS:
        try:
            return datetime.strptime(text, layout).date().isoformat()
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_AMOUNT_JUNK_RE = re.compile(r"[^\d.,\-]")


def _auto_single_separator(clean: str, sep: str) -> str:
    """Resolve a number that uses only one separator character.

    Repeated separators are thousands separators. A single separator is a
    thousands separator only when exactly three digits follow it and the
    integer part is a plain 1-3 digit group (``1,000``, ``12.500``);
    otherwise it is the decimal separator (``1,5``, ``99.00``, ``0.125``).
    """

    if clean.count(sep) > 1:
        return clean.replace(sep, "")
    head, _, tail = clean.partition(sep)
    if len(tail) == 3 and 1 <= len(head) <= 3 and not head.startswith("0"):
        return head + tail
    return f"{head}.{tail}"


def parse_amount(raw: str | None, locale: AmountLocale = "auto") -> float | None:
    """Return the signed amount in ``raw`` or ``None`` when unparseable.

    Currency symbols, letters and whitespace are dropped. Parentheses and a
    trailing minus mark a negative value. When both ``,`` and ``.`` appear,
    the one that appears last is the decimal separator regardless of
    ``locale``; otherwise ``"us"`` treats commas as thousands separators,
    ``"eu"`` treats dots as thousands separators, and ``"auto"`` applies
    :func:`_auto_single_separator`.
    """

    if raw is None:
        return None
    s = raw.strip()
    if not s:
        return None

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()
    if s.endswith("-"):
        negative = True
        s = s[:-1]

    clean = _AMOUNT_JUNK_RE.sub("", s).rstrip(".,")
    if clean.startswith("-"):
        negative = True
    clean = clean.replace("-", "")
    if not any(ch.isdigit() for ch in clean):
        return None

    last_comma = clean.rfind(",")
    last_dot = clean.rfind(".")
    if last_comma > -1 and last_dot > -1:
        if last_comma < last_dot:
            normalized = clean.replace(",", "")
        else:
            normalized = clean.replace(".", "").replace(",", ".")
    elif locale == "us":
        normalized = clean.replace(",", "")
    elif locale == "eu":
        normalized = clean.replace(".", "").replace(",", ".")
    elif last_comma > -1:
        normalized = _auto_single_separator(clean, ",")
    elif last_dot > -1:
        normalized = _auto_single_separator(clean, ".")
    else:
        normalized = clean

    try:
        value = float(normalized)
    except ValueError:
        return None
    return -abs(value) if negative else value


def format_amount(amount: float, locale: AmountLocale = "us") -> str:
    """Format ``amount`` with two decimals in the given locale.

    ``"us"`` -> ``-1,234.56``; ``"eu"`` -> ``-1.234,56``; ``"auto"`` emits no
    thousands separators (``-1234.56``).
    """

    if locale == "auto":
        return f"{amount:.2f}"
    us = f"{amount:,.2f}"
    if locale == "us":
        return us
    return us.replace(",", "\x00").replace(".", ",").replace("\x00", ".")


# ---------------------------------------------------------------------------
# Booleans and recurrence
# ---------------------------------------------------------------------------

_TRUE_VALUES = frozenset({"true", "1", "yes", "y", "on", "checked", "x"})

_RECURRENCE_ALIASES: dict[str, Recurrence] = {
    "weekly": "Weekly",
    "week": "Weekly",
    "ugentlig": "Weekly",
    "monthly": "Monthly",
    "month": "Monthly",
    "månedlig": "Monthly",
    "maanedlig": "Monthly",
    "quarterly": "Quarterly",
    "quarter": "Quarterly",
    "kvartalsvis": "Quarterly",
    "kvartal": "Quarterly",
    "bi-annually": "Bi-annually",
    "biannually": "Bi-annually",
    "bi-annual": "Bi-annually",
    "semi-annually": "Bi-annually",
    "semiannual": "Bi-annually",
    "halvårlig": "Bi-annually",
    "annually": "Annually",
    "annual": "Annually",
    "yearly": "Annually",
    "årlig": "Annually",
    "one-off": "One-off",
    "one off": "One-off",
    "oneoff": "One-off",
    "once": "One-off",
    "engangs": "One-off",
    "n/a": "N/A",
}


def coerce_bool(value: object) -> bool:
    """Truthy cell text (``yes``, ``x``, ``1``, ...) -> ``True``; else ``False``."""

    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def lookup_recurrence(value: object) -> Recurrence | None:
    """Map free text to the closed recurrence vocabulary, ``None`` when unknown."""

    if value is None:
        return None
    key = " ".join(str(value).strip().lower().split())
    return _RECURRENCE_ALIASES.get(key)


def coerce_recurrence(value: object) -> Recurrence:
    """Like :func:`lookup_recurrence` but unknown text becomes ``N/A``."""

    return lookup_recurrence(value) or "N/A"


__all__ = [
    "DateFormat",
    "AmountLocale",
    "parse_date",
    "parse_amount",
    "format_amount",
    "coerce_bool",
    "coerce_recurrence",
    "lookup_recurrence",
]
