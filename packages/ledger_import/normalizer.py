"""Descriptor normalization ("source cleaning").

A bank descriptor such as ``"VISA/DANKORT NETTO 1234 KØBENHAVN"`` is reduced to
a default candidate name (``"NETTO"``) by skipping noise tokens: card schemes,
payment processors and short fragments. The candidate is only a default; a
human may override it when creating a rule.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import partial

# Card-scheme, payment-processor and bank-boilerplate tokens seen in Danish and
# international exports. User filters are applied on top of these.
BASELINE_NOISE_FILTERS: tuple[str, ...] = (
    "MC/VISA",
    "VISA/DANKORT",
    "DANKORT",
    "NETBANK",
    "VISA",
    "MASTERCARD",
    "OVERFØRSEL",
    "DEPOT",
    "DK",
    "K",
    "CARD",
    "KØB",
    "AUT.",
    "ONLINE",
    "WWW.",
    "DK-NOTA",
    "SUMUP *",
    "IZ *",
    "SQUARE *",
    "NETS",
    "DANKORT-NOTA",
    "BETALING",
    "Dankort",
    "Forretning:",
    "MobilePay:",
)


def _clean_filter(token: str) -> str:
    return token.upper().replace("*", "").strip()


def compile_noise_filters(extra: Iterable[str] = ()) -> frozenset[str]:
    """Return the upper-cased, wildcard-free filter set (baseline + ``extra``)."""

    cleaned = (_clean_filter(f) for f in (*BASELINE_NOISE_FILTERS, *extra))
    return frozenset(f for f in cleaned if f)


def _is_noise_token(token: str, filters: frozenset[str]) -> bool:
    if len(token) <= 1:
        return True
    word = token.upper()
    if word in filters:
        return True
    return any(word.startswith(f + "-") or word.endswith("-" + f) for f in filters)


def normalize_descriptor(raw: str, noise_filters: Iterable[str] = ()) -> str:
    """Return the first non-noise token of ``raw``.

    Falls back to the first token when every token is noise, and to ``raw``
    itself when it has no tokens. Applying the function to its own output
    returns the output unchanged.

    Parameters
    ----------
    raw:
        Raw descriptor text from the bank export.
    noise_filters:
        Additional user-configured noise tokens; ``*`` wildcards are ignored
        and comparison is case-insensitive.
    """

    return _first_candidate(raw, compile_noise_filters(noise_filters))


def _first_candidate(raw: str, filters: frozenset[str]) -> str:
    tokens = raw.split()
    if not tokens:
        return raw
    for token in tokens:
        if not _is_noise_token(token, filters):
            return token
    return tokens[0]


def make_normalizer(noise_filters: Iterable[str] = ()) -> Callable[[str], str]:
    """Return a normalizer bound to a precompiled filter set (for hot loops)."""

    return partial(_first_candidate, filters=compile_noise_filters(noise_filters))


def is_noise_pattern(pattern: str, noise_filters: Iterable[str] = ()) -> bool:
    """True when a proposed rule pattern is itself a noise filter.

    A pattern equal to a filter, or starting with a filter followed by a
    space, would match nearly every descriptor from that card scheme.
    """

    p = pattern.strip().upper()
    if not p:
        return True
    filters = compile_noise_filters(noise_filters)
    return any(p == f or p.startswith(f + " ") for f in filters)


__all__ = [
    "BASELINE_NOISE_FILTERS",
    "compile_noise_filters",
    "normalize_descriptor",
    "make_normalizer",
    "is_noise_pattern",
]
