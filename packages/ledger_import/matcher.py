"""Apply stored rules to raw descriptors.

Precedence, first match wins across the whole rule set:

1. case-insensitive equality between the raw descriptor and the pattern;
2. equality between the normalized descriptor and the pattern;
3. fuzzy rules only: the descriptor contains the pattern, or the pattern
   contains the normalized descriptor.

Exact-mode rules are only eligible for tiers 1 and 2.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from .models import (
    STATUS_COMPLETE,
    STATUS_PENDING_TRIAGE,
    MatchMode,
    MatchResult,
    SourceRule,
    TransactionRecord,
    TriageStatus,
)
from .normalizer import make_normalizer


def _key(s: str | None) -> str:
    return " ".join((s or "").split()).lower()


def rule_tier(rule: SourceRule, descriptor: str, normalized: str) -> int | None:
    """Return the precedence tier at which ``rule`` matches, or ``None``."""

    pattern = _key(rule.pattern)
    raw = _key(descriptor)
    norm = _key(normalized)
    if raw == pattern:
        return 1
    if norm and norm == pattern:
        return 2
    if rule.match_mode == "fuzzy":
        if pattern in raw or (len(norm) > 1 and norm in pattern):
            return 3
    return None


def _status_for(rule: SourceRule) -> TriageStatus:
    categorized = bool(rule.category and rule.sub_category)
    if rule.skip_triage and (categorized or rule.excluded):
        return STATUS_COMPLETE
    return STATUS_PENDING_TRIAGE


def match_descriptor(
    descriptor: str,
    rules: Sequence[SourceRule],
    *,
    noise_filters: Iterable[str] = (),
    normalizer: Callable[[str], str] | None = None,
) -> MatchResult:
    """Find the best rule for ``descriptor``.

    Without a match the result carries the normalizer's default candidate,
    ``Pending Triage`` status and zero confidence. A match has confidence 1.0
    and is ``Complete`` only when the rule skips triage and either carries
    both category and sub-category or excludes the transaction.

    Parameters
    ----------
    normalizer:
        Optional precompiled normalizer (see
        :func:`ledger_import.normalizer.make_normalizer`); when given,
        ``noise_filters`` is ignored.
    """

    normalize = normalizer or make_normalizer(noise_filters)
    normalized = normalize(descriptor)

    best: tuple[int, SourceRule] | None = None
    for rule in rules:
        tier = rule_tier(rule, descriptor, normalized)
        if tier is None:
            continue
        # Rule order breaks ties inside a tier.
        if best is None or tier < best[0]:
            best = (tier, rule)
            if tier == 1:
                break

    if best is None:
        return MatchResult(clean_name=normalized, status=STATUS_PENDING_TRIAGE, confidence=0.0)
    tier, rule = best
    return MatchResult(
        clean_name=rule.clean_name,
        status=_status_for(rule),
        confidence=1.0,
        rule=rule,
        tier=tier,
    )


# ---------------------------------------------------------------------------
# Similar-transaction lookup used while editing rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SimilarTransaction:
    transaction: TransactionRecord
    score: int
    match_type: Literal["direct", "fuzzy"] = "fuzzy"


def is_significant_amount_difference(amount: float, average: float) -> bool:
    """True when ``amount`` deviates from ``average`` by 5% or more."""

    if average == 0:
        return amount != 0
    return abs(abs(amount) - abs(average)) / abs(average) >= 0.05


def find_similar_transactions(
    descriptor: str,
    amount: float | None,
    history: Iterable[TransactionRecord],
    *,
    match_mode: MatchMode = "fuzzy",
    noise_filters: Iterable[str] = (),
    limit: int | None = None,
) -> list[SimilarTransaction]:
    """Score history rows by how closely they resemble ``descriptor``.

    Scores: 100 for the same raw descriptor (a ``direct`` match), 90 when the
    row's raw or normalized descriptor equals the normalized ``descriptor``,
    and, in ``fuzzy`` mode only, 60 when either normalized form contains the
    other. A named match gains 10 when the absolute amounts differ by less
    than 0.01 and 5 when by less than 0.05.

    In ``exact`` mode only direct matches and rows whose raw descriptor equals
    the normalized ``descriptor`` are kept. Direct matches sort first, then
    everything by descending score.
    """

    normalize = make_normalizer(noise_filters)
    raw = _key(descriptor)
    norm = _key(normalize(descriptor))
    current = abs(amount) if amount is not None else 0.0
    scored: list[SimilarTransaction] = []
    for tx in history:
        tx_raw = _key(_str(tx.get("descriptor")))
        tx_norm = _key(_str(tx.get("clean_source")) or normalize(_str(tx.get("descriptor"))))
        match_type: Literal["direct", "fuzzy"] = "fuzzy"
        if raw and tx_raw == raw:
            score = 100
            match_type = "direct"
        elif norm and norm in (tx_raw, tx_norm):
            score = 90
        elif match_mode == "fuzzy" and norm and tx_norm and (norm in tx_norm or tx_norm in norm):
            score = 60
        else:
            continue
        if match_mode == "exact" and match_type != "direct" and tx_raw != norm:
            continue
        tx_amount = tx.get("amount")
        if current > 0 and isinstance(tx_amount, int | float):
            diff = abs(abs(float(tx_amount)) - current)
            if diff < 0.01:
                score += 10
            elif diff < 0.05:
                score += 5
        scored.append(SimilarTransaction(transaction=tx, score=score, match_type=match_type))
    scored.sort(key=lambda s: (s.match_type == "direct", s.score), reverse=True)
    return scored[:limit] if limit is not None else scored


def _str(v: Any) -> str:
    return v if isinstance(v, str) else ""


__all__ = [
    "rule_tier",
    "match_descriptor",
    "SimilarTransaction",
    "find_similar_transactions",
    "is_significant_amount_difference",
]
