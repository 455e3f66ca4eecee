"""Pattern discovery over un-ruled transaction history.

Transactions without a clean name that are not yet ``Complete`` are grouped
by their lower-cased normalized descriptor. Each group is scored and the best
groups are proposed as rule candidates; nothing is persisted until a human
confirms a candidate (:func:`confirm_candidate`).

Confidence
----------
``0.4 * pattern + 0.3 * amount + 0.2 * frequency + 0.1 * consistency`` where

- pattern: 1.0 Monthly, 0.8 Weekly/Quarterly, else 0.4 when seen more than
  twice, else 0;
- amount: 1.0 / 0.8 / 0.5 / 0.2 for average absolute amounts above
  5000 / 1000 / 100 / otherwise;
- frequency: ``min(count / 4, 1)``;
- consistency: share of the group's rows in its dominant category.

Thresholds are fixed module constants.
"""

from __future__ import annotations

import functools
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from .logging_setup import get_logger
from .models import (
    STATUS_COMPLETE,
    MatchMode,
    Recurrence,
    ScanResult,
    SourceRule,
    TransactionRecord,
)
from .normalizer import make_normalizer
from .rules import RuleRepository

_logger = get_logger("ledger_import.scanner")

# Tunables (fixed)
_MAX_CANDIDATES = 20
_TIE_WINDOW = 0.05
_DEFAULT_CATEGORY = "Other"

# (low, high, label) average day-gap buckets, inclusive.
_GAP_BUCKETS: tuple[tuple[float, float, Recurrence], ...] = (
    (25.0, 35.0, "Monthly"),
    (80.0, 100.0, "Quarterly"),
    (6.0, 8.0, "Weekly"),
)

_PATTERN_SCORES: dict[str, float] = {"Monthly": 1.0, "Weekly": 0.8, "Quarterly": 0.8}

# (exclusive lower bound, score), checked in order.
_AMOUNT_SCORES: tuple[tuple[float, float], ...] = ((5000.0, 1.0), (1000.0, 0.8), (100.0, 0.5))
_AMOUNT_FLOOR_SCORE = 0.2

_WEIGHTS = (0.4, 0.3, 0.2, 0.1)


@dataclass(slots=True)
class _Group:
    display_name: str
    count: int = 0
    categories: Counter[str] = field(default_factory=Counter)
    sub_categories: Counter[str] = field(default_factory=Counter)
    dates: list[date] = field(default_factory=list)
    amounts: list[float] = field(default_factory=list)
    planned: int = 0
    excluded: int = 0


def _is_unruled(tx: TransactionRecord) -> bool:
    return not tx.get("clean_source") and tx.get("status") != STATUS_COMPLETE


def _parse_iso(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def guess_recurrence(dates: Sequence[date]) -> Recurrence:
    """Map the average gap between sorted dates to a cadence bucket."""

    if len(dates) < 2:
        return "One-off"
    ordered = sorted(dates)
    gaps = [(b - a).days for a, b in zip(ordered, ordered[1:], strict=False)]
    avg = sum(gaps) / len(gaps)
    for low, high, label in _GAP_BUCKETS:
        if low <= avg <= high:
            return label
    return "One-off"


def _amount_score(avg_amount: float) -> float:
    for bound, score in _AMOUNT_SCORES:
        if avg_amount > bound:
            return score
    return _AMOUNT_FLOOR_SCORE


def score_group(
    *, recurrence: Recurrence, count: int, avg_amount: float, dominant_count: int
) -> float:
    """Weighted confidence in ``[0, 1]`` for one candidate group."""

    if count <= 0:
        return 0.0
    pattern = _PATTERN_SCORES.get(recurrence, 0.4 if count > 2 else 0.0)
    frequency = min(count / 4, 1.0)
    consistency = min(dominant_count / count, 1.0)
    w_pattern, w_amount, w_freq, w_cons = _WEIGHTS
    total = (
        w_pattern * pattern
        + w_amount * _amount_score(avg_amount)
        + w_freq * frequency
        + w_cons * consistency
    )
    return max(0.0, min(total, 1.0))


def _compare(a: ScanResult, b: ScanResult) -> int:
    # Confidence first; near-ties fall back to the larger average amount.
    if abs(a.confidence - b.confidence) > _TIE_WINDOW:
        return -1 if a.confidence > b.confidence else 1
    if a.avg_amount != b.avg_amount:
        return -1 if a.avg_amount > b.avg_amount else 1
    return 0


def _accumulate(
    transactions: Iterable[TransactionRecord], noise_filters: Iterable[str]
) -> dict[str, _Group]:
    normalize = make_normalizer(noise_filters)
    groups: dict[str, _Group] = {}
    for tx in transactions:
        if not _is_unruled(tx):
            continue
        descriptor = str(tx.get("descriptor") or "").strip()
        if not descriptor:
            continue
        name = normalize(descriptor)
        key = name.lower()
        group = groups.get(key)
        if group is None:
            group = groups[key] = _Group(display_name=name)
        group.count += 1
        if category := tx.get("category"):
            group.categories[str(category)] += 1
        if sub_category := tx.get("sub_category"):
            group.sub_categories[str(sub_category)] += 1
        if (d := _parse_iso(tx.get("date"))) is not None:
            group.dates.append(d)
        amount = tx.get("amount")
        if isinstance(amount, int | float) and amount:
            group.amounts.append(abs(float(amount)))
        if tx.get("planned"):
            group.planned += 1
        if tx.get("excluded"):
            group.excluded += 1
    return groups


def _result(group: _Group) -> ScanResult:
    top_category = group.categories.most_common(1)
    top_sub = group.sub_categories.most_common(1)
    category, dominant = top_category[0] if top_category else (_DEFAULT_CATEGORY, 0)
    avg_amount = sum(group.amounts) / len(group.amounts) if group.amounts else 0.0
    recurrence = guess_recurrence(group.dates)
    return ScanResult(
        clean_name=group.display_name,
        count=group.count,
        category=category,
        sub_category=top_sub[0][0] if top_sub else "",
        recurring_guess=recurrence,
        avg_amount=round(avg_amount, 2),
        confidence=score_group(
            recurrence=recurrence,
            count=group.count,
            avg_amount=avg_amount,
            dominant_count=dominant,
        ),
        planned_majority=group.planned > group.count / 2,
        excluded_majority=group.excluded > group.count / 2,
    )


def scan(
    transactions: Iterable[TransactionRecord],
    noise_filters: Iterable[str] = (),
    *,
    limit: int = _MAX_CANDIDATES,
) -> list[ScanResult]:
    """Rank rule candidates from un-ruled history.

    Parameters
    ----------
    transactions:
        Persisted (or draft) transactions as mappings with ``descriptor``,
        ``clean_source``, ``status``, ``category``, ``sub_category``,
        ``date`` (ISO), ``amount``, ``planned`` and ``excluded``.
    noise_filters:
        User noise filters applied on top of the baseline list.
    limit:
        Maximum number of candidates returned (top 20 by default).
    """

    groups = _accumulate(transactions, noise_filters)
    results = [_result(g) for g in groups.values()]
    results.sort(key=functools.cmp_to_key(_compare))
    _logger.info("scan:done groups=%d returned=%d", len(results), min(limit, len(results)))
    return results[:limit]


def confirm_candidate(
    repository: RuleRepository,
    candidate: ScanResult,
    *,
    pattern: str | None = None,
    clean_name: str | None = None,
    category: str | None = None,
    sub_category: str | None = None,
    skip_triage: bool = True,
    match_mode: MatchMode = "fuzzy",
    apply_to_history: bool = False,
    noise_filters: Iterable[str] = (),
    batch_size: int = 50,
    concurrency: int = 4,
) -> tuple[SourceRule, int]:
    """Materialize a confirmed candidate as a rule.

    Every field defaults to the candidate's proposal and may be edited by the
    operator before commit. With ``apply_to_history`` the new rule is
    bulk-applied to matching persisted transactions. Returns the stored rule
    and the number of history rows updated.
    """

    rule = repository.create_rule(
        pattern or candidate.clean_name,
        clean_name or candidate.clean_name,
        category=category if category is not None else candidate.category,
        sub_category=sub_category if sub_category is not None else (candidate.sub_category or None),
        recurring=candidate.recurring_guess,
        planned=candidate.planned_majority,
        excluded=candidate.excluded_majority,
        skip_triage=skip_triage,
        match_mode=match_mode,
    )
    updated = 0
    if apply_to_history:
        updated = repository.apply_to_history(
            rule, noise_filters=noise_filters, batch_size=batch_size, concurrency=concurrency
        )
    return rule, updated


__all__ = ["scan", "guess_recurrence", "score_group", "confirm_candidate"]
