"""Helpers for issuing store calls as bounded, concurrent batches.

A batch step either completes fully or raises one
:class:`~ledger_import.errors.RemoteOperationError` that aggregates every
failed batch and reports how many batches succeeded; callers never observe a
half-finished step silently.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from typing import TypeVar

from .errors import RemoteOperationError
from .logging_setup import get_logger
from .pmap import p_map

T = TypeVar("T")
B = TypeVar("B")
R = TypeVar("R")

_logger = get_logger("ledger_import.batching")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of ``items`` with at most ``size`` elements."""

    if size < 1:
        raise ValueError("batch size must be a positive integer")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _flatten(exc: BaseException) -> list[BaseException]:
    if isinstance(exc, RemoteOperationError) and exc.failures:
        return list(exc.failures)
    return [exc]


def run_batches(
    operation: str,
    batches: Sequence[B],
    fn: Callable[[B], R],
    *,
    concurrency: int,
    count: Callable[[R], int] | None = None,
    timeout: float | None = None,
) -> list[R]:
    """Run ``fn`` over every batch (up to ``concurrency`` at once).

    Returns the per-batch results in batch order. When any batch fails, raises
    :class:`RemoteOperationError` for ``operation`` carrying all failures and
    ``succeeded`` set to the number of batches that completed, or to the sum
    of ``count(result)`` over completed batches when ``count`` is given (e.g.
    rows written).

    ``timeout`` bounds the whole step in seconds; when it passes,
    :class:`TimeoutError` propagates unchanged and batches still running are
    abandoned.
    """

    if not batches:
        return []
    try:
        outcomes = p_map(
            batches, fn, concurrency=concurrency, return_exceptions=True, timeout=timeout
        )
    except TimeoutError:
        _logger.warning(
            "batches:timeout operation=%s batches=%d timeout=%s", operation, len(batches), timeout
        )
        raise
    failures: list[BaseException] = []
    results: list[R] = []
    for outcome in outcomes:
        if isinstance(outcome, Exception):
            failures.extend(_flatten(outcome))
        else:
            results.append(outcome)
    if failures:
        _logger.warning(
            "batches:failed operation=%s failed=%d succeeded=%d",
            operation,
            len(batches) - len(results),
            len(results),
        )
        succeeded = sum(count(r) for r in results) if count else len(results)
        raise RemoteOperationError(operation, failures, succeeded=succeeded)
    _logger.debug("batches:done operation=%s batches=%d", operation, len(batches))
    return results


__all__ = ["chunked", "run_batches"]
