"""Bounded-concurrency, order-preserving map over a thread pool.

Store calls (fingerprint lookups, rule-apply updates, record inserts,
category creation) are issued as batches that may run concurrently with each
other inside one step. :func:`p_map` runs at most ``concurrency`` mapper
calls at a time and returns results in input order.

Error modes
-----------
- ``stop_on_error=True`` (default): the first failure propagates and work
  that has not started yet is cancelled.
- ``stop_on_error=False``: every call runs; failures are raised together as
  an ``ExceptionGroup``.
- ``return_exceptions=True``: every call runs; failures are returned in
  place of their result so callers can count partial success.

With ``timeout`` set, :class:`TimeoutError` is raised once that many seconds
pass before every call has finished. Calls already running are left to their
worker threads; calls not yet started are cancelled.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    return_exceptions: bool = False,
    timeout: float | None = None,
) -> list[OutT | Exception]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` in flight."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")
    deadline = None if timeout is None else time.monotonic() + timeout

    it = enumerate(iterable)
    results: dict[int, OutT | Exception] = {}
    errors: list[Exception] = []
    future_to_idx: dict[Future[OutT], int] = {}
    fail_fast = stop_on_error and not return_exceptions

    def _submit(pool: ThreadPoolExecutor) -> Future[OutT] | None:
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    pool = ThreadPoolExecutor(max_workers=concurrency)
    finished = False
    try:
        active: set[Future[OutT]] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(
                        f"p_map: {len(active)} call(s) still running after {timeout:g}s"
                    )
            done, active = wait(active, timeout=remaining, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if fail_fast:
                        raise
                    if return_exceptions:
                        results[idx] = e
                    else:
                        errors.append(e)
            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)
        finished = True
    finally:
        # Never block on calls still in flight after a failure or timeout.
        pool.shutdown(wait=finished, cancel_futures=not finished)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in sorted(results)]


__all__ = ["p_map"]
