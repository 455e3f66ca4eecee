from __future__ import annotations

import threading
import time

import pytest

from ledger_import.batching import chunked, run_batches
from ledger_import.errors import RemoteOperationError
from ledger_import.pmap import p_map


def test_chunked() -> None:
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


def test_p_map_preserves_order_and_bounds_concurrency() -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def work(x: int) -> int:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01 * (5 - x % 5))
        with lock:
            active -= 1
        return x * 10

    assert p_map(range(10), work, concurrency=3) == [x * 10 for x in range(10)]
    assert peak <= 3


def test_p_map_error_modes() -> None:
    def boom(x: int) -> int:
        if x % 2:
            raise ValueError(f"odd {x}")
        return x

    with pytest.raises(ValueError):
        p_map([1, 2], boom, concurrency=1)
    with pytest.raises(ExceptionGroup) as info:
        p_map([1, 2, 3], boom, concurrency=2, stop_on_error=False)
    assert len(info.value.exceptions) == 2
    out = p_map([1, 2], boom, concurrency=2, return_exceptions=True)
    assert isinstance(out[0], ValueError) and out[1] == 2
    with pytest.raises(ValueError):
        p_map([1], boom, concurrency=0)


def test_run_batches_aggregates_failures_with_partial_counts() -> None:
    def write(batch: list[int]) -> int:
        if 3 in batch:
            raise RuntimeError("write failed")
        return len(batch)

    batches = list(chunked([1, 2, 3, 4, 5, 6], 2))
    with pytest.raises(RemoteOperationError) as info:
        run_batches("transactions.insert", batches, write, concurrency=2, count=int)
    err = info.value
    assert err.operation == "transactions.insert"
    assert len(err.failures) == 1
    assert err.succeeded == 4

    assert run_batches("noop", [[1], [2, 3]], write, concurrency=2) == [1, 2]
    assert run_batches("noop", [], write, concurrency=2) == []


def test_p_map_timeout_does_not_wait_for_stuck_calls() -> None:
    release = threading.Event()

    def stuck(x: int) -> int:
        if x == 1:
            release.wait(2.0)
        return x

    began = time.monotonic()
    try:
        with pytest.raises(TimeoutError):
            p_map([0, 1, 2], stuck, concurrency=2, timeout=0.05)
        assert time.monotonic() - began < 1.0
    finally:
        release.set()
    assert p_map([0, 2], stuck, concurrency=2, timeout=1.0) == [0, 2]


def test_run_batches_timeout_propagates() -> None:
    def slow(batch: list[int]) -> int:
        time.sleep(0.3)
        return len(batch)

    with pytest.raises(TimeoutError):
        run_batches("transactions.insert", [[1], [2]], slow, concurrency=2, timeout=0.05)
