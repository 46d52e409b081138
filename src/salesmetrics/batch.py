"""Bounded fan-out for per-user and per-period batches.

each unit runs in a thread pool; a unit that raises is logged and replaced by
a fallback value instead of taking the whole batch down. results come back in
input order no matter which unit finishes first.
"""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

from salesmetrics.errors import BatchCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_SKIPPED = object()


class CancellationToken:
    """Set from any thread to stop a batch.

    units that haven't started are skipped. units already running are only
    cut short through callbacks, e.g. an executor's interrupt(); without one
    they finish and their results are discarded with the rest of the batch.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    def add_callback(self, fn: Callable[[], None]) -> None:
        """Call fn on cancel. runs right away if the token is already set."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(fn)
                return
        fn()

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            fn()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def run_batch(
    units: Sequence[T],
    fn: Callable[[T], R],
    fallback: Callable[[T, Exception], R],
    *,
    max_workers: int = 8,
    cancel: CancellationToken | None = None,
    label: str = "unit",
) -> list[R]:
    """Run fn over units concurrently and return results in input order.

    Args:
        units: work items, e.g. user ids or periods.
        fn: computes one unit. runs on a worker thread.
        fallback: builds the result for a unit whose fn raised.
        max_workers: upper bound on concurrent units.
        cancel: once set, units that haven't started are skipped and the
            batch raises BatchCancelled.
        label: what a unit is, for log lines.

    Raises:
        BatchCancelled: if the token was set before the batch finished.
    """
    if not units:
        return []

    start = time.perf_counter()
    failures = 0
    failures_lock = threading.Lock()

    def _safe_run(unit: T):
        nonlocal failures
        if cancel is not None and cancel.cancelled:
            return _SKIPPED
        try:
            return fn(unit)
        except Exception as e:
            logger.warning("%s %s failed, falling back: %s", label, unit, e)
            with failures_lock:
                failures += 1
            return fallback(unit, e)

    workers = max(1, min(max_workers, len(units)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="salesmetrics") as pool:
        results = list(pool.map(_safe_run, units))

    if cancel is not None and cancel.cancelled:
        raise BatchCancelled(f"Batch of {len(units)} {label}s was cancelled")

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "batch of %d %ss finished in %.1fms (%d failed)",
        len(units),
        label,
        elapsed_ms,
        failures,
        extra={"units": len(units), "failures": failures, "duration_ms": round(elapsed_ms, 2)},
    )
    return results
