# concurrency.py
# SPDX-License-Identifier: MIT
"""Worker-thread helpers used by the ingestion scheduler."""
from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TypeVar

from .log import get_logger

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

__all__ = [
    "available_parallelism",
    "resolve_worker_count",
    "run_workers",
]


def available_parallelism() -> int:
    """Number of CPUs this process may use (at least 1)."""
    try:
        return max(1, len(os.sched_getaffinity(0)))
    except (AttributeError, OSError):
        return max(1, os.cpu_count() or 1)


def resolve_worker_count(configured: int | None, *, hardware: int | None = None) -> int:
    """Clamp a configured concurrency ceiling to ``1..hardware``.

    Zero, negative, or missing values mean a single worker.
    """
    limit = hardware if hardware is not None else available_parallelism()
    wanted = configured if configured and configured > 0 else 1
    return max(1, min(wanted, max(1, limit)))


def run_workers(
    jobs: Sequence[T],
    fn: Callable[[T], R],
    on_result: Callable[[R], None],
    *,
    on_error: Callable[[BaseException], None] | None = None,
    thread_name_prefix: str = "exifpipe",
) -> None:
    """Run ``fn`` over every job on its own thread and hand back results.

    Callers size ``jobs`` with :func:`resolve_worker_count`, so each job gets
    a dedicated thread. ``on_result`` and ``on_error`` run on the calling
    thread in completion order. A failed job never cancels the others.

    Args:
        jobs (Sequence[T]): Work items, one per thread.
        fn (Callable[[T], R]): Worker function.
        on_result (Callable[[R], None]): Receives each successful result.
        on_error (Callable[[BaseException], None] | None): Receives the
            exception of each failed job; failures are logged when omitted.
        thread_name_prefix (str): Prefix for worker thread names.
    """
    if not jobs:
        return
    with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix=thread_name_prefix) as pool:
        futures = [pool.submit(fn, job) for job in jobs]
        for fut in as_completed(futures):
            exc = fut.exception()
            if exc is None:
                on_result(fut.result())
            elif on_error is not None:
                on_error(exc)
            else:
                log.error("Worker failed: %s", exc)
