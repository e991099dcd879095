# scheduler.py
# SPDX-License-Identifier: MIT
"""Bounded-concurrency ingestion: discover files, extract, normalize, emit.

Matched files are dealt round-robin to ``N`` workers, where ``N`` is the
configured ceiling clamped to the usable CPU count. Each worker owns its own
extractor, reads its whole partition in one batch call, and emits a single
:class:`Batch`. Counts travel back as worker return values and are summed on
the scheduler thread, so no counter is shared between workers.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from ..extractors.base import ExtractionResult, Extractor
from .component import END_OF_STREAM, Batch, Message
from .concurrency import resolve_worker_count, run_workers
from .fs import iter_matching_files
from .log import get_logger
from .normalize import Normalizer

log = get_logger(__name__)

T = TypeVar("T")

__all__ = [
    "IngestStats",
    "WorkerResult",
    "IngestionScheduler",
    "partition_round_robin",
]


def partition_round_robin(items: Sequence[T], n: int) -> list[list[T]]:
    """Deal ``items`` into ``n`` disjoint lists, preserving relative order."""
    if n < 1:
        raise ValueError("partition_round_robin requires n >= 1")
    parts: list[list[T]] = [[] for _ in range(n)]
    for index, item in enumerate(items):
        parts[index % n].append(item)
    return parts


@dataclass(slots=True)
class IngestStats:
    """Counters reported at the end of an ingestion run."""

    files_seen: int = 0
    successes: int = 0
    errors: int = 0
    batches: int = 0
    workers: int = 0
    stopped_early: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class WorkerResult:
    worker: int
    files: int
    successes: int
    errors: int


class _Emitter:
    """Serializes emissions and drops everything after end-of-stream."""

    def __init__(self, emit: Callable[[Message], None]) -> None:
        self._emit = emit
        self._lock = threading.Lock()
        self.closed = False
        self.dropped = 0

    def send(self, batch: Batch, *, last: bool = False) -> bool:
        """Emit ``batch``; with ``last``, follow it with end-of-stream atomically."""
        with self._lock:
            if self.closed:
                self.dropped += 1
                return False
            self._emit(batch)
            if last:
                self.closed = True
                self._emit(END_OF_STREAM)
            return True

    def close(self) -> bool:
        """Emit end-of-stream once; return True if this call emitted it."""
        with self._lock:
            if self.closed:
                return False
            self.closed = True
            self._emit(END_OF_STREAM)
            return True


class IngestionScheduler:
    """Run extraction and normalization over a worker pool.

    Args:
        extractor_factory: Builds one extractor per worker.
        normalizer: Shared, stateless normalizer.
        max_workers: Configured concurrency ceiling.
        exit_on_error: End the stream after the first batch with an error.
        file_exts: Extensions to accept; empty accepts all.
        mime_types: MIME patterns to accept; empty accepts all.
        skip_hidden: Skip dotfiles while walking.
        follow_symlinks: Follow directory symlinks while walking.
    """

    def __init__(
        self,
        extractor_factory: Callable[[], Extractor],
        normalizer: Normalizer,
        *,
        max_workers: int = 1,
        exit_on_error: bool = False,
        file_exts: Sequence[str] = (),
        mime_types: Sequence[str] = (),
        skip_hidden: bool = True,
        follow_symlinks: bool = False,
        hardware_parallelism: int | None = None,
    ) -> None:
        self.extractor_factory = extractor_factory
        self.normalizer = normalizer
        self.max_workers = max_workers
        self.exit_on_error = exit_on_error
        self.file_exts = tuple(file_exts)
        self.mime_types = tuple(mime_types)
        self.skip_hidden = skip_hidden
        self.follow_symlinks = follow_symlinks
        self.hardware_parallelism = hardware_parallelism

    def discover(self, roots: Sequence[str]) -> list[str]:
        return list(
            iter_matching_files(
                roots,
                file_exts=self.file_exts,
                mime_types=self.mime_types,
                skip_hidden=self.skip_hidden,
                follow_symlinks=self.follow_symlinks,
            )
        )

    def worker_count(self) -> int:
        return resolve_worker_count(self.max_workers, hardware=self.hardware_parallelism)

    def _extract(self, paths: list[str]) -> list[ExtractionResult]:
        try:
            extractor = self.extractor_factory()
        except Exception as exc:  # noqa: BLE001
            log.error("Could not start extractor: %s", exc)
            return [ExtractionResult.failure(p, f"extractor unavailable: {exc}") for p in paths]
        try:
            results = extractor.extract_batch(paths)
        except Exception as exc:  # noqa: BLE001
            log.warning("Batch extraction failed for %d file(s): %s", len(paths), exc)
            return [ExtractionResult.failure(p, str(exc)) for p in paths]
        finally:
            extractor.close()
        by_path = {result.path: result for result in results}
        # one result per requested path, even if the backend skipped some
        return [by_path.get(p) or ExtractionResult.failure(p, "no result from extractor") for p in paths]

    def run(self, roots: Sequence[str], emit: Callable[[Message], None]) -> IngestStats:
        """Ingest every matching file under ``roots``.

        ``emit`` receives one :class:`Batch` per worker followed by
        :data:`END_OF_STREAM`, which is always the last message.
        """
        files = self.discover(roots)
        stats = IngestStats(files_seen=len(files))
        partitions = [part for part in partition_round_robin(files, self.worker_count()) if part]
        stats.workers = len(partitions)
        emitter = _Emitter(emit)
        log.info("Ingesting %d file(s) with %d worker(s)", len(files), len(partitions))

        def _work(job: tuple[int, list[str]]) -> WorkerResult:
            index, paths = job
            records, errors = self.normalizer.normalize_batch(self._extract(paths))
            batch = Batch(
                records=tuple(records),
                error="; ".join(errors) or None,
                source=f"worker-{index}",
            )
            stop = bool(errors) and self.exit_on_error
            delivered = emitter.send(batch, last=stop)
            if errors:
                log.debug("worker-%d: %d error(s): %s", index, len(errors), batch.error)
            if stop and delivered:
                log.warning("worker-%d hit an error; ending the stream early", index)
            return WorkerResult(index, len(paths), len(records), len(errors))

        def _collect(result: WorkerResult) -> None:
            stats.successes += result.successes
            stats.errors += result.errors
            stats.batches += 1

        def _failed(exc: BaseException) -> None:
            log.error("Ingestion worker crashed: %s", exc)

        try:
            run_workers(
                list(enumerate(partitions)),
                _work,
                _collect,
                on_error=_failed,
                thread_name_prefix="exifpipe-ingest",
            )
        finally:
            emitter.close()
        stats.stopped_early = self.exit_on_error and stats.errors > 0
        accounted = stats.successes + stats.errors
        if accounted != stats.files_seen:
            log.warning("%d file(s) unaccounted for after ingestion", stats.files_seen - accounted)
        log.info(
            "Finished input: %d file(s), %d success(es), %d error(s)",
            stats.files_seen,
            stats.successes,
            stats.errors,
        )
        return stats
