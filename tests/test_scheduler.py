import threading
from pathlib import Path

import pytest

from exifpipe.core.component import END_OF_STREAM, Batch
from exifpipe.core.concurrency import resolve_worker_count
from exifpipe.core.errors import ExtractionError
from exifpipe.core.normalize import Normalizer
from exifpipe.core.scheduler import IngestionScheduler, partition_round_robin
from exifpipe.extractors.base import ExtractionResult


class FakeExtractor:
    name = "fake"
    instances = []
    lock = threading.Lock()

    def __init__(self, fail_batch=False):
        self.fail_batch = fail_batch
        self.closed = False
        self.calls = []
        with FakeExtractor.lock:
            FakeExtractor.instances.append(self)

    def extract_batch(self, paths):
        self.calls.append(list(paths))
        if self.fail_batch:
            raise ExtractionError("backend crashed")
        results = []
        for path in paths:
            name = Path(path).name
            if name.startswith("bad"):
                results.append(ExtractionResult.failure(path, "File format error"))
            else:
                results.append(ExtractionResult(path, {"FileName": name, "Make": "Canon"}))
        return results

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_instances():
    FakeExtractor.instances = []
    yield


def _make_files(root: Path, names):
    root.mkdir(parents=True, exist_ok=True)
    for name in names:
        (root / name).write_bytes(b"x")
    return root


def _collect():
    messages = []
    lock = threading.Lock()

    def emit(message):
        with lock:
            messages.append(message)

    return messages, emit


def test_partition_round_robin_is_disjoint_and_ordered():
    parts = partition_round_robin(list(range(7)), 3)
    assert parts == [[0, 3, 6], [1, 4], [2, 5]]
    assert partition_round_robin([], 2) == [[], []]
    with pytest.raises(ValueError):
        partition_round_robin([1], 0)


@pytest.mark.parametrize(
    "configured, hardware, expected",
    [(0, 8, 1), (None, 8, 1), (-2, 8, 1), (4, 8, 4), (16, 8, 8), (3, 1, 1)],
)
def test_resolve_worker_count_clamps(configured, hardware, expected):
    assert resolve_worker_count(configured, hardware=hardware) == expected


def test_every_file_appears_once_before_end_of_stream(tmp_path):
    root = _make_files(tmp_path / "photos", [f"{i:02d}.jpg" for i in range(10)])
    scheduler = IngestionScheduler(
        FakeExtractor,
        Normalizer(),
        max_workers=3,
        hardware_parallelism=3,
    )
    messages, emit = _collect()
    stats = scheduler.run([str(root)], emit)

    assert messages[-1] is END_OF_STREAM
    assert messages.count(END_OF_STREAM) == 1
    batches = [m for m in messages if isinstance(m, Batch)]
    assert len(batches) == 3
    names = sorted(r.display("FileName") for b in batches for r in b.records)
    assert names == [f"{i:02d}.jpg" for i in range(10)]
    assert stats.files_seen == 10
    assert stats.successes == 10
    assert stats.errors == 0
    assert stats.workers == 3
    assert len(FakeExtractor.instances) == 3
    assert all(e.closed for e in FakeExtractor.instances)
    assert all(len(e.calls) == 1 for e in FakeExtractor.instances)


def test_worker_keeps_assigned_order(tmp_path):
    root = _make_files(tmp_path, ["a.jpg", "b.jpg", "c.jpg", "d.jpg"])
    scheduler = IngestionScheduler(FakeExtractor, Normalizer(), max_workers=2, hardware_parallelism=2)
    messages, emit = _collect()
    scheduler.run([str(root)], emit)
    orders = sorted([r.display("FileName") for r in m.records] for m in messages if isinstance(m, Batch))
    assert orders == [["a.jpg", "c.jpg"], ["b.jpg", "d.jpg"]]


def test_errors_are_counted_and_reported_in_the_batch(tmp_path):
    root = _make_files(tmp_path, ["a.jpg", "bad.jpg", "c.jpg"])
    scheduler = IngestionScheduler(FakeExtractor, Normalizer(), max_workers=1)
    messages, emit = _collect()
    stats = scheduler.run([str(root)], emit)
    assert stats.successes == 2
    assert stats.errors == 1
    batch = messages[0]
    assert len(batch.records) == 2
    assert "bad.jpg: File format error" in batch.error
    assert not stats.stopped_early


def test_exit_on_error_ends_the_stream_early(tmp_path):
    root = _make_files(tmp_path, ["bad1.jpg", "bad2.jpg", "bad3.jpg", "bad4.jpg"])
    scheduler = IngestionScheduler(
        FakeExtractor,
        Normalizer(),
        max_workers=4,
        exit_on_error=True,
        hardware_parallelism=4,
    )
    messages, emit = _collect()
    stats = scheduler.run([str(root)], emit)
    assert messages[-1] is END_OF_STREAM
    assert messages.count(END_OF_STREAM) == 1
    # the first failing worker's batch is delivered, later ones are dropped
    assert sum(isinstance(m, Batch) for m in messages) == 1
    assert stats.stopped_early
    assert stats.errors == 4


def test_batch_failure_marks_every_file(tmp_path):
    root = _make_files(tmp_path, ["a.jpg", "b.jpg"])
    scheduler = IngestionScheduler(lambda: FakeExtractor(fail_batch=True), Normalizer(), max_workers=1)
    messages, emit = _collect()
    stats = scheduler.run([str(root)], emit)
    assert stats.errors == 2
    assert stats.successes == 0
    assert "backend crashed" in messages[0].error
    assert FakeExtractor.instances[0].closed


def test_no_files_still_ends_the_stream(tmp_path):
    scheduler = IngestionScheduler(FakeExtractor, Normalizer())
    messages, emit = _collect()
    stats = scheduler.run([str(tmp_path / "missing")], emit)
    assert messages == [END_OF_STREAM]
    assert stats.files_seen == 0
    assert FakeExtractor.instances == []


def test_extension_filter(tmp_path):
    root = _make_files(tmp_path, ["a.JPG", "b.png", "c.txt"])
    scheduler = IngestionScheduler(FakeExtractor, Normalizer(), file_exts=("jpg", ".png"))
    assert [Path(p).name for p in scheduler.discover([str(root)])] == ["a.JPG", "b.png"]
