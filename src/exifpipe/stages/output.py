# output.py
# SPDX-License-Identifier: MIT
"""The ``output`` stage: render records as CSV, JSON lines, a tag summary, or Parquet.

Columns are resolved per record through :func:`exifpipe.core.expr.resolve`,
so a column may name a tag, an ``@expression`` or a ``%template [Tag]``.
When ``output.sort`` is set, rendered rows are buffered and sorted once
after end-of-stream; otherwise each row is written as soon as it arrives.
"""

from __future__ import annotations

import os
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from ..core.component import Batch, StreamingComponent
from ..core.config import OUTPUT_TYPES
from ..core.errors import ConfigurationError
from ..core.expr import compile_expression, filter_record, resolve
from ..core.log import get_logger
from ..core.records import MetadataRecord
from ..sinks.sinks import CsvSink, JsonLinesSink, ParquetSink, require_pyarrow

if TYPE_CHECKING:  # pragma: no cover - type-only import
    from ..core.config import ExifPipeConfig, OutputConfig

log = get_logger(__name__)

T = TypeVar("T")

__all__ = [
    "DEFAULT_COLUMNS",
    "KEYS_COLUMNS",
    "OutputStage",
    "OutputStats",
    "KeySummary",
    "sort_rows",
    "output_path",
]

DEFAULT_COLUMNS: tuple[str, ...] = ("FileName",)
KEYS_COLUMNS: tuple[str, ...] = ("Tag", "Count", "Type")
_EXTENSIONS = {"csv": ".csv", "keys": ".csv", "json": ".json", "parquet": ".parquet"}


def _value_class(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "timestamp"
    return type(value).__name__


def sort_rows(rows: Sequence[T], key: Callable[[T], Any], *, reverse: bool = False) -> list[T]:
    """Stable sort of ``rows`` by the native value ``key`` returns.

    Values of the column's dominant type (the most frequent one, first seen
    wins ties) compare natively, with ints and floats compared together.
    Any other value is never less than another row, so those rows keep
    their arrival order after the comparable ones. ``reverse`` inverts the
    comparison between comparable values only.
    """
    classes = [_value_class(key(row)) for row in rows]
    counts = Counter(c for c in classes if c is not None)
    if not counts:
        return list(rows)
    top = max(counts.values())
    dominant = next(c for c in classes if c is not None and counts[c] == top)
    comparable = [row for row, cls in zip(rows, classes) if cls == dominant]
    rest = [row for row, cls in zip(rows, classes) if cls != dominant]
    try:
        ordered = sorted(comparable, key=key, reverse=reverse)
    except TypeError:
        # e.g. aware and naive timestamps mixed
        log.warning("Sort column has values that cannot be compared; keeping arrival order")
        ordered = comparable
    return ordered + rest


def output_path(path: str, mode: str) -> str:
    """Append the output type's extension to ``path`` when it has none."""
    if not path:
        return ""
    return path if os.path.splitext(path)[1] else path + _EXTENSIONS[mode]


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class KeySummary:
    """Distinct tag names with occurrence counts and observed value kinds."""

    def __init__(self) -> None:
        self.counts: Counter[str] = Counter()
        self.kinds: dict[str, set[str]] = {}

    def add(self, record: MetadataRecord) -> None:
        for name, value in record.tags.items():
            self.counts[name] += 1
            self.kinds.setdefault(name, set()).add(value.kind.value)

    def rows(self) -> list[dict[str, Any]]:
        return [
            {"Tag": name, "Count": self.counts[name], "Type": "|".join(sorted(self.kinds[name]))}
            for name in sorted(self.counts)
        ]


@dataclass(slots=True)
class OutputStats:
    records: int = 0
    written: int = 0
    filtered: int = 0
    upstream_errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class OutputStage(StreamingComponent):
    """Terminal projection stage.

    Settings come from ``config.output``; see :class:`OutputConfig`.
    """

    name = "output"

    def __init__(self, *, name: str | None = None, stream=None) -> None:
        super().__init__(name)
        self.stream = stream
        self.stats = OutputStats()
        self.mode = "csv"
        self.cols: tuple[str, ...] = ()
        self.path = ""
        self.sink: CsvSink | JsonLinesSink | ParquetSink | None = None
        self._buffer: list[tuple[Any, Any]] | None = None
        self._keys: KeySummary | None = None

    def _setup(self, config: ExifPipeConfig) -> None:
        out: OutputConfig = config.output
        mode = out.mode
        if mode not in OUTPUT_TYPES:
            raise ConfigurationError(f"unknown output type {out.type!r}")
        self.mode = mode
        if mode == "keys":
            unknown = [c for c in out.cols if c not in KEYS_COLUMNS]
            if unknown:
                raise ConfigurationError(f"keys output only has columns {', '.join(KEYS_COLUMNS)}; got {unknown}")
            self.cols = out.cols or KEYS_COLUMNS
        elif mode == "json":
            self.cols = out.cols
        else:
            self.cols = out.cols or DEFAULT_COLUMNS
        self.path = output_path(out.path, mode)
        if mode == "parquet":
            if not self.path:
                raise ConfigurationError("parquet output needs output.path")
            try:
                require_pyarrow()
            except RuntimeError as exc:
                raise ConfigurationError(str(exc)) from exc
        record_filter = out.filter.strip()
        if record_filter:
            compile_expression(record_filter[1:] if record_filter.startswith("@") else record_filter)
        self.sink = self._make_sink()

    def _make_sink(self) -> CsvSink | JsonLinesSink | ParquetSink:
        if self.mode == "parquet":
            return ParquetSink(self.path, header=self.cols)
        if self.mode == "json":
            return JsonLinesSink(self.path or None, stream=self.stream)
        return CsvSink(self.path or None, header=self.cols, stream=self.stream)

    def _run(self) -> None:
        assert self.sink is not None and self.config is not None
        if self.config.output.sort:
            self._buffer = []
        if self.mode == "keys":
            self._keys = KeySummary()
        self.sink.open()
        try:
            super()._run()
        except BaseException:
            self.sink.abort()
            raise

    # -- per record -----------------------------------------------------

    def _render(self, record: MetadataRecord) -> Any:
        if self.mode == "json":
            if not self.cols:
                return record.to_json_dict()
            return {col: _json_value(resolve(col, record)[1]) for col in self.cols}
        return [resolve(col, record)[0] for col in self.cols]

    def _write(self, row: Any) -> None:
        assert self.sink is not None
        if isinstance(self.sink, JsonLinesSink):
            self.sink.write(row)
        else:
            self.sink.write_row(row)
        self.stats.written += 1

    def handle_batch(self, batch: Batch) -> None:
        assert self.config is not None
        if batch.error:
            self.stats.upstream_errors += 1
            log.debug("[%s] upstream %s reported: %s", self.name, batch.source or "stage", batch.error)
        record_filter = self.config.output.filter
        sort_col = self.config.output.sort
        for record in batch.records:
            self.stats.records += 1
            if record_filter and not filter_record(record_filter, record):
                self.stats.filtered += 1
                continue
            if self._keys is not None:
                self._keys.add(record)
                continue
            row = self._render(record)
            if self._buffer is not None:
                self._buffer.append((row, resolve(sort_col, record)[1]))
            else:
                self._write(row)

    def finish(self) -> None:
        assert self.sink is not None and self.config is not None
        out = self.config.output
        if self._keys is not None:
            rows: Iterable[dict[str, Any]] = self._keys.rows()
            if out.sort in KEYS_COLUMNS:
                rows = sort_rows(list(rows), key=lambda r: r[out.sort], reverse=out.sort_reversed)
            for summary in rows:
                self._write([summary[col] for col in self.cols])
        elif self._buffer is not None:
            buffered, self._buffer = self._buffer, None
            for row, _ in sort_rows(buffered, key=lambda item: item[1], reverse=out.sort_reversed):
                self._write(row)
        self.sink.close()
        where = self.path or "stdout"
        log.info("[%s] wrote %d row(s) to %s (%d filtered)", self.name, self.stats.written, where, self.stats.filtered)
