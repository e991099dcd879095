# sinks.py
# SPDX-License-Identifier: MIT
"""Row and record sinks used by the output stage.

File sinks write to ``<path>.tmp`` and move it into place on close, so a
failed run never leaves a truncated output file behind. Without a path they
write to a stream (stdout by default), which they never close.
"""
from __future__ import annotations

import csv
import json
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Self, TextIO

from ..core.log import get_logger

log = get_logger(__name__)

__all__ = [
    "CsvSink",
    "JsonLinesSink",
    "ParquetSink",
    "require_pyarrow",
]


class _BaseTextSink:
    """Shared temp-file and stream handling."""

    def __init__(self, out_path: str | os.PathLike[str] | None = None, *, stream: TextIO | None = None) -> None:
        self._path = Path(out_path) if out_path else None
        self._stream = stream
        self._fp: TextIO | None = None
        self._tmp_path: Path | None = None
        self.rows_written = 0

    @property
    def path(self) -> Path | None:
        return self._path

    def open(self) -> None:
        """Create the temp file, or bind the target stream."""
        if self._path is None:
            self._fp = self._stream or sys.stdout
            self._on_open()
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._tmp_path = self._path.parent / f"{self._path.name}.tmp"
        self._fp = open(self._tmp_path, "w", encoding="utf-8", newline="")
        self._on_open()

    def _on_open(self) -> None:
        """Hook for subclasses once ``self._fp`` is ready."""

    def close(self) -> None:
        """Flush, close any file handle and move the temp file into place."""
        if self._fp is None:
            return
        fp, self._fp = self._fp, None
        if self._tmp_path is None:
            fp.flush()
            return
        fp.close()
        os.replace(self._tmp_path, self._path)  # type: ignore[arg-type]
        self._tmp_path = None

    def abort(self) -> None:
        """Close without publishing; the temp file is removed."""
        fp, self._fp = self._fp, None
        if fp is not None and self._tmp_path is not None:
            fp.close()
        if self._tmp_path is not None:
            self._tmp_path.unlink(missing_ok=True)
            self._tmp_path = None

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()


class CsvSink(_BaseTextSink):
    """CSV rows with an optional header row."""

    def __init__(
        self,
        out_path: str | os.PathLike[str] | None = None,
        *,
        header: Sequence[str] | None = None,
        stream: TextIO | None = None,
    ) -> None:
        super().__init__(out_path, stream=stream)
        self.header = list(header) if header else None
        self._writer: Any = None

    def _on_open(self) -> None:
        self._writer = csv.writer(self._fp, lineterminator="\n")
        if self.header:
            self._writer.writerow(self.header)

    def write_row(self, values: Sequence[Any]) -> None:
        assert self._writer is not None, "sink is not open"
        self._writer.writerow(values)
        self.rows_written += 1


class JsonLinesSink(_BaseTextSink):
    """One compact JSON object per line."""

    def write(self, record: Mapping[str, Any]) -> None:
        assert self._fp is not None, "sink is not open"
        self._fp.write(json.dumps(dict(record), ensure_ascii=False, separators=(",", ":"), default=str) + "\n")
        self.rows_written += 1


def require_pyarrow() -> tuple[Any, Any]:
    """Import pyarrow lazily.

    Raises:
        RuntimeError: If pyarrow is not installed.
    """
    try:
        import pyarrow as pa
        import pyarrow.parquet as pq
    except Exception as exc:
        raise RuntimeError("PyArrow is required for Parquet output; install exifpipe[parquet].") from exc
    return pa, pq


class ParquetSink:
    """Buffer string rows and write one Parquet file on close."""

    def __init__(self, out_path: str | os.PathLike[str], *, header: Sequence[str]) -> None:
        self._path = Path(out_path)
        self.header = list(header)
        self._rows: list[list[str]] | None = None
        self.rows_written = 0

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        require_pyarrow()
        self._rows = []

    def write_row(self, values: Sequence[Any]) -> None:
        assert self._rows is not None, "sink is not open"
        self._rows.append(["" if v is None else str(v) for v in values])
        self.rows_written += 1

    def close(self) -> None:
        if self._rows is None:
            return
        rows, self._rows = self._rows, None
        pa, pq = require_pyarrow()
        columns = {name: [row[i] for row in rows] for i, name in enumerate(self.header)}
        table = pa.table(columns, schema=pa.schema([(name, pa.string()) for name in self.header]))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.parent / f"{self._path.name}.tmp"
        pq.write_table(table, tmp)
        os.replace(tmp, self._path)

    def abort(self) -> None:
        self._rows = None
