# base.py
# SPDX-License-Identifier: MIT
"""Extraction backend interface."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

__all__ = ["ExtractionResult", "Extractor"]


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Raw tags for one file, or the reason they could not be read.

    Exactly one of ``tags`` and ``error`` is set.
    """

    path: str
    tags: Mapping[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.tags is not None

    @classmethod
    def failure(cls, path: str, error: str) -> ExtractionResult:
        return cls(path=path, tags=None, error=error)


@runtime_checkable
class Extractor(Protocol):
    """Reads raw tag maps for batches of files.

    Implementations return one result per requested path, in request order,
    and report per-file problems through :attr:`ExtractionResult.error`
    instead of raising. Raising :class:`~exifpipe.core.errors.ExtractionError`
    marks every file of the batch as failed.
    """

    name: str

    def extract_batch(self, paths: Sequence[str]) -> list[ExtractionResult]: ...

    def close(self) -> None: ...
