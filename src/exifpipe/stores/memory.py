# memory.py
# SPDX-License-Identifier: MIT
"""Process-local document store, shared by name between stages of a process."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from .base import project_document

if TYPE_CHECKING:  # pragma: no cover - type-only import
    from ..core.config import DatabaseConfig

__all__ = ["MemoryDocumentStore"]

_SHARED: dict[tuple[str, str], MemoryDocumentStore] = {}
_SHARED_LOCK = threading.Lock()


class MemoryDocumentStore:
    """Dictionary-backed store; handy for tests and dry runs."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: DatabaseConfig) -> MemoryDocumentStore:
        """Return the store registered under ``(path, table)``, creating it once."""
        with _SHARED_LOCK:
            store = _SHARED.setdefault((cfg.path, cfg.table), cls())
        if cfg.drop_first:
            store.drop()
        return store

    @staticmethod
    def reset_shared() -> None:
        with _SHARED_LOCK:
            _SHARED.clear()

    def replace_one(self, key: str, document: Mapping[str, Any]) -> bool:
        with self._lock:
            existed = key in self._docs
            self._docs[key] = copy.deepcopy(dict(document))
        return existed

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._docs.get(key)
            return None if doc is None else copy.deepcopy(doc)

    def find(
        self,
        projection: Sequence[str] | None = None,
        *,
        limit: int | None = None,
    ) -> Iterator[dict[str, Any]]:
        with self._lock:
            docs = [copy.deepcopy(self._docs[key]) for key in sorted(self._docs)]
        if limit is not None:
            docs = docs[:limit]
        for doc in docs:
            yield project_document(doc, projection)

    def count(self) -> int:
        with self._lock:
            return len(self._docs)

    def drop(self) -> None:
        with self._lock:
            self._docs.clear()

    def close(self) -> None:
        """Documents stay available to later stages of the same process."""
