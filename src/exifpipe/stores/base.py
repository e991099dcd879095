# base.py
# SPDX-License-Identifier: MIT
"""Document store interface used by the ``dbstore`` and ``dbquery`` stages."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

__all__ = ["DocumentStore", "project_document"]


@runtime_checkable
class DocumentStore(Protocol):
    """Keyed JSON document storage.

    ``replace_one`` must be an atomic replace-or-insert so concurrent writes
    of the same dedup key converge on one document.
    """

    def replace_one(self, key: str, document: Mapping[str, Any]) -> bool:
        """Store ``document`` under ``key``; True if it replaced an existing one."""
        ...

    def find(
        self,
        projection: Sequence[str] | None = None,
        *,
        limit: int | None = None,
    ) -> Iterator[dict[str, Any]]: ...

    def count(self) -> int: ...

    def drop(self) -> None: ...

    def close(self) -> None: ...


def project_document(doc: Mapping[str, Any], projection: Sequence[str] | None) -> dict[str, Any]:
    """Keep only ``projection`` fields (plus bookkeeping fields starting with ``_``)."""
    if not projection:
        return dict(doc)
    wanted = set(projection)
    return {k: v for k, v in doc.items() if k in wanted or k.startswith("_")}
