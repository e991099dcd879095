# query.py
# SPDX-License-Identifier: MIT
"""The ``dbquery`` stage: replay stored documents into a chain."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import TYPE_CHECKING, Any

from ..core.component import Batch, SourceComponent
from ..core.errors import ConfigurationError, StoreError
from ..core.expr import EVAL_SIGIL, TEMPLATE_SIGIL, filter_record
from ..core.log import get_logger
from ..core.records import KEY_TAG, MetadataRecord

if TYPE_CHECKING:  # pragma: no cover - type-only imports
    from ..core.config import ExifPipeConfig
    from ..core.registries import StoreRegistry
    from ..stores.base import DocumentStore

log = get_logger(__name__)

__all__ = ["QueryStage", "QueryStats", "projection_for"]


def projection_for(cols: tuple[str, ...], *, sort: str = "", filters: tuple[str, ...] = ()) -> list[str] | None:
    """Fields to fetch for ``cols`` and ``sort``.

    Returns None (fetch everything) when there are no columns, when any
    column is computed, or when a filter expression has to see the record.
    """
    wanted = [*cols, sort] if sort else list(cols)
    if not cols or any(f for f in filters) or any(c.startswith((EVAL_SIGIL, TEMPLATE_SIGIL)) for c in wanted):
        return None
    return [*dict.fromkeys(wanted), KEY_TAG]


@dataclass(slots=True)
class QueryStats:
    documents: int = 0
    emitted: int = 0
    filtered: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class QueryStage(SourceComponent):
    """Read documents from the store and emit them as records.

    Only the fields needed by ``output.cols`` are fetched when every column
    is a plain tag name. ``database.query_filter`` drops non-matching
    records before they are emitted.
    """

    name = "dbquery"

    def __init__(self, stores: StoreRegistry, *, name: str | None = None) -> None:
        super().__init__(name)
        self.stores = stores
        self.store: DocumentStore | None = None
        self.stats = QueryStats()

    def _setup(self, config: ExifPipeConfig) -> None:
        try:
            self.store = self.stores.create(replace(config.database, drop_first=False))
        except (StoreError, OSError) as exc:
            raise ConfigurationError(f"cannot open document store: {exc}") from exc

    def _run(self) -> None:
        assert self.store is not None and self.config is not None
        db = self.config.database
        out = self.config.output
        projection = None if out.mode == "keys" else projection_for(
            out.cols, sort=out.sort, filters=(db.query_filter, out.filter)
        )
        pending: list[MetadataRecord] = []
        try:
            for doc in self.store.find(projection):
                self.stats.documents += 1
                try:
                    record = MetadataRecord.from_document(doc)
                except (TypeError, ValueError) as exc:
                    log.error("[%s] skipping unreadable document: %s", self.name, exc)
                    self.stats.errors += 1
                    continue
                if db.query_filter and not filter_record(db.query_filter, record):
                    self.stats.filtered += 1
                    continue
                pending.append(record)
                if len(pending) >= db.batch_size:
                    self._flush(pending)
                    pending = []
            if pending:
                self._flush(pending)
        finally:
            self.store.close()
        log.info(
            "[%s] read %d document(s), emitted %d, filtered %d",
            self.name,
            self.stats.documents,
            self.stats.emitted,
            self.stats.filtered,
        )

    def _flush(self, records: list[MetadataRecord]) -> None:
        self.emit(Batch(records=tuple(records), source=self.name))
        self.stats.emitted += len(records)
