# store.py
# SPDX-License-Identifier: MIT
"""The ``dbstore`` stage: upsert every record into the document store."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from ..core.component import Batch, StreamingComponent
from ..core.errors import ConfigurationError, StoreError
from ..core.log import get_logger
from ..core.records import MetadataRecord
from ..core.values import TagValue

if TYPE_CHECKING:  # pragma: no cover - type-only imports
    from ..core.config import ExifPipeConfig
    from ..core.registries import StoreRegistry
    from ..stores.base import DocumentStore

log = get_logger(__name__)

__all__ = ["StoreStage", "StoreStats", "geojson_location", "parse_coordinate"]

LOCATION_FIELD = "Location"

# exiftool's default rendering, e.g. 37 deg 46' 30.00" N
_DMS_RX = re.compile(
    r"""^\s*(?P<deg>\d+(?:\.\d+)?)\s*deg\s*
        (?:(?P<min>\d+(?:\.\d+)?)'\s*)?
        (?:(?P<sec>\d+(?:\.\d+)?)"\s*)?
        (?P<ref>[NSEW])?\s*$""",
    re.VERBOSE,
)


def parse_coordinate(value: TagValue | None) -> float | None:
    """Return decimal degrees from a numeric or ``deg/'/"`` tag value."""
    if value is None:
        return None
    if value.kind.is_numeric:
        return float(value.value)
    if not isinstance(value.value, str):
        return None
    match = _DMS_RX.match(value.value)
    if match is None:
        return None
    degrees = float(match["deg"]) + float(match["min"] or 0) / 60.0 + float(match["sec"] or 0) / 3600.0
    return -degrees if match["ref"] in ("S", "W") else degrees


def geojson_location(record: MetadataRecord) -> dict[str, Any] | None:
    """GeoJSON Point from GPSLatitude/GPSLongitude, or None if unusable."""
    lat = parse_coordinate(record.get("GPSLatitude"))
    lon = parse_coordinate(record.get("GPSLongitude"))
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return {"type": "Point", "coordinates": [lon, lat]}


@dataclass(slots=True)
class StoreStats:
    records: int = 0
    inserted: int = 0
    replaced: int = 0
    located: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class StoreStage(StreamingComponent):
    """Forward each batch, then upsert its records keyed by the dedup key.

    Write failures are logged per record and never stop the stream.
    """

    name = "dbstore"

    def __init__(self, stores: StoreRegistry, *, name: str | None = None) -> None:
        super().__init__(name)
        self.stores = stores
        self.store: DocumentStore | None = None
        self.stats = StoreStats()

    def _setup(self, config: ExifPipeConfig) -> None:
        try:
            self.store = self.stores.create(config.database)
        except (StoreError, OSError) as exc:
            raise ConfigurationError(f"cannot open document store: {exc}") from exc

    def _run(self) -> None:
        try:
            super()._run()
        finally:
            if self.store is not None:
                self.store.close()

    def handle_batch(self, batch: Batch) -> None:
        assert self.store is not None
        for record in batch.records:
            self.stats.records += 1
            key = record.key
            if not key:
                log.error("[%s] record %s has no dedup key; skipped", self.name, record.path)
                self.stats.errors += 1
                continue
            document = record.to_document()
            location = geojson_location(record)
            if location is not None:
                document[LOCATION_FIELD] = location
                self.stats.located += 1
            try:
                replaced = self.store.replace_one(key, document)
            except StoreError as exc:
                log.error("[%s] could not store %s: %s", self.name, record.path, exc)
                self.stats.errors += 1
                continue
            if replaced:
                self.stats.replaced += 1
            else:
                self.stats.inserted += 1

    def finish(self) -> None:
        log.info(
            "[%s] stored %d record(s): %d inserted, %d replaced, %d error(s)",
            self.name,
            self.stats.records,
            self.stats.inserted,
            self.stats.replaced,
            self.stats.errors,
        )
