# normalize.py
# SPDX-License-Identifier: MIT
"""Turn raw extractor output into typed, keyed metadata records.

Normalization runs in a fixed order:

1. rename tags through ``name_map`` (an empty target drops the tag and an
   existing tag is never overwritten),
2. apply the ``tags_to_load`` allow-list to the renamed names,
3. coerce values (trimming, binary placeholders, dates, sub-second date
   companions, rationals, unit suffixes, integer narrowing),
4. drop tags matching the ``remove`` patterns,
5. compute the dedup key and store it under ``Key``.

Per-tag coercion problems are logged and the tag keeps its string form; they
never abort the record.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Any

from .log import get_logger
from .records import MetadataRecord
from .values import ZERO_TIMESTAMP, TagValue

if TYPE_CHECKING:  # pragma: no cover - type-only import
    from ..extractors.base import ExtractionResult

log = get_logger(__name__)

__all__ = [
    "DATE_FORMATS",
    "DEDUP_KEY_FIELDS",
    "DEFAULT_SUBSEC_DATE",
    "NormalizationRules",
    "Normalizer",
    "compute_dedup_key",
    "parse_exif_date",
    "rules_from_options",
]

DATE_FORMATS: tuple[str, ...] = (
    "%Y:%m:%d %H:%M:%S",
    "%Y:%m:%d %H:%M:%S.%f",
    "%Y:%m:%d %H:%M:%S%z",
    "%Y:%m:%d %H:%M:%S.%f%z",
)

# exiftool composite tags carrying sub-second precision for a date tag
DEFAULT_SUBSEC_DATE: dict[str, str] = {
    "SubSecDateTimeOriginal": "DateTimeOriginal",
    "SubSecCreateDate": "CreateDate",
    "SubSecModifyDate": "ModifyDate",
}

DEDUP_KEY_FIELDS: tuple[str, ...] = (
    "ImageUniqueID",
    "FileName",
    "SerialNumber",
    "DateTimeOriginal",
)
DEDUP_KEY_WIDTH = 16

_RATIONAL_RX = re.compile(r"^([+-]?\d+(?:\.\d+)?)/(\d+(?:\.\d+)?)$")
_NUMBER_RX = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


@dataclass(frozen=True, slots=True)
class NormalizationRules:
    """Immutable rule set applied by :class:`Normalizer`.

    Attributes:
        name_map (Mapping[str, str]): Raw tag name to new name; an empty
            target drops the tag.
        tags_to_load (frozenset[str]): Allow-list of (renamed) tag names;
            empty means keep everything.
        remove (tuple[str, ...]): Shell-style patterns of tags to drop last.
        subsec_date (Mapping[str, str]): Sub-second companion tag to the
            date tag it refines.
        binary_markers (tuple[str, ...]): Prefixes marking binary
            placeholders that are dropped.
        unit_suffixes (tuple[str, ...]): Suffixes stripped from numeric
            strings before converting them to numbers.
        string_tags (frozenset[str]): Tags always stored as strings.
        rational_suffix (str): Suffix of the float companion added for
            rational strings such as ``1/200``; empty disables it.
        trim (bool): Strip surrounding whitespace from strings.
        tz (tzinfo | None): Zone applied to timestamps without an offset;
            None uses the local zone.
    """

    name_map: Mapping[str, str] = field(default_factory=dict)
    tags_to_load: frozenset[str] = frozenset()
    remove: tuple[str, ...] = ()
    subsec_date: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_SUBSEC_DATE))
    binary_markers: tuple[str, ...] = ("(Binary data",)
    unit_suffixes: tuple[str, ...] = (" mm", " m")
    string_tags: frozenset[str] = frozenset({"SerialNumber"})
    rational_suffix: str = ".v"
    trim: bool = True
    tz: tzinfo | None = None


def parse_exif_date(text: str, tz: tzinfo | None = None) -> datetime:
    """Parse an EXIF-style timestamp, returning ZERO_TIMESTAMP when no format fits.

    Formats are tried in :data:`DATE_FORMATS` order and the first match wins.
    Naive results get ``tz`` attached (local zone when None).
    """
    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is not None:
            return parsed
        if tz is not None:
            return parsed.replace(tzinfo=tz)
        try:
            return parsed.astimezone()
        except (OverflowError, OSError, ValueError):
            return parsed.replace(tzinfo=timezone.utc)
    return ZERO_TIMESTAMP


def compute_dedup_key(tags: Mapping[str, TagValue]) -> str:
    """Hash the identifying tags of a record into a fixed-width hex key.

    Missing fields contribute an empty string, so the key is a pure function
    of the four display values in :data:`DEDUP_KEY_FIELDS`.
    """
    parts = []
    for name in DEDUP_KEY_FIELDS:
        value = tags.get(name)
        parts.append("" if value is None else value.display())
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return digest[:DEDUP_KEY_WIDTH]


def _integral(value: float) -> TagValue:
    try:
        return TagValue.integer(int(value))
    except OverflowError:
        return TagValue.floating(value)


class Normalizer:
    """Apply :class:`NormalizationRules` to raw tag maps.

    Instances hold no mutable state, so one normalizer can be shared by every
    ingestion worker.
    """

    def __init__(self, rules: NormalizationRules | None = None) -> None:
        self.rules = rules or NormalizationRules()

    def normalize(self, path: str, raw: Mapping[str, Any] | None) -> MetadataRecord:
        """Normalize one file's raw tags into a keyed record."""
        tags = self._allow(self._rename(raw or {}))
        coerced = self._coerce_all(path, tags)
        final = {name: value for name, value in coerced.items() if not self._removed(name)}
        record = MetadataRecord(str(path), final)
        return record.with_key(compute_dedup_key(record.tags))

    def normalize_batch(
        self,
        results: Iterable[ExtractionResult],
    ) -> tuple[list[MetadataRecord], list[str]]:
        """Normalize extraction results, isolating failures per file.

        Returns:
            tuple[list[MetadataRecord], list[str]]: Records in input order and
            one ``"path: message"`` string per failed file.
        """
        records: list[MetadataRecord] = []
        errors: list[str] = []
        for result in results:
            if result.error is not None or result.tags is None:
                errors.append(f"{result.path}: {result.error or 'no metadata returned'}")
                continue
            try:
                records.append(self.normalize(result.path, result.tags))
            except Exception as exc:  # noqa: BLE001
                log.warning("Normalization failed for %s: %s", result.path, exc)
                errors.append(f"{result.path}: {exc}")
        return records, errors

    # -- steps -----------------------------------------------------------

    def _rename(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        name_map = self.rules.name_map
        if not name_map:
            return dict(raw)
        out: dict[str, Any] = {name: value for name, value in raw.items() if name not in name_map}
        for name, value in raw.items():
            if name not in name_map:
                continue
            target = name_map[name]
            if not target:
                continue
            if target in out:
                log.debug("Rename %s -> %s skipped; target already present", name, target)
                continue
            out[target] = value
        return out

    def _allow(self, tags: dict[str, Any]) -> dict[str, Any]:
        allowed = self.rules.tags_to_load
        if not allowed:
            return tags
        subsec = self.rules.subsec_date
        return {
            name: value
            for name, value in tags.items()
            if name in allowed or (name in subsec and subsec[name] in allowed)
        }

    def _removed(self, name: str) -> bool:
        return any(fnmatchcase(name, pattern) for pattern in self.rules.remove)

    def _coerce_all(self, path: str, tags: Mapping[str, Any]) -> dict[str, TagValue]:
        out: dict[str, TagValue] = {}
        companions: list[tuple[str, Any]] = []
        for name, value in tags.items():
            if name in self.rules.subsec_date:
                companions.append((name, value))
                continue
            try:
                self._coerce_into(out, name, value)
            except Exception as exc:  # noqa: BLE001
                log.warning("Could not coerce tag %s of %s (%s); keeping string", name, path, exc)
                out[name] = TagValue.string(str(value))
        # companions run last so the sub-second value wins over the plain date
        for name, value in companions:
            self._merge_subsec(out, name, value)
        return out

    def _merge_subsec(self, out: dict[str, TagValue], name: str, value: Any) -> None:
        target = self.rules.subsec_date[name]
        text = self._clean_string(value) if isinstance(value, str) else None
        if text is None:
            return
        parsed = parse_exif_date(text, self.rules.tz)
        if parsed == ZERO_TIMESTAMP and target in out:
            return
        out[target] = TagValue.timestamp(parsed)

    def _clean_string(self, value: str) -> str | None:
        text = value.strip() if self.rules.trim else value
        if not text:
            return None
        if any(text.startswith(marker) for marker in self.rules.binary_markers):
            return None
        return text

    def _coerce_into(self, out: dict[str, TagValue], name: str, value: Any) -> None:
        rules = self.rules
        if value is None:
            return
        if isinstance(value, TagValue):
            out[name] = value
            return
        if isinstance(value, bool):
            out[name] = TagValue.boolean(value)
            return
        if isinstance(value, (int, float)):
            if name in rules.string_tags:
                if isinstance(value, float) and value.is_integer():
                    value = int(value)
                out[name] = TagValue.string(str(value))
                return
            if isinstance(value, int):
                out[name] = TagValue.integer(value)
            elif math.isfinite(value) and value.is_integer():
                out[name] = _integral(value)
            else:
                out[name] = TagValue.floating(value)
            return
        if isinstance(value, datetime):
            out[name] = TagValue.timestamp(value)
            return
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(item) for item in value if item is not None)
        elif isinstance(value, Mapping):
            log.warning("Tag %s holds a structured value; storing it as JSON text", name)
            value = json.dumps(value, sort_keys=True, default=str)
        elif not isinstance(value, str):
            log.warning("Tag %s has unsupported type %s; storing it as text", name, type(value).__name__)
            value = str(value)

        text = self._clean_string(value)
        if text is None:
            return
        if name in rules.string_tags:
            out[name] = TagValue.string(text)
            return
        if "Date" in name:
            out[name] = TagValue.timestamp(parse_exif_date(text, rules.tz))
            return
        rational = _RATIONAL_RX.match(text)
        if rational is not None:
            out[name] = TagValue.string(text)
            if rules.rational_suffix:
                denominator = float(rational.group(2))
                if denominator == 0:
                    log.warning("Tag %s has a zero denominator: %r", name, text)
                else:
                    out[name + rules.rational_suffix] = TagValue.floating(
                        float(rational.group(1)) / denominator
                    )
            return
        for suffix in rules.unit_suffixes:
            if text.endswith(suffix):
                number = text[: -len(suffix)].strip()
                if _NUMBER_RX.match(number):
                    as_float = float(number)
                    out[name] = _integral(as_float) if as_float.is_integer() else TagValue.floating(as_float)
                    return
                break
        out[name] = TagValue.string(text)


def rules_from_options(
    *,
    name_map: Mapping[str, str] | None = None,
    tags_to_load: Sequence[str] | None = None,
    remove: Sequence[str] | None = None,
    subsec_date: Mapping[str, str] | None = None,
    binary_markers: Sequence[str] | None = None,
    unit_suffixes: Sequence[str] | None = None,
    string_tags: Sequence[str] | None = None,
    rational_suffix: str = ".v",
    trim: bool = True,
    tz: tzinfo | None = None,
) -> NormalizationRules:
    """Build rules from plain config values, keeping defaults for omitted ones."""
    defaults = NormalizationRules()
    return NormalizationRules(
        name_map=dict(name_map or {}),
        tags_to_load=frozenset(tags_to_load or ()),
        remove=tuple(remove or ()),
        subsec_date=dict(defaults.subsec_date if subsec_date is None else subsec_date),
        binary_markers=tuple(defaults.binary_markers if binary_markers is None else binary_markers),
        unit_suffixes=tuple(defaults.unit_suffixes if unit_suffixes is None else unit_suffixes),
        string_tags=frozenset(defaults.string_tags if string_tags is None else string_tags),
        rational_suffix=rational_suffix,
        trim=trim,
        tz=tz,
    )
