# records.py
# SPDX-License-Identifier: MIT
"""Normalized metadata records and their document form."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .values import TagValue

__all__ = [
    "KEY_TAG",
    "PATH_FIELD",
    "TYPES_FIELD",
    "MetadataRecord",
]

KEY_TAG = "Key"
PATH_FIELD = "_path"
TYPES_FIELD = "_types"


@dataclass(frozen=True, slots=True)
class MetadataRecord:
    """One file's normalized tags plus its source path.

    Attributes:
        path (str): Path of the file the tags were read from.
        tags (Mapping[str, TagValue]): Read-only tag mapping. May be empty.
    """

    path: str
    tags: Mapping[str, TagValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.tags is None:
            raise ValueError("MetadataRecord.tags must be a mapping, not None")
        if not isinstance(self.tags, MappingProxyType):
            object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    def __contains__(self, name: object) -> bool:
        return name in self.tags

    def __len__(self) -> int:
        return len(self.tags)

    def __iter__(self) -> Iterator[str]:
        return iter(self.tags)

    @property
    def key(self) -> str | None:
        value = self.tags.get(KEY_TAG)
        return None if value is None else str(value.value)

    def get(self, name: str) -> TagValue | None:
        return self.tags.get(name)

    def display(self, name: str, default: str = "") -> str:
        value = self.tags.get(name)
        return default if value is None else value.display()

    def native_values(self) -> dict[str, Any]:
        return {name: value.native for name, value in self.tags.items()}

    def with_key(self, key: str) -> MetadataRecord:
        """Return a copy carrying the dedup key under the reserved tag."""
        tags = dict(self.tags)
        tags[KEY_TAG] = TagValue.string(key)
        return MetadataRecord(self.path, tags)

    def to_json_dict(self) -> dict[str, Any]:
        """Flat JSON-safe mapping of tag name to value."""
        return {name: value.to_json() for name, value in self.tags.items()}

    def to_document(self) -> dict[str, Any]:
        """Serialize for a document store, keeping enough type info to reload."""
        doc = self.to_json_dict()
        doc[PATH_FIELD] = self.path
        doc[TYPES_FIELD] = {name: value.kind.value for name, value in self.tags.items()}
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> MetadataRecord:
        """Inverse of :meth:`to_document`; untyped fields go through from_native."""
        types = doc.get(TYPES_FIELD) or {}
        tags: dict[str, TagValue] = {}
        for name, raw in doc.items():
            if name in (PATH_FIELD, TYPES_FIELD) or raw is None:
                continue
            kind = types.get(name)
            if kind is not None:
                tags[name] = TagValue.from_json(kind, raw)
            elif isinstance(raw, (Mapping, list)):
                # e.g. a GeoJSON Location added by the store stage
                continue
            else:
                tags[name] = TagValue.from_native(raw)
        return cls(str(doc.get(PATH_FIELD, "")), tags)
