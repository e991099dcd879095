from datetime import datetime, timezone

import pytest

from exifpipe.core.records import KEY_TAG, PATH_FIELD, TYPES_FIELD, MetadataRecord
from exifpipe.core.values import TagValue, ValueKind


def _record():
    return MetadataRecord(
        "/photos/a.jpg",
        {
            "Make": TagValue.string("Canon"),
            "ISO": TagValue.integer(400),
            "FNumber": TagValue.floating(2.8),
            "DateTimeOriginal": TagValue.timestamp(datetime(2020, 1, 1, 10, tzinfo=timezone.utc)),
        },
    )


def test_tags_are_read_only():
    rec = _record()
    with pytest.raises(TypeError):
        rec.tags["Make"] = TagValue.string("Nikon")  # type: ignore[index]


def test_none_tags_are_rejected():
    with pytest.raises(ValueError):
        MetadataRecord("a.jpg", None)  # type: ignore[arg-type]


def test_with_key_returns_a_copy():
    rec = _record()
    keyed = rec.with_key("abc")
    assert keyed.key == "abc"
    assert rec.key is None
    assert KEY_TAG not in rec


def test_display_and_native_values():
    rec = _record()
    assert rec.display("Make") == "Canon"
    assert rec.display("Missing", "-") == "-"
    assert rec.native_values()["ISO"] == 400


def test_document_round_trip_keeps_kinds():
    rec = _record().with_key("k1")
    doc = rec.to_document()
    assert doc[PATH_FIELD] == "/photos/a.jpg"
    assert doc[TYPES_FIELD]["ISO"] == "uint16"
    assert doc["DateTimeOriginal"] == "2020-01-01T10:00:00+00:00"

    back = MetadataRecord.from_document(doc)
    assert back == rec
    assert back.get("DateTimeOriginal").kind is ValueKind.TIMESTAMP


def test_from_document_skips_structured_fields():
    doc = _record().to_document()
    doc["Location"] = {"type": "Point", "coordinates": [1.0, 2.0]}
    back = MetadataRecord.from_document(doc)
    assert "Location" not in back
