import math
from datetime import datetime, timedelta, timezone

import pytest

from exifpipe.core.values import ZERO_TIMESTAMP, TagValue, ValueKind, format_native, narrow_integer_kind


@pytest.mark.parametrize(
    "value, kind",
    [
        (0, ValueKind.UINT16),
        (65534, ValueKind.UINT16),
        (65535, ValueKind.INT32),
        (-1, ValueKind.INT32),
        (2**31 - 1, ValueKind.INT32),
        (2**31, ValueKind.INT64),
        (-(2**31) - 1, ValueKind.INT64),
    ],
)
def test_narrow_integer_kind_picks_smallest(value, kind):
    assert narrow_integer_kind(value) is kind


def test_narrow_integer_kind_rejects_overflow():
    with pytest.raises(OverflowError):
        narrow_integer_kind(2**63)


def test_from_native_dispatches_on_type():
    assert TagValue.from_native(True).kind is ValueKind.BOOL
    assert TagValue.from_native(200).kind is ValueKind.UINT16
    assert TagValue.from_native(2.8).kind is ValueKind.FLOAT64
    assert TagValue.from_native("Canon") == TagValue.string("Canon")
    with pytest.raises(TypeError):
        TagValue.from_native(object())


def test_timestamp_constructor_makes_naive_values_utc():
    value = TagValue.timestamp(datetime(2020, 1, 1, 10, 0, 0))
    assert value.value.tzinfo is timezone.utc


def test_display_forms():
    assert TagValue.floating(50.0).display() == "50"
    assert TagValue.floating(2.8).display() == "2.8"
    assert TagValue.boolean(False).display() == "false"
    stamp = datetime(2020, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=1)))
    assert TagValue.timestamp(stamp).display() == "2020-01-01T10:00:00+01:00"
    assert format_native(None) == ""


def test_to_json_and_from_json_keep_the_kind():
    stamp = TagValue.timestamp(datetime(2021, 5, 6, 7, 8, 9, tzinfo=timezone.utc))
    assert stamp.to_json() == "2021-05-06T07:08:09+00:00"
    assert TagValue.from_json("timestamp", stamp.to_json()) == stamp
    assert TagValue.from_json("int64", 2**40) == TagValue(ValueKind.INT64, 2**40)
    assert TagValue.floating(math.inf).to_json() == "inf"


def test_zero_timestamp_flag():
    assert TagValue.timestamp(ZERO_TIMESTAMP).is_zero_timestamp
    assert not TagValue.string("0001").is_zero_timestamp
