from datetime import datetime, timezone

import pytest

from exifpipe.core.errors import ExpressionError
from exifpipe.core.expr import compile_expression, evaluate, expand, filter_record, resolve
from exifpipe.core.records import MetadataRecord
from exifpipe.core.values import TagValue


@pytest.fixture
def record():
    return MetadataRecord(
        "/photos/a.jpg",
        {
            "Make": TagValue.string("Canon"),
            "Model": TagValue.string("5D"),
            "ISO": TagValue.integer(400),
            "FNumber": TagValue.floating(2.8),
            "Flash": TagValue.boolean(False),
            "Sys/Name": TagValue.string("a.jpg"),
            "DateTimeOriginal": TagValue.timestamp(datetime(2020, 1, 1, 10, tzinfo=timezone.utc)),
        },
    )


@pytest.mark.parametrize(
    "expr, expected",
    [
        ("ISO * 2", 800),
        ("ISO >= 100 && ISO < 800", True),
        ("!Flash", True),
        ("Flash || Make == 'Canon'", True),
        ("100 < ISO <= 400", True),
        ("Make in ('Canon', 'Nikon')", True),
        ("Model not in ('D750',)", True),
        ("'yes' if FNumber < 4 else 'no'", "yes"),
        ("[Sys/Name] == \"a.jpg\"", True),
        ("lower(Make) + '-' + Model", "canon-5D"),
        ("year(DateTimeOriginal)", 2020),
        ("contains(Model, '5')", True),
        ("null == None", True),
        ("Make != \"a && b\"", True),
    ],
)
def test_evaluate(record, expr, expected):
    assert evaluate(expr, record) == expected


@pytest.mark.parametrize(
    "expr",
    [
        "Missing == 1",
        "Make +",
        "__import__('os')",
        "Make.__class__",
        "open('x')",
        "ISO ** 100000",
        "'a' * 100000000",
        "Make - 1",
    ],
)
def test_evaluate_rejects(record, expr):
    with pytest.raises(ExpressionError):
        evaluate(expr, record)


def test_compile_is_cached():
    assert compile_expression("ISO > 1") is compile_expression("ISO > 1")


def test_filter_record_truthiness(record):
    assert filter_record('@Make == "Canon"', record)
    assert filter_record('Make == "Canon"', record)
    assert filter_record("Model", record)
    assert not filter_record("ISO", record)
    assert not filter_record("Missing > 3", record)
    assert not filter_record("Make ==", record)
    assert filter_record("", record)
    assert filter_record(None, record)


def test_list_literal_after_in(record):
    assert filter_record('Make in ["Canon", "Nikon"]', record)
    assert not filter_record('Model in ["D750", "Z6"]', record)
    assert evaluate('Model not in ["D750"]', record) is True
    assert evaluate("ISO in [100, [ISO]]", record) is True
    assert evaluate("[Sys/Name] in ['a.jpg']", record) is True


def test_deeply_nested_expression_is_an_expression_error(record):
    expr = "ISO" + " + 1" * 3000 + " > 0"
    assert not filter_record(expr, record)
    with pytest.raises(ExpressionError):
        evaluate(expr, record)


def test_filter_over_plain_mapping():
    assert filter_record("a + b == 3", {"a": 1, "b": 2})


def test_expand_templates(record):
    assert expand("[Make] [Model]", record) == "Canon 5D"
    assert expand("f/[FNumber] ISO[ISO]", record) == "f/2.8 ISO400"
    assert expand("[Missing]-x", record) == "-x"
    assert expand("no brackets", record) == "no brackets"
    assert expand("camera: [Make", record) == "camera: Canon"


def test_resolve_dispatch(record):
    assert resolve("Make", record) == ("Canon", "Canon")
    assert resolve("ISO", record) == ("400", 400)
    assert resolve("@ISO / 4", record) == ("100.0", 100.0)
    assert resolve("@Missing + 1", record) == ("", None)
    assert resolve("%[Make]/[Model]", record) == ("Canon/5D", "Canon/5D")
    assert resolve("Missing", record) == ("", None)
