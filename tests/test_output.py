import io
import json
from datetime import datetime, timezone
from operator import itemgetter

import pytest

from exifpipe.core.component import END_OF_STREAM, Batch, make_channel
from exifpipe.core.config import ExifPipeConfig
from exifpipe.core.errors import ConfigurationError
from exifpipe.core.records import MetadataRecord
from exifpipe.core.values import TagValue
from exifpipe.stages.output import OutputStage, output_path, sort_rows


def _rec(path, **tags):
    return MetadataRecord(path, {name: TagValue.from_native(value) for name, value in tags.items()})


def _run_output(records, *, batches=None, **output):
    cfg = ExifPipeConfig().with_overrides(output=output)
    stream = io.StringIO()
    stage = OutputStage(stream=stream)
    channel = make_channel(0)
    for batch in batches or [Batch(records=tuple(records))]:
        channel.put(batch)
    channel.put(END_OF_STREAM)
    stage.set_input(channel)
    stage.init(cfg)
    stage.run()
    return stream.getvalue(), stage


def test_csv_example_with_missing_tags():
    a = _rec("a.jpg", Make="Canon", Model="5D", DateTimeOriginal=datetime(2020, 1, 1, 10, tzinfo=timezone.utc))
    b = _rec("b.jpg")
    text, stage = _run_output([a, b], cols=["Make", "Model"])
    assert text == "Make,Model\nCanon,5D\n,\n"
    assert stage.stats.written == 2


def test_csv_defaults_to_file_name_column():
    text, _ = _run_output([_rec("a.jpg", FileName="a.jpg")])
    assert text == "FileName\na.jpg\n"


def test_csv_computed_and_template_columns():
    rec = _rec("a.jpg", Make="Canon", Model="5D", ISO=400)
    text, _ = _run_output([rec], cols=["%[Make] [Model]", "@ISO * 2", "@Missing"])
    assert text.splitlines() == ["%[Make] [Model],@ISO * 2,@Missing", "Canon 5D,800,"]


def test_filter_passes_exactly_matching_records():
    records = [_rec("a.jpg", Make="Canon"), _rec("b.jpg", Make="Nikon"), _rec("c.jpg")]
    text, stage = _run_output(records, cols=["Make"], filter='@Make == "Canon"')
    assert text == "Make\nCanon\n"
    assert stage.stats.filtered == 2


def test_blank_filter_writes_every_record():
    records = [_rec("a.jpg", Make="Canon"), _rec("b.jpg", Make="Nikon")]
    text, stage = _run_output(records, cols=["Make"], filter="   ")
    assert text == "Make\nCanon\nNikon\n"
    assert stage.stats.filtered == 0


def test_json_lines_whole_record_and_projection():
    rec = _rec("a.jpg", Make="Canon", ISO=400, DateTimeOriginal=datetime(2020, 1, 1, tzinfo=timezone.utc))
    text, _ = _run_output([rec], type="json")
    assert json.loads(text) == {"Make": "Canon", "ISO": 400, "DateTimeOriginal": "2020-01-01T00:00:00+00:00"}

    text, _ = _run_output([rec], type="json", cols=["Make", "@ISO + 1"])
    assert json.loads(text) == {"Make": "Canon", "@ISO + 1": 401}


def test_keys_summary_counts_and_types():
    records = [
        _rec("a.jpg", Make="Canon", ISO=100),
        _rec("b.jpg", Make="Nikon", ISO=2.5),
        _rec("c.jpg", Make="Sony"),
    ]
    text, _ = _run_output(records, keys=True)
    assert text.splitlines() == ["Tag,Count,Type", "ISO,2,float64|uint16", "Make,3,string"]


def test_keys_sorted_by_count_reversed():
    records = [_rec("a.jpg", Make="Canon", ISO=100), _rec("b.jpg", Make="Nikon")]
    text, _ = _run_output(records, type="keys", sort="Count", sort_reversed=True)
    assert text.splitlines()[1:] == ["Make,2,string", "ISO,1,uint16"]


def test_sort_is_numeric_and_happens_once_across_batches():
    batches = [
        Batch(records=(_rec("a.jpg", FileName="a", ISO=800), _rec("b.jpg", FileName="b", ISO=100))),
        Batch(records=(_rec("c.jpg", FileName="c", ISO=1600), _rec("d.jpg", FileName="d", ISO=50.5))),
    ]
    text, _ = _run_output([], batches=batches, cols=["FileName"], sort="ISO")
    assert text.splitlines()[1:] == ["d", "b", "a", "c"]

    text, _ = _run_output([], batches=batches, cols=["FileName"], sort="ISO", sort_reversed=True)
    assert text.splitlines()[1:] == ["c", "a", "b", "d"]


def test_sort_sinks_incomparable_rows_to_the_end():
    rows = [("x", "b"), ("y", None), ("z", 3), ("w", "a")]
    ordered = sort_rows(rows, key=lambda r: r[1])
    assert [r[0] for r in ordered] == ["w", "x", "y", "z"]

    reversed_rows = sort_rows(rows, key=lambda r: r[1], reverse=True)
    assert [r[0] for r in reversed_rows] == ["x", "w", "y", "z"]


def test_sort_is_stable_for_ties():
    rows = [("first", 1), ("second", 1), ("third", 0)]
    assert [r[0] for r in sort_rows(rows, key=lambda r: r[1])] == ["third", "first", "second"]


def test_sort_is_idempotent_with_mixed_and_missing_values():
    rows = [("a", 3), ("b", None), ("c", "x"), ("d", 1.5), ("e", 3), ("f", "y"), ("g", None)]
    key = itemgetter(1)
    for reverse, expected in ((False, list("daebcfg")), (True, list("aedbcfg"))):
        once = sort_rows(rows, key=key, reverse=reverse)
        assert [r[0] for r in once] == expected
        assert sort_rows(once, key=key, reverse=reverse) == once

    records = [_rec(f"{name}.jpg", FileName=name, **({} if value is None else {"ISO": value})) for name, value in rows]
    text, _ = _run_output(records, cols=["FileName"], sort="ISO")
    by_name = {r.get("FileName").native: r for r in records}
    resorted = [by_name[line] for line in text.splitlines()[1:]]
    assert _run_output(resorted, cols=["FileName"], sort="ISO")[0] == text


def test_upstream_errors_are_counted():
    batch = Batch(records=(_rec("a.jpg", FileName="a.jpg"),), error="b.jpg: File format error", source="worker-0")
    _, stage = _run_output([], batches=[batch])
    assert stage.stats.upstream_errors == 1
    assert stage.stats.written == 1


def test_file_output_appends_extension(tmp_path):
    target = tmp_path / "out" / "report"
    _run_output([_rec("a.jpg", FileName="a.jpg")], path=str(target))
    assert (tmp_path / "out" / "report.csv").read_text(encoding="utf-8") == "FileName\na.jpg\n"
    assert not (tmp_path / "out" / "report.csv.tmp").exists()


def test_output_path_helper():
    assert output_path("x", "json") == "x.json"
    assert output_path("x.CSV", "csv") == "x.CSV"
    assert output_path("", "csv") == ""
    assert output_path("out.txt", "csv") == "out.txt"
    assert output_path("out.data", "json") == "out.data"


def test_keys_mode_rejects_other_columns():
    stage = OutputStage(stream=io.StringIO())
    stage.set_input(make_channel(0))
    cfg = ExifPipeConfig().with_overrides(output={"keys": True, "cols": ["Make"]})
    with pytest.raises(ConfigurationError):
        stage.init(cfg)


def test_invalid_filter_fails_at_init():
    stage = OutputStage(stream=io.StringIO())
    stage.set_input(make_channel(0))
    cfg = ExifPipeConfig().with_overrides(output={"filter": "Make =="})
    with pytest.raises(Exception, match="invalid expression"):
        stage.init(cfg)
