import json
from datetime import timedelta, timezone

import pytest

from exifpipe.core.config import (
    DatabaseConfig,
    ExifPipeConfig,
    OutputConfig,
    load_config_from_path,
    parse_timezone,
)
from exifpipe.core.errors import ConfigurationError


def test_defaults_validate_and_expose_builtin_chains():
    cfg = ExifPipeConfig()
    cfg.validate()
    assert cfg.chain("default") == ("input", "output")
    assert cfg.chain("store") == ("input", "dbstore")
    assert cfg.chain("query") == ("dbquery", "output")


def test_unknown_chain_lists_configured_names():
    with pytest.raises(ConfigurationError, match="configured: default, query, store"):
        ExifPipeConfig().chain("nope")


def test_from_dict_coerces_sequences_and_scalars():
    cfg = ExifPipeConfig.from_dict(
        {
            "pipelines": {"scan": ["input", "output"]},
            "input": {"file_exts": "jpg, heic", "exit_on_error": "yes"},
            "throttle": {"max_cpus": "4"},
            "output": {"cols": ["FileName", "@ISO * 2"]},
        }
    )
    assert cfg.pipelines == {"scan": ("input", "output")}
    assert cfg.input.file_exts == ("jpg", "heic")
    assert cfg.input.exit_on_error is True
    assert cfg.throttle.max_cpus == 4
    assert cfg.output.cols == ("FileName", "@ISO * 2")


@pytest.mark.parametrize(
    "data, fragment",
    [
        ({"bogus": {}}, "bogus"),
        ({"output": {"colz": ["a"]}}, "colz"),
        ({"input": {"exit_on_error": "maybe"}}, "not a boolean"),
        (["input"], "must be a mapping"),
    ],
)
def test_from_dict_rejects_bad_shapes(data, fragment):
    with pytest.raises(ConfigurationError, match=fragment):
        ExifPipeConfig.from_dict(data)


@pytest.mark.parametrize(
    "overrides",
    [
        {"throttle": {"max_cpus": -1}},
        {"output": {"type": "xml"}},
        {"database": {"batch_size": 0}},
        {"database": {"table": "exif; drop"}},
        {"logging": {"level": "LOUD"}},
        {"normalize": {"timezone": "Mars/Olympus"}},
    ],
)
def test_validate_rejects_invalid_settings(overrides):
    cfg = ExifPipeConfig().with_overrides(**overrides)
    with pytest.raises(ConfigurationError):
        cfg.validate()


def test_with_overrides_returns_a_new_snapshot():
    base = ExifPipeConfig()
    changed = base.with_overrides(output={"type": "json", "sort": "FileName"}, input={})
    assert changed.output == OutputConfig(type="json", sort="FileName")
    assert base.output == OutputConfig()
    assert changed.input is base.input
    with pytest.raises(ConfigurationError):
        base.with_overrides(extras={"a": 1})
    with pytest.raises(ConfigurationError):
        base.with_overrides(database={"host": "x"})


def test_output_mode_prefers_keys_flag():
    assert OutputConfig(type="JSON").mode == "json"
    assert OutputConfig(type="csv", keys=True).mode == "keys"


def test_load_yaml_toml_and_json(tmp_path):
    yml = tmp_path / "exifpipe.yml"
    yml.write_text("input:\n  file_exts: [jpg]\ndatabase:\n  kind: memory\n", encoding="utf-8")
    toml = tmp_path / "exifpipe.toml"
    toml.write_text('[input]\nfile_exts = ["jpg"]\n[database]\nkind = "memory"\n', encoding="utf-8")
    jsn = tmp_path / "exifpipe.json"
    jsn.write_text(json.dumps({"input": {"file_exts": ["jpg"]}, "database": {"kind": "memory"}}), encoding="utf-8")

    loaded = [load_config_from_path(p) for p in (yml, toml, jsn)]
    for cfg in loaded:
        assert cfg.input.file_exts == ("jpg",)
        assert cfg.database == DatabaseConfig(kind="memory")


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "exifpipe.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config_from_path(path) == ExifPipeConfig()


def test_load_errors_are_configuration_errors(tmp_path):
    with pytest.raises(ConfigurationError, match="Unsupported config extension"):
        load_config_from_path(tmp_path / "exifpipe.ini")
    with pytest.raises(ConfigurationError, match="Cannot read"):
        load_config_from_path(tmp_path / "missing.yml")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Cannot parse"):
        load_config_from_path(broken)
    invalid = tmp_path / "invalid.yml"
    invalid.write_text("throttle:\n  max_cpus: -2\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="max_cpus"):
        load_config_from_path(invalid)


def test_to_json_round_trips(tmp_path):
    cfg = ExifPipeConfig().with_overrides(output={"cols": ["Make", "Model"]}, normalize={"timezone": "UTC"})
    path = tmp_path / "cfg.json"
    cfg.to_json(path)
    assert ExifPipeConfig.from_json(path) == cfg


@pytest.mark.parametrize(
    "name, expected",
    [
        (None, None),
        ("", None),
        ("local", None),
        ("UTC", timezone.utc),
        ("+05:30", timezone(timedelta(hours=5, minutes=30))),
        ("-0800", timezone(-timedelta(hours=8))),
    ],
)
def test_parse_timezone(name, expected):
    assert parse_timezone(name) == expected


def test_parse_timezone_iana_name():
    pytest.importorskip("zoneinfo")
    try:
        zone = parse_timezone("Europe/Berlin")
    except ConfigurationError:
        pytest.skip("no tz database available")
    assert str(zone) == "Europe/Berlin"


def test_normalize_section_builds_rules():
    cfg = ExifPipeConfig().with_overrides(normalize={"name_map": {"Model": "CameraModel"}, "timezone": "UTC"})
    rules = cfg.normalize.to_rules()
    assert rules.name_map["Model"] == "CameraModel"
    assert rules.tz is timezone.utc


def test_mapping_sections_are_read_only():
    cfg = ExifPipeConfig.from_dict(
        {
            "pipelines": {"scan": ["input", "output"]},
            "input": {"extractor_options": {"extra_args": ["-G0"]}},
            "normalize": {"name_map": {"Model": "CameraModel"}, "subsec_date": {"SubSecTime": "DateTime"}},
        }
    )
    for mapping in (cfg.pipelines, cfg.input.extractor_options, cfg.normalize.name_map, cfg.normalize.subsec_date):
        with pytest.raises(TypeError):
            mapping["extra"] = "x"
    assert ExifPipeConfig().pipelines == {
        "default": ("input", "output"),
        "store": ("input", "dbstore"),
        "query": ("dbquery", "output"),
    }
    changed = cfg.with_overrides(normalize={"timezone": "UTC"})
    assert changed.normalize.name_map == {"Model": "CameraModel"}
    assert ExifPipeConfig.from_dict(json.loads(json.dumps(cfg.to_dict()))) == cfg
