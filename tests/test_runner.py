from pathlib import Path

import pytest

from exifpipe import run_pipeline
from exifpipe.cli.runner import make_scan_config, scan
from exifpipe.core.config import ExifPipeConfig
from exifpipe.core.errors import PipelineRunError
from exifpipe.core.registries import (
    ExtractorRegistry,
    RegistryBundle,
    default_stage_registry,
    default_store_registry,
)
from exifpipe.extractors.base import ExtractionResult


class MakeOnlyExtractor:
    name = "make"

    def extract_batch(self, paths):
        return [ExtractionResult(p, {"FileName": Path(p).name, "Make": "Canon"}) for p in paths]

    def close(self):
        pass


class ExplodingExtractor(MakeOnlyExtractor):
    def extract_batch(self, paths):
        raise RuntimeError("backend crashed")


def _registries():
    extractors = ExtractorRegistry()
    extractors.register("make", lambda options: MakeOnlyExtractor())
    extractors.register("boom", lambda options: ExplodingExtractor())
    return RegistryBundle(stages=default_stage_registry(), extractors=extractors, stores=default_store_registry())


def test_make_scan_config_appends_roots():
    base = ExifPipeConfig().with_overrides(input={"roots": ["/a"]})
    cfg = make_scan_config(["/b", Path("/c")], "out.json", cols=["Make"], output_type="json", base_config=base)
    assert cfg.input.roots == ("/a", "/b", str(Path("/c")))
    assert cfg.output.path == "out.json"
    assert cfg.output.type == "json"
    assert cfg.output.cols == ("Make",)


def test_scan_writes_output_file(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    (root / "x.jpg").write_bytes(b"")
    (root / "y.jpg").write_bytes(b"")
    base = ExifPipeConfig().with_overrides(input={"extractor": "make"}, throttle={"max_cpus": 2})

    stats = scan([root], tmp_path / "out.csv", cols=["FileName", "Make"], base_config=base, registries=_registries())

    assert stats.stages == ["input", "output"]
    assert stats.stage_stats["input"]["successes"] == 2
    rows = (tmp_path / "out.csv").read_text(encoding="utf-8").splitlines()
    assert rows[0] == "FileName,Make"
    assert sorted(rows[1:]) == ["x.jpg,Canon", "y.jpg,Canon"]


def test_backend_crash_is_reported_per_file_not_raised(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    (root / "x.jpg").write_bytes(b"")
    cfg = make_scan_config([root], tmp_path / "out.csv").with_overrides(input={"extractor": "boom"})

    stats = run_pipeline(cfg, registries=_registries())

    assert stats.stage_stats["input"]["errors"] == 1
    assert (tmp_path / "out.csv").read_text(encoding="utf-8") == "FileName\n"


def test_stage_failure_raises_after_the_chain_finishes(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    (root / "x.jpg").write_bytes(b"")
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    cfg = make_scan_config([root], blocker / "out.csv").with_overrides(input={"extractor": "make"})

    with pytest.raises(PipelineRunError, match=r"\[output\]"):
        run_pipeline(cfg, registries=_registries())
