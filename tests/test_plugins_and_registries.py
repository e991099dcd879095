import importlib.metadata

import pytest

from exifpipe.core.config import DatabaseConfig
from exifpipe.core.errors import ConfigurationError
from exifpipe.core.plugins import PLUGIN_GROUP, load_entrypoint_plugins
from exifpipe.core.registries import (
    ExtractorRegistry,
    RegistryBundle,
    StageRegistry,
    StoreRegistry,
    default_registries,
    default_store_registry,
)
from exifpipe.stages.output import OutputStage
from exifpipe.stores.memory import MemoryDocumentStore


class FakeEntryPoint:
    def __init__(self, name, value=None, error=None):
        self.name = name
        self._value = value
        self._error = error

    def load(self):
        if self._error is not None:
            raise self._error
        return self._value


def _install(monkeypatch, eps):
    class DummyEntryPoints(list):
        def select(self, group=None):
            return self if group == PLUGIN_GROUP else []

    monkeypatch.setattr(importlib.metadata, "entry_points", lambda: DummyEntryPoints(eps))


def _empty_bundle():
    return RegistryBundle(stages=StageRegistry(), extractors=ExtractorRegistry(), stores=StoreRegistry())


def test_load_entrypoint_plugins_registers_and_logs_failures(monkeypatch, caplog):
    def good_plugin(*, stages, extractors, stores):
        stages.register("tee", lambda bundle: OutputStage(name="tee"))

    def broken_registrar(**kwargs):
        raise RuntimeError("bad registrar")

    _install(
        monkeypatch,
        [
            FakeEntryPoint("good_plugin", value=good_plugin),
            FakeEntryPoint("bad_import", error=ImportError("boom")),
            FakeEntryPoint("bad_registrar", value=broken_registrar),
        ],
    )
    bundle = _empty_bundle()
    with caplog.at_level("WARNING", logger="exifpipe.core.plugins"):
        loaded = load_entrypoint_plugins(bundle)

    assert loaded == ["good_plugin"]
    assert "tee" in bundle.stages
    assert bundle.create_stage("tee").name == "tee"
    assert "bad_import" in caplog.text
    assert "bad_registrar" in caplog.text


def test_default_registries_can_skip_plugins(monkeypatch):
    def plugin(**kwargs):
        raise AssertionError("plugins should not load")

    _install(monkeypatch, [FakeEntryPoint("p", value=plugin)])
    bundle = default_registries(load_plugins=False)
    assert bundle.stages.names() == ["dbquery", "dbstore", "input", "output"]
    assert bundle.extractors.names() == ["exiftool", "pillow"]
    assert bundle.stores.names() == ["memory", "sqlite"]


def test_registry_rejects_duplicates_unless_replacing():
    registry = StageRegistry()
    registry.register("output", lambda bundle: OutputStage())
    with pytest.raises(ValueError, match="already registered"):
        registry.register("output", lambda bundle: OutputStage())
    registry.register("output", lambda bundle: OutputStage(name="other"), replace=True)
    assert registry.get("output")(None).name == "other"


def test_stage_decorator_registers_factory():
    registry = StageRegistry()

    @registry.stage("sink")
    def make_sink(bundle):
        return OutputStage(name="sink")

    assert registry.get("sink") is make_sink


def test_unknown_names_raise_configuration_errors():
    with pytest.raises(ConfigurationError, match="Unknown stage 'nope'"):
        StageRegistry().get("nope")
    with pytest.raises(ConfigurationError, match="Unknown extractor 'x'"):
        ExtractorRegistry().create("x")
    with pytest.raises(ConfigurationError, match="known: memory, sqlite"):
        default_store_registry().create(DatabaseConfig(kind="mongo"))


def test_store_registry_creates_from_config():
    MemoryDocumentStore.reset_shared()
    store = default_store_registry().create(DatabaseConfig(kind="memory", path="reg"))
    assert isinstance(store, MemoryDocumentStore)
    MemoryDocumentStore.reset_shared()
