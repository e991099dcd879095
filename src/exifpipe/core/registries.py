# registries.py
# SPDX-License-Identifier: MIT
"""Registries for pipeline stages, extraction backends, and document stores.

Each registry maps a name to a factory. Stage factories receive the
:class:`RegistryBundle` so a stage can look up the backends it needs.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .errors import ConfigurationError
from .log import get_logger

if TYPE_CHECKING:  # pragma: no cover - type-only deps
    from ..extractors.base import Extractor
    from ..stores.base import DocumentStore
    from .component import PipelineComponent
    from .config import DatabaseConfig

log = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

StageFactory = Callable[["RegistryBundle"], "PipelineComponent"]
ExtractorFactory = Callable[[Mapping[str, Any]], "Extractor"]
StoreFactory = Callable[["DatabaseConfig"], "DocumentStore"]


@dataclass
class _NamedRegistry(Generic[F]):
    kind: str = "factory"
    _factories: dict[str, F] = field(default_factory=dict)

    def register(self, name: str, factory: F, *, replace: bool = False) -> None:
        """Register ``factory`` under ``name``."""
        if not replace and name in self._factories:
            raise ValueError(f"{self.kind.capitalize()} {name!r} is already registered")
        self._factories[name] = factory

    def decorator(self, name: str, *, replace: bool = False) -> Callable[[F], F]:
        def wrap(factory: F) -> F:
            self.register(name, factory, replace=replace)
            return factory

        return wrap

    def get(self, name: str) -> F:
        factory = self._factories.get(name)
        if factory is None:
            known = ", ".join(self.names()) or "none"
            raise ConfigurationError(f"Unknown {self.kind} {name!r} (known: {known})")
        return factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories


@dataclass
class StageRegistry(_NamedRegistry[StageFactory]):
    """Stage name to component factory."""

    kind: str = "stage"

    def stage(self, name: str, *, replace: bool = False) -> Callable[[StageFactory], StageFactory]:
        """Decorator to register a stage factory for ``name``."""
        return self.decorator(name, replace=replace)


@dataclass
class ExtractorRegistry(_NamedRegistry[ExtractorFactory]):
    """Extraction backend name to factory taking backend options."""

    kind: str = "extractor"

    def create(self, name: str, options: Mapping[str, Any] | None = None) -> Extractor:
        return self.get(name)(dict(options or {}))


@dataclass
class StoreRegistry(_NamedRegistry[StoreFactory]):
    """Document store kind to factory taking the database config."""

    kind: str = "store"

    def create(self, cfg: DatabaseConfig) -> DocumentStore:
        return self.get(cfg.kind)(cfg)


@dataclass(slots=True)
class RegistryBundle:
    """Registries used to assemble and run a chain."""

    stages: StageRegistry
    extractors: ExtractorRegistry
    stores: StoreRegistry

    def create_stage(self, name: str) -> PipelineComponent:
        return self.stages.get(name)(self)


def default_stage_registry() -> StageRegistry:
    """Build a StageRegistry populated with the built-in stages."""
    from ..stages.input import InputStage
    from ..stages.output import OutputStage
    from ..stages.query import QueryStage
    from ..stages.store import StoreStage

    reg = StageRegistry()
    reg.register("input", lambda bundle: InputStage(extractors=bundle.extractors))
    reg.register("dbstore", lambda bundle: StoreStage(stores=bundle.stores))
    reg.register("dbquery", lambda bundle: QueryStage(stores=bundle.stores))
    reg.register("output", lambda bundle: OutputStage())
    return reg


def default_extractor_registry() -> ExtractorRegistry:
    """Build an ExtractorRegistry with the exiftool and Pillow backends."""
    from ..extractors.exiftool import ExifToolExtractor
    from ..extractors.pillow import PillowExtractor

    reg = ExtractorRegistry()
    reg.register("exiftool", ExifToolExtractor.from_options)
    reg.register("pillow", PillowExtractor.from_options)
    return reg


def default_store_registry() -> StoreRegistry:
    """Build a StoreRegistry with the SQLite and in-memory stores."""
    from ..stores.memory import MemoryDocumentStore
    from ..stores.sqlite import SQLiteDocumentStore

    reg = StoreRegistry()
    reg.register("sqlite", SQLiteDocumentStore.from_config)
    reg.register("memory", MemoryDocumentStore.from_config)
    return reg


def default_registries(*, load_plugins: bool = True) -> RegistryBundle:
    """Return a bundle of default registries, optionally with plugins loaded."""
    from .plugins import load_entrypoint_plugins  # local import to avoid cycles

    bundle = RegistryBundle(
        stages=default_stage_registry(),
        extractors=default_extractor_registry(),
        stores=default_store_registry(),
    )
    if load_plugins:
        load_entrypoint_plugins(bundle)
    return bundle


__all__ = [
    "StageFactory",
    "ExtractorFactory",
    "StoreFactory",
    "StageRegistry",
    "ExtractorRegistry",
    "StoreRegistry",
    "RegistryBundle",
    "default_stage_registry",
    "default_extractor_registry",
    "default_store_registry",
    "default_registries",
]
