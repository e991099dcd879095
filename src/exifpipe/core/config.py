# config.py
# SPDX-License-Identifier: MIT
"""Configuration models and helpers for exifpipe runs.

The configuration is a tree of frozen dataclasses. One snapshot is built per
run and handed to every stage's ``init``; stages read it but never write it
back. Documents can be loaded from YAML, TOML, or JSON, and their layout
mirrors the dataclasses::

    pipelines:
      default: [input, output]
      store: [input, dbstore]
    input:
      file_exts: [jpg, jpeg, heic]
      exit_on_error: false
    throttle:
      max_cpus: 4
    output:
      cols: [FileName, Make, Model, "@FNumber * 2"]
      sort: FileName
"""
from __future__ import annotations

import json
import re
import tomllib
import types
from collections.abc import Mapping
from collections.abc import Sequence as ABCSequence
from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import timedelta, timezone, tzinfo
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, TypeVar, Union, get_args, get_origin, get_type_hints

import yaml

from .errors import ConfigurationError
from .log import DEFAULT_LOG_FORMAT, PACKAGE_LOGGER_NAME, configure_logging
from .normalize import NormalizationRules, rules_from_options

__all__ = [
    "DEFAULT_CONFIG_NAMES",
    "OUTPUT_TYPES",
    "InputConfig",
    "NormalizeConfig",
    "ThrottleConfig",
    "DatabaseConfig",
    "OutputConfig",
    "LoggingConfig",
    "ExifPipeConfig",
    "load_config_from_path",
    "parse_timezone",
]

DEFAULT_CONFIG_NAMES: tuple[str, ...] = (
    "exifpipe.yml",
    "exifpipe.yaml",
    "exifpipe.toml",
    "exifpipe.json",
)
OUTPUT_TYPES: tuple[str, ...] = ("csv", "json", "keys", "parquet")

_OFFSET_RX = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


def parse_timezone(name: str | None) -> tzinfo | None:
    """Resolve a zone name: ``UTC``, ``+01:00``, an IANA name, or local (None).

    Raises:
        ConfigurationError: If the name is not a known zone.
    """
    if name is None:
        return None
    text = str(name).strip()
    if not text or text.lower() == "local":
        return None
    if text.upper() in ("UTC", "Z", "GMT"):
        return timezone.utc
    offset = _OFFSET_RX.match(text)
    if offset:
        sign = -1 if offset.group(1) == "-" else 1
        delta = timedelta(hours=int(offset.group(2)), minutes=int(offset.group(3)))
        return timezone(sign * delta)
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    try:
        return ZoneInfo(text)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone {name!r}") from exc


def _freeze_mappings(obj: Any, *names: str) -> None:
    """Replace the named dict fields of a frozen section with read-only views."""
    for name in names:
        value = getattr(obj, name)
        if value is not None and not isinstance(value, types.MappingProxyType):
            object.__setattr__(obj, name, types.MappingProxyType(dict(value)))


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InputConfig:
    """File discovery and extraction settings for the ``input`` stage.

    Attributes:
        roots: Paths to scan; the CLI appends its positional roots here.
        file_exts: Extensions to accept (with or without the dot).
        mime_types: MIME patterns to accept, e.g. ``image/*``.
        exit_on_error: Stop the run after the first failing worker batch.
        extractor: Extraction backend name (``exiftool`` or ``pillow``).
        extractor_options: Backend-specific options.
        skip_hidden: Skip dotfiles and dot-directories while walking.
        follow_symlinks: Follow directory symlinks while walking.
    """

    roots: Tuple[str, ...] = ()
    file_exts: Tuple[str, ...] = ()
    mime_types: Tuple[str, ...] = ()
    exit_on_error: bool = False
    extractor: str = "exiftool"
    extractor_options: Mapping[str, Any] = field(default_factory=dict)
    skip_hidden: bool = True
    follow_symlinks: bool = False

    def __post_init__(self) -> None:
        _freeze_mappings(self, "extractor_options")


@dataclass(frozen=True, slots=True)
class NormalizeConfig:
    """Tag normalization tables; see :class:`NormalizationRules`.

    ``None`` for a table keeps the built-in default.
    """

    name_map: Mapping[str, str] = field(default_factory=dict)
    tags_to_load: Tuple[str, ...] = ()
    remove: Tuple[str, ...] = ()
    subsec_date: Optional[Mapping[str, str]] = None
    binary_markers: Optional[Tuple[str, ...]] = None
    unit_suffixes: Optional[Tuple[str, ...]] = None
    string_tags: Optional[Tuple[str, ...]] = None
    rational_suffix: str = ".v"
    trim: bool = True
    timezone: Optional[str] = None

    def __post_init__(self) -> None:
        _freeze_mappings(self, "name_map", "subsec_date")

    def to_rules(self) -> NormalizationRules:
        return rules_from_options(
            name_map=self.name_map,
            tags_to_load=self.tags_to_load,
            remove=self.remove,
            subsec_date=self.subsec_date,
            binary_markers=self.binary_markers,
            unit_suffixes=self.unit_suffixes,
            string_tags=self.string_tags,
            rational_suffix=self.rational_suffix,
            trim=self.trim,
            tz=parse_timezone(self.timezone),
        )


@dataclass(frozen=True, slots=True)
class ThrottleConfig:
    """Concurrency ceiling and channel sizing.

    ``max_cpus`` is clamped to the usable CPU count; 0 means one worker.
    ``channel_capacity`` bounds each inter-stage channel (0 is unbounded).
    """

    max_cpus: int = 1
    channel_capacity: int = 8


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Document store target for ``dbstore`` and ``dbquery``."""

    kind: str = "sqlite"
    path: str = "exifpipe.db"
    table: str = "exif"
    drop_first: bool = False
    query_filter: str = ""
    batch_size: int = 256


@dataclass(frozen=True, slots=True)
class OutputConfig:
    """Projection settings for the ``output`` stage.

    Attributes:
        cols: Column specs (tag name, ``@expr`` or ``%template``).
        keys: Shorthand for ``type = "keys"``.
        path: Output file; empty writes to stdout. The type's extension is
            appended when missing.
        type: ``csv``, ``json``, ``keys`` or ``parquet``.
        filter: Expression a record must satisfy to be written.
        sort: Column spec to sort by; empty streams records unsorted.
        sort_reversed: Invert the sort comparison.
    """

    cols: Tuple[str, ...] = ()
    keys: bool = False
    path: str = ""
    type: str = "csv"
    filter: str = ""
    sort: str = ""
    sort_reversed: bool = False

    @property
    def mode(self) -> str:
        return "keys" if self.keys else self.type.lower()


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Controls the package logger; ``path`` sends records to a file."""

    level: str = "INFO"
    path: Optional[str] = None
    verbose: bool = False
    propagate: bool = True
    fmt: Optional[str] = DEFAULT_LOG_FORMAT
    logger_name: str = PACKAGE_LOGGER_NAME

    def apply(self) -> None:
        """Apply this logging configuration to the package logger."""
        configure_logging(
            level="DEBUG" if self.verbose and self.level.upper() == "INFO" else self.level,
            path=self.path or None,
            propagate=self.propagate,
            fmt=self.fmt,
            logger_name=self.logger_name or PACKAGE_LOGGER_NAME,
        )


# ---------------------------------------------------------------------------
# Master config
# ---------------------------------------------------------------------------

T = TypeVar("T")

_SECTIONS = ("input", "normalize", "throttle", "database", "output", "logging")


def _default_pipelines() -> Dict[str, Tuple[str, ...]]:
    return {
        "default": ("input", "output"),
        "store": ("input", "dbstore"),
        "query": ("dbquery", "output"),
    }


@dataclass(frozen=True, slots=True)
class ExifPipeConfig:
    """Immutable snapshot of every setting a run needs."""

    pipelines: Mapping[str, Tuple[str, ...]] = field(default_factory=_default_pipelines)
    input: InputConfig = field(default_factory=InputConfig)
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        _freeze_mappings(self, "pipelines")

    def chain(self, name: str) -> Tuple[str, ...]:
        """Return the stage names of chain ``name``.

        Raises:
            ConfigurationError: If no such chain is configured.
        """
        stages = self.pipelines.get(name)
        if stages is None:
            known = ", ".join(sorted(self.pipelines)) or "none"
            raise ConfigurationError(f"Unknown pipeline {name!r} (configured: {known})")
        return tuple(stages)

    def validate(self) -> None:
        """Check cross-field constraints.

        Raises:
            ConfigurationError: On the first invalid setting found.
        """
        if not self.pipelines:
            raise ConfigurationError("At least one pipeline must be configured.")
        for name, stages in self.pipelines.items():
            if not stages:
                raise ConfigurationError(f"Pipeline {name!r} has no stages.")
            if any(not isinstance(stage, str) or not stage for stage in stages):
                raise ConfigurationError(f"Pipeline {name!r} has an empty or non-string stage name.")
        if self.throttle.max_cpus < 0:
            raise ConfigurationError("throttle.max_cpus must be >= 0.")
        if self.throttle.channel_capacity < 0:
            raise ConfigurationError("throttle.channel_capacity must be >= 0.")
        if self.output.type.lower() not in OUTPUT_TYPES:
            raise ConfigurationError(
                f"output.type must be one of {', '.join(OUTPUT_TYPES)}; got {self.output.type!r}."
            )
        if self.database.batch_size < 1:
            raise ConfigurationError("database.batch_size must be >= 1.")
        if not self.database.table.isidentifier():
            raise ConfigurationError(f"database.table must be an identifier; got {self.database.table!r}.")
        import logging as _logging

        if not isinstance(_logging.getLevelName(self.logging.level.upper()), int):
            raise ConfigurationError(f"Unknown logging.level {self.logging.level!r}.")
        parse_timezone(self.normalize.timezone)

    def with_overrides(self, **sections: Mapping[str, Any]) -> ExifPipeConfig:
        """Return a new snapshot with fields of the named sections replaced.

        Example: ``cfg.with_overrides(output={"type": "json"})``.
        """
        changes: Dict[str, Any] = {}
        for section, values in sections.items():
            if section not in _SECTIONS:
                raise ConfigurationError(f"Unknown config section {section!r}")
            if not values:
                continue
            current = getattr(self, section)
            _reject_unknown(type(current), values, context=section)
            hints = get_type_hints(type(current))
            coerced = {key: _coerce_value(hints[key], value) for key, value in values.items()}
            changes[section] = replace(current, **coerced)
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        return _dataclass_to_dict(self)

    def to_json(self, path: Path | str, *, indent: int = 2) -> str:
        """Write the config as JSON to ``path`` and return the text."""
        text = json.dumps(self.to_dict(), indent=indent, sort_keys=True)
        Path(path).write_text(text, encoding="utf-8")
        return text

    @classmethod
    def from_dict(cls: Type[T], data: Mapping[str, Any] | None) -> T:
        """Build a config from a mapping, rejecting unknown keys.

        Raises:
            ConfigurationError: If the mapping has unknown keys or values of
                the wrong shape.
        """
        if data is not None and not isinstance(data, Mapping):
            raise ConfigurationError(f"Top-level config must be a mapping; got {type(data).__name__}.")
        try:
            return _dataclass_from_dict(cls, data)
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def from_json(cls: Type[T], path: Path | str) -> T:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(payload)  # type: ignore[attr-defined]

    @classmethod
    def from_toml(cls: Type[T], path: Path | str) -> T:
        data = tomllib.loads(Path(path).read_bytes().decode("utf-8"))
        return cls.from_dict(data)  # type: ignore[attr-defined]

    @classmethod
    def from_yaml(cls: Type[T], path: Path | str) -> T:
        """Load a config from YAML; an empty document gives the defaults."""
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(data)  # type: ignore[attr-defined]


def load_config_from_path(path: str | Path) -> ExifPipeConfig:
    """Load and validate a config from a YAML, TOML, or JSON file.

    Raises:
        ConfigurationError: If the extension is unsupported, the file cannot
            be parsed, or validation fails.
    """
    p = Path(path)
    suffix = p.suffix.lower()
    loaders = {
        ".yml": ExifPipeConfig.from_yaml,
        ".yaml": ExifPipeConfig.from_yaml,
        ".toml": ExifPipeConfig.from_toml,
        ".json": ExifPipeConfig.from_json,
    }
    loader = loaders.get(suffix)
    if loader is None:
        raise ConfigurationError(
            f"Unsupported config extension {p.suffix!r}; expected .yml, .yaml, .toml or .json."
        )
    try:
        cfg = loader(p)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config {p}: {exc}") from exc
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot parse config {p}: {exc}") from exc
    cfg.validate()
    return cfg


# ---------------------------------------------------------------------------
# Dict <-> dataclass helpers
# ---------------------------------------------------------------------------


def _reject_unknown(cls: type, data: Mapping[str, Any], *, context: str) -> None:
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(str(k) for k in data if k not in allowed)
    if unknown:
        raise ConfigurationError(
            f"Unsupported options for {context}: {', '.join(unknown)}. "
            f"Allowed keys: {', '.join(sorted(allowed))}"
        )


def _dataclass_to_dict(obj: Any) -> Dict[str, Any]:
    """Serialize dataclasses to JSON-friendly dicts, skipping None fields."""
    result: Dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        result[f.name] = _serialize_value(value)
    return result


def _serialize_value(value: Any) -> Any:
    if is_dataclass(value):
        return _dataclass_to_dict(value)
    if isinstance(value, (list, tuple)):
        return [_serialize_value(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _serialize_value(v) for k, v in value.items()}
    if isinstance(value, Path):
        return str(value)
    return value


def _dataclass_from_dict(cls: Type[T], data: Mapping[str, Any] | None) -> T:
    """Instantiate a dataclass of type ``cls`` from a mapping."""
    if data is None:
        return cls()  # type: ignore[call-arg]
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Expected a mapping for {cls.__name__}; got {type(data).__name__}.")
    _reject_unknown(cls, data, context=cls.__name__)
    type_hints = get_type_hints(cls)
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        kwargs[f.name] = _coerce_value(type_hints.get(f.name, f.type), data[f.name])
    return cls(**kwargs)  # type: ignore[arg-type]


_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _coerce_value(expected_type: Any, value: Any) -> Any:
    """Coerce ``value`` into the shape implied by ``expected_type``.

    Handles nested dataclasses, tuples/lists, dicts, optionals and scalars.
    A bare string where a sequence is expected is split on commas.
    """
    base_type, _ = _strip_optional(expected_type)
    if value is None:
        return None
    if isinstance(base_type, type) and is_dataclass(base_type):
        return _dataclass_from_dict(base_type, value)
    origin = get_origin(base_type)
    if origin in (list, tuple, ABCSequence):
        args = get_args(base_type)
        inner = args[0] if args else Any
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        items = [_coerce_value(inner, v) for v in value]
        return tuple(items) if origin is tuple else list(items)
    if origin in (dict, Mapping):
        if not isinstance(value, Mapping):
            raise ValueError(f"expected a mapping, got {type(value).__name__}")
        key_type, val_type = get_args(base_type) if get_args(base_type) else (Any, Any)
        return {_coerce_value(key_type, k): _coerce_value(val_type, v) for k, v in value.items()}
    if base_type is bool:
        return _coerce_bool(value)
    if base_type in {str, int, float}:
        return base_type(value)
    if base_type is Path:
        return Path(value)
    return value


def _strip_optional(typ: Any) -> Tuple[Any, bool]:
    """Strip ``None`` from a union annotation, returning ``(base, is_optional)``."""
    origin = get_origin(typ)
    if origin is Union or origin is getattr(types, "UnionType", None):
        args = [arg for arg in get_args(typ) if arg is not type(None)]
        if len(args) == 1:
            base, _ = _strip_optional(args[0])
            return base, True
    return typ, False
