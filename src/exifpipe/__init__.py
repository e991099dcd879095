# __init__.py
# SPDX-License-Identifier: MIT
"""
Top-level package exports for :mod:`exifpipe`.

Public surface
--------------
Most callers need three things: a configuration (:class:`ExifPipeConfig`,
or :func:`load_config_from_path` for a YAML/TOML/JSON file), a chain name
from ``config.pipelines``, and :func:`run_pipeline` to assemble and run it.
Everything listed in :data:`__all__` is the recommended surface; the rest of
the package (stage classes, registries, the normalizer) is importable for
extension work and may change between releases.

Extending
---------
New stages, extraction backends and document stores register into the
registries of :mod:`exifpipe.core.registries`, either directly or from a
plugin exposed under the ``exifpipe.plugins`` entry-point group.

Examples:
    Scan a directory and print a CSV to stdout::

        >>> from exifpipe import ExifPipeConfig, run_pipeline
        >>> cfg = ExifPipeConfig().with_overrides(
        ...     input={"roots": ["photos"]},
        ...     output={"cols": ["FileName", "Make", "Model"]},
        ... )
        >>> stats = run_pipeline(cfg, "default")
"""

from __future__ import annotations

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("exifpipe")
except Exception:  # PackageNotFoundError or runtime env oddities
    __version__ = "0.0.0+unknown"


from .cli.runner import run_pipeline
from .core.assembler import Chain, RunStats, assemble, build_chain
from .core.config import ExifPipeConfig, load_config_from_path
from .core.errors import (
    ComponentStateError,
    ConfigurationError,
    ExifPipeError,
    ExpressionError,
    ExtractionError,
    PipelineRunError,
    StoreError,
)
from .core.expr import evaluate, expand, filter_record, resolve
from .core.log import configure_logging, get_logger
from .core.normalize import NormalizationRules, Normalizer, compute_dedup_key
from .core.records import MetadataRecord
from .core.registries import RegistryBundle, default_registries
from .core.values import TagValue, ValueKind

__all__ = [
    "__version__",
    "run_pipeline",
    "Chain",
    "RunStats",
    "assemble",
    "build_chain",
    "ExifPipeConfig",
    "load_config_from_path",
    "ExifPipeError",
    "ConfigurationError",
    "ComponentStateError",
    "ExtractionError",
    "ExpressionError",
    "StoreError",
    "PipelineRunError",
    "evaluate",
    "expand",
    "filter_record",
    "resolve",
    "configure_logging",
    "get_logger",
    "NormalizationRules",
    "Normalizer",
    "compute_dedup_key",
    "MetadataRecord",
    "RegistryBundle",
    "default_registries",
    "TagValue",
    "ValueKind",
]
