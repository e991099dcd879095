# runner.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any

from ..core.assembler import Chain, RunStats, build_chain
from ..core.config import ExifPipeConfig
from ..core.log import get_logger
from ..core.registries import RegistryBundle

log = get_logger(__name__)

__all__ = ["run_chain", "run_pipeline", "make_scan_config", "scan"]


def run_chain(chain: Chain) -> RunStats:
    """Run an assembled chain and log its stage counters."""

    stats = chain.run()
    for stage, counters in stats.stage_stats.items():
        log.info("[%s] %s", stage, counters)
    return stats


def run_pipeline(
    config: ExifPipeConfig,
    chain_name: str = "default",
    *,
    registries: RegistryBundle | None = None,
) -> RunStats:
    """Assemble the chain ``chain_name`` from ``config`` and run it.

    This is the main programmatic entry point. Stages, extractors and stores
    are looked up in ``registries`` (the built-in ones plus entry-point
    plugins when omitted).

    Args:
        config (ExifPipeConfig): Settings snapshot handed to every stage.
        chain_name (str): Key of ``config.pipelines`` to run.
        registries (RegistryBundle | None): Registries to resolve stage,
            extractor and store names against.

    Returns:
        RunStats: Elapsed time and per-stage counters.

    Raises:
        ConfigurationError: If the chain cannot be assembled or a stage
            fails to initialize.
        PipelineRunError: If any stage raised while running.
    """
    chain = build_chain(config, chain_name, registries)
    log.info("Running pipeline %s: %s", chain_name, " -> ".join(chain.names()))
    return run_chain(chain)


def make_scan_config(
    roots: Sequence[str | os.PathLike[str]],
    out_path: str | os.PathLike[str] | None = None,
    *,
    cols: Sequence[str] = (),
    output_type: str = "csv",
    base_config: ExifPipeConfig | None = None,
) -> ExifPipeConfig:
    """Build a config that scans ``roots`` and writes one output file.

    Roots are appended to any already present in ``base_config``.
    """
    cfg = base_config or ExifPipeConfig()
    output: dict[str, Any] = {"type": output_type}
    if out_path is not None:
        output["path"] = os.fspath(out_path)
    if cols:
        output["cols"] = list(cols)
    return cfg.with_overrides(
        input={"roots": [*cfg.input.roots, *(os.fspath(r) for r in roots)]},
        output=output,
    )


def scan(
    roots: Sequence[str | os.PathLike[str]],
    out_path: str | os.PathLike[str] | None = None,
    *,
    cols: Sequence[str] = (),
    output_type: str = "csv",
    base_config: ExifPipeConfig | None = None,
    registries: RegistryBundle | None = None,
) -> RunStats:
    """Run the ``default`` chain over ``roots``; see :func:`make_scan_config`."""
    cfg = make_scan_config(roots, out_path, cols=cols, output_type=output_type, base_config=base_config)
    return run_pipeline(cfg, "default", registries=registries)
