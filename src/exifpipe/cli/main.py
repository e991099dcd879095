# main.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from ..core.config import DEFAULT_CONFIG_NAMES, OUTPUT_TYPES, ExifPipeConfig, load_config_from_path
from ..core.errors import ConfigurationError
from ..core.log import get_logger
from ..core.registries import RegistryBundle, default_registries
from .runner import run_pipeline

log = get_logger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_RUN = 2


def _build_parser() -> argparse.ArgumentParser:
    """Build the exifpipe argument parser.

    The first positional argument names a chain from the config's
    ``pipelines`` table; any further positionals are input roots.

    Returns:
        argparse.ArgumentParser: Configured argument parser for the CLI.
    """
    parser = argparse.ArgumentParser(
        prog="exifpipe",
        description="Extract, normalize, store and project image metadata.",
    )
    parser.add_argument("pipeline", nargs="?", help="Name of the configured chain to run (e.g. default).")
    parser.add_argument("roots", nargs="*", help="Files or directories to scan.")
    parser.add_argument(
        "-c",
        "--config",
        help="Config file (YAML, TOML or JSON). Defaults to exifpipe.yml/.yaml/.toml/.json in the working directory.",
    )
    parser.add_argument("--log-level", help="Logging level (e.g., DEBUG, INFO, WARNING).")
    parser.add_argument("--log-file", help="Append log records to this file instead of stderr.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging and a JSON run summary on stderr.")

    inp = parser.add_argument_group("input")
    inp.add_argument("--max-cpus", type=int, help="Override throttle.max_cpus.")
    inp.add_argument("--exit-on-error", action="store_true", help="Stop after the first failing worker batch.")
    inp.add_argument("--extractor", help="Extraction backend (exiftool, pillow, or a plugin).")
    inp.add_argument("--ext", help="Comma-separated file extensions to accept, e.g. jpg,heic.")

    out = parser.add_argument_group("output")
    out.add_argument("--type", choices=OUTPUT_TYPES, help="Output type.")
    out.add_argument("--keys", action="store_true", help="Shorthand for --type keys.")
    out.add_argument("--cols", help="Comma-separated column specs (tag, @expr, %%template).")
    out.add_argument("--filter", help="Only output records for which this expression holds.")
    out.add_argument("--sort", help="Column spec to sort by.")
    out.add_argument("--reverse", action="store_true", help="Invert the sort order.")
    out.add_argument("-o", "--out", help="Output file (defaults to stdout).")

    db = parser.add_argument_group("database")
    db.add_argument("--db", help="Override database.path.")
    db.add_argument("--drop-first", action="store_true", help="Empty the document table before storing.")
    db.add_argument("--query", help="Override database.query_filter.")

    parser.add_argument("--dry-run", action="store_true", help="Validate and print the config, then exit.")
    parser.add_argument("--list-stages", action="store_true", help="Print registered stage names and exit.")
    return parser


def _default_config_path(cwd: Path | None = None) -> Path | None:
    base = cwd or Path.cwd()
    for name in DEFAULT_CONFIG_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def _load_config(path: Optional[str]) -> ExifPipeConfig:
    """Load the config named by ``--config``, a default file, or built-ins."""
    if path:
        return load_config_from_path(path)
    found = _default_config_path()
    if found is not None:
        log.debug("Using config %s", found)
        return load_config_from_path(found)
    return ExifPipeConfig()


def _apply_overrides(cfg: ExifPipeConfig, args: argparse.Namespace) -> ExifPipeConfig:
    """Fold command-line flags into a new config snapshot."""
    inp: dict[str, Any] = {}
    if args.roots:
        inp["roots"] = [*cfg.input.roots, *args.roots]
    if args.exit_on_error:
        inp["exit_on_error"] = True
    if args.extractor:
        inp["extractor"] = args.extractor
    if args.ext:
        inp["file_exts"] = args.ext

    out: dict[str, Any] = {}
    for flag, key in (("type", "type"), ("cols", "cols"), ("filter", "filter"), ("sort", "sort"), ("out", "path")):
        value = getattr(args, flag)
        if value is not None:
            out[key] = value
    if args.keys:
        out["keys"] = True
    if args.reverse:
        out["sort_reversed"] = True

    db: dict[str, Any] = {}
    if args.db:
        db["path"] = args.db
    if args.drop_first:
        db["drop_first"] = True
    if args.query is not None:
        db["query_filter"] = args.query

    logging_cfg: dict[str, Any] = {}
    if args.log_level:
        logging_cfg["level"] = args.log_level
    if args.log_file:
        logging_cfg["path"] = args.log_file
    if args.verbose:
        logging_cfg["verbose"] = True

    throttle = {"max_cpus": args.max_cpus} if args.max_cpus is not None else {}
    cfg = cfg.with_overrides(
        input=inp,
        output=out,
        database=db,
        logging=logging_cfg,
        throttle=throttle,
    )
    cfg.validate()
    return cfg


def _dispatch(args: argparse.Namespace, registries: RegistryBundle | None = None) -> int:
    """Run the command described by ``args``.

    Returns:
        int: Process exit code.
    """
    cfg = _apply_overrides(_load_config(args.config), args)
    cfg.logging.apply()
    registries = registries or default_registries()

    if args.list_stages:
        for name in registries.stages.names():
            print(name)
        return EXIT_OK

    stages = cfg.chain(args.pipeline)
    if args.dry_run:
        for name in stages:
            registries.stages.get(name)
        print(json.dumps(cfg.to_dict(), indent=2, sort_keys=True))
        return EXIT_OK

    stats = run_pipeline(cfg, args.pipeline, registries=registries)
    summary = stats.as_dict()
    ingest = summary["stage_stats"].get("input")
    if ingest is not None:
        log.info(
            "Processed %d file(s): %d success(es), %d error(s)",
            ingest["files_seen"],
            ingest["successes"],
            ingest["errors"],
        )
    if cfg.logging.verbose:
        print(json.dumps(summary, indent=2, sort_keys=True, default=str), file=sys.stderr)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None, *, registries: RegistryBundle | None = None) -> int:
    """Entry point for the exifpipe command-line interface.

    Args:
        argv (Sequence[str] | None): Argument strings to parse instead of
            ``sys.argv[1:]``. Primarily useful for tests.
        registries (RegistryBundle | None): Registries to run against; the
            built-ins plus installed plugins when omitted.

    Returns:
        int: 0 on success, 1 for configuration and assembly errors, 2 when
        a stage fails while running.
    """
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if not args.pipeline and not args.list_stages:
        parser.error("the following arguments are required: pipeline")
    try:
        return _dispatch(args, registries)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_RUN


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
