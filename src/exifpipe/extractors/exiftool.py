# exiftool.py
# SPDX-License-Identifier: MIT
"""Batch tag extraction through the ``exiftool`` command-line program.

One ``exiftool -json`` process is spawned per batch; the file list is passed
on stdin with ``-@ -`` so large batches do not hit argument-length limits.
Entries are matched back to requested paths by ``SourceFile``.
"""

from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Mapping, Sequence
from typing import Any

from ..core.errors import ConfigurationError, ExtractionError
from ..core.log import get_logger
from .base import ExtractionResult

log = get_logger(__name__)

__all__ = ["ExifToolExtractor"]

_OPTION_KEYS = {"executable", "extra_args", "timeout_base", "timeout_per_file"}


def _path_key(path: str) -> str:
    return os.path.normcase(os.path.normpath(path))


class ExifToolExtractor:
    """Read tags with exiftool's JSON output.

    Args:
        executable: exiftool binary name or path.
        extra_args: Additional exiftool arguments, e.g. ``["-n"]``.
        timeout_base: Minimum timeout in seconds for one batch.
        timeout_per_file: Seconds added to the timeout per file.
    """

    name = "exiftool"

    def __init__(
        self,
        executable: str = "exiftool",
        *,
        extra_args: Sequence[str] = (),
        timeout_base: float = 30.0,
        timeout_per_file: float = 0.5,
    ) -> None:
        self.executable = executable
        self.extra_args = tuple(extra_args)
        self.timeout_base = timeout_base
        self.timeout_per_file = timeout_per_file

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> ExifToolExtractor:
        unknown = sorted(set(options) - _OPTION_KEYS)
        if unknown:
            raise ConfigurationError(f"Unsupported exiftool options: {', '.join(unknown)}")
        kwargs = dict(options)
        executable = str(kwargs.pop("executable", "exiftool"))
        return cls(executable, **kwargs)

    def probe(self) -> str:
        """Return the exiftool version, or raise if it cannot be run.

        Raises:
            ExtractionError: If exiftool is missing or exits non-zero.
        """
        try:
            result = subprocess.run(
                [self.executable, "-ver"],
                capture_output=True,
                text=True,
                timeout=10,
                check=False,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ExtractionError(f"exiftool not found: {self.executable}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExtractionError("exiftool -ver timed out") from exc
        if result.returncode != 0:
            raise ExtractionError(f"exiftool -ver exited with {result.returncode}: {result.stderr.strip()}")
        version = result.stdout.strip()
        log.debug("exiftool version %s", version)
        return version

    def command(self) -> list[str]:
        return [
            self.executable,
            "-json",
            "-charset",
            "filename=UTF8",
            *self.extra_args,
            "-@",
            "-",
        ]

    def extract_batch(self, paths: Sequence[str]) -> list[ExtractionResult]:
        """Run exiftool once for ``paths``.

        Raises:
            ExtractionError: If exiftool cannot be started, times out, or
                prints output that is not JSON.
        """
        if not paths:
            return []
        timeout = max(self.timeout_base, len(paths) * self.timeout_per_file)
        try:
            proc = subprocess.run(
                self.command(),
                input="\n".join(paths) + "\n",
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExtractionError(f"exiftool not found: {self.executable}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExtractionError(f"exiftool timed out after {timeout:.0f}s on {len(paths)} file(s)") from exc

        stderr = (proc.stderr or "").strip()
        entries: list[Any] = []
        if proc.stdout.strip():
            try:
                entries = json.loads(proc.stdout)
            except json.JSONDecodeError as exc:
                raise ExtractionError(f"exiftool printed invalid JSON: {exc}") from exc
            if not isinstance(entries, list):
                raise ExtractionError("exiftool JSON output is not a list")
        if proc.returncode != 0:
            log.debug("exiftool exited with %d: %s", proc.returncode, stderr)

        by_path: dict[str, dict[str, Any]] = {}
        for entry in entries:
            if isinstance(entry, dict) and "SourceFile" in entry:
                by_path[_path_key(str(entry["SourceFile"]))] = entry

        results: list[ExtractionResult] = []
        for path in paths:
            entry = by_path.get(_path_key(path))
            if entry is None:
                reason = stderr.splitlines()[0] if stderr else "file not processed by exiftool"
                results.append(ExtractionResult.failure(path, reason))
                continue
            if "Error" in entry:
                results.append(ExtractionResult.failure(path, str(entry["Error"])))
                continue
            tags = {k: v for k, v in entry.items() if k != "SourceFile"}
            results.append(ExtractionResult(path=path, tags=tags))
        log.debug("exiftool read %d/%d file(s)", sum(r.ok for r in results), len(paths))
        return results

    def close(self) -> None:
        """Nothing to release; each batch uses a short-lived process."""
