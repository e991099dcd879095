# fs.py
# SPDX-License-Identifier: MIT
"""File discovery for the ingestion scheduler."""

from __future__ import annotations

import mimetypes
import os
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path

from .log import get_logger

log = get_logger(__name__)

__all__ = [
    "DEFAULT_SKIP_FILES",
    "FileMatcher",
    "normalize_extensions",
    "iter_matching_files",
]

# Common junk files to skip regardless of patterns
DEFAULT_SKIP_FILES: set[str] = {
    ".DS_Store",
    "Thumbs.db",
}


def normalize_extensions(exts: Iterable[str] | None) -> set[str] | None:
    """Normalize extension strings into dotted lowercase values.

    Args:
        exts (Iterable[str] | None): Extensions such as ``"JPG"`` or ``".heic"``.

    Returns:
        set[str] | None: Lowercase extensions prefixed with ".", or None when
            no values remain after cleaning.
    """
    if not exts:
        return None
    out: set[str] = set()
    for ext in exts:
        cleaned = (ext or "").strip().lower()
        if not cleaned:
            continue
        out.add(cleaned if cleaned.startswith(".") else f".{cleaned}")
    return out or None


@dataclass(frozen=True)
class FileMatcher:
    """Extension and MIME-type filter.

    With both sets empty every file matches; otherwise a file matches when it
    satisfies any non-empty set.
    """

    exts: frozenset[str] = frozenset()
    mime_patterns: tuple[str, ...] = ()

    @classmethod
    def build(cls, file_exts: Iterable[str] | None, mime_types: Iterable[str] | None) -> FileMatcher:
        exts = normalize_extensions(file_exts) or set()
        patterns = tuple(p.strip().lower() for p in (mime_types or ()) if p and p.strip())
        return cls(frozenset(exts), patterns)

    @property
    def accepts_all(self) -> bool:
        return not self.exts and not self.mime_patterns

    def matches(self, path: str | os.PathLike[str]) -> bool:
        if self.accepts_all:
            return True
        name = os.fspath(path)
        if self.exts and os.path.splitext(name)[1].lower() in self.exts:
            return True
        if self.mime_patterns:
            mime, _ = mimetypes.guess_type(name, strict=False)
            if mime and any(fnmatchcase(mime.lower(), pattern) for pattern in self.mime_patterns):
                return True
        return False


def _walk(root: Path, *, skip_hidden: bool, follow_symlinks: bool) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root, topdown=True, followlinks=follow_symlinks):
        # Ensure deterministic order across platforms
        dirnames.sort(key=str.casefold)
        filenames.sort(key=str.casefold)
        if skip_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        for name in filenames:
            if name in DEFAULT_SKIP_FILES or (skip_hidden and name.startswith(".")):
                continue
            yield Path(dirpath) / name


def iter_matching_files(
    roots: Sequence[str | os.PathLike[str]],
    *,
    file_exts: Iterable[str] | None = None,
    mime_types: Iterable[str] | None = None,
    skip_hidden: bool = True,
    follow_symlinks: bool = False,
) -> Iterator[str]:
    """Yield files under ``roots`` that pass the extension/MIME filter.

    Directories are walked recursively in sorted order; a root naming a file
    is tested directly. Missing roots are logged and skipped. A file reached
    through two roots is yielded once.

    Symlinked files are always yielded; ``follow_symlinks`` only controls
    whether symlinked directories are descended into.

    Yields:
        str: File paths, as joined from the given root.
    """
    matcher = FileMatcher.build(file_exts, mime_types)
    seen: set[str] = set()
    for root in roots:
        root_path = Path(root).expanduser()
        if root_path.is_file():
            candidates: Iterable[Path] = (root_path,)
        elif root_path.is_dir():
            candidates = _walk(root_path, skip_hidden=skip_hidden, follow_symlinks=follow_symlinks)
        else:
            log.warning("Input root %s does not exist; skipping", root_path)
            continue
        for path in candidates:
            if not matcher.matches(path):
                continue
            key = os.path.normcase(os.path.abspath(path))
            if key in seen:
                continue
            seen.add(key)
            yield str(path)
