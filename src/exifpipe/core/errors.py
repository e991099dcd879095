# errors.py
# SPDX-License-Identifier: MIT
"""Exception hierarchy shared by every exifpipe layer.

Only :class:`ConfigurationError` (and an explicit exit-on-first-error run)
stops a pipeline early; the remaining classes describe failures that are
counted, logged, and then skipped by the stage that observes them.
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "ExifPipeError",
    "ConfigurationError",
    "ComponentStateError",
    "ExtractionError",
    "ExpressionError",
    "StoreError",
    "PipelineRunError",
]


class ExifPipeError(Exception):
    """Base class for all exifpipe errors."""


class ConfigurationError(ExifPipeError, ValueError):
    """Unknown stage, invalid setting, or missing required option."""


class ComponentStateError(ExifPipeError, RuntimeError):
    """A component method was called in a state that does not allow it."""


class ExtractionError(ExifPipeError):
    """The extraction backend failed for one file or a whole batch."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ExpressionError(ExifPipeError):
    """A filter expression failed to parse or evaluate."""


class StoreError(ExifPipeError):
    """The document store rejected a read or write."""


class PipelineRunError(ExifPipeError):
    """One or more stages raised while the chain was running."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        self.failures = list(failures)
        detail = "; ".join(f"[{name}] {exc}" for name, exc in self.failures)
        super().__init__(f"{len(self.failures)} stage(s) failed: {detail}")
