# input.py
# SPDX-License-Identifier: MIT
"""The ``input`` stage: scan roots and emit normalized records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.component import SourceComponent
from ..core.errors import ConfigurationError, ExtractionError
from ..core.log import get_logger
from ..core.normalize import Normalizer
from ..core.scheduler import IngestionScheduler, IngestStats

if TYPE_CHECKING:  # pragma: no cover - type-only imports
    from ..core.config import ExifPipeConfig
    from ..core.registries import ExtractorRegistry
    from ..extractors.base import Extractor

log = get_logger(__name__)

__all__ = ["InputStage"]


class InputStage(SourceComponent):
    """Source stage driving the :class:`IngestionScheduler`.

    ``init`` resolves the extraction backend and checks that it can run;
    ``run`` scans ``config.input.roots`` and emits one batch per worker.
    """

    name = "input"

    def __init__(self, extractors: ExtractorRegistry, *, name: str | None = None) -> None:
        super().__init__(name)
        self.extractors = extractors
        self.scheduler: IngestionScheduler | None = None
        self.stats = IngestStats()

    def _setup(self, config: ExifPipeConfig) -> None:
        cfg = config.input
        backend = cfg.extractor
        options = dict(cfg.extractor_options)
        self.extractors.get(backend)

        def _make_extractor() -> Extractor:
            return self.extractors.create(backend, options)

        probe_target = _make_extractor()
        try:
            probe = getattr(probe_target, "probe", None)
            if probe is not None:
                version = probe()
                log.debug("[%s] using %s %s", self.name, backend, version)
        except ExtractionError as exc:
            raise ConfigurationError(f"extractor {backend!r} is unavailable: {exc}") from exc
        finally:
            probe_target.close()

        if not cfg.roots:
            log.warning("[%s] no input roots configured", self.name)
        self.scheduler = IngestionScheduler(
            _make_extractor,
            Normalizer(config.normalize.to_rules()),
            max_workers=config.throttle.max_cpus,
            exit_on_error=cfg.exit_on_error,
            file_exts=cfg.file_exts,
            mime_types=cfg.mime_types,
            skip_hidden=cfg.skip_hidden,
            follow_symlinks=cfg.follow_symlinks,
        )

    def _run(self) -> None:
        assert self.scheduler is not None and self.config is not None
        self.stats = self.scheduler.run(self.config.input.roots, self.emit)
