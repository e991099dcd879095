# assembler.py
# SPDX-License-Identifier: MIT
"""Build and run linear chains of pipeline components.

:func:`assemble` turns an ordered list of stage names into a wired,
initialized :class:`Chain`. Unknown names and failing ``init`` calls raise
:class:`ConfigurationError` before any file is touched. :meth:`Chain.run`
starts every stage on its own thread and waits for all of them.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from .component import PipelineComponent, make_channel
from .config import ExifPipeConfig
from .errors import ConfigurationError, ExifPipeError, PipelineRunError
from .log import get_logger
from .registries import RegistryBundle, default_registries

log = get_logger(__name__)

__all__ = [
    "ChainLink",
    "Chain",
    "RunStats",
    "assemble",
    "build_chain",
]


@dataclass(eq=False)
class ChainLink:
    """One stage in a chain, linked to its neighbours."""

    name: str
    component: PipelineComponent
    prev: ChainLink | None = None
    next: ChainLink | None = None


@dataclass(slots=True)
class RunStats:
    """Outcome of :meth:`Chain.run`."""

    chain: str = ""
    stages: list[str] = field(default_factory=list)
    elapsed: float = 0.0
    stage_stats: dict[str, dict[str, Any]] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class Chain:
    """Ordered, doubly linked sequence of initialized stages."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.first: ChainLink | None = None
        self.last: ChainLink | None = None
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[ChainLink]:
        link = self.first
        while link is not None:
            yield link
            link = link.next

    def __reversed__(self) -> Iterator[ChainLink]:
        link = self.last
        while link is not None:
            yield link
            link = link.prev

    def append(self, name: str, component: PipelineComponent) -> ChainLink:
        link = ChainLink(name, component, prev=self.last)
        if self.last is None:
            self.first = link
        else:
            self.last.next = link
        self.last = link
        self._size += 1
        return link

    def names(self) -> list[str]:
        return [link.name for link in self]

    def components(self) -> list[PipelineComponent]:
        return [link.component for link in self]

    def find(self, name: str) -> ChainLink | None:
        return next((link for link in self if link.name == name), None)

    def run(self) -> RunStats:
        """Run every stage concurrently and wait for all to finish.

        Raises:
            PipelineRunError: If any stage raised; raised only after every
                stage has finished.
        """
        failures: list[tuple[str, BaseException]] = []
        lock = threading.Lock()

        def _target(link: ChainLink) -> None:
            try:
                link.component.run()
            except Exception as exc:  # noqa: BLE001
                log.error("[%s] stage failed: %s", link.name, exc, exc_info=not isinstance(exc, ExifPipeError))
                with lock:
                    failures.append((link.name, exc))

        started = time.perf_counter()
        threads = [
            threading.Thread(target=_target, args=(link,), name=f"exifpipe-{link.name}", daemon=True)
            for link in self
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = RunStats(
            chain=self.name,
            stages=self.names(),
            elapsed=time.perf_counter() - started,
            failures=[f"[{name}] {exc}" for name, exc in failures],
        )
        for link in self:
            component_stats = getattr(link.component, "stats", None)
            if component_stats is not None and hasattr(component_stats, "as_dict"):
                stats.stage_stats[link.name] = component_stats.as_dict()
        log.info("Pipeline %s finished in %.3fs", self.name or "<unnamed>", stats.elapsed)
        if failures:
            raise PipelineRunError(failures)
        return stats


def assemble(
    names: Sequence[str],
    registries: RegistryBundle,
    config: ExifPipeConfig,
    *,
    chain_name: str = "",
) -> Chain:
    """Resolve, wire, and initialize the stages named in ``names``.

    One channel of ``config.throttle.channel_capacity`` slots joins each
    adjacent pair. ``init`` runs in chain order and the first failure aborts
    assembly.

    Raises:
        ConfigurationError: For an empty chain, an unknown stage name, a
            stage that cannot sit at its position, or a failing ``init``.
    """
    if not names:
        raise ConfigurationError(f"Pipeline {chain_name!r} has no stages")
    chain = Chain(chain_name)
    for name in names:
        try:
            component = registries.create_stage(name)
        except ConfigurationError as exc:
            raise ConfigurationError(f"[Pipeline]: [{name}] {exc}") from exc
        chain.append(name, component)

    for link in chain:
        if link.next is None:
            continue
        channel = make_channel(config.throttle.channel_capacity)
        link.component.set_output(channel)
        try:
            link.next.component.set_input(channel)
        except ConfigurationError as exc:
            raise ConfigurationError(f"[Pipeline]: [{link.next.name}] must be the first stage: {exc}") from exc

    assert chain.first is not None and chain.last is not None
    if chain.first.component.requires_input:
        raise ConfigurationError(f"[Pipeline]: [{chain.first.name}] needs an upstream stage")
    if chain.last.component.requires_output:
        raise ConfigurationError(f"[Pipeline]: [{chain.last.name}] cannot be the last stage; it has no output")

    for link in chain:
        try:
            link.component.init(config)
        except Exception as exc:  # noqa: BLE001
            raise ConfigurationError(f"[Pipeline]: [{link.name}] init error: {exc}") from exc
        log.debug("[%s] initialized", link.name)
    return chain


def build_chain(
    config: ExifPipeConfig,
    chain_name: str,
    registries: RegistryBundle | None = None,
) -> Chain:
    """Look up ``chain_name`` in ``config.pipelines`` and assemble it."""
    return assemble(
        config.chain(chain_name),
        registries or default_registries(),
        config,
        chain_name=chain_name,
    )
