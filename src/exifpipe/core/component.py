# component.py
# SPDX-License-Identifier: MIT
"""Pipeline component model: messages, channels, and the stage state machine.

Stages talk over :class:`queue.Queue` channels. Each message is either a
:class:`Batch` of records or :data:`END_OF_STREAM`, which is always the last
message a stage puts on its output.

Lifecycle::

    UNINITIALIZED --init()--> INITIALIZED --run()--> RUNNING --> FINISHED

``set_input``/``set_output`` are only legal before ``run``. A stage that
raises while running still forwards end-of-stream and drains its input so
neighbouring stages never block on it.
"""

from __future__ import annotations

import queue
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

from .errors import ComponentStateError, ConfigurationError
from .log import get_logger
from .records import MetadataRecord

if TYPE_CHECKING:  # pragma: no cover - type-only import
    from .config import ExifPipeConfig

log = get_logger(__name__)

__all__ = [
    "END_OF_STREAM",
    "Batch",
    "Message",
    "Channel",
    "make_channel",
    "ComponentState",
    "PipelineComponent",
    "BaseComponent",
    "SourceComponent",
    "StreamingComponent",
]


class _EndOfStream:
    _instance: _EndOfStream | None = None

    def __new__(cls) -> _EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


@dataclass(frozen=True, slots=True)
class Batch:
    """Records emitted together by one producer.

    Attributes:
        records (tuple[MetadataRecord, ...]): Normalized records.
        error (str | None): Error text for files of this batch that failed.
        source (str): Name of the producer, for logging.
    """

    records: tuple[MetadataRecord, ...] = ()
    error: str | None = None
    source: str = ""

    def __len__(self) -> int:
        return len(self.records)


Message = Union[Batch, _EndOfStream]
Channel = queue.Queue


def make_channel(capacity: int = 0) -> Channel:
    """Create a channel holding at most ``capacity`` messages (0 is unbounded)."""
    return queue.Queue(maxsize=max(0, int(capacity)))


class ComponentState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    FINISHED = "finished"


@runtime_checkable
class PipelineComponent(Protocol):
    """Capability set every stage provides."""

    name: str
    state: ComponentState
    accepts_input: bool
    requires_input: bool
    requires_output: bool

    def init(self, config: ExifPipeConfig) -> None: ...

    def set_input(self, channel: Channel) -> None: ...

    def set_output(self, channel: Channel) -> None: ...

    def run(self) -> None: ...


class BaseComponent:
    """State machine shared by every stage.

    Subclasses implement :meth:`_setup` (validation and resource allocation,
    called from :meth:`init`) and :meth:`_run` (the work loop).
    """

    name = "component"
    accepts_input = True
    requires_input = False
    requires_output = False

    def __init__(self, name: str | None = None) -> None:
        self.name = name or type(self).name
        self.state = ComponentState.UNINITIALIZED
        self.config: ExifPipeConfig | None = None
        self.input: Channel | None = None
        self.output: Channel | None = None
        self._eos_sent = False
        self._eos_seen = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} {self.state.value}>"

    # -- wiring ---------------------------------------------------------

    def _require_unstarted(self, action: str) -> None:
        if self.state in (ComponentState.RUNNING, ComponentState.FINISHED):
            raise ComponentStateError(f"[{self.name}] cannot {action} once the stage has started")

    def set_input(self, channel: Channel) -> None:
        self._require_unstarted("set an input")
        if not self.accepts_input:
            raise ConfigurationError(f"[{self.name}] does not accept an input")
        self.input = channel

    def set_output(self, channel: Channel) -> None:
        self._require_unstarted("set an output")
        self.output = channel

    # -- lifecycle ------------------------------------------------------

    def init(self, config: ExifPipeConfig) -> None:
        if self.state is not ComponentState.UNINITIALIZED:
            raise ComponentStateError(f"[{self.name}] init called twice")
        self.config = config
        self._setup(config)
        self.state = ComponentState.INITIALIZED

    def run(self) -> None:
        """Run the stage until its work is done, then forward end-of-stream."""
        if self.state is not ComponentState.INITIALIZED:
            raise ComponentStateError(f"[{self.name}] run requires an initialized stage, not {self.state.value}")
        self.state = ComponentState.RUNNING
        started = time.perf_counter()
        try:
            if self.requires_input and self.input is None:
                raise ConfigurationError(f"[{self.name}] no input defined")
            if self.requires_output and self.output is None:
                raise ConfigurationError(f"[{self.name}] no output defined")
            self._run()
        finally:
            self._drain_input()
            self.emit_end()
            self.state = ComponentState.FINISHED
            log.info("[%s] finished in %.3fs", self.name, time.perf_counter() - started)

    def _setup(self, config: ExifPipeConfig) -> None:
        """Validate ``config`` and allocate resources. Default: nothing."""

    def _run(self) -> None:
        raise NotImplementedError

    # -- messaging ------------------------------------------------------

    def emit(self, message: Any) -> None:
        if self.output is None or self._eos_sent:
            return
        if message is END_OF_STREAM:
            self._eos_sent = True
        self.output.put(message)

    def emit_end(self) -> None:
        self.emit(END_OF_STREAM)

    def receive(self) -> Message:
        """Block until the next input message arrives."""
        assert self.input is not None
        message = self.input.get()
        if message is END_OF_STREAM:
            self._eos_seen = True
        return message

    def _drain_input(self) -> None:
        if self.input is None or self._eos_seen:
            return
        while self.receive() is not END_OF_STREAM:
            pass


class SourceComponent(BaseComponent):
    """A stage that produces messages and never takes an input."""

    accepts_input = False
    requires_output = True


class StreamingComponent(BaseComponent):
    """A stage consuming batches from its input.

    Each batch is forwarded downstream before :meth:`handle_batch` runs, so
    the next stage can start while this one does its own work.
    """

    requires_input = True

    def _run(self) -> None:
        while True:
            message = self.receive()
            if message is END_OF_STREAM:
                break
            self.emit(message)
            self.handle_batch(message)
        self.finish()

    def handle_batch(self, batch: Batch) -> None:
        raise NotImplementedError

    def finish(self) -> None:
        """Called once after end-of-stream, before it is forwarded."""
