"""Typed event dataclasses for the listening pipeline.

Audio sources and recognition channels report everything they do as one
of these events; the session consumes them in arrival order.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Union

from robo_listen.core.models import ListenState


@dataclass(frozen=True)
class AudioChunkEvent:
    """Emitted by an AudioSource for every captured block."""

    data: bytes  # PCM 16-bit little endian, interleaved
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SourceErrorEvent:
    """Emitted by an AudioSource when the device fails mid-capture."""

    message: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TranscriptEvent:
    """Emitted by a RecognitionChannel for each interim or final result."""

    text: str
    is_final: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ChannelErrorEvent:
    """Emitted by a RecognitionChannel when its transport fails."""

    message: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ChannelClosedEvent:
    """Emitted by a RecognitionChannel when the server closes the stream."""

    code: int | None = None
    reason: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SessionStateEvent:
    """Published on the event bus on every session state change."""

    previous: ListenState
    state: ListenState
    retry_count: int  # Consecutive reconnect attempts
    reconnects: int  # Reconnects over the session's lifetime
    timestamp: float = field(default_factory=time.time)


SourceEvent = Union[AudioChunkEvent, SourceErrorEvent]
ChannelEvent = Union[TranscriptEvent, ChannelErrorEvent, ChannelClosedEvent]
PipelineEvent = Union[SourceEvent, ChannelEvent]

# Non-blocking callback used by sources and channels to report events.
# Must be called from the event loop thread.
Emit = Callable[[PipelineEvent], None]
