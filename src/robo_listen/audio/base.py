"""Abstract base class for all audio sources."""

from __future__ import annotations

from abc import ABC, abstractmethod

from robo_listen.core.events import Emit
from robo_listen.core.models import AudioConfig


class BaseAudioSource(ABC):
    """Interface that any audio source must implement.

    A source reads a device (or a file) and reports every captured block
    as an AudioChunkEvent through ``emit``. A device failure during
    capture is reported as a SourceErrorEvent. Once stopped, a source is
    never restarted; build a new one instead.
    """

    def __init__(self, config: AudioConfig, emit: Emit) -> None:
        self.config = config
        self._emit = emit

    @abstractmethod
    async def start(self) -> None:
        """Open the device and begin emitting chunks.

        Raises ConfigurationError if the device cannot be opened.
        """
        ...

    @abstractmethod
    async def pause(self) -> None:
        """Stop reading the device without releasing it."""
        ...

    @abstractmethod
    async def resume(self) -> None:
        """Continue reading after pause().

        Raises TransportError if the device went away while paused.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release the device. The source is unusable afterwards."""
        ...

    @abstractmethod
    def is_running(self) -> bool:
        """Return True while the source is emitting chunks."""
        ...
