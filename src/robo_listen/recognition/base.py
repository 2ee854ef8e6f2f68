"""Abstract base class for all recognition channels."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from robo_listen.core.events import (
    ChannelClosedEvent,
    ChannelErrorEvent,
    Emit,
    TranscriptEvent,
)
from robo_listen.core.models import RecognitionOptions

logger = logging.getLogger(__name__)


class BaseRecognitionChannel(ABC):
    """Interface that any streaming recognition channel must implement.

    A channel receives raw audio chunks in arrival order and reports, in
    order, zero or more TranscriptEvent followed by either nothing
    (still streaming), a ChannelClosedEvent or a ChannelErrorEvent. After
    its own close or error it accepts no more audio.
    """

    def __init__(self, options: RecognitionOptions, emit: Emit) -> None:
        self.options = options
        self._emit = emit
        self._open = False
        self._finished = False

    @property
    def is_open(self) -> bool:
        """True while the channel accepts audio."""
        return self._open and not self._finished

    @abstractmethod
    async def open(self) -> None:
        """Perform the session handshake.

        Raises TransportError if the service cannot be reached and
        ConfigurationError if it rejects the credentials or options.
        """
        ...

    @abstractmethod
    async def send(self, chunk: bytes) -> None:
        """Stream one audio chunk to the service."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """End the recognition session and release the connection."""
        ...

    # ── Helpers for subclasses ─────────────────────────────────────

    def _transcript(self, text: str, is_final: bool) -> None:
        if self._finished:
            return
        self._emit(TranscriptEvent(text=text, is_final=is_final))

    def _fail(self, message: str) -> None:
        """Report a transport failure once and refuse further audio."""
        if self._finished:
            return
        self._finished = True
        logger.error("%s transport error: %s", type(self).__name__, message)
        self._emit(ChannelErrorEvent(message=message))

    def _closed(self, code: int | None = None, reason: str = "") -> None:
        """Report a server-side close once and refuse further audio."""
        if self._finished:
            return
        self._finished = True
        logger.info("%s closed by server (code=%s) %s", type(self).__name__, code, reason)
        self._emit(ChannelClosedEvent(code=code, reason=reason))
