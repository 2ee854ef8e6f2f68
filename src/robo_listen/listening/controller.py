"""Capability-gated façade over listening sessions.

The controller is what robot code talks to: it checks that the robot was
configured with a microphone and speech to text credentials, keeps at
most one session open and wires the default microphone and Watson
channel into each new session.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from typing import AsyncIterator, Iterable

from robo_listen.audio.microphone import MicrophoneSource
from robo_listen.config import AppConfig
from robo_listen.core.errors import CapabilityError, SessionActiveError
from robo_listen.core.event_bus import EventBus
from robo_listen.core.models import ListenConfig, ListenState, SpeechToTextCredentials
from robo_listen.core.resilience import ReconnectPolicy
from robo_listen.listening.session import (
    DEFAULT_SETTLE_DELAY_S,
    ChannelFactory,
    ListenSession,
    Sink,
    SourceFactory,
)
from robo_listen.recognition.auth import IamTokenManager
from robo_listen.recognition.watson import WatsonRecognitionChannel

logger = logging.getLogger(__name__)

MICROPHONE = "microphone"


class ListenController:
    """Owns the robot's single listening session.

    Lifecycle:
        1. ``listen(sink)`` opens a session and returns once it is ACTIVE.
        2. ``pause_listening()`` / ``resume_listening()`` gate the audio.
        3. ``stop_listening()`` releases the microphone; ``listen()`` may
           then be called again for a fresh session.
    """

    def __init__(
        self,
        config: ListenConfig,
        *,
        hardware: Iterable[str] = (MICROPHONE,),
        credentials: SpeechToTextCredentials | None = None,
        event_bus: EventBus | None = None,
        source_factory: SourceFactory | None = None,
        channel_factory: ChannelFactory | None = None,
        reconnect: ReconnectPolicy | None = None,
        settle_delay_s: float = DEFAULT_SETTLE_DELAY_S,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.hardware = frozenset(hardware)
        self.event_bus = event_bus or EventBus()
        self.reconnect = reconnect or ReconnectPolicy()
        self.settle_delay_s = settle_delay_s
        self._log = log or logger

        self._source_factory: SourceFactory = source_factory or MicrophoneSource
        if channel_factory is None and credentials is not None:
            channel_factory = functools.partial(
                WatsonRecognitionChannel,
                credentials=credentials,
                token_manager=IamTokenManager(credentials.apikey),
            )
        self._channel_factory = channel_factory

        self._session: ListenSession | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_app_config(cls, app_config: AppConfig, **kwargs) -> ListenController:
        """Build a controller from the loaded robot configuration."""
        kwargs.setdefault("hardware", app_config.hardware)
        kwargs.setdefault("credentials", app_config.speech_to_text)
        kwargs.setdefault("reconnect", app_config.reconnect)
        kwargs.setdefault("settle_delay_s", app_config.settle_delay_s)
        return cls(app_config.listen, **kwargs)

    @property
    def session(self) -> ListenSession | None:
        return self._session

    @property
    def is_listening(self) -> bool:
        return self._session is not None and self._session.is_open

    # ── Public operations ──────────────────────────────────────────

    async def listen(self, sink: Sink) -> ListenSession:
        """Start listening and hand every transcript to ``sink``.

        Raises:
            CapabilityError: no microphone or no speech to text service.
            SessionActiveError: a session is already open.
            ConfigurationError: the session could not start.
        """
        self._assert_capability()
        async with self._lock:
            if self.is_listening:
                raise SessionActiveError("Already listening; stop_listening() first")
            if self._session is not None:
                # A failed session still holds its pump until stopped
                await self._session.stop()

            session = ListenSession(
                self.config,
                source_factory=self._source_factory,
                channel_factory=self._channel_factory,
                event_bus=self.event_bus,
                reconnect=self.reconnect,
                settle_delay_s=self.settle_delay_s,
                log=self._log,
            )
            # Visible before start() returns so stop_listening() can cancel it
            self._session = session
            await session.start(sink)
            if session.state is ListenState.ACTIVE:
                self._log.info(
                    "Listening (%s, %s)", session.options.model, session.options.content_type
                )
            return session

    async def pause_listening(self) -> bool:
        self._assert_capability()
        return await self._pause()

    async def resume_listening(self) -> bool:
        self._assert_capability()
        return await self._resume()

    async def stop_listening(self) -> None:
        """Release the microphone and close the recognition channel."""
        self._assert_capability()
        session = self._session
        if session is None or session.state is ListenState.STOPPED:
            self._log.debug("stop_listening(): not listening")
            return
        await session.stop()

    @contextlib.asynccontextmanager
    async def suspended(self) -> AsyncIterator[bool]:
        """Pause listening for the duration of the block.

        Meant for the robot's own output (playing a sound, speaking) so
        it does not hear itself. Yields whether a session was paused.
        """
        paused = await self._pause()
        try:
            yield paused
        finally:
            if paused:
                await self._resume()

    # ── Internals ──────────────────────────────────────────────────

    def _assert_capability(self) -> None:
        if MICROPHONE not in self.hardware:
            raise CapabilityError("The robot has no microphone; add it to the hardware list")
        if self._channel_factory is None:
            raise CapabilityError("Speech to text credentials are not configured")

    async def _pause(self) -> bool:
        if self._session is None:
            self._log.info("Listening not paused: not listening")
            return False
        return await self._session.pause()

    async def _resume(self) -> bool:
        if self._session is None:
            self._log.info("Listening not resumed: not listening")
            return False
        return await self._session.resume()
