"""Shared fakes for driving listening sessions without hardware or network."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from robo_listen.audio.base import BaseAudioSource
from robo_listen.core.event_bus import EventBus
from robo_listen.core.events import AudioChunkEvent, Emit, SessionStateEvent, SourceErrorEvent
from robo_listen.core.models import AudioConfig, ListenConfig, ListenState, RecognitionOptions
from robo_listen.core.resilience import ReconnectPolicy
from robo_listen.listening.session import ListenSession
from robo_listen.recognition.base import BaseRecognitionChannel


class FakeAudioSource(BaseAudioSource):
    """Records lifecycle calls; ``produce`` and ``fail`` push events."""

    def __init__(
        self,
        config: AudioConfig,
        emit: Emit,
        *,
        start_error: Exception | None = None,
        resume_error: Exception | None = None,
        stop_gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__(config, emit)
        self.calls: list[str] = []
        self._start_error = start_error
        self._resume_error = resume_error
        self._stop_gate = stop_gate

    def is_running(self) -> bool:
        return "start" in self.calls and "stop" not in self.calls

    async def start(self) -> None:
        self.calls.append("start")
        if self._start_error is not None:
            raise self._start_error

    async def pause(self) -> None:
        self.calls.append("pause")

    async def resume(self) -> None:
        self.calls.append("resume")
        if self._resume_error is not None:
            raise self._resume_error

    async def stop(self) -> None:
        self.calls.append("stop")
        if self._stop_gate is not None:
            await self._stop_gate.wait()

    def produce(self, data: bytes = b"\x00\x01") -> None:
        self._emit(AudioChunkEvent(data=data))

    def fail(self, message: str = "device unplugged") -> None:
        self._emit(SourceErrorEvent(message=message))


class FakeRecognitionChannel(BaseRecognitionChannel):
    """Accepts audio into ``sent``; ``say``, ``fail`` and ``hang_up`` push events."""

    def __init__(
        self,
        options: RecognitionOptions,
        emit: Emit,
        *,
        open_error: Exception | None = None,
        open_gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__(options, emit)
        self.sent: list[bytes] = []
        self.close_calls = 0
        self._open_error = open_error
        self._open_gate = open_gate

    async def open(self) -> None:
        if self._open_gate is not None:
            await self._open_gate.wait()
        if self._open_error is not None:
            raise self._open_error
        self._open = True

    async def send(self, chunk: bytes) -> None:
        self.sent.append(chunk)

    async def close(self) -> None:
        self.close_calls += 1
        self._open = False

    def say(self, text: str, is_final: bool = False) -> None:
        self._transcript(text, is_final)

    def fail(self, message: str = "connection reset") -> None:
        self._fail(message)

    def hang_up(self, code: int = 1000, reason: str = "") -> None:
        self._closed(code, reason)


class SourceFactory:
    """Builds FakeAudioSource instances and keeps every one it built."""

    def __init__(self) -> None:
        self.instances: list[FakeAudioSource] = []
        self.start_error: Exception | None = None
        self.resume_error: Exception | None = None
        self.stop_gate: asyncio.Event | None = None

    def __call__(self, config: AudioConfig, emit: Emit) -> FakeAudioSource:
        source = FakeAudioSource(
            config,
            emit,
            start_error=self.start_error,
            resume_error=self.resume_error,
            stop_gate=self.stop_gate,
        )
        self.instances.append(source)
        return source

    @property
    def latest(self) -> FakeAudioSource:
        return self.instances[-1]


class ChannelFactory:
    """Builds FakeRecognitionChannel instances.

    ``open_errors`` is consumed one entry per channel built; None opens
    normally.
    """

    def __init__(self) -> None:
        self.instances: list[FakeRecognitionChannel] = []
        self.open_errors: list[Exception | None] = []
        self.open_gate: asyncio.Event | None = None

    def __call__(self, options: RecognitionOptions, emit: Emit) -> FakeRecognitionChannel:
        error = self.open_errors.pop(0) if self.open_errors else None
        channel = FakeRecognitionChannel(options, emit, open_error=error, open_gate=self.open_gate)
        self.instances.append(channel)
        return channel

    @property
    def latest(self) -> FakeRecognitionChannel:
        return self.instances[-1]


class StateRecorder:
    """Collects SessionStateEvent from a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[SessionStateEvent] = []
        bus.subscribe(SessionStateEvent, self.events.append)

    @property
    def states(self) -> list[ListenState]:
        return [e.state for e in self.events]


@pytest.fixture
def sources() -> SourceFactory:
    return SourceFactory()


@pytest.fixture
def channels() -> ChannelFactory:
    return ChannelFactory()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> StateRecorder:
    return StateRecorder(bus)


@pytest.fixture
def make_session(
    sources: SourceFactory, channels: ChannelFactory, bus: EventBus
) -> Callable[..., ListenSession]:
    def _make(
        config: ListenConfig | None = None,
        reconnect: ReconnectPolicy | None = None,
        settle_delay_s: float = 0.0,
    ) -> ListenSession:
        return ListenSession(
            config or ListenConfig(device_id="mic0"),
            source_factory=sources,
            channel_factory=channels,
            event_bus=bus,
            reconnect=reconnect,
            settle_delay_s=settle_delay_s,
        )

    return _make
