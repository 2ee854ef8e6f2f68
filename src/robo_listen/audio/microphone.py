"""Microphone source backed by a PortAudio input stream."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from robo_listen.audio.base import BaseAudioSource
from robo_listen.core.errors import ConfigurationError, TransportError
from robo_listen.core.events import AudioChunkEvent, Emit, SourceErrorEvent
from robo_listen.core.models import AudioConfig

logger = logging.getLogger(__name__)


def _resolve_device(device_id: str) -> int | str | None:
    """Map a configured device id onto what sounddevice expects.

    "" selects the default input, a numeric string is a device index and
    anything else is matched against device names (e.g. "plughw:1,0").
    """
    device_id = device_id.strip()
    if not device_id:
        return None
    if device_id.isdigit():
        return int(device_id)
    return device_id


class MicrophoneSource(BaseAudioSource):
    """Captures 16-bit PCM from a microphone and emits AudioChunkEvent.

    PortAudio invokes the capture callback on its own thread; chunks are
    handed to the event loop with ``call_soon_threadsafe`` so ``emit`` is
    always called on the loop thread.
    """

    def __init__(self, config: AudioConfig, emit: Emit) -> None:
        super().__init__(config, emit)
        self._stream: Any | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._paused = False
        self._stopped = False

    def is_running(self) -> bool:
        return self._stream is not None and not self._paused and not self._stopped

    async def start(self) -> None:
        if self._stopped:
            raise RuntimeError("MicrophoneSource cannot be restarted after stop()")
        self._loop = asyncio.get_running_loop()

        try:
            import sounddevice as sd
        except OSError as exc:
            raise ConfigurationError(f"No audio backend available: {exc}") from exc

        device = _resolve_device(self.config.device_id)
        try:
            self._stream = sd.RawInputStream(
                samplerate=self.config.sample_rate,
                blocksize=self.config.block_size,
                device=device,
                channels=self.config.channels,
                dtype="int16",
                callback=self._on_audio,
                finished_callback=self._on_finished,
            )
            await asyncio.to_thread(self._stream.start)
        except (sd.PortAudioError, ValueError) as exc:
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.close()
            raise ConfigurationError(
                f"Cannot open microphone {self.config.device_id!r}: {exc}"
            ) from exc

        logger.debug(
            "Microphone started (device=%s, channels=%d, rate=%d)",
            device,
            self.config.channels,
            self.config.sample_rate,
        )

    async def pause(self) -> None:
        if self._stream is None or self._paused or self._stopped:
            return
        self._paused = True
        await asyncio.to_thread(self._stream.stop)
        logger.debug("Microphone paused")

    async def resume(self) -> None:
        if self._stream is None or not self._paused or self._stopped:
            return
        import sounddevice as sd

        try:
            await asyncio.to_thread(self._stream.start)
        except sd.PortAudioError as exc:
            raise TransportError(f"Microphone {self.config.device_id!r} lost while paused: {exc}") from exc
        self._paused = False
        logger.debug("Microphone resumed")

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            await asyncio.to_thread(stream.stop)
        finally:
            await asyncio.to_thread(stream.close)
        logger.debug("Microphone stopped")

    # ── PortAudio thread ───────────────────────────────────────────

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("Microphone status: %s", status)
        self._post(AudioChunkEvent(data=bytes(indata), timestamp=time.time()))

    def _on_finished(self) -> None:
        # Fires after every stream stop; only an unrequested stop is a failure.
        if self._paused or self._stopped:
            return
        logger.error("The microphone input stream ended unexpectedly")
        self._post(SourceErrorEvent(message="microphone input stream ended unexpectedly"))

    def _post(self, event: AudioChunkEvent | SourceErrorEvent) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._emit, event)
        except RuntimeError:
            # Loop shut down between the check and the call
            pass
