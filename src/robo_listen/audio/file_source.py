"""FileSource – replays an audio file as if it were a live microphone.

Useful for trying the recognition pipeline without hardware and for
re-processing recorded sessions.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

import numpy as np
import soundfile as sf

from robo_listen.audio.base import BaseAudioSource
from robo_listen.core.errors import ConfigurationError
from robo_listen.core.events import AudioChunkEvent, Emit
from robo_listen.core.models import AudioConfig

logger = logging.getLogger(__name__)


def load_pcm(path: str | Path, config: AudioConfig) -> bytes:
    """Read an audio file and convert it to the capture format of ``config``.

    The result is interleaved 16-bit PCM at ``config.sample_rate`` with
    ``config.channels`` channels.
    """
    data, sr = sf.read(str(path), dtype="int16", always_2d=True)

    # Down-mix to mono, then duplicate if the session captures stereo
    mono = data.mean(axis=1).astype(np.int16)

    if sr != config.sample_rate and len(mono) > 0:
        n_out = int(len(mono) * config.sample_rate / sr)
        indices = np.linspace(0, len(mono) - 1, n_out).astype(int)
        mono = mono[indices]

    if config.channels > 1:
        frames = np.repeat(mono[:, np.newaxis], config.channels, axis=1)
    else:
        frames = mono
    return frames.astype("<i2").tobytes()


class FileSource(BaseAudioSource):
    """Emits the contents of an audio file as AudioChunkEvent blocks.

    Parameters
    ----------
    file_path:
        WAV/FLAC/OGG file to replay.
    realtime:
        Pace blocks at the rate a microphone would deliver them. When
        False, blocks are emitted as fast as the loop allows.

    At end of file the source stays open and goes quiet.
    """

    def __init__(
        self,
        config: AudioConfig,
        emit: Emit,
        *,
        file_path: str | Path,
        realtime: bool = True,
    ) -> None:
        super().__init__(config, emit)
        self.file_path = Path(file_path)
        self.realtime = realtime
        self._task: asyncio.Task[None] | None = None
        self._running = asyncio.Event()
        self._stopped = False
        self.exhausted = False

    def is_running(self) -> bool:
        return self._task is not None and self._running.is_set() and not self.exhausted

    async def start(self) -> None:
        if self._stopped:
            raise RuntimeError("FileSource cannot be restarted after stop()")
        try:
            pcm = await asyncio.to_thread(load_pcm, self.file_path, self.config)
        except Exception as exc:
            raise ConfigurationError(f"Failed to read {self.file_path}: {exc}") from exc

        self._running.set()
        self._task = asyncio.create_task(self._replay(pcm), name=f"file-source-{self.file_path.name}")
        logger.debug("Replaying %s (%d bytes)", self.file_path, len(pcm))

    async def pause(self) -> None:
        self._running.clear()

    async def resume(self) -> None:
        if not self._stopped:
            self._running.set()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._running.clear()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _replay(self, pcm: bytes) -> None:
        chunk_bytes = self.config.block_size * self.config.sample_width * self.config.channels
        chunk_s = self.config.block_size / self.config.sample_rate

        for start in range(0, len(pcm), chunk_bytes):
            await self._running.wait()
            self._emit(AudioChunkEvent(data=pcm[start:start + chunk_bytes], timestamp=time.time()))
            await asyncio.sleep(chunk_s if self.realtime else 0)

        self.exhausted = True
        logger.info("Finished replaying %s", self.file_path)
