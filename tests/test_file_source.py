"""Tests for FileSource and PCM conversion."""

from __future__ import annotations

import asyncio
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from robo_listen.audio.file_source import FileSource, load_pcm
from robo_listen.core.errors import ConfigurationError
from robo_listen.core.events import AudioChunkEvent
from robo_listen.core.models import AudioConfig


def _create_wav(path: Path, duration_s: float = 1.0, sample_rate: int = 8000, channels: int = 1) -> None:
    """Write a 440 Hz sine wave."""
    n_samples = int(sample_rate * duration_s)
    t = np.linspace(0, duration_s, n_samples, endpoint=False)
    tone = (np.sin(2 * np.pi * 440 * t) * 16000).astype(np.int16)
    data = np.repeat(tone[:, np.newaxis], channels, axis=1) if channels > 1 else tone
    sf.write(str(path), data, sample_rate, subtype="PCM_16")


@pytest.fixture
def wav_path(tmp_path: Path) -> Path:
    path = tmp_path / "hello.wav"
    _create_wav(path)
    return path


async def _until_exhausted(source: FileSource) -> None:
    for _ in range(200):
        if source.exhausted:
            return
        await asyncio.sleep(0)
    raise AssertionError("file was not replayed")


class TestLoadPcm:
    def test_resamples_and_duplicates_channels(self, wav_path: Path) -> None:
        pcm = load_pcm(wav_path, AudioConfig(device_id="", channels=2))
        # 1 s at 16 kHz, two 16-bit channels
        assert len(pcm) == 16000 * 2 * 2

        frames = np.frombuffer(pcm, dtype="<i2").reshape(-1, 2)
        assert np.array_equal(frames[:, 0], frames[:, 1])

    def test_downmixes_stereo_to_mono(self, tmp_path: Path) -> None:
        path = tmp_path / "stereo.wav"
        _create_wav(path, sample_rate=16000, channels=2)

        pcm = load_pcm(path, AudioConfig(device_id="", channels=1))
        assert len(pcm) == 16000 * 2


class TestFileSource:
    async def test_replays_file_as_chunks(self, wav_path: Path) -> None:
        chunks: list[AudioChunkEvent] = []
        config = AudioConfig(device_id="", channels=1)
        source = FileSource(config, chunks.append, file_path=wav_path, realtime=False)

        await source.start()
        await _until_exhausted(source)
        await source.stop()

        # 1 s of mono audio in 100 ms blocks
        assert len(chunks) == 10
        assert all(len(c.data) == 1600 * 2 for c in chunks)
        assert not source.is_running()

    async def test_pause_holds_replay(self, wav_path: Path) -> None:
        chunks: list[AudioChunkEvent] = []
        source = FileSource(
            AudioConfig(device_id="", channels=1), chunks.append, file_path=wav_path, realtime=False
        )
        await source.start()
        await source.pause()
        for _ in range(20):
            await asyncio.sleep(0)
        assert chunks == []

        await source.resume()
        await _until_exhausted(source)
        assert len(chunks) == 10
        await source.stop()

    async def test_missing_file_is_configuration_error(self, tmp_path: Path) -> None:
        source = FileSource(
            AudioConfig(device_id="", channels=2), lambda event: None, file_path=tmp_path / "nope.wav"
        )
        with pytest.raises(ConfigurationError, match="nope.wav"):
            await source.start()

    async def test_stop_cancels_replay(self, wav_path: Path) -> None:
        chunks: list[AudioChunkEvent] = []
        source = FileSource(AudioConfig(device_id="", channels=1), chunks.append, file_path=wav_path)

        await source.start()
        await asyncio.sleep(0)
        await source.stop()
        count = len(chunks)
        await asyncio.sleep(0.15)

        assert len(chunks) == count
        assert not source.is_running()
