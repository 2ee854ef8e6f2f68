"""Domain models and configuration dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from robo_listen.core.errors import ConfigurationError

SAMPLE_RATE = 16000  # Hz, fixed for the recognition service
SAMPLE_WIDTH = 2  # 16-bit
DEFAULT_STT_URL = "https://api.us-south.speech-to-text.watson.cloud.ibm.com"

# Languages the robot can listen in
SUPPORTED_LANGUAGES = (
    "ar-AR",
    "en-UK",
    "en-US",
    "es-ES",
    "fr-FR",
    "ja-JP",
    "pt-BR",
    "zh-CN",
)


class ListenState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    PAUSED = "paused"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class ListenConfig:
    """Process-wide listen configuration."""

    device_id: str = "plughw:1,0"  # See `arecord -l`; "" = system default
    language: str = "en-US"
    customization_id: str = ""  # Custom language model id
    inactivity_timeout: int = -1  # Seconds of silence before the service hangs up; -1 = never
    background_audio_suppression: float | None = None  # 0.0 - 1.0, not clamped
    chunk_ms: int = 100  # Audio block length


@dataclass
class SpeechToTextCredentials:
    """Credentials for the streaming speech-to-text service."""

    apikey: str
    url: str = DEFAULT_STT_URL


@dataclass(frozen=True)
class AudioConfig:
    """Capture parameters derived from a ListenConfig at session start.

    The channel count depends only on whether a custom model is used and
    is fixed for the lifetime of the AudioSource built from it.
    """

    device_id: str
    channels: int
    sample_rate: int = SAMPLE_RATE
    sample_width: int = SAMPLE_WIDTH
    block_size: int = SAMPLE_RATE // 10  # Frames per chunk

    @classmethod
    def from_listen_config(cls, config: ListenConfig) -> AudioConfig:
        if config.chunk_ms <= 0:
            raise ConfigurationError(f"chunk_ms must be positive, got {config.chunk_ms}")
        return cls(
            device_id=config.device_id,
            channels=1 if config.customization_id else 2,
            block_size=SAMPLE_RATE * config.chunk_ms // 1000,
        )

    @property
    def content_type(self) -> str:
        return f"audio/l16; rate={self.sample_rate}; channels={self.channels}"

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.sample_width * self.channels


@dataclass(frozen=True)
class RecognitionOptions:
    """Parameters a RecognitionChannel is opened with."""

    content_type: str
    model: str
    inactivity_timeout: int = -1
    customization_id: str | None = None
    background_audio_suppression: float | None = None
    interim_results: bool = True

    @classmethod
    def from_listen_config(
        cls, config: ListenConfig, audio: AudioConfig
    ) -> RecognitionOptions:
        """Build channel options, rejecting configurations the service cannot accept."""
        if config.language not in SUPPORTED_LANGUAGES:
            raise ConfigurationError(
                f"Unsupported listen language {config.language!r}; "
                f"expected one of {', '.join(SUPPORTED_LANGUAGES)}"
            )
        if config.inactivity_timeout != -1 and config.inactivity_timeout < 1:
            raise ConfigurationError(
                "inactivity_timeout must be -1 or a positive number of seconds, "
                f"got {config.inactivity_timeout}"
            )
        return cls(
            content_type=audio.content_type,
            model=f"{config.language}_NarrowbandModel",
            inactivity_timeout=config.inactivity_timeout,
            customization_id=config.customization_id or None,
            background_audio_suppression=config.background_audio_suppression,
        )
