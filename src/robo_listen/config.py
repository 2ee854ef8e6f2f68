"""Robot configuration loader from TOML files and environment variables."""

from __future__ import annotations

import dataclasses
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from robo_listen.core.models import DEFAULT_STT_URL, ListenConfig, SpeechToTextCredentials
from robo_listen.core.resilience import ReconnectPolicy

logger = logging.getLogger(__name__)

# Standard location for the default config file
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "default.toml"


@dataclass
class AppConfig:
    """Top-level robot configuration."""

    robot_name: str = "robot"
    hardware: list[str] = field(default_factory=lambda: ["microphone"])
    log_level: str = "INFO"

    listen: ListenConfig = field(default_factory=ListenConfig)
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    settle_delay_s: float = 1.0  # Wait after releasing the microphone

    # Speech to text credentials (usually from env vars)
    stt_apikey: str = ""
    stt_url: str = DEFAULT_STT_URL

    @property
    def speech_to_text(self) -> SpeechToTextCredentials | None:
        """Credentials for the recognition service, or None if not configured."""
        if not self.stt_apikey:
            return None
        return SpeechToTextCredentials(apikey=self.stt_apikey, url=self.stt_url)


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return the parsed dict."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _apply_toml_to_config(config: AppConfig, data: dict[str, Any]) -> None:
    """Apply values from a parsed TOML dict onto an AppConfig.

    Only sets values that are present in the TOML; dataclass defaults
    remain for any keys not specified.
    """
    # Robot
    robot_data = data.get("robot", {})
    if "name" in robot_data:
        config.robot_name = robot_data["name"]
    if "hardware" in robot_data:
        config.hardware = [str(h) for h in robot_data["hardware"]]
    if "settle_delay_s" in robot_data:
        config.settle_delay_s = float(robot_data["settle_delay_s"])

    # Listen
    listen_data = data.get("listen", {})
    for key, value in listen_data.items():
        if hasattr(config.listen, key):
            setattr(config.listen, key, value)

    # Reconnect (frozen policy: rebuild it)
    reconnect_data = dict(data.get("reconnect", {}))
    if reconnect_data:
        if reconnect_data.get("max_attempts", -1) < 0:
            # TOML has no null; a negative cap means "retry forever"
            reconnect_data["max_attempts"] = None
        known = {f.name for f in dataclasses.fields(ReconnectPolicy)}
        config.reconnect = dataclasses.replace(
            config.reconnect,
            **{k: v for k, v in reconnect_data.items() if k in known},
        )

    # Speech to text
    stt_data = data.get("speech_to_text", {})
    if "apikey" in stt_data:
        config.stt_apikey = stt_data["apikey"]
    if "url" in stt_data:
        config.stt_url = stt_data["url"]

    # Log
    log_data = data.get("log", {})
    if "level" in log_data:
        config.log_level = str(log_data["level"]).upper()


def load_app_config(
    config_path: str | Path | None = None,
    defaults_path: str | Path | None = None,
) -> AppConfig:
    """Build an AppConfig from default.toml, a robot TOML file, and env vars.

    Loading order (later wins):
      1. Dataclass defaults (AppConfig, ListenConfig, ReconnectPolicy)
      2. config/default.toml (if it exists)
      3. The robot TOML file given as ``config_path``
      4. Environment variables
    """
    config = AppConfig()

    # 1. Load default.toml if available
    default_path = Path(defaults_path) if defaults_path else _DEFAULT_CONFIG_PATH
    if default_path.is_file():
        try:
            _apply_toml_to_config(config, _load_toml(default_path))
            logger.debug("Loaded default config from %s", default_path)
        except Exception as exc:
            logger.warning("Failed to load default config %s: %s", default_path, exc)

    # 2. Robot file; an explicit path must exist and parse
    if config_path is not None:
        _apply_toml_to_config(config, _load_toml(Path(config_path)))
        logger.debug("Loaded robot config from %s", config_path)

    # 3. Environment variables override files
    config.stt_apikey = os.environ.get("ROBO_LISTEN_STT_APIKEY", config.stt_apikey)
    config.stt_url = os.environ.get("ROBO_LISTEN_STT_URL", config.stt_url)
    config.listen.device_id = os.environ.get("ROBO_LISTEN_DEVICE", config.listen.device_id)
    config.listen.language = os.environ.get("ROBO_LISTEN_LANGUAGE", config.listen.language)
    config.listen.customization_id = os.environ.get(
        "ROBO_LISTEN_CUSTOMIZATION_ID", config.listen.customization_id
    )
    config.log_level = os.environ.get("ROBO_LISTEN_LOG_LEVEL", config.log_level).upper()

    return config
