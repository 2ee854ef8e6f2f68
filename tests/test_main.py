"""Tests for the command-line entry point."""

from __future__ import annotations

import argparse
import functools
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from robo_listen.audio.file_source import FileSource
from robo_listen.config import AppConfig
from robo_listen.core.errors import CapabilityError
from robo_listen.main import ShutdownHandler, apply_overrides, build_controller, build_parser


class TestBuildParser:
    def test_default_args(self) -> None:
        args = build_parser().parse_args([])
        assert args.config is None
        assert args.device is None
        assert args.language is None
        assert args.customization_id is None
        assert args.file is None
        assert args.log_level is None
        assert args.json_logs is False

    def test_config_arg(self) -> None:
        args = build_parser().parse_args(["-c", "robot.toml"])
        assert args.config == "robot.toml"

    def test_listen_args(self) -> None:
        args = build_parser().parse_args(
            ["--device", "plughw:2,0", "--language", "pt-BR", "--customization-id", "c1"]
        )
        assert args.device == "plughw:2,0"
        assert args.language == "pt-BR"
        assert args.customization_id == "c1"

    def test_log_args(self) -> None:
        args = build_parser().parse_args(["--log-level", "DEBUG", "--json-logs"])
        assert args.log_level == "DEBUG"
        assert args.json_logs is True


class TestApplyOverrides:
    def _args(self, *argv: str) -> argparse.Namespace:
        return build_parser().parse_args(list(argv))

    def test_flags_override_config(self) -> None:
        config = apply_overrides(
            AppConfig(),
            self._args("--device", "", "--language", "fr-FR", "--log-level", "ERROR"),
        )
        assert config.listen.device_id == ""
        assert config.listen.language == "fr-FR"
        assert config.log_level == "ERROR"

    def test_unset_flags_keep_config(self) -> None:
        config = AppConfig()
        config.listen.language = "zh-CN"
        apply_overrides(config, self._args())
        assert config.listen.language == "zh-CN"

    def test_file_stands_in_for_microphone(self) -> None:
        config = apply_overrides(AppConfig(hardware=["speaker"]), self._args("--file", "a.wav"))
        assert config.hardware == ["speaker", "microphone"]


class TestBuildController:
    def test_file_replay_source(self) -> None:
        args = build_parser().parse_args(["--file", "a.wav"])
        controller = build_controller(AppConfig(stt_apikey="key"), args)

        factory = controller._source_factory
        assert isinstance(factory, functools.partial)
        assert factory.func is FileSource
        assert factory.keywords == {"file_path": "a.wav"}

    def test_microphone_by_default(self) -> None:
        from robo_listen.audio.microphone import MicrophoneSource

        controller = build_controller(AppConfig(stt_apikey="key"), build_parser().parse_args([]))
        assert controller._source_factory is MicrophoneSource


class TestShutdownHandler:
    async def test_signal_stops_controller(self) -> None:
        controller = MagicMock()
        controller.stop_listening = AsyncMock()
        handler = ShutdownHandler(controller)

        handler.request()
        await handler.finish()

        assert handler.requested.is_set()
        controller.stop_listening.assert_awaited_once()

    async def test_failed_stop_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        controller = MagicMock()
        controller.stop_listening = AsyncMock(side_effect=CapabilityError("no microphone"))
        handler = ShutdownHandler(controller)

        handler.request()
        with caplog.at_level(logging.ERROR, logger="robo_listen.main"):
            await handler.finish()

        assert "Stopping after signal failed: no microphone" in caplog.text
