"""Tests for the structured logging configuration."""

from __future__ import annotations

import io
import json
import logging

from robo_listen.logging_config import setup_logging


class TestSetupLogging:
    def test_sets_log_level(self) -> None:
        setup_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(level="CHATTY")
        assert logging.getLogger().level == logging.INFO

    def test_single_handler_installed(self) -> None:
        setup_logging(level="INFO")
        handler = setup_logging(level="INFO")
        assert logging.getLogger().handlers == [handler]

    def test_json_output(self) -> None:
        stream = io.StringIO()
        setup_logging(level="INFO", json_output=True, stream=stream)

        logging.getLogger("robo_listen.test").info("Heard: %s", "hello")

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "Heard: hello"
        assert record["level"] == "info"
        assert record["logger"] == "robo_listen.test"

    def test_console_output(self) -> None:
        stream = io.StringIO()
        setup_logging(level="WARNING", stream=stream)

        logging.getLogger("robo_listen.test").info("hidden")
        logging.getLogger("robo_listen.test").warning("shown")

        output = stream.getvalue()
        assert "shown" in output
        assert "hidden" not in output

    def test_noisy_loggers_suppressed(self) -> None:
        setup_logging(level="DEBUG")
        for name in ("websockets", "httpx", "httpcore"):
            assert logging.getLogger(name).level >= logging.WARNING
