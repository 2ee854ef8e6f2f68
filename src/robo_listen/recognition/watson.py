"""Streaming recognition over the Watson Speech to Text WebSocket interface."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import websockets

from robo_listen.core.errors import ConfigurationError, TransportError
from robo_listen.core.events import Emit
from robo_listen.core.models import RecognitionOptions, SpeechToTextCredentials
from robo_listen.recognition.auth import IamTokenManager
from robo_listen.recognition.base import BaseRecognitionChannel

logger = logging.getLogger(__name__)

# HTTP statuses on the WebSocket upgrade that retrying cannot fix
_FATAL_HANDSHAKE_STATUSES = (400, 403, 404, 406, 415)


def build_recognize_url(service_url: str, options: RecognitionOptions) -> str:
    """Return the wss:// recognize endpoint for a service instance URL."""
    base = service_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]

    params = {"model": options.model}
    if options.customization_id:
        params["language_customization_id"] = options.customization_id
    return f"{base}/v1/recognize?{urlencode(params)}"


def build_start_message(options: RecognitionOptions) -> dict[str, Any]:
    """Return the JSON start frame that opens a recognition request."""
    message: dict[str, Any] = {
        "action": "start",
        "content-type": options.content_type,
        "interim_results": options.interim_results,
        "inactivity_timeout": options.inactivity_timeout,
    }
    if options.background_audio_suppression is not None:
        message["background_audio_suppression"] = options.background_audio_suppression
    return message


class WatsonRecognitionChannel(BaseRecognitionChannel):
    """One recognition request on the Watson STT WebSocket endpoint.

    Lifecycle:
        1. Fetch an IAM token and open the socket.
        2. Send the start frame; wait for ``{"state": "listening"}``.
        3. Stream binary audio frames; result frames become TranscriptEvent.
        4. ``{"error": ...}`` frames and abnormal closure become
           ChannelErrorEvent, a clean server closure ChannelClosedEvent.
    """

    def __init__(
        self,
        options: RecognitionOptions,
        emit: Emit,
        *,
        credentials: SpeechToTextCredentials,
        token_manager: IamTokenManager | None = None,
        connect: Callable[..., Awaitable[Any]] | None = None,
        open_timeout_s: float = 10.0,
    ) -> None:
        super().__init__(options, emit)
        self.credentials = credentials
        self._tokens = token_manager or IamTokenManager(credentials.apikey)
        self._connect = connect or websockets.connect
        self.open_timeout_s = open_timeout_s
        self._ws: Any | None = None
        self._reader: asyncio.Task[None] | None = None
        self._closing = False

    async def open(self) -> None:
        token = await self._tokens.get_token()
        url = build_recognize_url(self.credentials.url, self.options)

        try:
            self._ws = await self._connect(
                url,
                additional_headers={"Authorization": f"Bearer {token}"},
                open_timeout=self.open_timeout_s,
            )
        except websockets.InvalidStatus as exc:
            status = exc.response.status_code
            if status == 401:
                # Token expired or revoked; the next attempt fetches a new one
                self._tokens.invalidate()
            if status in _FATAL_HANDSHAKE_STATUSES:
                raise ConfigurationError(
                    f"Speech to text refused the connection (HTTP {status})"
                ) from exc
            raise TransportError(f"Speech to text handshake failed (HTTP {status})") from exc
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
            raise TransportError(f"Cannot reach speech to text: {exc}") from exc

        try:
            await self._ws.send(json.dumps(build_start_message(self.options)))
            await asyncio.wait_for(self._await_listening(), self.open_timeout_s)
        except ConfigurationError:
            await self._abort()
            raise
        except (asyncio.TimeoutError, websockets.ConnectionClosed) as exc:
            await self._abort()
            raise TransportError(f"Speech to text did not start listening: {exc}") from exc

        self._open = True
        self._reader = asyncio.create_task(self._read_loop(), name="watson-stt-reader")
        logger.debug("Recognition channel open (%s, %s)", self.options.model, self.options.content_type)

    async def send(self, chunk: bytes) -> None:
        if not self.is_open or self._ws is None:
            return
        try:
            await self._ws.send(chunk)
        except websockets.ConnectionClosed as exc:
            self._fail(f"connection lost while sending audio: {exc}")

    async def close(self) -> None:
        self._closing = True
        self._open = False
        ws, self._ws = self._ws, None

        if ws is not None:
            if not self._finished:
                try:
                    await ws.send(json.dumps({"action": "stop"}))
                except websockets.ConnectionClosed:
                    pass
            try:
                await ws.close()
            except (OSError, websockets.WebSocketException) as exc:
                logger.debug("Error closing recognition socket: %s", exc)

        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None

    async def _await_listening(self) -> None:
        while True:
            message = self._decode(await self._ws.recv())
            if message is None:
                continue
            if "error" in message:
                raise ConfigurationError(f"Speech to text rejected the request: {message['error']}")
            if message.get("state") == "listening":
                return

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                message = self._decode(raw)
                if message is None:
                    continue
                if "error" in message:
                    self._fail(str(message["error"]))
                    return
                self._dispatch_results(message)
        except websockets.ConnectionClosedError as exc:
            if not self._closing:
                self._fail(f"connection lost: {exc}")
            return

        if not self._closing:
            self._closed(ws.close_code, ws.close_reason or "")

    def _dispatch_results(self, message: dict[str, Any]) -> None:
        for result in message.get("results", []):
            alternatives = result.get("alternatives") or []
            if not alternatives:
                continue
            self._transcript(alternatives[0].get("transcript", ""), bool(result.get("final")))

    async def _abort(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, websockets.WebSocketException):
                pass

    @staticmethod
    def _decode(raw: str | bytes) -> dict[str, Any] | None:
        if isinstance(raw, bytes):
            return None
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed frame from speech to text: %.80r", raw)
            return None
        return message if isinstance(message, dict) else None
