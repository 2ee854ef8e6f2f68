"""Listening session: one audio source streaming into one recognition channel.

The session owns the pairing of an AudioSource with a RecognitionChannel,
forwards audio into the channel behind a pause gate, hands transcripts
to the caller's sink and rebuilds the whole pairing when the transport
fails.

Sources and channels never call back into the session directly. They
emit typed events into a single inbox which one pump task drains in
order, so every state change happens in one place (``_handle``) and the
machine can be driven entirely by synthetic events in tests.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Awaitable, Callable, Union

from robo_listen.audio.base import BaseAudioSource
from robo_listen.core.errors import (
    ConfigurationError,
    InvalidTransitionError,
    ListenError,
    TransportError,
)
from robo_listen.core.event_bus import EventBus
from robo_listen.core.events import (
    AudioChunkEvent,
    ChannelClosedEvent,
    ChannelErrorEvent,
    Emit,
    PipelineEvent,
    SessionStateEvent,
    SourceErrorEvent,
    TranscriptEvent,
)
from robo_listen.core.models import (
    AudioConfig,
    ListenConfig,
    ListenState,
    RecognitionOptions,
)
from robo_listen.core.resilience import ReconnectPolicy
from robo_listen.recognition.base import BaseRecognitionChannel

logger = logging.getLogger(__name__)

Sink = Callable[[str], Union[None, Awaitable[None]]]
SourceFactory = Callable[[AudioConfig, Emit], BaseAudioSource]
ChannelFactory = Callable[[RecognitionOptions, Emit], BaseRecognitionChannel]

# Wait after releasing the microphone so an immediate restart can grab it again
DEFAULT_SETTLE_DELAY_S = 1.0

_S = ListenState
_EDGES: dict[ListenState, frozenset[ListenState]] = {
    _S.IDLE: frozenset({_S.STARTING, _S.STOPPED}),
    _S.STARTING: frozenset({_S.ACTIVE, _S.RECONNECTING, _S.FAILED, _S.STOPPED}),
    _S.ACTIVE: frozenset({_S.PAUSED, _S.RECONNECTING, _S.STOPPED}),
    _S.PAUSED: frozenset({_S.ACTIVE, _S.RECONNECTING, _S.STOPPED}),
    _S.RECONNECTING: frozenset({_S.STARTING, _S.FAILED, _S.STOPPED}),
    _S.FAILED: frozenset({_S.STOPPED}),
    _S.STOPPED: frozenset(),
}

_OPEN_STATES = frozenset({_S.STARTING, _S.ACTIVE, _S.PAUSED, _S.RECONNECTING})


class ListenSession:
    """State machine for one continuous listening session.

    Lifecycle:
        IDLE -> STARTING -> ACTIVE <-> PAUSED
        ACTIVE/PAUSED -> RECONNECTING -> STARTING -> ACTIVE  (transport failure)
        STARTING -> FAILED                                   (configuration error)
        any -> STOPPED                                       (stop())

    A fresh source and channel are built on every pass through STARTING;
    instances are never reused after an error or a stop.
    """

    def __init__(
        self,
        config: ListenConfig,
        *,
        source_factory: SourceFactory,
        channel_factory: ChannelFactory,
        event_bus: EventBus | None = None,
        reconnect: ReconnectPolicy | None = None,
        settle_delay_s: float = DEFAULT_SETTLE_DELAY_S,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.event_bus = event_bus or EventBus()
        self.reconnect = reconnect or ReconnectPolicy()
        self.settle_delay_s = settle_delay_s
        self._log = log or logger
        self._source_factory = source_factory
        self._channel_factory = channel_factory

        self._state = ListenState.IDLE
        self.audio_config: AudioConfig | None = None
        self.options: RecognitionOptions | None = None
        self.retry_count = 0
        self.reconnects = 0
        self.dropped_chunks = 0

        self._sink: Sink | None = None
        self._source: BaseAudioSource | None = None
        self._channel: BaseRecognitionChannel | None = None
        self._generation = 0
        self._inbox: asyncio.Queue[tuple[int, PipelineEvent]] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._teardown: asyncio.Task[bool] | None = None
        self._stopping = False
        self._released = asyncio.Event()

    @property
    def state(self) -> ListenState:
        return self._state

    @property
    def is_open(self) -> bool:
        """True from start() until the session is stopped or has failed."""
        return self._state in _OPEN_STATES and not self._stopping

    # ── Public operations ──────────────────────────────────────────

    async def start(self, sink: Sink) -> None:
        """Open the session and return once it is ACTIVE.

        Transport failures while connecting are retried according to the
        reconnect policy. Raises ConfigurationError if the session cannot
        start at all (state FAILED).
        """
        if self._state is not ListenState.IDLE:
            raise InvalidTransitionError(f"Session already started ({self._state.value})")

        self._sink = sink
        self._pump_task = asyncio.create_task(self._pump(), name="listen-session-pump")
        self._start_task = asyncio.create_task(self._establish(), name="listen-session-start")
        try:
            await self._start_task
        except asyncio.CancelledError:
            if self._stopping:
                return
            raise
        except ListenError:
            await self._cancel_task(self._pump_task)
            self._pump_task = None
            raise
        finally:
            self._start_task = None

    async def pause(self) -> bool:
        """Stop capturing audio; the channel stays open and idle.

        Returns False (and does nothing) unless the session is ACTIVE.
        """
        if self._state is not ListenState.ACTIVE or self._stopping:
            self._log.info("Listening not paused: session is %s", self._state.value)
            return False
        # Close the gate first so chunks already queued are dropped too
        await self._transition(ListenState.PAUSED)
        if self._source is not None:
            await self._source.pause()
        self._log.debug("Listening paused")
        return True

    async def resume(self) -> bool:
        """Resume capturing after pause(). Returns False unless PAUSED."""
        if self._state is not ListenState.PAUSED or self._stopping:
            self._log.info("Listening not resumed: session is %s", self._state.value)
            return False
        if self._source is not None:
            try:
                await self._source.resume()
            except Exception as exc:
                # A device lost while paused is a transport failure: reconnect from ACTIVE
                self._log.error("Audio source failed to resume: %s", exc)
                self._post(self._generation, SourceErrorEvent(message=f"resume failed: {exc}"))
        await self._transition(ListenState.ACTIVE)
        self._log.debug("Listening resumed")
        return True

    async def stop(self) -> None:
        """Release the microphone and the channel. Safe to call repeatedly."""
        if self._state is ListenState.STOPPED:
            return
        if self._stopping:
            await self._released.wait()
            return
        self._stopping = True

        await self._cancel_task(self._start_task)
        await self._cancel_task(self._pump_task)
        self._pump_task = None

        # A reconnect teardown cut short by the cancel above keeps running
        interrupted = self._teardown if self._teardown and not self._teardown.done() else None
        released_device = await self._release_pair()
        if interrupted is not None:
            released_device = await interrupted or released_device
        if released_device and self.settle_delay_s > 0:
            await asyncio.sleep(self.settle_delay_s)

        self._sink = None
        await self._transition(ListenState.STOPPED)
        self._released.set()
        self._log.debug("Listening stopped")

    async def drain(self) -> None:
        """Wait until every queued event, and any reconnect it caused, is handled."""
        if self._pump_task is None or self._pump_task.done():
            return
        await self._inbox.join()

    # ── Connection management ──────────────────────────────────────

    async def _establish(self) -> None:
        """Walk STARTING until ACTIVE, reconnecting on transport errors."""
        while True:
            await self._transition(ListenState.STARTING)
            try:
                await self._open_pair()
            except TransportError as exc:
                await self._enter_reconnecting(str(exc))
                continue
            except Exception as exc:
                await self._release_pair()
                await self._transition(ListenState.FAILED)
                self._log.error("Listening failed to start: %s", exc)
                if isinstance(exc, ConfigurationError):
                    raise
                raise ConfigurationError(str(exc)) from exc

            await self._transition(ListenState.ACTIVE)
            return

    async def _open_pair(self) -> None:
        if self.audio_config is None:
            # Derived once: the channel count never changes for this session
            self.audio_config = AudioConfig.from_listen_config(self.config)
            self.options = RecognitionOptions.from_listen_config(self.config, self.audio_config)
            if self.options.customization_id:
                self._log.debug("Using custom language model %s", self.options.customization_id)

        self._generation += 1
        emit = functools.partial(self._post, self._generation)
        self._channel = self._channel_factory(self.options, emit)
        self._source = self._source_factory(self.audio_config, emit)

        await self._channel.open()
        await self._source.start()
        if not self._channel.is_open:
            # Its error event arrived while STARTING and was not acted on
            raise TransportError("recognition channel dropped while starting")

    async def _enter_reconnecting(self, reason: str) -> None:
        attempt = self.retry_count + 1
        self.retry_count = attempt
        self.reconnects += 1
        await self._transition(ListenState.RECONNECTING)
        await self._release_pair()

        if not self.reconnect.should_retry(attempt):
            await self._transition(ListenState.FAILED)
            self._log.error("Giving up on speech recognition after %d attempts: %s", attempt - 1, reason)
            raise TransportError(f"Reconnect attempts exhausted: {reason}")

        self._log.error(
            "Speech recognition transport failed (%s); reconnecting, attempt %s",
            reason,
            self.reconnect.describe(attempt),
        )
        delay = self.reconnect.delay_for(attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    async def _recover(self, reason: str) -> None:
        try:
            await self._enter_reconnecting(reason)
            await self._establish()
        except ListenError as exc:
            self._log.error("Listening session failed: %s", exc)

    async def _release_pair(self) -> bool:
        """Tear down the current source and channel. Returns True if a source was stopped.

        The teardown runs in its own task, so cancelling the caller (stop()
        cancelling the pump mid-reconnect) cannot leave the channel open.
        """
        source, self._source = self._source, None
        channel, self._channel = self._channel, None
        # Anything still queued from this pair is stale from here on
        self._generation += 1

        if source is None and channel is None:
            return False
        self._teardown = asyncio.create_task(
            self._close_pair(source, channel), name="listen-session-teardown"
        )
        return await asyncio.shield(self._teardown)

    async def _close_pair(
        self, source: BaseAudioSource | None, channel: BaseRecognitionChannel | None
    ) -> bool:
        if source is not None:
            try:
                await source.stop()
            except Exception as exc:
                self._log.warning("Error stopping audio source: %s", exc)
        if channel is not None:
            try:
                await channel.close()
            except Exception as exc:
                self._log.warning("Error closing recognition channel: %s", exc)
        return source is not None

    # ── Event handling ─────────────────────────────────────────────

    def _post(self, generation: int, event: PipelineEvent) -> None:
        self._inbox.put_nowait((generation, event))

    async def _pump(self) -> None:
        # stop() cancels the pump, unless it was called from a sink running on it.
        # FAILED is terminal: nothing left to pump once a reconnect gives up.
        while not self._stopping and self._state is not ListenState.FAILED:
            generation, event = await self._inbox.get()
            try:
                if generation == self._generation:
                    await self._handle(event)
            except Exception:
                self._log.exception("Unhandled error processing %s", type(event).__name__)
            finally:
                self._inbox.task_done()

    async def _handle(self, event: PipelineEvent) -> None:
        state = self._state

        if isinstance(event, AudioChunkEvent):
            if state in (ListenState.STARTING, ListenState.ACTIVE):
                if self._channel is not None and self._channel.is_open:
                    await self._channel.send(event.data)
            elif state is ListenState.PAUSED:
                self.dropped_chunks += 1

        elif isinstance(event, TranscriptEvent):
            if state is ListenState.ACTIVE:
                await self._deliver(event)
            else:
                self._log.debug("Discarding transcript while %s: %s", state.value, event.text)

        elif isinstance(event, (ChannelErrorEvent, SourceErrorEvent)):
            if state in (ListenState.ACTIVE, ListenState.PAUSED):
                await self._recover(event.message)

        elif isinstance(event, ChannelClosedEvent):
            if state in (ListenState.ACTIVE, ListenState.PAUSED):
                await self._recover(f"channel closed by server (code={event.code}) {event.reason}".strip())

    async def _deliver(self, event: TranscriptEvent) -> None:
        self._log.info("Heard: %s", event.text)
        sink = self._sink
        if sink is not None:
            try:
                result = sink(event.text)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._log.error("Transcript sink raised %s: %s", type(exc).__name__, exc)
        await self.event_bus.publish(event)

    async def _transition(self, target: ListenState) -> None:
        previous = self._state
        if target not in _EDGES[previous]:
            raise InvalidTransitionError(f"{previous.value} -> {target.value}")
        self._state = target
        if target is ListenState.ACTIVE:
            self.retry_count = 0
        self._log.debug("Listen session %s -> %s", previous.value, target.value)
        await self.event_bus.publish(
            SessionStateEvent(
                previous=previous,
                state=target,
                retry_count=self.retry_count,
                reconnects=self.reconnects,
            )
        )

    @staticmethod
    async def _cancel_task(task: asyncio.Task[None] | None) -> None:
        """Cancel ``task`` and wait for it to finish.

        A cancellation of the caller itself still propagates; only the
        outcome of ``task`` is discarded.
        """
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.debug("%s ended with %r while cancelled", task.get_name(), task.exception())
