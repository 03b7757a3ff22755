"""Duplex relay between a Twilio media stream and a realtime speech model.

The engine consumes two independently clocked sources concurrently:

- caller frames (start/media/mark/stop) from the telephony socket;
- server events (audio deltas, speech started, response done, function calls)
  from the model socket.

Per call it is either idle or speaking. The first audio delta of a model item
starts a turn and pins `turn_start_timestamp_ms` to the caller clock; every
delta forwarded to the caller is followed by a `mark` so the engine knows how
much audio is still queued at Twilio. When the model reports that the caller
started talking, the engine truncates the model's item at the point the caller
actually heard, clears Twilio's playback buffer and goes back to idle.

All session mutations happen under one lock, so a barge-in never interleaves
with the forwarding of an audio delta.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from integrations.openai_realtime import (
    AudioDelta,
    FunctionCallArgumentsDone,
    ModelError,
    ModelEvent,
    RealtimeModelTransport,
    ResponseDone,
    SpeechStarted,
)
from integrations.twilio_streaming import (
    MarkReceived,
    MediaEvent,
    MediaReceived,
    OtherEvent,
    StreamStarted,
    StreamStopped,
)
from relay.errors import ModelTransportError
from relay.schemas import CallSummary
from relay.session import CallSession
from relay.tools import ToolCallDispatcher

LOGGER = logging.getLogger(__name__)

MARK_NAME = "responsePart"


class CallerChannel(Protocol):
    def frames(self) -> AsyncIterator[MediaEvent]: ...

    async def send_media(self, stream_id: str, payload: str) -> None: ...

    async def send_mark(self, stream_id: str, name: str) -> None: ...

    async def send_clear(self, stream_id: str) -> None: ...

    async def close(self) -> None: ...


class CallRecorder(Protocol):
    async def record_outcome(self, summary: CallSummary) -> None: ...


class DuplexRelayEngine:
    """Relays one call. Create a new engine for every accepted media stream."""

    def __init__(
        self,
        caller: CallerChannel,
        model: RealtimeModelTransport,
        *,
        dispatcher: ToolCallDispatcher | None = None,
        recorder: CallRecorder | None = None,
        session: CallSession | None = None,
        customer: dict[str, str] | None = None,
        show_timing_math: bool = False,
    ) -> None:
        self._caller = caller
        self._model = model
        self._dispatcher = dispatcher or ToolCallDispatcher(model)
        self._recorder = recorder
        self._session = session or CallSession()
        self._customer = dict(customer or {})
        self._show_timing_math = show_timing_math
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task[None]] = []
        self._summary: CallSummary | None = None

    @property
    def session(self) -> CallSession:
        return self._session

    async def run(self) -> CallSummary:
        """Relay until either side closes, then close both and record the call once."""

        try:
            await self._relay()
        finally:
            await self._close_transports()
            summary = await self.finalize()
        return summary

    async def _relay(self) -> None:
        try:
            await self._model.connect()
        except ModelTransportError as exc:
            LOGGER.error("Realtime model unavailable, ending call: %s", exc.detail)
            return

        self._tasks = [
            asyncio.create_task(self._pump_caller(), name="relay-caller"),
            asyncio.create_task(self._pump_model(), name="relay-model"),
        ]
        done, pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                LOGGER.error("Relay loop %s failed", task.get_name(), exc_info=task.exception())

    async def _pump_caller(self) -> None:
        async for event in self._caller.frames():
            await self.handle_caller_event(event)
        LOGGER.info("Client disconnected (stream=%s)", self._session.stream_id)

    async def _pump_model(self) -> None:
        async for event in self._model.events():
            await self.handle_model_event(event)
        LOGGER.info("Realtime model closed (stream=%s)", self._session.stream_id)

    async def handle_caller_event(self, event: MediaEvent) -> None:
        async with self._lock:
            session = self._session
            if isinstance(event, MediaReceived):
                session.advance_inbound_clock(event.timestamp_ms)
                if self._show_timing_math:
                    LOGGER.info("Received media with timestamp %sms", event.timestamp_ms)
                if not self._model.is_open:
                    return
                try:
                    await self._model.append_audio(event.payload)
                except ModelTransportError as exc:
                    LOGGER.debug("Dropping caller audio: %s", exc.detail)
            elif isinstance(event, StreamStarted):
                session.begin_stream(event.stream_id, event.call_id)
                LOGGER.info("Incoming stream has started: stream=%s call=%s", event.stream_id, event.call_id)
            elif isinstance(event, MarkReceived):
                session.acknowledge_mark()
            elif isinstance(event, StreamStopped):
                LOGGER.info("Incoming stream stopped: stream=%s", session.stream_id)
            elif isinstance(event, OtherEvent):
                LOGGER.info("Received non-media event: %s", event.name)

    async def handle_model_event(self, event: ModelEvent) -> None:
        async with self._lock:
            try:
                if isinstance(event, AudioDelta):
                    await self._forward_audio(event)
                elif isinstance(event, SpeechStarted):
                    await self._interrupt()
                elif isinstance(event, ResponseDone):
                    if event.usage:
                        self._session.add_usage(event.usage)
                        LOGGER.info("Tokens used in this response: %s", event.usage)
                elif isinstance(event, FunctionCallArgumentsDone):
                    await self._dispatcher.dispatch(event, self._session)
                elif isinstance(event, ModelError):
                    LOGGER.error("Realtime API error: %s", event.detail)
            except ModelTransportError as exc:
                LOGGER.warning("Realtime model unavailable while handling %s: %s", type(event).__name__, exc.detail)

    async def _forward_audio(self, delta: AudioDelta) -> None:
        session = self._session
        if not delta.payload:
            return
        stream_id = session.stream_id
        if stream_id is None:
            LOGGER.debug("Model audio before stream start dropped")
            return

        await self._caller.send_media(stream_id, delta.payload)

        if delta.item_id and session.begin_turn(delta.item_id) and self._show_timing_math:
            LOGGER.info(
                "Setting start timestamp for new response %s: %sms",
                delta.item_id,
                session.turn_start_timestamp_ms,
            )

        await self._caller.send_mark(stream_id, MARK_NAME)
        session.enqueue_mark(MARK_NAME)

    async def _interrupt(self) -> None:
        session = self._session
        if not session.is_speaking:
            return
        elapsed = session.elapsed_in_turn()

        if self._show_timing_math:
            LOGGER.info(
                "Calculating elapsed time for truncation: %s - %s = %sms",
                session.latest_inbound_timestamp_ms,
                session.turn_start_timestamp_ms,
                elapsed,
            )

        item_id = session.active_model_turn_id
        stream_id = session.stream_id
        session.reset_turn()

        if stream_id is not None:
            await self._caller.send_clear(stream_id)
        if item_id:
            await self._model.truncate(item_id, elapsed)
        LOGGER.info("Caller barged in: truncated %s at %sms", item_id, elapsed)

    async def _close_transports(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._model.close()
        await self._caller.close()

    async def finalize(self) -> CallSummary:
        """Freeze the session and hand it to the recorder. Only the first call records."""

        if self._summary is not None:
            return self._summary
        self._session.finish()
        self._summary = self._session.summary(customer=self._customer)
        if self._recorder is not None:
            await self._recorder.record_outcome(self._summary)
        return self._summary
