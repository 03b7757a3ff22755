from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Union

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from relay.errors import MalformedFrameError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreamStarted:
    stream_id: str | None
    call_id: str | None


@dataclass(frozen=True, slots=True)
class MediaReceived:
    timestamp_ms: int
    payload: str


@dataclass(frozen=True, slots=True)
class MarkReceived:
    name: str | None = None


@dataclass(frozen=True, slots=True)
class StreamStopped:
    call_id: str | None = None


@dataclass(frozen=True, slots=True)
class OtherEvent:
    name: str


MediaEvent = Union[StreamStarted, MediaReceived, MarkReceived, StreamStopped, OtherEvent]


def parse_twilio_ws_message(text: str) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedFrameError(f"Invalid JSON frame: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedFrameError("Frame is not a JSON object")
    return message


def _timestamp_ms(value: Any) -> int:
    # Twilio sends the media timestamp as a decimal string.
    if isinstance(value, bool):
        raise MalformedFrameError("Media timestamp is not numeric")
    try:
        return int(float(value))
    except (TypeError, ValueError) as exc:
        raise MalformedFrameError(f"Media timestamp is not numeric: {value!r}") from exc


def classify_twilio_event(message: dict[str, Any]) -> MediaEvent | None:
    """Map one decoded Twilio frame to a relay event.

    Returns None for frames that carry nothing for the relay (outbound-track media).
    Raises MalformedFrameError when a known event is missing required fields.
    """

    event = str(message.get("event") or "")
    if event == "start":
        start = message.get("start") or {}
        if not isinstance(start, dict):
            raise MalformedFrameError("start payload is not an object")
        stream_id = start.get("streamSid") or start.get("streamId") or message.get("streamSid")
        call_id = start.get("callSid") or start.get("callId")
        return StreamStarted(
            stream_id=str(stream_id) if stream_id else None,
            call_id=str(call_id) if call_id else None,
        )

    if event == "media":
        media = message.get("media")
        if not isinstance(media, dict):
            raise MalformedFrameError("media payload is not an object")
        if media.get("track") and media.get("track") != "inbound":
            return None
        payload = media.get("payload")
        if not isinstance(payload, str):
            raise MalformedFrameError("media payload is missing")
        return MediaReceived(timestamp_ms=_timestamp_ms(media.get("timestamp", 0)), payload=payload)

    if event == "mark":
        mark = message.get("mark") or {}
        name = mark.get("name") if isinstance(mark, dict) else None
        return MarkReceived(name=name)

    if event == "stop":
        stop = message.get("stop") or {}
        call_id = stop.get("callSid") if isinstance(stop, dict) else None
        return StreamStopped(call_id=call_id)

    return OtherEvent(name=event or "<missing>")


def media_frame(stream_id: str, payload: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_id, "media": {"payload": payload}}


def mark_frame(stream_id: str, name: str) -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_id, "mark": {"name": name}}


def clear_frame(stream_id: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_id}


class TwilioMediaChannel:
    """Caller side of the relay: one accepted Twilio Media Streams WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def frames(self) -> AsyncIterator[MediaEvent]:
        """Yield relay events until the caller disconnects. Malformed frames are skipped."""

        while not self._closed:
            try:
                text = await self._websocket.receive_text()
            except WebSocketDisconnect as exc:
                LOGGER.info("Twilio socket disconnected (code=%s)", exc.code)
                self._closed = True
                return

            try:
                event = classify_twilio_event(parse_twilio_ws_message(text))
            except MalformedFrameError as exc:
                LOGGER.warning("Dropping malformed Twilio frame: %s", exc.detail)
                continue

            if event is not None:
                yield event

    async def send_media(self, stream_id: str, payload: str) -> None:
        await self._send(media_frame(stream_id, payload))

    async def send_mark(self, stream_id: str, name: str) -> None:
        await self._send(mark_frame(stream_id, name))

    async def send_clear(self, stream_id: str) -> None:
        await self._send(clear_frame(stream_id))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if (
            self._websocket.application_state == WebSocketState.DISCONNECTED
            or self._websocket.client_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._websocket.close()
        except RuntimeError as exc:
            LOGGER.debug("Twilio socket already closed: %s", exc)

    async def _send(self, message: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            await self._websocket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError) as exc:
            LOGGER.info("Twilio socket closed while sending %s: %s", message.get("event"), exc)
            self._closed = True
