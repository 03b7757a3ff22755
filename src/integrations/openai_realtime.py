"""Client for the OpenAI Realtime API (speech-to-speech over WebSocket).

One `RealtimeModelTransport` is opened per call. It sends a single
`session.update` shortly after the socket opens and then exposes the model's
server events as small typed records.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from relay.errors import MalformedFrameError, ModelTransportError

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings

LOGGER = logging.getLogger(__name__)

AUDIO_FORMAT = "audio/pcmu"

Connector = Callable[..., Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class AudioDelta:
    item_id: str | None
    payload: str


@dataclass(frozen=True, slots=True)
class SpeechStarted:
    audio_start_ms: int | None = None


@dataclass(frozen=True, slots=True)
class ResponseDone:
    usage: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class FunctionCallArgumentsDone:
    call_id: str | None
    name: str
    arguments: str


@dataclass(frozen=True, slots=True)
class ModelError:
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OtherModelEvent:
    type: str


ModelEvent = Union[
    AudioDelta, SpeechStarted, ResponseDone, FunctionCallArgumentsDone, ModelError, OtherModelEvent
]

_AUDIO_DELTA_TYPES = frozenset({"response.output_audio.delta", "response.audio.delta"})


def parse_model_message(raw: str | bytes) -> dict[str, Any]:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedFrameError(f"Invalid JSON from realtime model: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedFrameError("Realtime model event is not a JSON object")
    return message


def decode_model_event(message: dict[str, Any]) -> ModelEvent:
    event_type = str(message.get("type") or "")

    if event_type in _AUDIO_DELTA_TYPES:
        return AudioDelta(item_id=message.get("item_id"), payload=str(message.get("delta") or ""))

    if event_type == "input_audio_buffer.speech_started":
        return SpeechStarted(audio_start_ms=message.get("audio_start_ms"))

    if event_type == "response.done":
        response = message.get("response") or {}
        usage = response.get("usage") if isinstance(response, dict) else None
        return ResponseDone(usage=usage if isinstance(usage, dict) else None)

    if event_type == "response.function_call_arguments.done":
        return FunctionCallArgumentsDone(
            call_id=message.get("call_id"),
            name=str(message.get("name") or ""),
            arguments=str(message.get("arguments") or ""),
        )

    if event_type == "error":
        error = message.get("error")
        return ModelError(detail=error if isinstance(error, dict) else {"message": str(error)})

    return OtherModelEvent(type=event_type)


def build_session_update(
    *,
    model: str,
    voice: str,
    instructions: str,
    tools: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "type": "realtime",
            "model": model,
            "output_modalities": ["audio"],
            "audio": {
                "input": {
                    "format": {"type": AUDIO_FORMAT},
                    "turn_detection": {"type": "server_vad"},
                },
                "output": {"format": {"type": AUDIO_FORMAT}, "voice": voice},
            },
            "instructions": instructions,
            "tools": tools,
        },
    }


class RealtimeModelTransport:
    """Model side of the relay."""

    def __init__(
        self,
        *,
        api_key: str,
        url: str,
        model: str,
        voice: str,
        instructions: str,
        tools: list[dict[str, Any]],
        temperature: float = 0.6,
        session_update_delay_ms: int = 100,
        greeting_prompt: str | None = None,
        log_event_types: Iterable[str] = (),
        connector: Connector | None = None,
    ) -> None:
        if not api_key:
            raise ModelTransportError("Realtime API key is empty")
        self._api_key = api_key
        self._url = url
        self._model = model
        self._voice = voice
        self._instructions = instructions
        self._tools = tools
        self._temperature = temperature
        self._session_update_delay = max(0, session_update_delay_ms) / 1000
        self._greeting_prompt = greeting_prompt
        self._log_event_types = frozenset(log_event_types)
        self._connector = connector or websockets.connect
        self._ws: Any = None
        self._open = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        instructions: str,
        tools: list[dict[str, Any]],
        connector: Connector | None = None,
    ) -> RealtimeModelTransport:
        return cls(
            api_key=settings.openai_api_key or "",
            url=settings.realtime_url,
            model=settings.realtime_model,
            voice=settings.realtime_voice,
            instructions=instructions,
            tools=tools,
            temperature=settings.realtime_temperature,
            session_update_delay_ms=settings.session_update_delay_ms,
            greeting_prompt=settings.initial_greeting_prompt if settings.assistant_speaks_first else None,
            log_event_types=settings.log_event_types,
            connector=connector,
        )

    @property
    def is_open(self) -> bool:
        return self._open

    def connection_url(self) -> str:
        query = urlencode({"model": self._model, "temperature": self._temperature})
        return f"{self._url}?{query}"

    async def connect(self) -> None:
        """Open the socket, wait the grace period, then configure the session."""

        url = self.connection_url()
        try:
            self._ws = await self._connector(
                url,
                additional_headers={"Authorization": f"Bearer {self._api_key}"},
                ping_interval=20,
                ping_timeout=20,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ModelTransportError(f"Could not connect to {self._url}: {exc}") from exc

        self._open = True
        LOGGER.info("Connected to the OpenAI Realtime API (model=%s)", self._model)

        # The peer is not always ready to accept session.update the moment the socket opens.
        await asyncio.sleep(self._session_update_delay)
        await self.send_session_update()
        if self._greeting_prompt:
            await self.send_initial_greeting(self._greeting_prompt)

    async def events(self) -> AsyncIterator[ModelEvent]:
        """Yield decoded model events until the socket closes."""

        if self._ws is None:
            return
        try:
            async for raw in self._ws:
                try:
                    message = parse_model_message(raw)
                except MalformedFrameError as exc:
                    LOGGER.warning("Dropping realtime model frame: %s", exc.detail)
                    continue

                event_type = str(message.get("type") or "")
                if event_type in self._log_event_types:
                    LOGGER.info("Received event: %s %s", event_type, message)
                yield decode_model_event(message)
        except ConnectionClosed as exc:
            LOGGER.info("Disconnected from the OpenAI Realtime API: %s", exc)
        except (OSError, WebSocketException) as exc:
            LOGGER.error("Error in the OpenAI WebSocket: %s", exc)
        finally:
            self._open = False

    async def send_session_update(self) -> None:
        message = build_session_update(
            model=self._model,
            voice=self._voice,
            instructions=self._instructions,
            tools=self._tools,
        )
        LOGGER.info("Sending session update (voice=%s, tools=%s)", self._voice, [t.get("name") for t in self._tools])
        await self.send(message)

    async def send_initial_greeting(self, prompt: str) -> None:
        await self.send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": prompt}],
                },
            }
        )
        await self.create_response()

    async def append_audio(self, payload: str) -> None:
        await self.send({"type": "input_audio_buffer.append", "audio": payload})

    async def truncate(self, item_id: str, audio_end_ms: int, *, content_index: int = 0) -> None:
        await self.send(
            {
                "type": "conversation.item.truncate",
                "item_id": item_id,
                "content_index": content_index,
                "audio_end_ms": audio_end_ms,
            }
        )

    async def send_function_output(self, call_id: str, output: dict[str, Any]) -> None:
        await self.send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": call_id,
                    "output": json.dumps(output, ensure_ascii=False),
                },
            }
        )

    async def create_response(self) -> None:
        await self.send({"type": "response.create"})

    async def send(self, message: dict[str, Any]) -> None:
        if self._ws is None or not self._open:
            raise ModelTransportError("Realtime model socket is not open")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            self._open = False
            raise ModelTransportError(f"Realtime model socket closed: {exc}") from exc

    async def close(self) -> None:
        self._open = False
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            LOGGER.debug("Error while closing realtime model socket: %s", exc)
