"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that greets the caller and connects a Media Stream.
- The Media Stream WebSocket, relayed to the OpenAI Realtime API.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import get_call_script, get_model_connector, get_outcome_recorder
from config.settings import Settings, get_settings
from integrations.openai_realtime import RealtimeModelTransport
from integrations.twilio_streaming import TwilioMediaChannel
from relay.engine import DuplexRelayEngine
from relay.errors import ModelTransportError

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

MEDIA_STREAM_PATH = "/media-stream"


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _stream_url(request: Request, settings: Settings) -> str:
    if settings.public_base_url:
        return _to_ws_url(settings.public_base_url.rstrip("/") + MEDIA_STREAM_PATH)
    host = request.headers.get("host") or request.url.netloc
    return f"wss://{host}{MEDIA_STREAM_PATH}"


def _twiml_connect_stream(
    *,
    greeting: str,
    connected_prompt: str,
    voice: str,
    language: str,
    stream_url: str,
) -> str:
    say_attrs = f"voice=\"{escape(voice)}\" language=\"{escape(language)}\""
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"<Say {say_attrs}>{escape(greeting)}</Say>"
        "<Pause length=\"1\"/>"
        f"<Say {say_attrs}>{escape(connected_prompt)}</Say>"
        "<Connect>"
        f"<Stream url=\"{escape(stream_url)}\" />"
        "</Connect>"
        "</Response>"
    )


def customer_context(settings: Settings) -> dict[str, str]:
    context: dict[str, str] = {}
    if settings.customer_name:
        context["nome"] = settings.customer_name
    if settings.customer_cpf_prefix:
        context["cpf_primeiros_digitos"] = settings.customer_cpf_prefix
    return context


@router.api_route("/incoming-call", methods=["GET", "POST"])
async def incoming_call(request: Request) -> Response:
    settings = get_settings()
    return _twiml_response(
        _twiml_connect_stream(
            greeting=settings.twilio_greeting,
            connected_prompt=settings.twilio_connected_prompt,
            voice=settings.twilio_say_voice,
            language=settings.twilio_say_language,
            stream_url=_stream_url(request, settings),
        )
    )


@router.websocket(MEDIA_STREAM_PATH)
async def media_stream(
    websocket: WebSocket,
    script=Depends(get_call_script),
    recorder=Depends(get_outcome_recorder),
    connector=Depends(get_model_connector),
) -> None:
    settings = get_settings()
    await websocket.accept()
    LOGGER.info("Client connected")

    try:
        model = RealtimeModelTransport.from_settings(
            settings,
            instructions=script.instructions,
            tools=script.tools,
            connector=connector,
        )
    except ModelTransportError as exc:
        LOGGER.error("Cannot relay call: %s", exc.detail)
        await websocket.close(code=1011)
        return

    engine = DuplexRelayEngine(
        TwilioMediaChannel(websocket),
        model,
        recorder=recorder,
        customer=customer_context(settings),
        show_timing_math=settings.show_timing_math,
    )
    summary = await engine.run()
    LOGGER.info(
        "Client disconnected: call=%s outcome=%s",
        summary.call_id,
        summary.outcome.value if summary.outcome else None,
    )
