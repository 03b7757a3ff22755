from __future__ import annotations

import time

import pytest

from fakes import FakeConnector, FakeModelSocket


@pytest.mark.parametrize("method", ["get", "post"])
def test_incoming_call_connects_media_stream(client, method):
    response = getattr(client, method)("/incoming-call", headers={"host": "relay.example.com"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "<Say voice=\"Polly.Camila\" language=\"pt-BR\">" in response.text
    assert "<Pause length=\"1\"/>" in response.text
    assert "<Stream url=\"wss://relay.example.com/media-stream\" />" in response.text


def test_public_base_url_overrides_request_host(client, monkeypatch):
    import api.twilio_routes as twilio_routes
    from config.settings import Settings

    settings = Settings(_env_file=None, openai_api_key="sk-test", public_base_url="https://relay.example.org/")
    monkeypatch.setattr(twilio_routes, "get_settings", lambda: settings)

    response = client.post("/incoming-call")

    assert "<Stream url=\"wss://relay.example.org/media-stream\" />" in response.text


def test_media_stream_relays_call_and_records_outcome(app, client):
    import api.dependencies as deps

    socket = FakeModelSocket()
    socket.reply_to(
        "input_audio_buffer.append",
        {
            "type": "response.function_call_arguments.done",
            "call_id": "call_1",
            "name": "registrar_resultado_chamada",
            "arguments": "{\"resultado\": \"transferido_sucesso\", \"observacoes\": \"cliente confirmado\"}",
        },
    )
    socket.reply_to(
        "response.create",
        {"type": "response.output_audio.delta", "item_id": "item_1", "delta": "AAAA"},
        {"type": "response.done", "response": {"usage": {"input_tokens": 12, "output_tokens": 6}}},
        None,
    )
    app.dependency_overrides[deps.get_model_connector] = lambda: FakeConnector(socket)

    with client.websocket_connect("/media-stream") as ws:
        ws.send_json({"event": "connected", "protocol": "Call"})
        ws.send_json({"event": "start", "start": {"streamSid": "MZ-e2e", "callSid": "CA-e2e"}})
        ws.send_text("{garbage")
        ws.send_json({"event": "media", "media": {"timestamp": "20", "payload": "//8="}})

        assert ws.receive_json() == {"event": "media", "streamSid": "MZ-e2e", "media": {"payload": "AAAA"}}
        assert ws.receive_json() == {"event": "mark", "streamSid": "MZ-e2e", "mark": {"name": "responsePart"}}
        assert ws.receive()["type"] == "websocket.close"

        # The call is persisted after the socket closes; poll while the app is still serving.
        record = None
        for _ in range(50):
            response = client.get("/api/calls/CA-e2e")
            if response.status_code == 200:
                record = response.json()
                break
            time.sleep(0.05)

    assert record is not None
    assert record["stream_id"] == "MZ-e2e"
    assert record["outcome"] == "transferido_sucesso"
    assert record["note"] == "cliente confirmado"
    assert record["tokens"]["input_tokens"] == 12
    assert socket.closed is True
    assert socket.sent_types()[:2] == ["session.update", "input_audio_buffer.append"]
