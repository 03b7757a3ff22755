from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from outcomes.recorder import DatabaseOutcomeSink, JsonFileOutcomeSink, OutcomeRecorder
from outcomes.reporting import TokenPricing, UsageReporter, estimate_cost
from relay.schemas import CallSummary, OutcomeCategory


def _summary(**overrides) -> CallSummary:
    data = dict(
        call_id="CA1",
        stream_id="MZ1",
        started_at=datetime(2026, 3, 1, 10, 0, 0, tzinfo=timezone.utc),
        ended_at=datetime(2026, 3, 1, 10, 1, 30, tzinfo=timezone.utc),
        duration_seconds=90,
        outcome=OutcomeCategory.TRANSFERRED,
        note=None,
        customer={"nome": "Paulo Godoy"},
        tokens={"input_tokens": 1_000_000, "output_tokens": 500_000},
    )
    data.update(overrides)
    return CallSummary(**data)


class RecordingSink:
    def __init__(self) -> None:
        self.summaries = []

    async def write(self, summary) -> None:
        self.summaries.append(summary)


class BrokenSink:
    async def write(self, summary) -> None:
        raise RuntimeError("storage offline")


class FakeRepository:
    def __init__(self) -> None:
        self.saved = []

    async def save(self, summary):
        self.saved.append(summary)
        return SimpleNamespace(id=len(self.saved))


def test_json_sink_writes_tabulation_file(tmp_path):
    sink = JsonFileOutcomeSink(tmp_path / "tabulacoes")
    summary = _summary()

    asyncio.run(sink.write(summary))

    files = list((tmp_path / "tabulacoes").glob("tabulacao_*.json"))
    assert len(files) == 1
    payload = json.loads(files[0].read_text(encoding="utf-8"))
    assert payload["call_id"] == "CA1"
    assert payload["outcome"] == "transferido_sucesso"
    assert payload["duration_seconds"] == 90
    assert payload["customer"] == {"nome": "Paulo Godoy"}


def test_database_sink_uses_repository():
    repo = FakeRepository()
    asyncio.run(DatabaseOutcomeSink(repo).write(_summary()))
    assert repo.saved[0].call_id == "CA1"


def test_recorder_logs_sink_failures_and_keeps_going(caplog):
    healthy = RecordingSink()
    recorder = OutcomeRecorder([BrokenSink(), healthy])

    with caplog.at_level(logging.ERROR, logger="outcomes.recorder"):
        asyncio.run(recorder.record_outcome(_summary()))

    assert len(healthy.summaries) == 1
    assert "BrokenSink" in caplog.text


def test_estimate_cost_uses_per_million_prices():
    pricing = TokenPricing(input_per_million=10.0, output_per_million=20.0)
    assert estimate_cost({"input_tokens": 1_000_000, "output_tokens": 500_000}, pricing) == pytest.approx(20.0)
    assert estimate_cost({}, pricing) == 0.0


def test_reporter_logs_usage_and_converted_cost(caplog):
    reporter = UsageReporter(
        TokenPricing(input_per_million=10.0, output_per_million=20.0, currency_rate=5.8, currency_label="R$")
    )

    with caplog.at_level(logging.INFO, logger="outcomes.reporting"):
        cost = reporter.report(_summary())

    assert cost == pytest.approx(20.0)
    assert "transferido_sucesso" in caplog.text
    assert "R$ 116.00" in caplog.text


def test_webhook_posts_summary_with_bearer_key():
    import httpx

    from integrations.outcome_webhook import OutcomeWebhook

    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(204)

    webhook = OutcomeWebhook(
        "https://crm.example.com/tabulacoes/", api_key="secret", transport=httpx.MockTransport(handler)
    )
    asyncio.run(webhook.write(_summary(note="ligar amanhã")))

    request = captured[0]
    assert str(request.url) == "https://crm.example.com/tabulacoes"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["outcome"] == "transferido_sucesso"
    assert body["note"] == "ligar amanhã"


def test_webhook_error_status_is_raised():
    import httpx

    from integrations.outcome_webhook import OutcomeWebhook

    webhook = OutcomeWebhook(
        "https://crm.example.com/tabulacoes", transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(webhook.write(_summary()))


def test_recorder_from_settings_adds_configured_sinks(tmp_path):
    from config.settings import Settings
    from integrations.outcome_webhook import OutcomeWebhook

    settings = Settings(
        _env_file=None,
        openai_api_key="sk-test",
        data_dir=tmp_path,
        outcome_export_dir=tmp_path / "tabulacoes",
        outcome_webhook_url="https://crm.example.com/tabulacoes",
    )

    recorder = OutcomeRecorder.from_settings(settings)

    kinds = [type(sink) for sink in recorder._sinks]
    assert kinds == [DatabaseOutcomeSink, JsonFileOutcomeSink, OutcomeWebhook]
