"""Persistence of call summaries once a relay session ends.

`OutcomeRecorder.record_outcome` never raises: each sink failure is logged and
the remaining sinks still run.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from relay.schemas import CallSummary

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings
    from outcomes.reporting import UsageReporter

LOGGER = logging.getLogger(__name__)


class OutcomeSink(Protocol):
    async def write(self, summary: CallSummary) -> None: ...


class DatabaseOutcomeSink:
    """Stores the summary as a `call_records` row."""

    def __init__(self, repository=None) -> None:
        if repository is None:
            from db.repository import CallRecordRepository

            repository = CallRecordRepository()
        self._repository = repository

    async def write(self, summary: CallSummary) -> None:
        record = await self._repository.save(summary)
        LOGGER.info("Call record %s stored for call %s", record.id, summary.call_id)


class JsonFileOutcomeSink:
    """Writes `tabulacao_<timestamp>.json` files into a directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def path_for(self, summary: CallSummary) -> Path:
        stamp = (summary.ended_at or datetime.now(timezone.utc)).isoformat()
        stamp = stamp.replace(":", "-").replace(".", "-").replace("+", "_")
        return self._directory / f"tabulacao_{stamp}.json"

    async def write(self, summary: CallSummary) -> None:
        path = self.path_for(summary)
        payload = json.dumps(summary.model_dump(mode="json"), indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write_file, path, payload)
        LOGGER.info("Call summary saved to %s", path)

    def _write_file(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload, encoding="utf-8")


class OutcomeRecorder:
    def __init__(
        self,
        sinks: Iterable[OutcomeSink] = (),
        *,
        reporter: UsageReporter | None = None,
    ) -> None:
        self._sinks = list(sinks)
        self._reporter = reporter

    @classmethod
    def from_settings(cls, settings: Settings) -> OutcomeRecorder:
        from integrations.outcome_webhook import OutcomeWebhook
        from outcomes.reporting import TokenPricing, UsageReporter

        sinks: list[OutcomeSink] = [DatabaseOutcomeSink()]
        if settings.outcome_export_dir:
            sinks.append(JsonFileOutcomeSink(settings.outcome_export_dir))
        if settings.outcome_webhook_url:
            sinks.append(
                OutcomeWebhook(settings.outcome_webhook_url, api_key=settings.outcome_webhook_api_key)
            )
        return cls(sinks, reporter=UsageReporter(TokenPricing.from_settings(settings)))

    async def record_outcome(self, summary: CallSummary) -> None:
        for sink in self._sinks:
            try:
                await sink.write(summary)
            except Exception:
                LOGGER.exception("Recording call %s with %s failed", summary.call_id, type(sink).__name__)

        if self._reporter is not None:
            try:
                self._reporter.report(summary)
            except Exception:
                LOGGER.exception("Usage report for call %s failed", summary.call_id)
