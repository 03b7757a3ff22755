"""Bridge for notifying an external tabulation endpoint about finished calls."""

from __future__ import annotations

import logging

import httpx

from relay.schemas import CallSummary

LOGGER = logging.getLogger(__name__)


class OutcomeWebhook:
    """Simple HTTP bridge posting call summaries as JSON."""

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not endpoint:
            raise ValueError("Outcome webhook endpoint is not configured.")
        self._endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def write(self, summary: CallSummary) -> None:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                self._endpoint,
                json=summary.model_dump(mode="json"),
                headers=headers,
            )
        try:
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("Outcome webhook dispatch failed: %s", exc)
            raise
