"""Usage and cost report logged after each call.

Cost figures are estimates for operators; nothing in the relay depends on them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relay.schemas import CallSummary

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPricing:
    input_per_million: float
    output_per_million: float
    currency_rate: float = 1.0
    currency_label: str = "USD"

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenPricing:
        return cls(
            input_per_million=settings.input_token_price_per_million,
            output_per_million=settings.output_token_price_per_million,
            currency_rate=settings.currency_rate,
            currency_label=settings.currency_label,
        )


def estimate_cost(tokens: dict[str, Any], pricing: TokenPricing) -> float:
    """Estimated cost in USD for the accumulated usage block."""

    input_tokens = int(tokens.get("input_tokens") or 0)
    output_tokens = int(tokens.get("output_tokens") or 0)
    return (
        input_tokens / 1_000_000 * pricing.input_per_million
        + output_tokens / 1_000_000 * pricing.output_per_million
    )


class UsageReporter:
    def __init__(self, pricing: TokenPricing) -> None:
        self._pricing = pricing

    def report(self, summary: CallSummary) -> float:
        tokens = summary.tokens
        cost = estimate_cost(tokens, self._pricing)
        input_details = tokens.get("input_token_details") or {}
        output_details = tokens.get("output_token_details") or {}
        LOGGER.info(
            "Call %s finished: outcome=%s duration=%ss note=%s",
            summary.call_id,
            summary.outcome.value if summary.outcome else None,
            summary.duration_seconds,
            summary.note,
        )
        LOGGER.info(
            "Token usage: input=%s (audio=%s text=%s cached=%s) output=%s (audio=%s text=%s)",
            tokens.get("input_tokens", 0),
            input_details.get("audio_tokens", 0),
            input_details.get("text_tokens", 0),
            input_details.get("cached_tokens", 0),
            tokens.get("output_tokens", 0),
            output_details.get("audio_tokens", 0),
            output_details.get("text_tokens", 0),
        )
        LOGGER.info(
            "Estimated cost: $%.4f (~%s %.2f)",
            cost,
            self._pricing.currency_label,
            cost * self._pricing.currency_rate,
        )
        return cost
