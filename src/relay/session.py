from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from relay.schemas import CallOutcome, CallSummary


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


@dataclass(slots=True)
class UsageTotals:
    """Token counters summed over every completed model response of a call."""

    input_tokens: int = 0
    output_tokens: int = 0
    input_cached_tokens: int = 0
    input_text_tokens: int = 0
    input_audio_tokens: int = 0
    output_text_tokens: int = 0
    output_audio_tokens: int = 0

    def add(self, usage: dict[str, Any]) -> None:
        """Accumulate one `response.done` usage block. Missing fields count as zero."""

        self.input_tokens += _count(usage.get("input_tokens"))
        self.output_tokens += _count(usage.get("output_tokens"))

        input_details = usage.get("input_token_details") or {}
        if isinstance(input_details, dict):
            self.input_cached_tokens += _count(input_details.get("cached_tokens"))
            self.input_text_tokens += _count(input_details.get("text_tokens"))
            self.input_audio_tokens += _count(input_details.get("audio_tokens"))

        output_details = usage.get("output_token_details") or {}
        if isinstance(output_details, dict):
            self.output_text_tokens += _count(output_details.get("text_tokens"))
            self.output_audio_tokens += _count(output_details.get("audio_tokens"))

    def as_dict(self) -> dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "input_token_details": {
                "cached_tokens": self.input_cached_tokens,
                "text_tokens": self.input_text_tokens,
                "audio_tokens": self.input_audio_tokens,
            },
            "output_token_details": {
                "text_tokens": self.output_text_tokens,
                "audio_tokens": self.output_audio_tokens,
            },
        }


@dataclass(slots=True)
class CallSession:
    """Mutable per-call state. Only the owning relay engine mutates it.

    `active_model_turn_id` and `turn_start_timestamp_ms` are either both set
    (the model is speaking) or both None (idle).
    """

    stream_id: str | None = None
    call_id: str | None = None
    latest_inbound_timestamp_ms: int = 0
    active_model_turn_id: str | None = None
    turn_start_timestamp_ms: int | None = None
    pending_playback_marks: deque[str] = field(default_factory=deque)
    usage: UsageTotals = field(default_factory=UsageTotals)
    outcome: CallOutcome | None = None
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: datetime | None = None

    @property
    def is_speaking(self) -> bool:
        return self.turn_start_timestamp_ms is not None

    def begin_stream(self, stream_id: str | None, call_id: str | None) -> None:
        # A new stream redefines the caller clock origin.
        self.stream_id = stream_id
        self.call_id = call_id
        self.latest_inbound_timestamp_ms = 0
        self.reset_turn()

    def advance_inbound_clock(self, timestamp_ms: int) -> int:
        if timestamp_ms > self.latest_inbound_timestamp_ms:
            self.latest_inbound_timestamp_ms = timestamp_ms
        return self.latest_inbound_timestamp_ms

    def begin_turn(self, item_id: str) -> bool:
        """Mark `item_id` as the playing turn. Returns True if this started a new turn.

        A turn starts on the first delta while idle, or on the first delta of a
        different model item; later deltas of the same item leave the start alone.
        """

        if self.turn_start_timestamp_ms is not None and item_id == self.active_model_turn_id:
            return False
        self.turn_start_timestamp_ms = self.latest_inbound_timestamp_ms
        self.active_model_turn_id = item_id
        return True

    def elapsed_in_turn(self) -> int | None:
        """Milliseconds of the current turn the caller has heard, or None when idle."""

        if self.turn_start_timestamp_ms is None:
            return None
        return max(0, self.latest_inbound_timestamp_ms - self.turn_start_timestamp_ms)

    def enqueue_mark(self, name: str) -> None:
        self.pending_playback_marks.append(name)

    def acknowledge_mark(self) -> str | None:
        if not self.pending_playback_marks:
            return None
        return self.pending_playback_marks.popleft()

    def reset_turn(self) -> None:
        self.pending_playback_marks.clear()
        self.active_model_turn_id = None
        self.turn_start_timestamp_ms = None

    def record_outcome(self, outcome: CallOutcome) -> None:
        self.outcome = outcome

    def add_usage(self, usage: dict[str, Any]) -> None:
        self.usage.add(usage)

    def finish(self, ended_at: datetime | None = None) -> None:
        if self.ended_at is None:
            self.ended_at = ended_at or _utcnow()

    def summary(self, *, customer: dict[str, str] | None = None) -> CallSummary:
        ended_at = self.ended_at or _utcnow()
        duration = int((ended_at - self.started_at).total_seconds())
        return CallSummary(
            call_id=self.call_id,
            stream_id=self.stream_id,
            started_at=self.started_at,
            ended_at=ended_at,
            duration_seconds=max(0, duration),
            outcome=self.outcome.category if self.outcome else None,
            note=self.outcome.note if self.outcome else None,
            customer=dict(customer or {}),
            tokens=self.usage.as_dict(),
        )
