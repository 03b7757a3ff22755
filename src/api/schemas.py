"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class StatusResponse(BaseModel):
    message: str


class CallRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    call_id: str | None
    stream_id: str | None
    started_at: datetime
    ended_at: datetime
    duration_seconds: int
    outcome: str | None
    note: str | None
    tokens: dict[str, Any]
