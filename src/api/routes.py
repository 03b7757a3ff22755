"""FastAPI routes exposing recorded call outcomes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from api.schemas import CallRecordResponse
from db.repository import CallRecordRepository

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/calls", response_model=list[CallRecordResponse])
async def list_calls(limit: int = 20) -> list[CallRecordResponse]:
    repo = CallRecordRepository()
    records = await repo.list_recent(limit=max(1, min(limit, 200)))
    return [CallRecordResponse.model_validate(record) for record in records]


@router.get("/calls/{call_id}", response_model=CallRecordResponse)
async def get_call(call_id: str) -> CallRecordResponse:
    repo = CallRecordRepository()
    record = await repo.get_latest(call_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Call not found.")
    return CallRecordResponse.model_validate(record)
