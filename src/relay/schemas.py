"""Pydantic schemas shared by the relay, the tool dispatcher and the recorders."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OutcomeCategory(str, Enum):
    """Fixed call dispositions the model may report."""

    TRANSFERRED = "transferido_sucesso"
    MESSAGE_LEFT = "recado_deixado"
    WRONG_NUMBER = "numero_errado"
    CPF_NOT_CONFIRMED = "cpf_nao_confirmado"


class CallOutcome(BaseModel):
    category: OutcomeCategory
    note: str | None = None


class OutcomeArguments(BaseModel):
    """Arguments of the `registrar_resultado_chamada` function call."""

    model_config = ConfigDict(extra="ignore")

    resultado: OutcomeCategory
    observacoes: str | None = None

    @field_validator("observacoes")
    @classmethod
    def blank_note_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip()
        return text or None

    def to_outcome(self) -> CallOutcome:
        return CallOutcome(category=self.resultado, note=self.observacoes)


class CallSummary(BaseModel):
    """Snapshot handed to the outcome recorder once a call has ended."""

    call_id: str | None = None
    stream_id: str | None = None
    started_at: datetime
    ended_at: datetime
    duration_seconds: int = Field(ge=0)
    outcome: OutcomeCategory | None = None
    note: str | None = None
    customer: dict[str, str] = Field(default_factory=dict)
    tokens: dict[str, Any] = Field(default_factory=dict)
